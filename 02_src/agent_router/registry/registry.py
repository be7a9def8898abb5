"""Agent registry: validated, cached catalog of agents."""

import json
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

from ..config import EXPECTED_AGENT_IDS, resolve_registry_path
from ..errors import NotFoundError, RegistryError
from ..logging_config import get_logger
from ..models import Agent

logger = get_logger(__name__)


class AgentSchema(BaseModel):
    """Shape of one catalog entry."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    when_to_use: list[str] = Field(min_length=1)
    when_not_to_use: list[str] = Field(min_length=1)
    default: bool


class CatalogSchema(BaseModel):
    agents: list[AgentSchema] = Field(min_length=1)


class IAgentRegistry(Protocol):
    """Read-only access to the agent catalog."""

    def load(self) -> list[Agent]:
        """Validate and cache the catalog. Raises RegistryError."""
        ...

    def get_by_id(self, agent_id: str) -> Agent:
        """Get an agent or raise NotFoundError."""
        ...

    def get_default(self) -> Agent:
        """Get the single default agent."""
        ...

    def is_valid(self, agent_id: str) -> bool:
        """Check whether an agent id exists."""
        ...


class AgentRegistry:
    """Catalog loaded from a JSON file (or a mapping) and cached after first load.

    A failed load is remembered as well, so a broken catalog keeps failing
    fast until `reload()` is called.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        data: dict[str, Any] | None = None,
    ):
        self._path = resolve_registry_path(path) if data is None else None
        self._data = data
        self._agents: list[Agent] | None = None
        self._load_error: RegistryError | None = None

    def load(self) -> list[Agent]:
        """Validate uniqueness/default invariants once, then serve from cache."""
        if self._agents is not None:
            return self._agents
        if self._load_error is not None:
            raise self._load_error

        try:
            self._agents = self._parse(self._read())
        except RegistryError as e:
            self._load_error = e
            logger.error("Agent registry failed to load: %s", e)
            raise

        logger.info("Agent registry loaded with %s agents", len(self._agents))
        return self._agents

    def reload(self) -> list[Agent]:
        """Drop the cache (and any cached failure) and load again."""
        self._agents = None
        self._load_error = None
        return self.load()

    def get_available_agents(self) -> list[Agent]:
        return list(self.load())

    def get_by_id(self, agent_id: str) -> Agent:
        for agent in self.load():
            if agent.id == agent_id:
                return agent
        raise NotFoundError(agent_id)

    def get_default(self) -> Agent:
        for agent in self.load():
            if agent.default:
                return agent
        raise RegistryError("No default agent found in registry")

    def is_valid(self, agent_id: str) -> bool:
        try:
            self.get_by_id(agent_id)
        except NotFoundError:
            return False
        return True

    def validate(self) -> tuple[bool, list[str]]:
        """Non-raising health report, including the agents the product expects."""
        errors: list[str] = []
        try:
            agents = self.load()
        except RegistryError as e:
            return False, [f"Registry validation failed: {e}"]

        ids = {agent.id for agent in agents}
        for expected_id in EXPECTED_AGENT_IDS:
            if expected_id not in ids:
                errors.append(f"Missing expected agent: {expected_id}")

        return not errors, errors

    def _read(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryError(f"Cannot read agent registry {self._path}: {e}") from e

    @staticmethod
    def _parse(raw: dict[str, Any]) -> list[Agent]:
        try:
            catalog = CatalogSchema.model_validate(raw)
        except SchemaError as e:
            raise RegistryError(f"Invalid agent registry: {e}") from e

        defaults = [a for a in catalog.agents if a.default]
        if len(defaults) != 1:
            raise RegistryError(
                f"Registry must have exactly one default agent, found {len(defaults)}"
            )

        seen: set[str] = set()
        for entry in catalog.agents:
            if entry.id in seen:
                raise RegistryError(f"Duplicate agent ID found: {entry.id}")
            seen.add(entry.id)

        return [Agent(**entry.model_dump()) for entry in catalog.agents]
