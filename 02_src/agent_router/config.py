"""Project-level configuration and path helpers."""

import os
from pathlib import Path
from typing import Union

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
PACKAGE_DIR = Path(__file__).resolve().parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "agent_router.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"
DEFAULT_REGISTRY_PATH = PACKAGE_DIR / "registry" / "registry.json"

# Routing
CONFIDENCE_THRESHOLD = 0.6
KEYWORD_CONFIDENCE = 0.5
DEFAULT_LLM_TIMEOUT = 30.0  # seconds
SEARCH_AGENT_ID = "librarian"
DEBUG_AGENT_ID = "debugger"

# Used only when the registry cannot even produce its default agent
LAST_RESORT_AGENT_ID = "dojo"
LAST_RESORT_AGENT_NAME = "Dojo"

EXPECTED_AGENT_IDS = ("dojo", "librarian", "debugger")


PathLike = Union[str, Path]


def load_environment(env_file: PathLike | None = None) -> None:
    """Load variables from a .env file without overriding the real environment."""
    load_dotenv(env_file or PROJECT_ROOT / ".env", override=False)


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def resolve_registry_path(env_value: PathLike | None = None) -> Path:
    """Resolve AGENT_REGISTRY_PATH, falling back to the packaged catalog."""
    if env_value is None:
        env_value = os.getenv("AGENT_REGISTRY_PATH")
    if not env_value:
        return DEFAULT_REGISTRY_PATH

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def get_llm_timeout() -> float:
    """Timeout for a single provider call, from ROUTING_TIMEOUT_SECONDS."""
    raw = os.getenv("ROUTING_TIMEOUT_SECONDS")
    if not raw:
        return DEFAULT_LLM_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_LLM_TIMEOUT
    return value if value > 0 else DEFAULT_LLM_TIMEOUT
