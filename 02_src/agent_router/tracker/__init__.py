"""Trace context module."""

from .context import ITraceStore, TraceContext, get_active_trace
from .retrieval import ITraceReader, TraceRetrieval

__all__ = [
    "ITraceReader",
    "ITraceStore",
    "TraceContext",
    "TraceRetrieval",
    "get_active_trace",
]
