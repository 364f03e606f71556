"""Graph-build orchestration and event framing."""

from backend.cognify.orchestration.orchestrator import (
    GraphBuildOrchestrator,
    GraphBuildSession,
    SessionState,
    UNEXPECTED_ERROR_MESSAGE,
)
from backend.cognify.orchestration.sse import format_sse_event, iter_sse

__all__ = [
    "GraphBuildOrchestrator",
    "GraphBuildSession",
    "SessionState",
    "UNEXPECTED_ERROR_MESSAGE",
    "format_sse_event",
    "iter_sse",
]
