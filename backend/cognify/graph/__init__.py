"""In-memory graph registry for streaming graph builds."""

from backend.cognify.graph.registry import (
    EdgeRegistration,
    GraphRegistry,
    NodeRegistration,
    UnknownNodeError,
    generate_node_id,
)

__all__ = [
    "EdgeRegistration",
    "GraphRegistry",
    "NodeRegistration",
    "UnknownNodeError",
    "generate_node_id",
]
