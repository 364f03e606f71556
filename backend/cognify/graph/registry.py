"""Deduplicating node and edge store for one graph-build session."""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from hashlib import sha256
from typing import Dict, List, Optional, Tuple

from typing_extensions import Literal

from backend.cognify.contracts import GraphEdge, GraphNode, GraphSummary

DEFAULT_SOFT_NODE_CAP = 300
DEFAULT_HARD_NODE_CAP = 500

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_SLUG_MAX_LENGTH = 48
_DIGEST_LENGTH = 10

EdgeKey = Tuple[str, str, str]


class UnknownNodeError(KeyError):
    """Raised when an edge references a node that was never registered."""


def normalize_label(label: str) -> str:
    """Return the case- and whitespace-insensitive form of an entity label."""

    normalized = unicodedata.normalize("NFKC", label)
    return " ".join(normalized.split()).casefold()


def generate_node_id(label: str) -> str:
    """Derive the deterministic node identifier for an entity label.

    The identifier pairs a readable ASCII slug with a digest of the normalized
    label, so labels that only differ in stripped characters ("C" and "C++")
    still receive distinct identifiers.

    Args:
        label: Entity label as produced by the model.

    Returns:
        str: Identifier such as ``"plato-1a2b3c4d5e"``.
    """

    normalized = normalize_label(label)
    digest = sha256(normalized.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]
    ascii_form = unicodedata.normalize("NFKD", normalized).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_PATTERN.sub("-", ascii_form).strip("-")[:_SLUG_MAX_LENGTH].rstrip("-")
    if not slug:
        return f"node-{digest}"
    return f"{slug}-{digest}"


@dataclass(frozen=True)
class NodeRegistration:
    """Result of registering a node label."""

    node: GraphNode
    is_new: bool


@dataclass(frozen=True)
class EdgeRegistration:
    """Result of registering an edge."""

    edge: GraphEdge
    is_new: bool


class GraphRegistry:
    """Append-only registry of the nodes and edges announced in one session."""

    def __init__(
        self,
        *,
        soft_node_cap: int = DEFAULT_SOFT_NODE_CAP,
        hard_node_cap: int = DEFAULT_HARD_NODE_CAP,
    ) -> None:
        if soft_node_cap > hard_node_cap:
            raise ValueError("soft_node_cap cannot exceed hard_node_cap")
        self._soft_node_cap = soft_node_cap
        self._hard_node_cap = hard_node_cap
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[EdgeKey, GraphEdge] = {}
        self.total_nodes_emitted = 0

    @property
    def soft_node_cap(self) -> int:
        return self._soft_node_cap

    @property
    def hard_node_cap(self) -> int:
        return self._hard_node_cap

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def register_node(self, label: str) -> NodeRegistration:
        """Return the node for ``label``, creating it on first sight."""

        node_id = generate_node_id(label)
        existing = self._nodes.get(node_id)
        if existing is not None:
            return NodeRegistration(node=existing, is_new=False)
        node = GraphNode(id=node_id, label=label, group="extracted", weight=1)
        self._nodes[node_id] = node
        self.total_nodes_emitted += 1
        return NodeRegistration(node=node, is_new=True)

    def register_edge(
        self,
        source_id: str,
        predicate: str,
        object_id: str,
        confidence: Optional[float] = None,
        edge_type: Literal["extracted", "inferred"] = "extracted",
    ) -> EdgeRegistration:
        """Return the edge for ``(source_id, predicate, object_id)``.

        A key that was already registered keeps its first edge unchanged.

        Raises:
            UnknownNodeError: If either endpoint has not been registered.
        """

        for node_id in (source_id, object_id):
            if node_id not in self._nodes:
                raise UnknownNodeError(node_id)
        key: EdgeKey = (source_id, predicate, object_id)
        existing = self._edges.get(key)
        if existing is not None:
            return EdgeRegistration(edge=existing, is_new=False)
        edge = GraphEdge(
            source=source_id,
            target=object_id,
            relation=predicate,
            type=edge_type,
            confidence=confidence,
        )
        self._edges[key] = edge
        return EdgeRegistration(edge=edge, is_new=True)

    def at_or_above_soft_cap(self) -> bool:
        return self.total_nodes_emitted >= self._soft_node_cap

    def at_or_above_hard_cap(self) -> bool:
        return self.total_nodes_emitted >= self._hard_node_cap

    def nodes(self) -> List[GraphNode]:
        """Return registered nodes in registration order."""

        return list(self._nodes.values())

    def edges(self) -> List[GraphEdge]:
        """Return registered edges in registration order."""

        return list(self._edges.values())

    def summary(self) -> GraphSummary:
        return GraphSummary(nodes=self.node_count, edges=self.edge_count)


__all__ = [
    "DEFAULT_HARD_NODE_CAP",
    "DEFAULT_SOFT_NODE_CAP",
    "EdgeRegistration",
    "GraphRegistry",
    "NodeRegistration",
    "UnknownNodeError",
    "generate_node_id",
    "normalize_label",
]
