"""Immutable data contracts for the Cognify graph builder."""
from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from typing_extensions import Literal


class _FrozenBaseModel(BaseModel):
    """Base model enforcing immutability after creation."""

    model_config = ConfigDict(frozen=True)


class Triple(_FrozenBaseModel):
    """Subject/predicate/object fact extracted from text."""

    subject: str = Field(..., min_length=1)
    predicate: str = Field(..., min_length=1)
    object: str = Field(..., min_length=1)

    @field_validator("subject", "predicate", "object")
    @classmethod
    def _ensure_not_blank(cls, value: str) -> str:
        """Reject values that are empty once surrounding whitespace is removed."""

        if not value.strip():
            raise ValueError("triple fields must not be blank")
        return value

    @field_validator("object")
    @classmethod
    def _ensure_not_self_reference(cls, value: str, info: ValidationInfo) -> str:
        """Validate that subject and object name different entities.

        Args:
            value: The proposed object text.
            info: Validation context containing other field values.

        Returns:
            str: The validated object text.

        Raises:
            ValueError: If subject and object are equal ignoring case and padding.
        """
        subject = info.data.get("subject")
        if isinstance(subject, str) and subject.strip().lower() == value.strip().lower():
            raise ValueError("triple subject and object must differ")
        return value

    def content_key(self) -> tuple[str, str, str]:
        """Return the triple identity: labels ignore case, the predicate keeps it."""

        return (
            self.subject.strip().casefold(),
            self.predicate.strip(),
            self.object.strip().casefold(),
        )


class GraphNode(_FrozenBaseModel):
    """Graph vertex representing one distinct entity label."""

    id: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)
    group: Literal["extracted"] = "extracted"
    weight: float = Field(1, ge=0)


class GraphEdge(_FrozenBaseModel):
    """Directed, labeled relation between two registered nodes."""

    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    relation: str = Field(..., min_length=1)
    type: Literal["extracted", "inferred"] = "extracted"
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    @property
    def key(self) -> tuple[str, str, str]:
        """Return the identity key ``(source, relation, target)``."""

        return (self.source, self.relation, self.target)


class GraphSummary(_FrozenBaseModel):
    """Final node and edge counts for a graph-build session."""

    nodes: int = Field(..., ge=0)
    edges: int = Field(..., ge=0)


class _StreamEventBase(_FrozenBaseModel):
    """Shared behaviour for events emitted by the orchestrator."""

    def to_payload(self) -> Dict[str, Any]:
        """Return the wire payload for the event without its discriminator."""

        return self.model_dump(mode="json", exclude={"kind"}, exclude_none=True)


class StatusEvent(_StreamEventBase):
    """Informational progress message."""

    kind: Literal["status"] = "status"
    message: str


class NodeEvent(_StreamEventBase):
    """Announces a newly registered node."""

    kind: Literal["node"] = "node"
    node: GraphNode


class EdgeEvent(_StreamEventBase):
    """Announces a newly registered edge."""

    kind: Literal["edge"] = "edge"
    edge: GraphEdge


class CompleteEvent(_StreamEventBase):
    """Terminal event carrying the final graph counts."""

    kind: Literal["complete"] = "complete"
    summary: GraphSummary


class ErrorEvent(_StreamEventBase):
    """Terminal event carrying a user-facing failure message."""

    kind: Literal["error"] = "error"
    message: str


StreamEvent = Union[StatusEvent, NodeEvent, EdgeEvent, CompleteEvent, ErrorEvent]

TERMINAL_EVENT_KINDS = frozenset({"complete", "error"})


__all__ = [
    "CompleteEvent",
    "EdgeEvent",
    "ErrorEvent",
    "GraphEdge",
    "GraphNode",
    "GraphSummary",
    "NodeEvent",
    "StatusEvent",
    "StreamEvent",
    "TERMINAL_EVENT_KINDS",
    "Triple",
]
