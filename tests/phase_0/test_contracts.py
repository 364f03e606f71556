from __future__ import annotations

import pytest
from pydantic import ValidationError

from backend.cognify.contracts import (
    CompleteEvent,
    EdgeEvent,
    ErrorEvent,
    GraphEdge,
    GraphNode,
    GraphSummary,
    NodeEvent,
    StatusEvent,
    TERMINAL_EVENT_KINDS,
    Triple,
)


def test_triple_contract_rejects_blank_and_self_reference() -> None:
    triple = Triple(subject="Plato", predicate="taught", object="Aristotle")
    assert triple.content_key() == ("plato", "taught", "aristotle")
    assert Triple(subject="PLATO", predicate="Taught", object="aristotle").content_key() == (
        "plato",
        "Taught",
        "aristotle",
    )
    with pytest.raises(ValidationError):
        Triple(subject="  ", predicate="taught", object="Aristotle")
    with pytest.raises(ValidationError):
        Triple(subject="Plato", predicate="is", object=" plato ")


def test_graph_models_are_frozen() -> None:
    node = GraphNode(id="plato-0123456789", label="Plato")
    assert node.group == "extracted"
    assert node.weight == 1
    with pytest.raises(ValidationError):
        node.label = "Socrates"  # type: ignore[misc]


def test_edge_key_and_confidence_bounds() -> None:
    edge = GraphEdge(source="a", target="b", relation="taught", confidence=0.9)
    assert edge.key == ("a", "taught", "b")
    assert edge.type == "extracted"
    with pytest.raises(ValidationError):
        GraphEdge(source="a", target="b", relation="taught", confidence=1.5)


def test_event_payloads_omit_discriminator() -> None:
    node = GraphNode(id="plato-0123456789", label="Plato")
    edge = GraphEdge(source="a", target="b", relation="taught")

    assert StatusEvent(message="hi").to_payload() == {"message": "hi"}
    assert NodeEvent(node=node).to_payload() == {
        "node": {"id": "plato-0123456789", "label": "Plato", "group": "extracted", "weight": 1.0}
    }
    assert EdgeEvent(edge=edge).to_payload() == {
        "edge": {"source": "a", "target": "b", "relation": "taught", "type": "extracted"}
    }
    assert CompleteEvent(summary=GraphSummary(nodes=2, edges=1)).to_payload() == {
        "summary": {"nodes": 2, "edges": 1}
    }
    assert ErrorEvent(message="boom").kind in TERMINAL_EVENT_KINDS
