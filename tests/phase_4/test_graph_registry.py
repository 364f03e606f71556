"""Tests for node identifiers and the session graph registry."""
from __future__ import annotations

import re

import pytest

from backend.cognify.graph import GraphRegistry, UnknownNodeError, generate_node_id


def test_node_id_is_deterministic_and_case_insensitive() -> None:
    node_id = generate_node_id("Plato")

    assert node_id == generate_node_id("Plato")
    assert node_id == generate_node_id("  PLATO ")
    assert node_id == generate_node_id("plato")
    assert re.fullmatch(r"plato-[0-9a-f]{10}", node_id)


def test_node_id_collapses_internal_whitespace() -> None:
    assert generate_node_id("New   York") == generate_node_id("new york")


def test_labels_differing_only_in_symbols_get_distinct_ids() -> None:
    assert generate_node_id("C") != generate_node_id("C++")
    assert generate_node_id("C").startswith("c-")
    assert generate_node_id("C++").startswith("c-")


def test_node_id_for_non_ascii_labels() -> None:
    assert generate_node_id("Zoë").startswith("zoe-")
    assert re.fullmatch(r"node-[0-9a-f]{10}", generate_node_id("老子"))
    assert generate_node_id("老子") != generate_node_id("孔子")


def test_node_id_slug_is_bounded() -> None:
    node_id = generate_node_id("word " * 40)
    slug, digest = node_id.rsplit("-", 1)

    assert len(slug) <= 48
    assert not slug.endswith("-")
    assert len(digest) == 10


def test_register_node_deduplicates_and_keeps_first_label() -> None:
    registry = GraphRegistry()

    first = registry.register_node("Plato")
    again = registry.register_node("plato")

    assert first.is_new is True
    assert again.is_new is False
    assert again.node == first.node
    assert first.node.label == "Plato"
    assert first.node.group == "extracted"
    assert first.node.weight == 1
    assert registry.node_count == 1
    assert registry.total_nodes_emitted == 1


def test_register_edge_requires_known_endpoints() -> None:
    registry = GraphRegistry()
    plato = registry.register_node("Plato").node

    with pytest.raises(UnknownNodeError):
        registry.register_edge(plato.id, "taught", generate_node_id("Aristotle"))


def test_register_edge_first_occurrence_wins() -> None:
    registry = GraphRegistry()
    plato = registry.register_node("Plato").node
    aristotle = registry.register_node("Aristotle").node

    first = registry.register_edge(plato.id, "taught", aristotle.id, confidence=0.9)
    again = registry.register_edge(plato.id, "taught", aristotle.id, confidence=0.1)
    reverse = registry.register_edge(aristotle.id, "taught", plato.id)

    assert first.is_new is True
    assert again.is_new is False
    assert again.edge.confidence == 0.9
    assert reverse.is_new is True
    assert [edge.key for edge in registry.edges()] == [
        (plato.id, "taught", aristotle.id),
        (aristotle.id, "taught", plato.id),
    ]
    assert registry.summary().edges == 2


def test_cap_checks_follow_node_count() -> None:
    registry = GraphRegistry(soft_node_cap=2, hard_node_cap=3)

    registry.register_node("A")
    assert not registry.at_or_above_soft_cap()
    registry.register_node("B")
    assert registry.at_or_above_soft_cap()
    assert not registry.at_or_above_hard_cap()
    registry.register_node("C")
    assert registry.at_or_above_hard_cap()
    assert [node.label for node in registry.nodes()] == ["A", "B", "C"]


def test_soft_cap_cannot_exceed_hard_cap() -> None:
    with pytest.raises(ValueError):
        GraphRegistry(soft_node_cap=10, hard_node_cap=5)
