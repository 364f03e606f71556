"""Streaming orchestration of triple extraction into a deduplicated graph."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Iterator, Optional, Set, Tuple

from backend.cognify.config import AppConfig, GraphConfig
from backend.cognify.contracts import (
    CompleteEvent,
    EdgeEvent,
    ErrorEvent,
    NodeEvent,
    StatusEvent,
    StreamEvent,
    Triple,
)
from backend.cognify.extraction import (
    DocumentTripleDecoder,
    IncrementalTripleParser,
    MalformedResponseError,
    ModelProviderError,
    SourceFactory,
    TripleDecoder,
    normalize_triple,
    validate_triple,
)
from backend.cognify.graph import GraphRegistry

LOGGER = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred during graph generation"


class SessionState(str, Enum):
    """Lifecycle states of a graph-build session."""

    STARTING = "starting"
    EXTRACTING = "extracting"
    BUILDING = "building"
    CAPPED = "capped"
    COMPLETING = "completing"
    DONE = "done"
    FAILED = "failed"


class GraphBuildSession:
    """Single graph-build run turning model output into ordered stream events.

    A session owns its registry, decoder and set of already handled triples;
    nothing is shared with other sessions. Events are produced lazily by
    :meth:`events`, and closing that generator aborts the model call.
    """

    def __init__(
        self,
        text: str,
        *,
        source_factory: SourceFactory,
        graph_config: GraphConfig,
        max_predicate_words: int,
    ) -> None:
        self._text = text
        self._source_factory = source_factory
        self._graph_config = graph_config
        self._max_predicate_words = max_predicate_words
        self.registry = GraphRegistry(
            soft_node_cap=graph_config.soft_node_cap,
            hard_node_cap=graph_config.hard_node_cap,
        )
        self.state = SessionState.STARTING
        self.dropped_triples = 0
        self._seen_triples: Set[Tuple[str, str, str]] = set()
        self._soft_cap_warning_emitted = False
        self._terminal_emitted = False

    @property
    def capped(self) -> bool:
        return self.state == SessionState.CAPPED

    def events(self) -> Iterator[StreamEvent]:
        """Yield the session's events, always ending with ``complete`` or ``error``."""

        source = None
        chunk_iter: Optional[Iterator[str]] = None
        try:
            yield StatusEvent(message="Starting graph generation...")
            LOGGER.info(
                "Starting extraction for %d chars, ~%d words",
                len(self._text),
                len(self._text.split()),
            )
            self._transition(SessionState.EXTRACTING)
            source = self._source_factory(self._text)
            decoder: TripleDecoder = (
                IncrementalTripleParser() if source.incremental else DocumentTripleDecoder()
            )
            yield StatusEvent(message="Analyzing text and extracting relationships...")
            try:
                chunk_iter = iter(source.chunks())
                for chunk in chunk_iter:
                    yield from self._consume(decoder.feed(chunk))
                    if self.capped:
                        break
                if self.capped:
                    _close_quietly(chunk_iter)
                    source.close()
                else:
                    records = decoder.finish()
                    valid_count = sum(1 for record in records if validate_triple(record))
                    if valid_count and not source.incremental:
                        yield StatusEvent(
                            message=f"Building graph from {valid_count} relationships..."
                        )
                    yield from self._consume(records)
            except MalformedResponseError as exc:
                LOGGER.warning("Model response could not be parsed; reporting empty graph: %s", exc)
                yield StatusEvent(message="No relationships could be extracted from the model response.")
            self._transition(SessionState.COMPLETING)
            summary = self.registry.summary()
            LOGGER.info(
                "Graph build complete: %d nodes, %d edges (%d triples dropped)",
                summary.nodes,
                summary.edges,
                self.dropped_triples,
            )
            self._terminal_emitted = True
            yield CompleteEvent(summary=summary)
            self._transition(SessionState.DONE)
        except ModelProviderError as exc:
            LOGGER.error("Graph build failed: %s", exc)
            if not self._terminal_emitted:
                self._transition(SessionState.FAILED)
                self._terminal_emitted = True
                yield ErrorEvent(message=str(exc) or UNEXPECTED_ERROR_MESSAGE)
        except Exception:  # noqa: BLE001 - every session must end with a terminal event
            LOGGER.exception("Unexpected failure while building graph")
            if not self._terminal_emitted:
                self._transition(SessionState.FAILED)
                self._terminal_emitted = True
                yield ErrorEvent(message=UNEXPECTED_ERROR_MESSAGE)
        finally:
            _close_quietly(chunk_iter)
            if source is not None:
                source.close()

    def _consume(self, records: Iterable[Any]) -> Iterator[StreamEvent]:
        """Convert newly surfaced records into node and edge events."""

        for record in records:
            if self.capped:
                return
            triple = self._prepare(record)
            if triple is None:
                continue
            if self.state == SessionState.EXTRACTING:
                self._transition(SessionState.BUILDING)

            subject = self.registry.register_node(triple.subject)
            if subject.is_new:
                yield NodeEvent(node=subject.node)
                yield from self._check_caps()
                if self.capped:
                    return

            obj = self.registry.register_node(triple.object)
            if obj.is_new:
                yield NodeEvent(node=obj.node)
                yield from self._check_caps()
                if self.capped:
                    return

            if subject.node.id == obj.node.id:
                LOGGER.debug("Skipping edge between labels sharing node %s", subject.node.id)
                continue
            edge = self.registry.register_edge(
                subject.node.id,
                triple.predicate,
                obj.node.id,
                confidence=self._graph_config.edge_confidence,
            )
            if edge.is_new:
                yield EdgeEvent(edge=edge.edge)

    def _prepare(self, record: Any) -> Optional[Triple]:
        """Validate and normalize a record, returning None for drops and repeats."""

        if not validate_triple(record):
            self.dropped_triples += 1
            LOGGER.debug("Dropping invalid triple: %s", record)
            return None
        try:
            triple = normalize_triple(record, self._max_predicate_words)
        except ValueError:
            self.dropped_triples += 1
            LOGGER.debug("Dropping triple that failed normalization: %s", record)
            return None
        key = triple.content_key()
        if key in self._seen_triples:
            return None
        self._seen_triples.add(key)
        return triple

    def _check_caps(self) -> Iterator[StreamEvent]:
        if self.registry.at_or_above_soft_cap() and not self._soft_cap_warning_emitted:
            self._soft_cap_warning_emitted = True
            LOGGER.warning("Soft node cap reached (%d nodes)", self.registry.total_nodes_emitted)
            yield StatusEvent(
                message=(
                    f"Warning: Approaching node limit ({self.registry.total_nodes_emitted}/"
                    f"{self.registry.hard_node_cap}). Graph may become slow."
                )
            )
        if self.registry.at_or_above_hard_cap():
            LOGGER.warning("Hard node cap reached (%d nodes); stopping", self.registry.hard_node_cap)
            self._transition(SessionState.CAPPED)
            yield StatusEvent(
                message=f"Hard node limit reached ({self.registry.hard_node_cap}). Stopping extraction."
            )

    def _transition(self, state: SessionState) -> None:
        LOGGER.debug("Session state %s -> %s", self.state.value, state.value)
        self.state = state


class GraphBuildOrchestrator:
    """Build graphs from text using an injected model output source factory."""

    def __init__(
        self,
        *,
        source_factory: SourceFactory,
        graph_config: Optional[GraphConfig] = None,
        max_predicate_words: int = 3,
    ) -> None:
        self._source_factory = source_factory
        self._graph_config = graph_config or GraphConfig()
        self._max_predicate_words = max_predicate_words

    @classmethod
    def from_config(cls, config: AppConfig, source_factory: SourceFactory) -> "GraphBuildOrchestrator":
        """Create an orchestrator using graph limits from the application config."""

        return cls(
            source_factory=source_factory,
            graph_config=config.graph,
            max_predicate_words=config.extraction.max_predicate_words,
        )

    def start_session(self, text: str) -> GraphBuildSession:
        """Create an isolated session for ``text`` without starting it."""

        return GraphBuildSession(
            text,
            source_factory=self._source_factory,
            graph_config=self._graph_config,
            max_predicate_words=self._max_predicate_words,
        )

    def build(self, text: str) -> Iterator[StreamEvent]:
        """Return the lazy event sequence for a new session over ``text``."""

        return self.start_session(text).events()


def _close_quietly(iterator: Optional[Iterator[str]]) -> None:
    close = getattr(iterator, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception:  # noqa: BLE001 - source shutdown must not mask the session outcome
        LOGGER.warning("Failed to close model output stream", exc_info=True)


__all__ = [
    "GraphBuildOrchestrator",
    "GraphBuildSession",
    "SessionState",
    "UNEXPECTED_ERROR_MESSAGE",
]
