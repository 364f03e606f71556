"""FastAPI application factory for the Cognify graph builder."""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterator, Optional, Tuple
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import iterate_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, model_validator

from backend.cognify.config import AppConfig, configure_logging, load_config
from backend.cognify.contracts import ErrorEvent, StatusEvent, StreamEvent
from backend.cognify.extraction import ModelProviderError, OpenAIChatClient, TopicTextGenerator
from backend.cognify.orchestration import (
    UNEXPECTED_ERROR_MESSAGE,
    GraphBuildOrchestrator,
    iter_sse,
)

LOGGER = logging.getLogger(__name__)

_API_KEY_ENV = "OPENAI_API_KEY"
_DEFAULT_GRAPH_NAME = "Untitled graph"
_GRAPH_NAME_MAX_CHARS = 80
_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


class GraphCreateRequest(BaseModel):
    """Request payload for registering a graph to be streamed later."""

    text: Optional[str] = Field(default=None, description="Source text to extract a graph from")
    topic: Optional[str] = Field(default=None, description="Topic to generate source text for")
    name: Optional[str] = Field(default=None, description="Display name of the graph")

    @model_validator(mode="after")
    def _require_single_input(self) -> "GraphCreateRequest":
        has_text = bool(self.text and self.text.strip())
        has_topic = bool(self.topic and self.topic.strip())
        if has_text == has_topic:
            raise ValueError("Provide exactly one of text or topic")
        return self


class GraphCreateResponse(BaseModel):
    """Identifier of a registered graph request."""

    graph_id: str
    name: str


class GraphStreamRequest(BaseModel):
    """Request payload for streaming a graph directly from text."""

    text: str = Field(..., min_length=1, description="Source text to extract a graph from")


@dataclass(frozen=True)
class PendingGraph:
    """Graph request waiting for its stream to be opened."""

    graph_id: str
    name: str
    text: Optional[str] = None
    topic: Optional[str] = None


class GraphRequestStore:
    """Thread-safe in-memory store of graph requests that are consumed once."""

    def __init__(self) -> None:
        self._pending: Dict[str, PendingGraph] = {}
        self._lock = threading.Lock()

    def add(self, *, name: str, text: Optional[str] = None, topic: Optional[str] = None) -> PendingGraph:
        pending = PendingGraph(graph_id=uuid4().hex, name=name, text=text, topic=topic)
        with self._lock:
            self._pending[pending.graph_id] = pending
        return pending

    def pop(self, graph_id: str) -> Optional[PendingGraph]:
        with self._lock:
            return self._pending.pop(graph_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


def create_app(
    config: AppConfig | None = None,
    orchestrator: Optional[GraphBuildOrchestrator] = None,
    topic_generator: Optional[TopicTextGenerator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        config: Optional pre-loaded configuration. If omitted, the default
            configuration defined in config.yaml is used.
        orchestrator: Optional graph-build orchestrator. When omitted the factory
            builds one from ``OPENAI_API_KEY``; without a key the graph
            endpoints return ``503``.
        topic_generator: Optional topic text generator used for topic requests.

    Returns:
        FastAPI: Configured FastAPI application.
    """

    resolved_config = config or load_config()
    configure_logging(resolved_config)
    app = FastAPI(title="Cognify API", version=resolved_config.pipeline.version)
    app.state.app_config = resolved_config

    allowed_origins = resolved_config.api.allowed_origins
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    chat_client: Optional[OpenAIChatClient] = None
    if orchestrator is None:
        chat_client, orchestrator, default_topic_generator = _build_default_components(resolved_config)
        topic_generator = topic_generator or default_topic_generator
    app.state.chat_client = chat_client
    app.state.orchestrator = orchestrator
    app.state.topic_generator = topic_generator
    graph_requests = GraphRequestStore()
    app.state.graph_requests = graph_requests
    max_input_chars = resolved_config.graph.max_input_chars

    def _require_orchestrator() -> GraphBuildOrchestrator:
        instance = getattr(app.state, "orchestrator", None)
        if instance is None:
            raise HTTPException(status_code=503, detail="Graph builder unavailable")
        return instance

    def _check_length(text: str) -> None:
        if len(text) > max_input_chars:
            raise HTTPException(
                status_code=413,
                detail=f"Text exceeds the {max_input_chars} character limit",
            )

    @app.get("/health", tags=["system"], summary="Service health probe")
    def health() -> dict[str, str]:
        """Return service health information."""

        return {"status": "ok", "pipeline_version": resolved_config.pipeline.version}

    @app.post(
        "/api/graphs",
        tags=["graphs"],
        summary="Register a graph request to stream later",
        response_model=GraphCreateResponse,
    )
    def create_graph(payload: GraphCreateRequest) -> GraphCreateResponse:
        """Store the request and return the identifier used to open its stream."""

        _require_orchestrator()
        if payload.topic is not None and payload.topic.strip():
            if topic_generator is None or not topic_generator.enabled:
                raise HTTPException(status_code=400, detail="Topic generation is disabled")
            topic = payload.topic.strip()
            name = _resolve_name(payload.name, topic)
            pending = graph_requests.add(name=name, topic=topic)
        else:
            text = payload.text or ""
            _check_length(text)
            name = _resolve_name(payload.name, text)
            pending = graph_requests.add(name=name, text=text)
        LOGGER.info("Registered graph request %s (%s)", pending.graph_id, pending.name)
        return GraphCreateResponse(graph_id=pending.graph_id, name=pending.name)

    @app.get(
        "/api/graphs/{graph_id}/stream",
        tags=["graphs"],
        summary="Stream graph-build events for a registered request",
    )
    def stream_registered_graph(graph_id: str, request: Request) -> StreamingResponse:
        """Open the event stream of a registered request; each request streams once."""

        instance = _require_orchestrator()
        pending = graph_requests.pop(graph_id)
        if pending is None:
            raise HTTPException(status_code=404, detail="Graph request not found")
        events = _pending_graph_events(pending, instance, topic_generator)
        return StreamingResponse(
            _stream_frames(request, events),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @app.post(
        "/api/graphs/stream",
        tags=["graphs"],
        summary="Stream graph-build events for the supplied text",
    )
    def stream_graph(payload: GraphStreamRequest, request: Request) -> StreamingResponse:
        """Build a graph from the request body and stream its events."""

        instance = _require_orchestrator()
        _check_length(payload.text)
        events = instance.build(payload.text)
        return StreamingResponse(
            _stream_frames(request, events),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - network resource cleanup
        client = getattr(app.state, "chat_client", None)
        if client is not None:
            client.close()

    return app


def _pending_graph_events(
    pending: PendingGraph,
    orchestrator: GraphBuildOrchestrator,
    topic_generator: Optional[TopicTextGenerator],
) -> Iterator[StreamEvent]:
    """Yield events for a stored request, generating topic text first when needed."""

    text = pending.text
    if text is None:
        if topic_generator is None:
            yield ErrorEvent(message="Topic generation is unavailable")
            return
        yield StatusEvent(message=f"Generating overview for {pending.topic}...")
        try:
            text = topic_generator.generate(pending.topic or "")
        except ModelProviderError as exc:
            LOGGER.error("Topic generation failed for graph %s: %s", pending.graph_id, exc)
            yield ErrorEvent(message=str(exc))
            return
        except Exception:  # noqa: BLE001 - the stream must end with a terminal event
            LOGGER.exception("Unexpected failure generating topic text for graph %s", pending.graph_id)
            yield ErrorEvent(message=UNEXPECTED_ERROR_MESSAGE)
            return
    yield from orchestrator.build(text)


async def _stream_frames(request: Request, events: Iterator[StreamEvent]) -> AsyncIterator[bytes]:
    """Relay SSE frames from a synchronous event generator until the client leaves."""

    frames = iter_sse(events)
    try:
        async for frame in iterate_in_threadpool(frames):
            if await request.is_disconnected():
                LOGGER.info("Client disconnected; aborting graph build")
                break
            yield frame
    finally:
        try:
            frames.close()
            close = getattr(events, "close", None)
            if close is not None:
                close()
        except ValueError:
            LOGGER.warning("Graph build still running while its stream closed")


def _resolve_name(name: Optional[str], fallback: str) -> str:
    cleaned = (name or "").strip()
    if cleaned:
        return cleaned[:_GRAPH_NAME_MAX_CHARS]
    first_line = fallback.strip().splitlines()[0] if fallback.strip() else ""
    return first_line[:_GRAPH_NAME_MAX_CHARS] or _DEFAULT_GRAPH_NAME


def _build_default_components(
    config: AppConfig,
) -> Tuple[Optional[OpenAIChatClient], Optional[GraphBuildOrchestrator], Optional[TopicTextGenerator]]:
    """Construct the OpenAI-backed orchestrator when an API key is available."""

    api_key = os.getenv(_API_KEY_ENV, "").strip()
    if not api_key:
        LOGGER.warning("%s not set; graph endpoints disabled", _API_KEY_ENV)
        return None, None, None
    try:
        client = OpenAIChatClient(settings=config.extraction.openai, api_key=api_key)
    except Exception:  # noqa: BLE001 - safeguard during startup
        LOGGER.exception("Failed to initialize OpenAI client")
        return None, None, None
    orchestrator = GraphBuildOrchestrator.from_config(
        config,
        client.source_factory(streaming=config.extraction.streaming),
    )
    topic_generator = TopicTextGenerator(
        client=client,
        settings=config.topic,
        max_chars=config.graph.max_input_chars,
    )
    return client, orchestrator, topic_generator


__all__ = [
    "GraphCreateRequest",
    "GraphCreateResponse",
    "GraphRequestStore",
    "GraphStreamRequest",
    "PendingGraph",
    "create_app",
]
