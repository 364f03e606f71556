"""Server-sent event framing for graph-build event streams."""
from __future__ import annotations

import json
from typing import Iterable, Iterator

from backend.cognify.contracts import StreamEvent


def format_sse_event(event: StreamEvent) -> bytes:
    """Encode one stream event as an SSE frame.

    Args:
        event: Event produced by a graph-build session.

    Returns:
        bytes: ``event: <kind>`` and ``data: <json>`` lines followed by a blank line.
    """

    body = json.dumps(event.to_payload(), ensure_ascii=False)
    return f"event: {event.kind}\ndata: {body}\n\n".encode("utf-8")


def iter_sse(events: Iterable[StreamEvent]) -> Iterator[bytes]:
    for event in events:
        yield format_sse_event(event)


__all__ = ["format_sse_event", "iter_sse"]
