"""Parsing of triple records out of streamed or complete model output."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

LOGGER = logging.getLogger(__name__)

_REQUIRED_KEYS = ("subject", "predicate", "object")
_CODE_FENCE_PATTERN = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")
_FIELD_PATTERNS = {
    key: re.compile(r'"%s"\s*:\s*"((?:[^"\\]|\\.)*)"' % key) for key in _REQUIRED_KEYS
}


class MalformedResponseError(ValueError):
    """Raised when a complete model response holds no usable triples payload."""


class TripleDecoder(Protocol):
    """Interface shared by the streaming and whole-document decoders."""

    def feed(self, chunk: str) -> List[Dict[str, Any]]:
        """Consume the next piece of model output and return new records."""

    def finish(self) -> List[Dict[str, Any]]:
        """Signal the end of model output and return any remaining records."""


@dataclass
class _Frame:
    """Open ``{`` awaiting its closing brace."""

    start: int
    has_children: bool = False
    candidate: bool = True


class IncrementalTripleParser:
    """Recognise complete triple records as soon as their closing brace arrives.

    The parser keeps its scanning state (open braces, string and escape flags)
    between calls, so each character of model output is examined exactly once.
    Every closed object is a candidate record, including objects whose values
    hold nested objects. An object enclosing a decoded record is a wrapper and
    stops being a candidate; text before the oldest remaining candidate is
    discarded after every call.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._base = 0
        self._scanned = 0
        self._frames: List[_Frame] = []
        self._in_string = False
        self._escape = False
        self.records_found = 0

    @property
    def safe_offset(self) -> int:
        """Absolute offset before which no pending record can start."""

        for frame in self._frames:
            if frame.candidate:
                return frame.start
        return self._scanned

    def feed(self, chunk: str) -> List[Dict[str, Any]]:
        """Scan newly arrived text and return records completed by it.

        Args:
            chunk: Next piece of model output, appended to everything fed so far.

        Returns:
            List[Dict[str, Any]]: Decoded records containing subject, predicate
            and object keys, in the order their closing braces appeared.
        """

        if not chunk:
            return []
        self._buffer += chunk
        end = self._base + len(self._buffer)
        found: List[Dict[str, Any]] = []
        for position in range(self._scanned, end):
            char = self._buffer[position - self._base]
            if not self._frames:
                # Outside any object only an opening brace matters; quotes and
                # stray braces in surrounding prose are ignored.
                if char == "{":
                    self._frames.append(_Frame(start=position))
                continue
            if self._in_string:
                if self._escape:
                    self._escape = False
                elif char == "\\":
                    self._escape = True
                elif char == '"':
                    self._in_string = False
                continue
            if char == '"':
                self._in_string = True
            elif char == "{":
                self._frames[-1].has_children = True
                self._frames.append(_Frame(start=position))
            elif char == "}":
                frame = self._frames.pop()
                if not frame.candidate:
                    continue
                text = self._buffer[frame.start - self._base : position + 1 - self._base]
                record = _decode_record(text, allow_partial=not frame.has_children)
                if record is not None:
                    found.append(record)
                    for outer in self._frames:
                        outer.candidate = False
        self._scanned = end
        self._compact()
        self.records_found += len(found)
        return found

    def finish(self) -> List[Dict[str, Any]]:
        """Return nothing further; incomplete trailing records are dropped."""

        if any(frame.candidate for frame in self._frames):
            LOGGER.debug(
                "Model output ended with an incomplete record (%d chars pending)",
                self._scanned - self.safe_offset,
            )
        return []

    def _compact(self) -> None:
        safe = self.safe_offset
        if safe > self._base:
            self._buffer = self._buffer[safe - self._base :]
            self._base = safe


class DocumentTripleDecoder:
    """Decode the triples payload once the whole model response is available."""

    def __init__(self) -> None:
        self._parts: List[str] = []

    def feed(self, chunk: str) -> List[Dict[str, Any]]:
        if chunk:
            self._parts.append(chunk)
        return []

    def finish(self) -> List[Any]:
        """Parse the accumulated response.

        Raises:
            MalformedResponseError: If no triples payload can be decoded.
        """

        return parse_document("".join(self._parts))


def extract_triples(buffer: str) -> List[Dict[str, Any]]:
    """Return every complete triple record currently present in ``buffer``.

    Calling this on a longer buffer returns a superset of the records found on
    any of its prefixes; deduplication across calls is left to the caller.
    """

    return IncrementalTripleParser().feed(buffer)


def parse_document(text: str) -> List[Any]:
    """Decode a complete model response into its list of candidate triples.

    Args:
        text: Full response text, optionally wrapped in Markdown code fences.

    Returns:
        List[Any]: The ``triples`` array, or the top-level array itself.

    Raises:
        MalformedResponseError: If the text holds no decodable triples payload.
    """

    cleaned = _strip_code_fences(text)
    if not cleaned:
        raise MalformedResponseError("Model response was empty")
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        payload = _decode_embedded_json(cleaned)
        if payload is None:
            LOGGER.warning("Could not extract JSON from model response (%d chars)", len(cleaned))
            raise MalformedResponseError("Model response was not valid JSON") from None
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        triples = payload.get("triples")
        if isinstance(triples, list):
            return triples
    LOGGER.warning("Model response JSON did not contain a triples array")
    raise MalformedResponseError("Model response did not contain a triples array")


def _strip_code_fences(text: str) -> str:
    return _CODE_FENCE_PATTERN.sub("", text.strip()).strip()


def _decode_embedded_json(text: str) -> Optional[Any]:
    """Decode the outermost object or array embedded in surrounding prose."""

    candidates = []
    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            candidates.append((start, text[start : end + 1]))
    for _, candidate in sorted(candidates):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def _decode_record(text: str, *, allow_partial: bool = True) -> Optional[Dict[str, Any]]:
    """Decode a balanced ``{...}`` span into a triple record if it is one.

    Spans that are not strict JSON fall back to field matching only when
    ``allow_partial`` is set; objects with nested objects never do, so fields
    of separate inner records are not stitched together.
    """

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return _match_record_fields(text) if allow_partial else None
    if not isinstance(payload, dict):
        return None
    if not all(key in payload for key in _REQUIRED_KEYS):
        return None
    return payload


def _match_record_fields(text: str) -> Optional[Dict[str, Any]]:
    """Recover the three string fields from a record that is not strict JSON."""

    record: Dict[str, Any] = {}
    for key, pattern in _FIELD_PATTERNS.items():
        match = pattern.search(text)
        if match is None:
            LOGGER.debug("Skipping malformed record: %s", text[:200])
            return None
        try:
            record[key] = json.loads(f'"{match.group(1)}"')
        except json.JSONDecodeError:
            record[key] = match.group(1)
    return record


__all__ = [
    "DocumentTripleDecoder",
    "IncrementalTripleParser",
    "MalformedResponseError",
    "TripleDecoder",
    "extract_triples",
    "parse_document",
]
