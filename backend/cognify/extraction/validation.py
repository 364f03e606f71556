"""Validation and normalization of candidate triples returned by the model."""
from __future__ import annotations

from typing import Any, Mapping

from backend.cognify.contracts import Triple

_TRIPLE_FIELDS = ("subject", "predicate", "object")


def validate_triple(candidate: Any) -> bool:
    """Return whether a candidate is a well-formed, non-trivial triple.

    Args:
        candidate: Decoded record from the model output or a ``Triple``.

    Returns:
        bool: True when all three fields are non-blank strings and the subject
        and object differ ignoring case and surrounding whitespace.
    """

    if isinstance(candidate, Triple):
        candidate = candidate.model_dump()
    if not isinstance(candidate, Mapping):
        return False
    values = []
    for field_name in _TRIPLE_FIELDS:
        value = candidate.get(field_name)
        if not isinstance(value, str):
            return False
        stripped = value.strip()
        if not stripped:
            return False
        values.append(stripped)
    subject, _, obj = values
    return subject.lower() != obj.lower()


def limit_predicate_length(text: str, max_words: int) -> str:
    """Keep at most ``max_words`` leading whitespace-separated words.

    Args:
        text: Relation label produced by the model.
        max_words: Maximum number of words to keep.

    Returns:
        str: The leading words joined by single spaces.
    """

    if max_words <= 0:
        return ""
    return " ".join(text.split()[:max_words])


def normalize_triple(candidate: Mapping[str, Any], max_words: int) -> Triple:
    """Trim a validated candidate and bound the length of its predicate.

    Raises:
        ValueError: If the candidate does not describe a valid triple.
    """

    predicate = limit_predicate_length(str(candidate["predicate"]).strip(), max_words)
    return Triple(
        subject=str(candidate["subject"]).strip(),
        predicate=predicate,
        object=str(candidate["object"]).strip(),
    )


__all__ = ["limit_predicate_length", "normalize_triple", "validate_triple"]
