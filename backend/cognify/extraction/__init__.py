"""Extraction utilities for the Cognify graph builder."""

from backend.cognify.extraction.llm import (
    CompletionSource,
    ModelOutputSource,
    ModelProviderError,
    OpenAIChatClient,
    RateLimitExceededError,
    RequestTimeoutError,
    SourceFactory,
    StreamingCompletionSource,
)
from backend.cognify.extraction.parser import (
    DocumentTripleDecoder,
    IncrementalTripleParser,
    MalformedResponseError,
    TripleDecoder,
    extract_triples,
    parse_document,
)
from backend.cognify.extraction.topic import TopicTextGenerator
from backend.cognify.extraction.validation import (
    limit_predicate_length,
    normalize_triple,
    validate_triple,
)

__all__ = [
    "CompletionSource",
    "DocumentTripleDecoder",
    "IncrementalTripleParser",
    "MalformedResponseError",
    "ModelOutputSource",
    "ModelProviderError",
    "OpenAIChatClient",
    "RateLimitExceededError",
    "RequestTimeoutError",
    "SourceFactory",
    "StreamingCompletionSource",
    "TopicTextGenerator",
    "TripleDecoder",
    "extract_triples",
    "limit_predicate_length",
    "normalize_triple",
    "parse_document",
    "validate_triple",
]
