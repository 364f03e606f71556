"""Generate source text for a graph from a topic name."""
from __future__ import annotations

import logging

from backend.cognify.config import TopicConfig
from backend.cognify.extraction.llm import ModelProviderError, OpenAIChatClient
from backend.cognify.extraction.prompts import build_topic_messages

LOGGER = logging.getLogger(__name__)


class TopicTextGenerator:
    """Ask the model for an educational overview that triples can be extracted from."""

    def __init__(self, *, client: OpenAIChatClient, settings: TopicConfig, max_chars: int) -> None:
        self._client = client
        self._settings = settings
        self._max_chars = max_chars

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def generate(self, topic: str) -> str:
        """Return overview text for ``topic``, truncated to the input limit.

        Raises:
            ValueError: If the topic is blank.
            ModelProviderError: If the model call fails or returns no text.
        """

        cleaned = topic.strip()
        if not cleaned:
            raise ValueError("topic must not be blank")
        LOGGER.info("Generating overview text for topic %r", cleaned)
        text = self._client.complete(
            build_topic_messages(cleaned),
            max_tokens=self._settings.max_output_tokens,
            temperature=self._settings.temperature,
        ).strip()
        if not text:
            raise ModelProviderError("The model returned no text for this topic")
        if len(text) > self._max_chars:
            LOGGER.info("Truncating topic text from %d to %d chars", len(text), self._max_chars)
            text = text[: self._max_chars]
        return text


__all__ = ["TopicTextGenerator"]
