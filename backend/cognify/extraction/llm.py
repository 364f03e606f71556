"""OpenAI chat completions client and the model output sources built on it."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, runtime_checkable

import httpx

from backend.cognify.config import OpenAIConfig
from backend.cognify.extraction.prompts import build_extraction_messages

LOGGER = logging.getLogger(__name__)

_ENDPOINT_CHAT_COMPLETIONS = "/chat/completions"
_JSON_RESPONSE_FORMAT = {"type": "json_object"}


class ModelProviderError(RuntimeError):
    """Raised when the model provider cannot produce a response for the session."""


class RateLimitExceededError(ModelProviderError):
    """Raised when the provider keeps rejecting requests with HTTP 429."""

    def __init__(self, message: str = "OpenAI rate limit exceeded. Please try again later.") -> None:
        super().__init__(message)


class RequestTimeoutError(ModelProviderError):
    """Raised when requests to the provider keep timing out."""

    def __init__(self, message: str = "OpenAI request timed out. Please try again.") -> None:
        super().__init__(message)


@runtime_checkable
class ModelOutputSource(Protocol):
    """Model output delivered either as one final text or as ordered chunks."""

    incremental: bool

    def chunks(self) -> Iterator[str]:
        """Yield model output in arrival order."""

    def close(self) -> None:
        """Abort the underlying model call if it is still running."""


SourceFactory = Callable[[str], ModelOutputSource]


class OpenAIChatClient:
    """Minimal OpenAI chat completions client with retries for transient errors."""

    def __init__(
        self,
        *,
        settings: OpenAIConfig,
        api_key: str,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise the client.

        Args:
            settings: Model, endpoint, timeout and retry settings.
            api_key: OpenAI API key used for every request.
            client: Optional pre-configured httpx client (used by tests).
            sleep: Function used to wait between retries.
        """

        if not api_key:
            raise ValueError("api_key must be provided")
        self._settings = settings
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._retry_statuses = set(settings.retry_statuses)
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=settings.api_base,
            timeout=settings.timeout_seconds,
        )

    @property
    def settings(self) -> OpenAIConfig:
        return self._settings

    def close(self) -> None:
        """Close underlying HTTP resources if this instance owns them."""

        if self._owns_client:
            self._client.close()

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        """Run a one-shot chat completion and return the assistant text.

        Raises:
            ModelProviderError: If the provider fails after retries.
        """

        payload = self._build_payload(messages, max_tokens, temperature, json_mode)
        response_json = self._post_with_retries(payload)
        return _extract_message_content(response_json)

    def stream(
        self,
        messages: List[Dict[str, str]],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> Iterator[str]:
        """Yield assistant text deltas from a streaming chat completion.

        Retries only happen before the first delta has been received. Closing the
        returned generator closes the HTTP response and aborts the request.

        Raises:
            ModelProviderError: If the provider fails after retries.
        """

        payload = self._build_payload(messages, max_tokens, temperature, json_mode)
        payload["stream"] = True
        attempt = 0
        delay = self._settings.backoff_initial_seconds
        received = False
        while True:
            start = time.perf_counter()
            try:
                with self._client.stream(
                    "POST",
                    _ENDPOINT_CHAT_COMPLETIONS,
                    headers=self._headers,
                    json=payload,
                ) as response:
                    if response.status_code >= 400:
                        response.read()
                        if not self._should_retry(response.status_code, attempt):
                            raise _translate_status(response.status_code, _extract_error_message(response))
                        LOGGER.warning(
                            "OpenAI stream received status %s; retrying (attempt %s)",
                            response.status_code,
                            attempt + 1,
                        )
                    else:
                        for line in response.iter_lines():
                            done, delta = _parse_stream_line(line)
                            if delta:
                                received = True
                                yield delta
                            if done:
                                break
                        LOGGER.debug(
                            "OpenAI stream finished in %.2fs", time.perf_counter() - start
                        )
                        return
            except httpx.TimeoutException as exc:
                if received or attempt >= self._settings.max_retries:
                    LOGGER.error("OpenAI stream timed out after %.2fs", time.perf_counter() - start)
                    raise RequestTimeoutError() from exc
                LOGGER.warning("OpenAI stream timed out; retrying (attempt %s)", attempt + 1)
            except httpx.HTTPError as exc:
                LOGGER.error("OpenAI stream failed: %s", exc)
                raise ModelProviderError(f"OpenAI request failed: {exc}") from exc
            attempt += 1
            self._sleep(min(delay, self._settings.backoff_max_seconds))
            delay = min(delay * 2, self._settings.backoff_max_seconds)

    def source_factory(self, *, streaming: bool) -> SourceFactory:
        """Return a factory producing triple extraction sources for input text."""

        prompt_version = self._settings.prompt_version

        def _factory(text: str) -> ModelOutputSource:
            messages = build_extraction_messages(text, prompt_version)
            if streaming:
                return StreamingCompletionSource(self, messages)
            return CompletionSource(self, messages)

        return _factory

    def _build_payload(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int],
        temperature: Optional[float],
        json_mode: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": self._settings.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self._settings.max_output_tokens,
        }
        if json_mode:
            payload["response_format"] = _JSON_RESPONSE_FORMAT
        return payload

    def _post_with_retries(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        """Send the payload with retry semantics for transient errors."""

        attempt = 0
        delay = self._settings.backoff_initial_seconds
        while True:
            start = time.perf_counter()
            try:
                response = self._client.post(
                    _ENDPOINT_CHAT_COMPLETIONS,
                    headers=self._headers,
                    json=payload,
                )
            except httpx.TimeoutException as exc:
                elapsed = time.perf_counter() - start
                if attempt >= self._settings.max_retries:
                    LOGGER.error("OpenAI request timed out after %.2fs", elapsed)
                    raise RequestTimeoutError() from exc
                attempt += 1
                LOGGER.warning(
                    "OpenAI request timed out after %.2fs; retrying (attempt %s)",
                    elapsed,
                    attempt,
                )
                self._sleep(min(delay, self._settings.backoff_max_seconds))
                delay = min(delay * 2, self._settings.backoff_max_seconds)
                continue
            except httpx.HTTPError as exc:
                LOGGER.error("OpenAI request failed: %s", exc)
                raise ModelProviderError(f"OpenAI request failed: {exc}") from exc
            elapsed = time.perf_counter() - start
            if response.status_code < 400:
                try:
                    response_payload = response.json()
                except json.JSONDecodeError as exc:
                    LOGGER.error("OpenAI response was not valid JSON after %.2fs", elapsed)
                    raise ModelProviderError("OpenAI response was not valid JSON") from exc
                if attempt > 0:
                    LOGGER.info(
                        "OpenAI request succeeded after %s retries (elapsed %.2fs)",
                        attempt,
                        elapsed,
                    )
                else:
                    LOGGER.debug("OpenAI request completed in %.2fs", elapsed)
                return response_payload
            if not self._should_retry(response.status_code, attempt):
                message = _extract_error_message(response)
                LOGGER.error(
                    "OpenAI request failed with status %s after %.2fs: %s",
                    response.status_code,
                    elapsed,
                    message,
                )
                raise _translate_status(response.status_code, message)
            attempt += 1
            LOGGER.warning(
                "OpenAI request received status %s after %.2fs; retrying (attempt %s)",
                response.status_code,
                elapsed,
                attempt,
            )
            self._sleep(min(delay, self._settings.backoff_max_seconds))
            delay = min(delay * 2, self._settings.backoff_max_seconds)

    def _should_retry(self, status_code: int, attempt: int) -> bool:
        if status_code not in self._retry_statuses:
            return False
        return attempt < self._settings.max_retries


class CompletionSource:
    """Output source backed by a single non-streaming completion."""

    incremental = False

    def __init__(self, client: OpenAIChatClient, messages: List[Dict[str, str]]) -> None:
        self._client = client
        self._messages = messages

    def chunks(self) -> Iterator[str]:
        text = self._client.complete(self._messages, json_mode=True)
        if text:
            yield text

    def close(self) -> None:
        return None


class StreamingCompletionSource:
    """Output source yielding content deltas of a streaming completion."""

    incremental = True

    def __init__(self, client: OpenAIChatClient, messages: List[Dict[str, str]]) -> None:
        self._client = client
        self._messages = messages
        self._stream: Optional[Iterator[str]] = None

    def chunks(self) -> Iterator[str]:
        self._stream = self._client.stream(self._messages, json_mode=True)
        yield from self._stream

    def close(self) -> None:
        stream = self._stream
        if stream is not None and hasattr(stream, "close"):
            stream.close()


def _translate_status(status_code: int, message: str) -> ModelProviderError:
    if status_code == 429:
        return RateLimitExceededError()
    if status_code in (408, 504):
        return RequestTimeoutError()
    return ModelProviderError(f"OpenAI request failed with status {status_code}: {message}")


def _extract_error_message(response: httpx.Response) -> str:
    """Extract an error message from a failed OpenAI response."""

    try:
        payload = response.json()
    except json.JSONDecodeError:
        return response.text
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and "message" in error:
        return str(error["message"])
    return json.dumps(payload)


def _extract_message_content(payload: Mapping[str, Any]) -> str:
    """Return the assistant message text of a chat completion payload."""

    if not isinstance(payload, Mapping):
        LOGGER.error("OpenAI response was not a JSON object: %s", payload)
        raise ModelProviderError("OpenAI response was malformed")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        LOGGER.error("OpenAI response missing choices: %s", payload)
        raise ModelProviderError("OpenAI response missing choices")
    first = choices[0]
    if not isinstance(first, Mapping):
        raise ModelProviderError("OpenAI response choice was malformed")
    if first.get("finish_reason") == "length":
        LOGGER.warning("OpenAI response hit max tokens before completing its payload")
    message = first.get("message")
    if not isinstance(message, Mapping):
        LOGGER.error("OpenAI response missing message: %s", payload)
        raise ModelProviderError("OpenAI response missing message content")
    content = message.get("content")
    if isinstance(content, list):
        return "".join(part.get("text", "") for part in content if isinstance(part, Mapping))
    if isinstance(content, str):
        return content
    LOGGER.warning("OpenAI response carried no text content")
    return ""


def _parse_stream_line(line: str) -> tuple[bool, Optional[str]]:
    """Parse one server-sent line of a streaming response."""

    if not line.startswith("data:"):
        return False, None
    data = line[5:].strip()
    if not data:
        return False, None
    if data == "[DONE]":
        return True, None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        LOGGER.warning("Unable to decode streaming payload chunk")
        return False, None
    if not isinstance(payload, Mapping):
        LOGGER.debug("Ignoring non-object streaming payload: %s", data[:200])
        return False, None
    return False, _extract_stream_delta(payload)


def _extract_stream_delta(payload: Mapping[str, Any]) -> Optional[str]:
    """Extract incremental content from a streaming response payload."""

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, Mapping):
        return None
    delta = first.get("delta")
    if not isinstance(delta, Mapping):
        return None
    content = delta.get("content")
    if isinstance(content, str):
        return content
    return None


__all__ = [
    "CompletionSource",
    "ModelOutputSource",
    "ModelProviderError",
    "OpenAIChatClient",
    "RateLimitExceededError",
    "RequestTimeoutError",
    "SourceFactory",
    "StreamingCompletionSource",
]
