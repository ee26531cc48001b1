"""Chat-completions classifier for heuristic ticket matching."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from casesync.adapters.http_resilience import ResilientClient
from casesync.domain.ports.classifier import ClassifierError, ClassifierReply

from .schema import ChatCompletionResponse, ErrorResponse

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from casesync.config.http_resilience import ResilienceConfig
    from casesync.config.matching import ClassifierConfig

log = getLogger(__name__)


class OpenAIMatchClassifier:
    """Send the matching prompt to the chat completions endpoint.

    Rate limiting and server errors are retried by :class:`ResilientClient`.
    Anything that still fails becomes a :class:`ClassifierError`.
    """

    def __init__(
        self,
        *,
        config: ClassifierConfig,
        client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or ResilientClient
        self._client: ResilientClient | None = None

    async def __aenter__(self) -> OpenAIMatchClassifier:
        self._client = self._client_factory(self._config.resilience)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def classify(self, *, system_prompt: str, user_prompt: str) -> ClassifierReply:
        if self._client is None:
            raise RuntimeError("OpenAIMatchClassifier must be used as an async context manager")

        body = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "response_format": {"type": "json_object"},
        }
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.HTTPError as exc:
            raise ClassifierError(f"Chat completion request failed: {exc}") from exc

        if not response.is_success:
            raise ClassifierError(self._error_message(response))

        try:
            payload = ChatCompletionResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ClassifierError(f"Unexpected chat completion payload: {exc}") from exc

        if not payload.choices or payload.choices[0].message.content is None:
            raise ClassifierError("Chat completion returned no content")

        usage = payload.usage
        log.debug(
            "Classifier used %s prompt and %s completion tokens",
            usage.prompt_tokens if usage else None,
            usage.completion_tokens if usage else None,
        )
        return ClassifierReply(
            content=payload.choices[0].message.content,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            detail = ErrorResponse.model_validate(response.json()).error.message
        except (ValueError, ValidationError):
            detail = response.text[:300]
        return f"Chat completion failed with {response.status_code}: {detail}"
