"""
Async OpenAI-compatible client for page recognition and translation.

One AsyncOpenAI instance (and its connection pool) is shared by every task.
The SDK's own retries are disabled: failures are classified into retryable and
permanent errors here and retried by :mod:`pdftrans.retry`.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_MAX_TOKENS,
    DEFAULT_OCR_MODEL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TRANSLATE_MODEL,
)
from ..exceptions import PermanentStageError, RetryableStageError, StageCallError
from ..prompt import PromptManager

logger = logging.getLogger(__name__)


def classify_openai_error(exc: BaseException) -> StageCallError:
    """Map an SDK exception to a retryable or permanent stage error.

    Timeouts, connection failures and 5xx responses are retryable; every other
    status, malformed responses and unexpected exceptions are permanent.
    """
    if isinstance(exc, StageCallError):
        return exc
    if isinstance(exc, openai.APITimeoutError):
        return RetryableStageError(f"Request timed out: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return RetryableStageError(f"Connection failed: {exc}")
    if isinstance(exc, openai.APIStatusError):
        message = f"API error (HTTP {exc.status_code}): {exc.message}"
        if exc.status_code >= 500:
            return RetryableStageError(message)
        return PermanentStageError(message)
    if isinstance(exc, openai.APIResponseValidationError | ValueError):
        return PermanentStageError(f"Failed to parse response: {exc}")
    return PermanentStageError(f"Unexpected error: {type(exc).__name__}: {exc}")


class AsyncOpenAIClient:
    """Recognition and translation over an OpenAI-compatible chat completions API.

    Args:
        base_url: Service root; requests go to ``{base_url}/v1/chat/completions``
        api_key: Bearer token
        ocr_model: Primary recognition model
        translate_model: Primary translation model
        ocr_model_fallback: Model tried when the primary recognition model fails
        translate_model_fallback: Model tried when the primary translation model fails
        prompts: Prompt source (built-in prompts when omitted)
        max_tokens: max_tokens for every request
        request_timeout: Per-request timeout in seconds
        connect_timeout: Connect timeout in seconds
        http_client: Optional pre-built httpx client (used by tests)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        ocr_model: str = DEFAULT_OCR_MODEL,
        translate_model: str = DEFAULT_TRANSLATE_MODEL,
        ocr_model_fallback: str | None = None,
        translate_model_fallback: str | None = None,
        prompts: PromptManager | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.ocr_model = ocr_model
        self.translate_model = translate_model
        self.ocr_model_fallback = ocr_model_fallback
        self.translate_model_fallback = translate_model_fallback
        self.prompts = prompts or PromptManager()
        self.max_tokens = max_tokens

        self.client: Any = AsyncOpenAI(
            api_key=api_key,
            base_url=f"{self.base_url}/v1",
            timeout=httpx.Timeout(request_timeout, connect=connect_timeout),
            max_retries=0,
            http_client=http_client,
        )
        logger.debug(
            "AsyncOpenAI client initialized (base_url=%s, ocr_model=%s, translate_model=%s)",
            self.base_url,
            self.ocr_model,
            self.translate_model,
        )

    @classmethod
    def from_config(cls, config: Any, http_client: httpx.AsyncClient | None = None) -> AsyncOpenAIClient:
        """Build a client from a TranslatorConfig."""
        return cls(
            base_url=config.base_url,
            api_key=config.api_key,
            ocr_model=config.ocr_model,
            translate_model=config.translate_model,
            ocr_model_fallback=config.ocr_model_fallback,
            translate_model_fallback=config.translate_model_fallback,
            prompts=PromptManager(target_language=config.target_language),
            max_tokens=config.max_tokens,
            request_timeout=config.request_timeout,
            connect_timeout=config.connect_timeout,
            http_client=http_client,
        )

    @property
    def recognition_models(self) -> list[str]:
        models = [self.ocr_model]
        if self.ocr_model_fallback and self.ocr_model_fallback != self.ocr_model:
            models.append(self.ocr_model_fallback)
        return models

    @property
    def translation_models(self) -> list[str]:
        models = [self.translate_model]
        if self.translate_model_fallback and self.translate_model_fallback != self.translate_model:
            models.append(self.translate_model_fallback)
        return models

    async def _complete(self, model: str, messages: list[dict[str, Any]]) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            raise classify_openai_error(e) from e

        choices = getattr(response, "choices", None)
        if not choices:
            raise PermanentStageError("Failed to parse response: no choices returned")
        content = choices[0].message.content
        if content is None:
            raise PermanentStageError("Failed to parse response: empty message content")
        return content.strip()

    async def recognize_text(self, image_bytes: bytes, model: str | None = None) -> str:
        """Recognize the text on a JPEG page image.

        Args:
            image_bytes: JPEG-encoded page image
            model: Model override (primary recognition model when omitted)

        Returns:
            Recognized text

        Raises:
            RetryableStageError: Timeout, connection failure or 5xx
            PermanentStageError: Any other failure
        """
        model = model or self.ocr_model
        base64_image = base64.b64encode(image_bytes).decode("ascii")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self.prompts.recognition_prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{base64_image}"}},
                ],
            }
        ]
        logger.debug("Requesting recognition (model=%s, image=%d bytes)", model, len(image_bytes))
        return await self._complete(model, messages)

    async def translate_text(self, text: str, model: str | None = None) -> str:
        """Translate ``text`` into the configured target language.

        Blank input is returned as an empty string without a request.
        """
        if not text.strip():
            return ""
        model = model or self.translate_model
        messages = [
            {"role": "system", "content": self.prompts.translation_prompt},
            {"role": "user", "content": text},
        ]
        logger.debug("Requesting translation (model=%s, chars=%d)", model, len(text))
        return await self._complete(model, messages)

    async def close(self) -> None:
        """Close the async client connection."""
        await self.client.close()
