"""Single-turn chat completion client (Groq)."""

import logging
from typing import Optional, Protocol

import groq

from opsight.core.config import settings
from opsight.core.errors import ExternalServiceError

logger = logging.getLogger("opsight.insights.llm")


class ChatModel(Protocol):
    def complete(
        self,
        system_instruction: Optional[str],
        user_message: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str: ...


class LanguageModelClient:
    """
    Wraps one non-streaming chat completion.

    No retries: the SDK's own retry loop is disabled and every failure
    (missing key, transport error, non-2xx, empty or malformed body) is raised
    as ExternalServiceError so the caller can take its fallback path once.
    The timeout bounds worst-case latency of each call.
    """

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.model = model or settings.INSIGHTS_LLM_MODEL
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.timeout = timeout if timeout is not None else settings.INSIGHTS_LLM_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def complete(
        self,
        system_instruction: Optional[str],
        user_message: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        if not self.is_configured:
            raise ExternalServiceError("GROQ_API_KEY is not configured")

        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": user_message})

        try:
            client = groq.Groq(api_key=self.api_key, timeout=self.timeout, max_retries=0)
            response = client.chat.completions.create(
                messages=messages,
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as exc:
            raise ExternalServiceError(f"Language model request failed: {type(exc).__name__}") from exc

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise ExternalServiceError("Malformed language model response") from exc

        if not isinstance(text, str) or not text.strip():
            raise ExternalServiceError("Empty language model response")

        logger.debug("insights.llm.completed", extra={"model": self.model, "chars": len(text)})
        return text
