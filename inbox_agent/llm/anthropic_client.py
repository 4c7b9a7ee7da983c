"""Anthropic completion wrapper used by the memory and scan modules."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Optional

from anthropic import Anthropic, APIError
from dotenv import load_dotenv

from ..config import DEFAULT_FALLBACK_MODEL, DEFAULT_PRIMARY_MODEL

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 25.0


class AnthropicError(RuntimeError):
    """Base error for Anthropic failures."""


class AnthropicNotConfigured(AnthropicError):
    """Raised when the API key is missing."""


@dataclass(slots=True)
class AnthropicConfig:
    model: str = DEFAULT_PRIMARY_MODEL
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    max_output_tokens: int = 1024
    temperature: float = 0.2


@dataclass(slots=True)
class CompletionResult:
    """Text returned by a completion call plus the tokens it consumed."""

    text: str
    tokens_used: int = 0


def build_anthropic_client() -> Anthropic:
    """Instantiate the Anthropic SDK client."""

    load_dotenv()

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise AnthropicNotConfigured(
            "ANTHROPIC_API_KEY is missing. Add it to your environment or .env file."
        )

    return Anthropic(api_key=api_key)


def resolve_config(model_override: Optional[str] = None) -> AnthropicConfig:
    env_model = os.getenv("INBOX_AGENT_MODEL")
    fallback = os.getenv("INBOX_AGENT_FALLBACK_MODEL") or DEFAULT_FALLBACK_MODEL
    model = model_override or env_model or DEFAULT_PRIMARY_MODEL
    return AnthropicConfig(model=model, fallback_model=fallback)


class CompletionService:
    """Black-box completion service over the Anthropic Messages API.

    ``complete`` returns a :class:`CompletionResult` or raises
    :class:`AnthropicError`; timeouts and non-2xx responses surface as
    ``AnthropicError`` so callers have one failure type to handle.
    """

    def __init__(self, client: Optional[Anthropic] = None, config: Optional[AnthropicConfig] = None):
        self._client = client
        self.config = config or resolve_config()

    @property
    def client(self) -> Anthropic:
        if self._client is None:
            self._client = build_anthropic_client()
        return self._client

    @property
    def models(self) -> tuple[str, ...]:
        """Primary model followed by the fallback, without repeats."""
        if self.config.fallback_model and self.config.fallback_model != self.config.model:
            return (self.config.model, self.config.fallback_model)
        return (self.config.model,)

    def complete(
        self,
        system: str,
        prompt: str,
        *,
        model: Optional[str] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        model_name = model or self.config.model
        try:
            response = self.client.messages.create(
                model=model_name,
                max_tokens=max_tokens or self.config.max_output_tokens,
                temperature=self.config.temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
            )
        except APIError as exc:
            raise AnthropicError(f"Anthropic request failed ({model_name}): {exc}") from exc

        return CompletionResult(text=_extract_text(response), tokens_used=_count_tokens(response))


def _extract_text(response) -> str:
    """Join the text blocks of an Anthropic response."""
    chunks = []
    for block in getattr(response, "content", []) or []:
        if getattr(block, "type", None) == "text":
            chunks.append(getattr(block, "text", ""))
    text = "\n".join(chunks).strip()
    if not text:
        raise AnthropicError("Anthropic response did not contain text content.")
    return text


def _count_tokens(response) -> int:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0
    input_tokens = getattr(usage, "input_tokens", 0) or 0
    output_tokens = getattr(usage, "output_tokens", 0) or 0
    try:
        return int(input_tokens) + int(output_tokens)
    except (TypeError, ValueError):
        return 0
