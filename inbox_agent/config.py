"""Configuration helpers for the inbox agent."""
from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

from dotenv import load_dotenv


DEFAULT_PRIMARY_MODEL = "claude-sonnet-4-20250514"
DEFAULT_FALLBACK_MODEL = "claude-3-5-haiku-20241022"


class ConfigError(RuntimeError):
    """Raised when required configuration is missing."""


@dataclass(slots=True)
class Settings:
    """Runtime configuration resolved from the environment."""

    anthropic_api_key: Optional[str]
    primary_model: str = DEFAULT_PRIMARY_MODEL
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    environment: str = "local"

    @property
    def models(self) -> tuple[str, ...]:
        """Models to try in order for a classification call."""
        if self.fallback_model and self.fallback_model != self.primary_model:
            return (self.primary_model, self.fallback_model)
        return (self.primary_model,)


def load_settings(*, require_api_key: bool = False) -> Settings:
    """Load settings from environment variables (and a local .env file).

    Args:
        require_api_key: Raise when ANTHROPIC_API_KEY is not set.

    Returns:
        Settings with resolved model names.

    Raises:
        ConfigError: if the API key is required but missing.
    """

    load_dotenv()

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if require_api_key and not api_key:
        raise ConfigError(
            "Missing Anthropic API key. Export ANTHROPIC_API_KEY or add it to .env."
        )

    return Settings(
        anthropic_api_key=api_key.strip() if api_key else None,
        primary_model=os.getenv("INBOX_AGENT_MODEL", DEFAULT_PRIMARY_MODEL),
        fallback_model=os.getenv("INBOX_AGENT_FALLBACK_MODEL", DEFAULT_FALLBACK_MODEL),
        environment=os.getenv("INBOX_AGENT_ENV", "local"),
    )
