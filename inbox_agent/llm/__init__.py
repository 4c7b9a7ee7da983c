"""LLM helpers: the Anthropic completion service and model-output decoding."""

from .anthropic_client import (
    AnthropicConfig,
    AnthropicError,
    AnthropicNotConfigured,
    CompletionResult,
    CompletionService,
    DEFAULT_TIMEOUT_SECONDS,
    build_anthropic_client,
    resolve_config,
)
from .json_recovery import (
    DecodeResult,
    decode_object_array,
    decode_string_array,
    extract_json_array,
    recover_lines,
)

__all__ = [
    "AnthropicConfig",
    "AnthropicError",
    "AnthropicNotConfigured",
    "CompletionResult",
    "CompletionService",
    "DEFAULT_TIMEOUT_SECONDS",
    "build_anthropic_client",
    "resolve_config",
    "DecodeResult",
    "decode_object_array",
    "decode_string_array",
    "extract_json_array",
    "recover_lines",
]
