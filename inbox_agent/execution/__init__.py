"""Serialized sandbox execution."""

from .gate import (
    DEFAULT_COOLDOWN_SECONDS,
    ExecutionGate,
    SandboxExecutor,
    default_gate,
    run_sandboxed,
)

__all__ = [
    "DEFAULT_COOLDOWN_SECONDS",
    "ExecutionGate",
    "SandboxExecutor",
    "default_gate",
    "run_sandboxed",
]
