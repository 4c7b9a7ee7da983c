"""Single-flight gate for sandboxed code execution.

At most one execution runs at a time across every agent in the process,
and each finished execution holds the slot for a cooldown before the
next one may start. Requests are served in arrival order. The caller
receives its own result (or exception) as soon as its function returns;
the cooldown runs in the background and delays only the next request.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional, Protocol, TypeVar

from ..memory.events import EventType, log_event
from ..storage import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_COOLDOWN_SECONDS = 1.5


class SandboxExecutor(Protocol):
    def run(self, code: str) -> Any: ...


class ExecutionGate:
    """Capacity-1 FIFO semaphore with a delay after each release."""

    def __init__(self, cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS):
        self.cooldown_seconds = cooldown_seconds
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self._busy = False

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._busy

    @property
    def waiting(self) -> int:
        """Requests queued behind the current holder."""
        with self._cond:
            return self._next_ticket - self._serving - (1 if self._busy else 0)

    def _acquire(self) -> None:
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._busy or ticket != self._serving:
                self._cond.wait()
            self._busy = True

    def _release(self) -> None:
        with self._cond:
            self._busy = False
            self._serving += 1
            self._cond.notify_all()

    def _release_after_cooldown(self) -> None:
        if self.cooldown_seconds <= 0:
            self._release()
            return
        timer = threading.Timer(self.cooldown_seconds, self._release)
        timer.daemon = True
        timer.start()

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` once every earlier request and its cooldown are done."""
        self._acquire()
        started = time.monotonic()
        try:
            return fn(*args, **kwargs)
        finally:
            logger.debug(f"Execution finished in {time.monotonic() - started:.2f}s, cooling down")
            self._release_after_cooldown()


_default_gate: Optional[ExecutionGate] = None
_default_gate_lock = threading.Lock()


def default_gate() -> ExecutionGate:
    """Return the process-wide gate shared by all agent instances."""
    global _default_gate
    with _default_gate_lock:
        if _default_gate is None:
            _default_gate = ExecutionGate()
        return _default_gate


def run_sandboxed(
    store: KeyValueStore,
    executor: SandboxExecutor,
    code: str,
    *,
    gate: Optional[ExecutionGate] = None,
) -> Any:
    """Run generated code through the gate, recording the outcome as an event.

    Exceptions from the executor are logged and re-raised to the caller.
    """
    gate = gate or default_gate()
    started = time.monotonic()
    try:
        result = gate.run(executor.run, code)
    except Exception as e:
        log_event(
            store,
            EventType.EXECUTION_ERROR,
            f"Sandboxed execution failed: {e}",
            {"error": str(e), "codePreview": code[:200]},
        )
        raise
    log_event(
        store,
        EventType.EXECUTION,
        "Sandboxed execution completed",
        {"durationMs": int((time.monotonic() - started) * 1000), "codePreview": code[:200]},
    )
    return result
