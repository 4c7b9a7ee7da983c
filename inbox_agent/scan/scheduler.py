"""Quota-gated background scan scheduling.

The scheduler keeps one persisted "next wake" timestamp per agent
instance. Each wake optionally sweeps completed tasks (near midnight),
runs the inbox and thread scans, and always schedules the next wake, so
a failing scan never stalls the loop.

The next wake is ``min(next local midnight, now + interval)`` where the
interval depends on whether any client is connected. Midnight is always
an upper bound so daily counters are revisited even when scanning is
disabled.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from ..memory.events import EventType, log_event
from ..storage import KeyValueStore
from ..task_store.store import archive_completed_tasks
from .inbox_scanner import ScanResult, scan_inbox_for_tasks
from .providers import MailAccount
from .quota import (
    ScanConfig,
    can_scan,
    load_scan_config,
    load_scan_usage,
    record_scan_result,
)
from .thread_scanner import ThreadScanResult, scan_threads_for_tasks

logger = logging.getLogger(__name__)

NEXT_WAKE_KEY = "scan:next_wake"
MIDNIGHT_TOLERANCE = timedelta(seconds=60)
RETRY_DELAY_SECONDS = 60.0

REASON_NO_ACCOUNTS = "no_accounts"


def _now() -> datetime:
    """Return current local datetime (timezone-aware)."""
    return datetime.now().astimezone()


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_midnight(now: datetime) -> datetime:
    return start_of_day(now) + timedelta(days=1)


def compute_next_wake(config: ScanConfig, now: datetime, has_active_clients: bool) -> datetime:
    """Next wake time: the scan interval capped at the next midnight."""
    midnight = next_midnight(now)
    if not config.enabled:
        return midnight
    interval = timedelta(milliseconds=config.interval_ms(has_active_clients))
    return min(midnight, now + interval)


def is_near_midnight(now: datetime, tolerance: timedelta = MIDNIGHT_TOLERANCE) -> bool:
    """True within ``tolerance`` on either side of a midnight."""
    return now - start_of_day(now) <= tolerance or next_midnight(now) - now <= tolerance


# =============================================================================
# Background scans
# =============================================================================

def run_background_scan(
    store: KeyValueStore,
    completion,
    accounts: Sequence[MailAccount],
    *,
    models: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> ScanResult:
    """One quota-gated inbox scan cycle, with usage recorded afterwards."""
    config = load_scan_config(store)
    usage = load_scan_usage(store, now)
    decision = can_scan(config, usage)
    if not decision.allowed:
        logger.info(f"Inbox scan skipped: {decision.reason}")
        return ScanResult(skipped=decision.reason)
    if not accounts:
        return ScanResult(skipped=REASON_NO_ACCOUNTS)

    result = scan_inbox_for_tasks(store, completion, accounts, models=models)
    record_scan_result(store, result.tokens_used, now)
    return result


def run_background_thread_scan(
    store: KeyValueStore,
    completion,
    *,
    models: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> ThreadScanResult:
    """Quota-gated chat-thread scan cycle."""
    decision = can_scan(load_scan_config(store), load_scan_usage(store, now))
    if not decision.allowed:
        return ThreadScanResult(skipped=decision.reason)

    result = scan_threads_for_tasks(store, completion, models=models)
    if result.threads_scanned:
        record_scan_result(store, result.tokens_used, now)
    return result


# =============================================================================
# Scheduler
# =============================================================================

@dataclass(slots=True)
class SchedulerStatus:
    running: bool
    next_wake: Optional[datetime]


class ScanScheduler:
    """Timer loop that wakes, sweeps, scans and reschedules.

    Args:
        store: The agent instance's store
        scan_fn: Runs one inbox scan cycle
        thread_scan_fn: Runs one chat-thread scan cycle (optional)
        client_count_fn: Number of live connected clients
        sweep_fn: End-of-day sweep, called as ``sweep_fn(store, now)``
        clock: Returns the current timezone-aware datetime
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        scan_fn: Callable[[], object],
        thread_scan_fn: Optional[Callable[[], object]] = None,
        client_count_fn: Callable[[], int] = lambda: 0,
        sweep_fn: Callable[[KeyValueStore, datetime], int] = archive_completed_tasks,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self._scan_fn = scan_fn
        self._thread_scan_fn = thread_scan_fn
        self._client_count_fn = client_count_fn
        self._sweep_fn = sweep_fn
        self._clock = clock
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def next_wake(self) -> Optional[datetime]:
        value = self.store.get(NEXT_WAKE_KEY)
        return datetime.fromisoformat(value) if value else None

    def schedule_next(self, now: Optional[datetime] = None) -> datetime:
        now = now or self._clock()
        has_clients = self._client_count_fn() > 0
        wake = compute_next_wake(load_scan_config(self.store), now, has_clients)
        self.store.put(NEXT_WAKE_KEY, wake.isoformat())
        logger.info(f"Next scan wake at {wake.isoformat()} ({'active' if has_clients else 'inactive'} cadence)")
        return wake

    def on_wake(self, now: Optional[datetime] = None) -> datetime:
        """Handle one wake. Never raises; always returns the next wake time."""
        now = now or self._clock()
        try:
            if is_near_midnight(now):
                self._guarded("End-of-day sweep", lambda: self._sweep_fn(self.store, now))
            self._guarded("Inbox scan", self._scan_fn)
            if self._thread_scan_fn is not None:
                self._guarded("Thread scan", self._thread_scan_fn)
        finally:
            wake = self._reschedule()
        return wake

    def _reschedule(self) -> datetime:
        """``schedule_next`` that falls back to default cadence if the store fails."""
        try:
            return self.schedule_next()
        except Exception as e:
            now = self._clock()
            wake = compute_next_wake(ScanConfig(), now, self._client_count_fn() > 0)
            logger.exception(f"Could not persist next wake, using {wake.isoformat()}: {e}")
            return wake

    def _guarded(self, label: str, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception as e:
            logger.exception(f"{label} failed: {e}")
            try:
                log_event(self.store, EventType.SCAN_ERROR, f"{label} failed: {e}", {"error": str(e)})
            except Exception as log_error:
                logger.error(f"Could not record scan error: {log_error}")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        if self.next_wake() is None:
            self.schedule_next()

        def _runner() -> None:
            wake: Optional[datetime] = None
            while not self._stop.is_set():
                try:
                    if wake is None:
                        wake = self.next_wake() or self._reschedule()
                    delay = (wake - self._clock()).total_seconds()
                    if delay > 0 and self._stop.wait(delay):
                        break
                    wake = self.on_wake()
                except Exception as e:
                    logger.exception(f"Scheduler iteration failed: {e}")
                    wake = None
                    if self._stop.wait(RETRY_DELAY_SECONDS):
                        break

        self._thread = threading.Thread(target=_runner, name="inbox-agent-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=bool(self._thread and self._thread.is_alive()),
            next_wake=self.next_wake(),
        )
