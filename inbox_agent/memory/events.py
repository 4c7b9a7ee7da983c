"""Bounded, append-only event log kept in agent memory.

Every mutating memory, scan, task and execution step appends one event
so the UI can show what the agent did and why. Only the most recent
``MAX_EVENTS`` are kept.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..storage import KeyValueStore

logger = logging.getLogger(__name__)

EVENTS_KEY = "memory:events"
MAX_EVENTS = 200


class EventType(str, Enum):
    """Typed categories for memory events."""

    COMPACTION = "compaction"
    COMPACTION_ERROR = "compaction_error"
    FACT_EXTRACTION = "fact_extraction"
    FACT_PARSE_FALLBACK = "fact_parse_fallback"
    FACT_PARSE_ERROR = "fact_parse_error"
    FACT_CONSOLIDATION = "fact_consolidation"
    SUMMARY_GENERATED = "summary_generated"
    MEMORY_SYNC = "memory_sync"
    MEMORY_SKIP = "memory_skip"
    MEMORY_ERROR = "memory_error"
    MEMORY_EDIT = "memory_edit"
    SCAN = "scan"
    SCAN_ERROR = "scan_error"
    TASK_FEEDBACK = "task_feedback"
    EXECUTION = "execution"
    EXECUTION_ERROR = "execution_error"
    CHAT_STARTED = "chat_started"


def _now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class MemoryEvent:
    """One entry in the event log."""

    id: str
    type: str
    detail: str
    timestamp: datetime = field(default_factory=_now)
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEvent":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif not isinstance(timestamp, datetime):
            timestamp = _now()
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            type=data.get("type", ""),
            detail=data.get("detail", ""),
            timestamp=timestamp,
            data=data.get("data"),
        )


def log_event(
    store: KeyValueStore,
    event_type: EventType | str,
    detail: str,
    data: Optional[Dict[str, Any]] = None,
) -> MemoryEvent:
    """Append an event, evicting the oldest beyond ``MAX_EVENTS``."""
    type_value = event_type.value if isinstance(event_type, EventType) else str(event_type)
    event = MemoryEvent(id=str(uuid.uuid4()), type=type_value, detail=detail, data=data)

    def _append(events):
        events = list(events or [])
        events.append(event.to_dict())
        return events[-MAX_EVENTS:]

    store.update(EVENTS_KEY, _append, default=[])
    logger.debug(f"[{type_value}] {detail}")
    return event


def get_events(
    store: KeyValueStore,
    *,
    limit: Optional[int] = None,
    event_type: Optional[EventType | str] = None,
) -> List[MemoryEvent]:
    """Return events oldest-first, optionally filtered and limited to the newest ``limit``."""
    raw = store.get(EVENTS_KEY, []) or []
    events = [MemoryEvent.from_dict(item) for item in raw if isinstance(item, dict)]
    if event_type is not None:
        wanted = event_type.value if isinstance(event_type, EventType) else str(event_type)
        events = [e for e in events if e.type == wanted]
    if limit is not None:
        events = events[-limit:] if limit > 0 else []
    return events


def clear_events(store: KeyValueStore) -> None:
    store.delete(EVENTS_KEY)
