"""Task store: suggestion lifecycle, duplicate detection and learned preferences.

Tasks move through a small state machine:

    suggested --accept--> pending --complete--> completed --end-of-day sweep--> archived
    suggested --decline--> archived (kept in the archive, blocks re-suggestion)

Active tasks and archived tasks live under separate keys. The archive is
capped at ``MAX_ARCHIVED`` entries with the oldest evicted first.

Storage keys:
    todos:items -> [task dict, ...]
    todos:archived -> [task dict, ...]
    todos:preferences -> preferences dict
    todos:categories -> [str, ...]

Every list mutation is a full read-modify-write of the collection and
runs under ``store.lock``.
"""
from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..memory.events import EventType, get_events, log_event
from ..storage import KeyValueStore
from .similarity import extract_pattern, titles_are_similar

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

TASKS_KEY = "todos:items"
ARCHIVED_KEY = "todos:archived"
PREFERENCES_KEY = "todos:preferences"
CATEGORIES_KEY = "todos:categories"

MAX_ARCHIVED = 200
MAX_PATTERNS = 50
FEEDBACK_EVENT_LIMIT = 20

UPDATABLE_FIELDS = ("title", "description", "categories", "status", "scheduled_date", "sort_order")


def _now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _to_base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_task_id() -> str:
    """Return an id like ``todo_lx2k9f3a_k3j9d2``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"todo_{_to_base36(int(time.time() * 1000))}_{suffix}"


# =============================================================================
# Enums / Dataclasses
# =============================================================================

class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    SUGGESTED = "suggested"
    PENDING = "pending"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class UserResponse(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"


class SourceKind(str, Enum):
    EMAIL = "email"
    CHAT = "chat"


@dataclass(frozen=True, slots=True)
class SourceRef:
    """Pointer from a task back to the message it was derived from.

    For chat sources ``message_id``/``thread_id`` are namespaced by channel
    (``<channel>:<ts>``) and ``subject`` holds the channel name.
    """
    message_id: str
    thread_id: str
    subject: str = ""
    sender: str = ""
    snippet: str = ""
    account: str = ""
    kind: str = SourceKind.EMAIL.value

    def ids(self) -> Tuple[str, str]:
        return (self.message_id, self.thread_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "sender": self.sender,
            "snippet": self.snippet,
            "account": self.account,
        }

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "messageId": self.message_id,
            "threadId": self.thread_id,
            "subject": self.subject,
            "from": self.sender,
            "snippet": self.snippet,
            "account": self.account,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRef":
        return cls(
            message_id=str(data.get("message_id") or data.get("messageId") or ""),
            thread_id=str(data.get("thread_id") or data.get("threadId") or ""),
            subject=data.get("subject", "") or "",
            sender=data.get("sender") or data.get("from") or "",
            snippet=data.get("snippet", "") or "",
            account=data.get("account", "") or "",
            kind=data.get("kind", SourceKind.EMAIL.value),
        )


@dataclass
class Task:
    """A to-do item, possibly proposed by the agent."""

    id: str
    title: str
    status: str = TaskStatus.PENDING.value
    description: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    sources: Tuple[SourceRef, ...] = ()
    scheduled_date: Optional[str] = None
    sort_order: int = 0
    agent_suggested: bool = False
    user_response: Optional[str] = None
    declined_reason: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    suggested_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "description": self.description,
            "categories": list(self.categories),
            "sources": [s.to_dict() for s in self.sources],
            "scheduled_date": self.scheduled_date,
            "sort_order": self.sort_order,
            "agent_suggested": self.agent_suggested,
            "user_response": self.user_response,
            "declined_reason": self.declined_reason,
            "created_at": self.created_at.isoformat(),
            "suggested_at": _iso(self.suggested_at),
            "completed_at": _iso(self.completed_at),
            "archived_at": _iso(self.archived_at),
        }

    def to_api_dict(self) -> Dict[str, Any]:
        """Convert to API-friendly dict (camelCase)."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "description": self.description,
            "categories": list(self.categories),
            "sources": [s.to_api_dict() for s in self.sources],
            "scheduledDate": self.scheduled_date,
            "sortOrder": self.sort_order,
            "agentSuggested": self.agent_suggested,
            "userResponse": self.user_response,
            "declinedReason": self.declined_reason,
            "createdAt": self.created_at.isoformat(),
            "suggestedAt": _iso(self.suggested_at),
            "completedAt": _iso(self.completed_at),
            "archivedAt": _iso(self.archived_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            status=data.get("status", TaskStatus.PENDING.value),
            description=data.get("description"),
            categories=list(data.get("categories") or []),
            sources=tuple(SourceRef.from_dict(s) for s in data.get("sources") or []),
            scheduled_date=data.get("scheduled_date"),
            sort_order=int(data.get("sort_order", 0)),
            agent_suggested=bool(data.get("agent_suggested", False)),
            user_response=data.get("user_response"),
            declined_reason=data.get("declined_reason"),
            created_at=_parse_dt(data.get("created_at")) or _now(),
            suggested_at=_parse_dt(data.get("suggested_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            archived_at=_parse_dt(data.get("archived_at")),
        )


@dataclass
class TaskPreferences:
    """What the user tends to accept or decline, plus suggestion settings."""

    declined_patterns: List[str] = field(default_factory=list)
    accepted_patterns: List[str] = field(default_factory=list)
    preferred_scheduling: str = "same day"
    auto_suggest: bool = True
    add_to_top: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "declined_patterns": list(self.declined_patterns),
            "accepted_patterns": list(self.accepted_patterns),
            "preferred_scheduling": self.preferred_scheduling,
            "auto_suggest": self.auto_suggest,
            "add_to_top": self.add_to_top,
        }

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "declinedPatterns": list(self.declined_patterns),
            "acceptedPatterns": list(self.accepted_patterns),
            "preferredScheduling": self.preferred_scheduling,
            "autoSuggest": self.auto_suggest,
            "addToTop": self.add_to_top,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskPreferences":
        return cls(
            declined_patterns=list(data.get("declined_patterns") or []),
            accepted_patterns=list(data.get("accepted_patterns") or []),
            preferred_scheduling=data.get("preferred_scheduling", "same day"),
            auto_suggest=data.get("auto_suggest", True),
            add_to_top=data.get("add_to_top", True),
        )


@dataclass
class SuggestionCandidate:
    """A validated classifier result waiting to be inserted."""

    title: str
    source: Optional[SourceRef] = None
    description: Optional[str] = None
    scheduled_date: Optional[str] = None
    categories: List[str] = field(default_factory=list)


class InvalidTransition(ValueError):
    """Raised when a lifecycle operation does not apply to the task's status."""


# =============================================================================
# Load / Save
# =============================================================================

def load_tasks(store: KeyValueStore) -> List[Task]:
    return [Task.from_dict(item) for item in store.get(TASKS_KEY, []) or []]


def save_tasks(store: KeyValueStore, tasks: Sequence[Task]) -> None:
    store.put(TASKS_KEY, [t.to_dict() for t in tasks])


def load_archived_tasks(store: KeyValueStore) -> List[Task]:
    return [Task.from_dict(item) for item in store.get(ARCHIVED_KEY, []) or []]


def _save_archived(store: KeyValueStore, tasks: Sequence[Task]) -> None:
    store.put(ARCHIVED_KEY, [t.to_dict() for t in list(tasks)[-MAX_ARCHIVED:]])


def load_preferences(store: KeyValueStore) -> TaskPreferences:
    return TaskPreferences.from_dict(store.get(PREFERENCES_KEY, {}) or {})


def save_preferences(store: KeyValueStore, prefs: TaskPreferences) -> None:
    store.put(PREFERENCES_KEY, prefs.to_dict())


def update_preferences(store: KeyValueStore, updates: Dict[str, Any]) -> Tuple[TaskPreferences, List[str]]:
    """Apply user edits to preferences.

    Returns the saved preferences and the names of fields that were
    rejected (unknown, or the wrong type).
    """
    expected = {
        "preferred_scheduling": str,
        "auto_suggest": bool,
        "add_to_top": bool,
        "declined_patterns": list,
        "accepted_patterns": list,
    }
    rejected = []
    with store.lock:
        prefs = load_preferences(store)
        for name, value in updates.items():
            kind = expected.get(name)
            if kind is None or not isinstance(value, kind):
                rejected.append(name)
                continue
            if kind is list:
                if not all(isinstance(v, str) for v in value):
                    rejected.append(name)
                    continue
                value = list(value)[-MAX_PATTERNS:]
            setattr(prefs, name, value)
        save_preferences(store, prefs)
    return prefs, rejected


def load_categories(store: KeyValueStore) -> List[str]:
    return list(store.get(CATEGORIES_KEY, []) or [])


def save_categories(store: KeyValueStore, categories: Sequence[str]) -> None:
    store.put(CATEGORIES_KEY, [c for c in categories if isinstance(c, str) and c.strip()])


def _find(tasks: List[Task], task_id: str) -> Optional[Task]:
    for task in tasks:
        if task.id == task_id:
            return task
    return None


def _record_feedback(store: KeyValueStore, detail: str, task: Task) -> None:
    log_event(store, EventType.TASK_FEEDBACK, detail, {"taskId": task.id, "title": task.title})


def recent_feedback(store: KeyValueStore, limit: int = FEEDBACK_EVENT_LIMIT) -> List[str]:
    """Details of the user's most recent accept/decline/edit feedback."""
    return [e.detail for e in get_events(store, event_type=EventType.TASK_FEEDBACK, limit=limit)]


def _add_pattern(store: KeyValueStore, task: Task, attr: str) -> Optional[str]:
    sender = task.sources[0].sender if task.sources else None
    pattern = extract_pattern(task.title, sender)
    if not pattern:
        return None
    prefs = load_preferences(store)
    patterns = getattr(prefs, attr)
    if pattern not in patterns:
        setattr(prefs, attr, (patterns + [pattern])[-MAX_PATTERNS:])
        save_preferences(store, prefs)
    return pattern


# =============================================================================
# Duplicate tracking
# =============================================================================

def tracked_source_ids(active: Iterable[Task], archived: Iterable[Task]) -> Set[str]:
    """Message and thread ids that block re-suggestion.

    Every non-completed active task counts; from the archive only tasks the
    user explicitly declined count. Completed work does not block a fresh
    suggestion on the same thread.
    """
    tracked: Set[str] = set()
    for task in active:
        if task.status == TaskStatus.COMPLETED.value:
            continue
        for ref in task.sources:
            tracked.update(i for i in ref.ids() if i)
    for task in archived:
        if task.user_response != UserResponse.DECLINED.value:
            continue
        for ref in task.sources:
            tracked.update(i for i in ref.ids() if i)
    return tracked


def load_tracked_source_ids(store: KeyValueStore) -> Set[str]:
    with store.lock:
        return tracked_source_ids(load_tasks(store), load_archived_tasks(store))


# =============================================================================
# CRUD Operations
# =============================================================================

def create_task(
    store: KeyValueStore,
    title: str,
    *,
    description: Optional[str] = None,
    categories: Optional[Sequence[str]] = None,
    scheduled_date: Optional[str] = None,
    sources: Sequence[SourceRef] = (),
    add_to_top: Optional[bool] = None,
) -> Task:
    """Create a pending task directly from a user action."""
    if not title or not title.strip():
        raise ValueError("Task title is required")

    with store.lock:
        tasks = load_tasks(store)
        if add_to_top is None:
            add_to_top = load_preferences(store).add_to_top

        task = Task(
            id=generate_task_id(),
            title=title.strip(),
            description=description,
            categories=list(categories or []),
            scheduled_date=scheduled_date,
            sources=tuple(sources),
        )
        if add_to_top:
            task.sort_order = min([t.sort_order for t in tasks] + [0]) - 1
            tasks.insert(0, task)
        else:
            task.sort_order = max([t.sort_order for t in tasks] + [0]) + 1
            tasks.append(task)
        save_tasks(store, tasks)
    return task


def update_task(store: KeyValueStore, task_id: str, updates: Dict[str, Any]) -> Optional[Task]:
    """Update descriptive, scheduling and status fields of an active task.

    Source references cannot be changed. Raises ValueError for fields that
    are not updatable or for a status that must go through another
    operation. Returns None when the task does not exist.
    """
    unknown = [name for name in updates if name not in UPDATABLE_FIELDS]
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    status = updates.get("status")
    if status is not None and status not in (TaskStatus.PENDING.value, TaskStatus.COMPLETED.value):
        raise ValueError(f"Status {status!r} cannot be set directly")

    with store.lock:
        tasks = load_tasks(store)
        task = _find(tasks, task_id)
        if task is None:
            return None

        old_title = task.title
        for name, value in updates.items():
            if name == "categories":
                value = list(value or [])
            setattr(task, name, value)
        if status == TaskStatus.COMPLETED.value and task.completed_at is None:
            task.completed_at = _now()
        elif status == TaskStatus.PENDING.value:
            task.completed_at = None
        save_tasks(store, tasks)

    if task.agent_suggested and "title" in updates and updates["title"] != old_title:
        _record_feedback(store, f'User edited task title: "{old_title}" -> "{task.title}"', task)
    return task


def delete_task(store: KeyValueStore, task_id: str) -> bool:
    with store.lock:
        tasks = load_tasks(store)
        remaining = [t for t in tasks if t.id != task_id]
        if len(remaining) == len(tasks):
            return False
        save_tasks(store, remaining)
    return True


def complete_task(store: KeyValueStore, task_id: str) -> Optional[Task]:
    """Mark a task completed. It stays visible until the end-of-day sweep."""
    return update_task(store, task_id, {"status": TaskStatus.COMPLETED.value})


def reorder_tasks(store: KeyValueStore, ordered_ids: Sequence[str]) -> List[Task]:
    """Assign dense sort keys following ``ordered_ids``.

    Tasks missing from ``ordered_ids`` keep their relative order after the
    listed ones.
    """
    with store.lock:
        tasks = load_tasks(store)
        position = {task_id: i for i, task_id in enumerate(ordered_ids)}
        listed = sorted((t for t in tasks if t.id in position), key=lambda t: position[t.id])
        rest = sorted((t for t in tasks if t.id not in position), key=lambda t: t.sort_order)
        ordered = listed + rest
        for i, task in enumerate(ordered):
            task.sort_order = i
        save_tasks(store, ordered)
    return ordered


# =============================================================================
# Suggestion Lifecycle
# =============================================================================

def accept_suggestion(store: KeyValueStore, task_id: str) -> Optional[Task]:
    """suggested -> pending, moved to the front of the pending queue."""
    with store.lock:
        tasks = load_tasks(store)
        task = _find(tasks, task_id)
        if task is None:
            return None
        if task.status != TaskStatus.SUGGESTED.value:
            raise InvalidTransition(f"Task {task_id} is {task.status}, not suggested")

        pending_orders = [t.sort_order for t in tasks if t.status == TaskStatus.PENDING.value]
        task.status = TaskStatus.PENDING.value
        task.user_response = UserResponse.ACCEPTED.value
        task.suggested_at = None
        task.sort_order = min(pending_orders + [0]) - 1
        save_tasks(store, tasks)
        pattern = _add_pattern(store, task, "accepted_patterns")

    logger.info(f"Accepted suggestion {task_id} (pattern: {pattern})")
    _record_feedback(store, f"User accepted AI suggestion: {task.title}", task)
    return task


def decline_suggestion(store: KeyValueStore, task_id: str, reason: Optional[str] = None) -> Optional[Task]:
    """suggested -> archived, with the reason and a learned declined pattern."""
    with store.lock:
        tasks = load_tasks(store)
        task = _find(tasks, task_id)
        if task is None:
            return None
        if task.status != TaskStatus.SUGGESTED.value:
            raise InvalidTransition(f"Task {task_id} is {task.status}, not suggested")

        task.status = TaskStatus.ARCHIVED.value
        task.user_response = UserResponse.DECLINED.value
        task.declined_reason = reason
        task.archived_at = _now()
        save_tasks(store, [t for t in tasks if t.id != task_id])

        archived = load_archived_tasks(store)
        archived.append(task)
        _save_archived(store, archived)
        pattern = _add_pattern(store, task, "declined_patterns")

    logger.info(f"Declined suggestion {task_id} (pattern: {pattern})")
    detail = f"User declined AI suggestion: {task.title}"
    if reason:
        detail += f" (reason: {reason})"
    _record_feedback(store, detail, task)
    return task


def unaccept_suggestion(store: KeyValueStore, task_id: str) -> Optional[Task]:
    """Undo an accept: the task goes back to suggested."""
    with store.lock:
        tasks = load_tasks(store)
        task = _find(tasks, task_id)
        if task is None:
            return None
        task.status = TaskStatus.SUGGESTED.value
        task.user_response = None
        task.completed_at = None
        task.suggested_at = _now()
        save_tasks(store, tasks)
    return task


def undecline_suggestion(store: KeyValueStore, task_id: str) -> Optional[Task]:
    """Undo a decline: the task leaves the archive and is suggested again."""
    with store.lock:
        archived = load_archived_tasks(store)
        task = _find(archived, task_id)
        if task is None:
            return None
        archived = [t for t in archived if t.id != task_id]
        _save_archived(store, archived)

        task.status = TaskStatus.SUGGESTED.value
        task.user_response = None
        task.declined_reason = None
        task.archived_at = None
        tasks = load_tasks(store)
        tasks.append(task)
        save_tasks(store, tasks)
    return task


def clear_suggestions(store: KeyValueStore) -> int:
    """Drop every open suggestion. Returns how many were removed."""
    with store.lock:
        tasks = load_tasks(store)
        kept = [t for t in tasks if t.status != TaskStatus.SUGGESTED.value]
        removed = len(tasks) - len(kept)
        if removed:
            save_tasks(store, kept)
    return removed


def archive_completed_tasks(store: KeyValueStore, now: Optional[datetime] = None) -> int:
    """Move tasks completed before the start of today (local time) to the archive."""
    now = now or _now()
    local_now = now.astimezone()
    today_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)

    with store.lock:
        tasks = load_tasks(store)
        to_archive, to_keep = [], []
        for task in tasks:
            if (
                task.status == TaskStatus.COMPLETED.value
                and task.completed_at is not None
                and task.completed_at < today_start
            ):
                task.status = TaskStatus.ARCHIVED.value
                task.archived_at = now
                to_archive.append(task)
            else:
                to_keep.append(task)

        if not to_archive:
            return 0
        save_tasks(store, to_keep)
        _save_archived(store, load_archived_tasks(store) + to_archive)

    logger.info(f"Archived {len(to_archive)} completed task(s)")
    return len(to_archive)


def add_suggestions(store: KeyValueStore, candidates: Sequence[SuggestionCandidate]) -> List[Task]:
    """Insert classifier suggestions that are not already known.

    A candidate is skipped when its message or thread id is tracked (see
    :func:`tracked_source_ids`, recomputed here from stored state) or when
    its title is similar to an existing non-archived task or to a candidate
    accepted earlier in the same call.
    """
    with store.lock:
        tasks = load_tasks(store)
        tracked = tracked_source_ids(tasks, load_archived_tasks(store))
        titles = [t.title for t in tasks]

        accepted: List[SuggestionCandidate] = []
        for candidate in candidates:
            if candidate.source and any(i in tracked for i in candidate.source.ids() if i):
                logger.info(f"Skipping duplicate suggestion (source match): {candidate.title!r}")
                continue
            if any(titles_are_similar(existing, candidate.title) for existing in titles):
                logger.info(f"Skipping duplicate suggestion (similar title): {candidate.title!r}")
                continue
            accepted.append(candidate)
            titles.append(candidate.title)
            if candidate.source:
                tracked.update(i for i in candidate.source.ids() if i)

        if not accepted:
            return []

        max_order = max([t.sort_order for t in tasks] + [0])
        now = _now()
        new_tasks = [
            Task(
                id=generate_task_id(),
                title=candidate.title,
                status=TaskStatus.SUGGESTED.value,
                description=candidate.description,
                categories=list(candidate.categories),
                sources=(candidate.source,) if candidate.source else (),
                scheduled_date=candidate.scheduled_date,
                sort_order=max_order + i + 1,
                agent_suggested=True,
                created_at=now,
                suggested_at=now,
            )
            for i, candidate in enumerate(accepted)
        ]
        save_tasks(store, tasks + new_tasks)
    return new_tasks


# =============================================================================
# Prompt context
# =============================================================================

def _format_task_line(task: Task) -> str:
    parts = [f'- [{task.id}] "{task.title}"']
    if task.status != TaskStatus.PENDING.value:
        parts.append(f"({task.status})")
    if task.scheduled_date:
        parts.append(f"scheduled: {task.scheduled_date}")
    if task.categories:
        parts.append(f"[{', '.join(task.categories)}]")
    if task.description:
        parts.append(f"- {task.description}")
    if task.sources:
        src = task.sources[0]
        if src.kind == SourceKind.CHAT.value:
            parts.append(f"chat: {src.sender} in {src.subject}")
        else:
            parts.append(f'from: {src.sender} re: "{src.subject}"')
    return " ".join(parts)


def build_preference_context(prefs: TaskPreferences, tasks: Sequence[Task]) -> str:
    """Describe current tasks and learned preferences for the chat system prompt."""
    parts: List[str] = []
    pending = [t for t in tasks if t.status == TaskStatus.PENDING.value]
    suggested = [t for t in tasks if t.status == TaskStatus.SUGGESTED.value]
    completed = [t for t in tasks if t.status == TaskStatus.COMPLETED.value]

    if pending:
        parts.append(f"Active to-do items ({len(pending)}):")
        parts.extend(_format_task_line(t) for t in pending)
    if suggested:
        parts.append(f"\nSuggestions awaiting user review ({len(suggested)}):")
        parts.extend(_format_task_line(t) for t in suggested)
    recent = sorted(
        (t for t in completed if t.completed_at),
        key=lambda t: t.completed_at,
        reverse=True,
    )[:5]
    if recent:
        parts.append(f"\nRecently completed (last {len(recent)}):")
        parts.extend(f'- "{t.title}" completed {t.completed_at.date().isoformat()}' for t in recent)
    if not (pending or suggested or completed):
        parts.append("The user has no to-do items yet.")

    if pending or suggested:
        parts.append(
            "\nBefore suggesting a to-do, check the items above and skip anything that "
            "duplicates or closely matches an existing item."
        )
    if prefs.declined_patterns:
        parts.append(
            f"\nThe user has declined suggestions about: {', '.join(prefs.declined_patterns)}. "
            "Avoid similar items unless the context is clearly different."
        )
    if prefs.accepted_patterns:
        parts.append(
            f"The user tends to accept suggestions about: {', '.join(prefs.accepted_patterns)}. "
            "Prioritize these kinds of items."
        )
    if not prefs.auto_suggest:
        parts.append("The user turned off automatic suggestions. Only suggest to-dos when asked.")
    return "\n".join(parts)
