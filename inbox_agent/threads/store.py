"""Storage for chat threads waiting to be scanned for tasks.

A thread is stored when the agent is mentioned in it and re-queued
(``processed = False``) whenever a new message arrives.

Storage keys:
    threads:items -> [thread dict, ...] (most recent MAX_STORED_THREADS)
    threads:config -> {"enabled": bool, "bot_user_id": str | None}
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..storage import KeyValueStore

THREADS_KEY = "threads:items"
CONFIG_KEY = "threads:config"

MAX_STORED_THREADS = 200
MAX_MESSAGES_PER_THREAD = 50


def _now() -> datetime:
    return datetime.now(timezone.utc)


def thread_key(channel_id: str, thread_ts: str) -> str:
    return f"{channel_id}:{thread_ts}"


@dataclass
class ThreadMessage:
    author_id: str
    author_name: str
    text: str
    ts: str

    def to_dict(self) -> Dict[str, Any]:
        return {"author_id": self.author_id, "author_name": self.author_name, "text": self.text, "ts": self.ts}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreadMessage":
        return cls(
            author_id=str(data.get("author_id", "")),
            author_name=str(data.get("author_name", "")),
            text=str(data.get("text", "")),
            ts=str(data.get("ts", "")),
        )


@dataclass
class ChatThread:
    """A chat thread and the messages seen so far."""

    channel_id: str
    thread_ts: str
    trigger_message_ts: str
    messages: List[ThreadMessage] = field(default_factory=list)
    channel_name: Optional[str] = None
    received_at: datetime = field(default_factory=_now)
    processed: bool = False

    @property
    def key(self) -> str:
        return thread_key(self.channel_id, self.thread_ts)

    @property
    def channel_label(self) -> str:
        return f"#{self.channel_name}" if self.channel_name else self.channel_id

    @property
    def revision(self) -> str:
        """Changes whenever a message is merged in."""
        last_ts = self.messages[-1].ts if self.messages else ""
        return f"{len(self.messages)}:{last_ts}"

    def trigger_message(self) -> Optional[ThreadMessage]:
        for message in self.messages:
            if message.ts == self.trigger_message_ts:
                return message
        return self.messages[0] if self.messages else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "thread_ts": self.thread_ts,
            "trigger_message_ts": self.trigger_message_ts,
            "messages": [m.to_dict() for m in self.messages],
            "channel_name": self.channel_name,
            "received_at": self.received_at.isoformat(),
            "processed": self.processed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatThread":
        received_at = data.get("received_at")
        return cls(
            channel_id=str(data.get("channel_id", "")),
            thread_ts=str(data.get("thread_ts", "")),
            trigger_message_ts=str(data.get("trigger_message_ts", "")),
            messages=[ThreadMessage.from_dict(m) for m in data.get("messages") or []],
            channel_name=data.get("channel_name"),
            received_at=datetime.fromisoformat(received_at) if isinstance(received_at, str) else _now(),
            processed=bool(data.get("processed", False)),
        )


@dataclass
class ThreadConfig:
    enabled: bool = True
    bot_user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "bot_user_id": self.bot_user_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreadConfig":
        return cls(enabled=bool(data.get("enabled", True)), bot_user_id=data.get("bot_user_id"))


def load_thread_config(store: KeyValueStore) -> ThreadConfig:
    return ThreadConfig.from_dict(store.get(CONFIG_KEY, {}) or {})


def save_thread_config(store: KeyValueStore, config: ThreadConfig) -> None:
    store.put(CONFIG_KEY, config.to_dict())


def load_threads(store: KeyValueStore) -> List[ChatThread]:
    return [ChatThread.from_dict(item) for item in store.get(THREADS_KEY, []) or []]


def _save_threads(store: KeyValueStore, threads: List[ChatThread]) -> None:
    store.put(THREADS_KEY, [t.to_dict() for t in threads[-MAX_STORED_THREADS:]])


def _merge_messages(existing: ChatThread, messages: Iterable[ThreadMessage]) -> bool:
    seen = {m.ts for m in existing.messages}
    added = False
    for message in messages:
        if message.ts not in seen:
            existing.messages.append(message)
            seen.add(message.ts)
            added = True
    existing.messages = existing.messages[-MAX_MESSAGES_PER_THREAD:]
    return added


def store_thread(store: KeyValueStore, thread: ChatThread) -> ChatThread:
    """Insert a thread or merge its messages into the stored copy.

    Either way the thread is queued for the next scan.
    """
    with store.lock:
        threads = load_threads(store)
        for existing in threads:
            if existing.key == thread.key:
                _merge_messages(existing, thread.messages)
                if thread.channel_name and not existing.channel_name:
                    existing.channel_name = thread.channel_name
                existing.processed = False
                _save_threads(store, threads)
                return existing

        thread.messages = thread.messages[-MAX_MESSAGES_PER_THREAD:]
        thread.processed = False
        threads.append(thread)
        _save_threads(store, threads)
        return thread


def append_message(store: KeyValueStore, channel_id: str, thread_ts: str, message: ThreadMessage) -> bool:
    """Add a message to a known thread and re-queue it. Returns False if nothing changed."""
    key = thread_key(channel_id, thread_ts)
    with store.lock:
        threads = load_threads(store)
        for thread in threads:
            if thread.key != key:
                continue
            if not _merge_messages(thread, [message]):
                return False
            thread.processed = False
            _save_threads(store, threads)
            return True
    return False


def load_unprocessed_threads(store: KeyValueStore) -> List[ChatThread]:
    return [t for t in load_threads(store) if not t.processed]


def mark_threads_processed(store: KeyValueStore, scanned: Iterable[ChatThread]) -> int:
    """Mark scanned threads processed. Returns how many changed.

    A thread that gained messages since it was loaded for the scan stays
    queued, so the new messages are classified on the next pass.
    """
    wanted = {t.key: t.revision for t in scanned}
    changed = 0
    with store.lock:
        threads = load_threads(store)
        for thread in threads:
            if thread.processed or wanted.get(thread.key) != thread.revision:
                continue
            thread.processed = True
            changed += 1
        if changed:
            _save_threads(store, threads)
    return changed
