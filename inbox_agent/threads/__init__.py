"""Chat threads queued for task scanning."""

from .store import (
    ChatThread,
    MAX_MESSAGES_PER_THREAD,
    MAX_STORED_THREADS,
    ThreadConfig,
    ThreadMessage,
    append_message,
    load_thread_config,
    load_threads,
    load_unprocessed_threads,
    mark_threads_processed,
    save_thread_config,
    store_thread,
    thread_key,
)

__all__ = [
    "ChatThread",
    "MAX_MESSAGES_PER_THREAD",
    "MAX_STORED_THREADS",
    "ThreadConfig",
    "ThreadMessage",
    "append_message",
    "load_thread_config",
    "load_threads",
    "load_unprocessed_threads",
    "mark_threads_processed",
    "save_thread_config",
    "store_thread",
    "thread_key",
]
