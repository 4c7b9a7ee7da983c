"""Conversation memory: compaction, durable facts, summaries and the event log."""

from .events import (
    EventType,
    MemoryEvent,
    MAX_EVENTS,
    clear_events,
    get_events,
    log_event,
)
from .messages import (
    ChatMessage,
    coerce_messages,
    has_substantive_content,
    serialize_messages,
    trim_leading_tool_results,
)
from .manager import (
    AgentMemory,
    COMPACTION_THRESHOLD,
    CONSOLIDATION_THRESHOLD,
    ConversationSummary,
    KEEP_RECENT,
    MAX_CONVERSATION_SUMMARIES,
    MAX_USER_FACTS,
    MemoryManager,
)

__all__ = [
    "EventType",
    "MemoryEvent",
    "MAX_EVENTS",
    "clear_events",
    "get_events",
    "log_event",
    "ChatMessage",
    "coerce_messages",
    "has_substantive_content",
    "serialize_messages",
    "trim_leading_tool_results",
    "AgentMemory",
    "COMPACTION_THRESHOLD",
    "CONSOLIDATION_THRESHOLD",
    "ConversationSummary",
    "KEEP_RECENT",
    "MAX_CONVERSATION_SUMMARIES",
    "MAX_USER_FACTS",
    "MemoryManager",
]
