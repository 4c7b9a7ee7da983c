"""Conversation memory for the inbox agent.

Keeps the live chat context small and carries useful knowledge across
conversations:

- A rolling compaction summary replaces old chat messages once the live
  window grows past ``COMPACTION_THRESHOLD``.
- Durable user facts are extracted after each substantive turn, merged
  without duplicates, capped at ``MAX_USER_FACTS`` and consolidated by
  the model once the list reaches ``CONSOLIDATION_THRESHOLD``.
- One short summary per conversation id, capped at
  ``MAX_CONVERSATION_SUMMARIES``.

Completion failures never propagate out of the turn-level entry points
(``prepare_context`` and ``update_after_turn``); they are logged and
recorded in the event log instead.

Storage keys:
    memory:compaction -> str | None
    memory:user_facts -> [str, ...]
    memory:conversation_summaries -> [{"id", "summary", "date"}, ...]
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..llm.anthropic_client import AnthropicError
from ..llm.json_recovery import METHOD_FAILED, METHOD_LINES, decode_string_array
from ..storage import KeyValueStore, StorageError
from .events import EventType, get_events, log_event
from .messages import (
    ROLE_USER,
    ChatMessage,
    coerce_messages,
    has_substantive_content,
    serialize_messages,
    trim_leading_tool_results,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

COMPACTION_KEY = "memory:compaction"
FACTS_KEY = "memory:user_facts"
SUMMARIES_KEY = "memory:conversation_summaries"

COMPACTION_THRESHOLD = 16
KEEP_RECENT = 10
MAX_USER_FACTS = 50
CONSOLIDATION_THRESHOLD = 30
MAX_CONVERSATION_SUMMARIES = 20
SUMMARY_MAX_CHARS = 120
AFTER_TURN_WINDOW = 8

CONTEXT_PREFIX = "[CONVERSATION CONTEXT: earlier messages were summarized]"

COMPACTION_SYSTEM_PROMPT = """You summarize conversations between a user and their inbox assistant.
Write one concise summary of at most 250 words covering:
- what the user asked for or wanted to get done
- which emails or threads came up (subjects, senders, dates, key details)
- what actions were taken
- open questions and next steps

Keep names, email addresses, amounts, dates and message/thread IDs exactly as written.
If a previous summary is given, merge it with the new messages into a single summary instead of appending."""

FACTS_SYSTEM_PROMPT = """You extract durable facts about the user from a conversation with their inbox assistant.
Return ONLY a JSON array of short strings, one fact per string.

Extract:
- what the user says about themselves: name, email, employer, accounts, frequent contacts, tools, preferences
- instructions about the assistant: its name, tone, response style, things to always or never do

Rules:
- Do not repeat facts listed as already known.
- Skip one-off requests and transient details such as search queries.
- If there are no new facts return []
- No prose, no markdown, only the JSON array.

Example: "User: I work at Acme and my email is ty@acme.com" -> ["User works at Acme", "User's email is ty@acme.com"]"""

CONSOLIDATION_SYSTEM_PROMPT = """You are given a list of facts about a user. Some repeat or rephrase each other.
Merge them into a clean list without duplicates, keeping the most specific version of each fact.
Return ONLY a JSON array of strings."""

SUMMARY_SYSTEM_PROMPT = """Summarize this inbox assistant conversation in one sentence of at most 15 words.
Focus on the main topic or action. Return only the sentence."""


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass
class ConversationSummary:
    """One-line summary of a conversation.

    Attributes:
        id: Conversation identifier
        summary: Summary text (at most SUMMARY_MAX_CHARS)
        date: Local date the summary was written (YYYY-MM-DD)
    """
    id: str
    summary: str
    date: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "summary": self.summary, "date": self.date}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationSummary":
        return cls(
            id=str(data.get("id", "")),
            summary=str(data.get("summary", "")),
            date=str(data.get("date", "")),
        )


@dataclass
class AgentMemory:
    """Snapshot of everything the agent remembers."""

    compaction_summary: Optional[str] = None
    user_facts: List[str] = field(default_factory=list)
    conversation_summaries: List[ConversationSummary] = field(default_factory=list)

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "compactionSummary": self.compaction_summary,
            "userFacts": list(self.user_facts),
            "conversationSummaries": [s.to_dict() for s in self.conversation_summaries],
        }


def _today() -> str:
    return datetime.now().astimezone().date().isoformat()


def _clean_facts(facts: Iterable[Any]) -> List[str]:
    """Strip, drop empties and drop case-insensitive repeats, keeping order."""
    seen = set()
    cleaned = []
    for fact in facts:
        if not isinstance(fact, str):
            continue
        text = fact.strip()
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        cleaned.append(text)
    return cleaned


# =============================================================================
# Memory Manager
# =============================================================================

class MemoryManager:
    """Memory operations for one agent instance.

    Args:
        store: The agent instance's key/value store
        completion: Completion service (``complete(system, prompt, model=..., timeout=...)``)
        model: Optional model override for memory calls
    """

    def __init__(self, store: KeyValueStore, completion, *, model: Optional[str] = None):
        self.store = store
        self.completion = completion
        self.model = model

    def _complete(self, system: str, prompt: str) -> str:
        result = self.completion.complete(system, prompt, model=self.model)
        return result.text

    # -------------------------------------------------------------------------
    # Load / save
    # -------------------------------------------------------------------------

    def load_memory(self) -> AgentMemory:
        raw_summaries = self.store.get(SUMMARIES_KEY, []) or []
        return AgentMemory(
            compaction_summary=self.store.get(COMPACTION_KEY),
            user_facts=_clean_facts(self.store.get(FACTS_KEY, []) or []),
            conversation_summaries=[
                ConversationSummary.from_dict(item) for item in raw_summaries if isinstance(item, dict)
            ],
        )

    def load_user_facts(self) -> List[str]:
        return _clean_facts(self.store.get(FACTS_KEY, []) or [])

    def save_compaction(self, summary: Optional[str]) -> None:
        if summary:
            self.store.put(COMPACTION_KEY, summary)
        else:
            self.store.delete(COMPACTION_KEY)

    def save_user_facts(self, facts: Sequence[str]) -> List[str]:
        cleaned = _clean_facts(facts)[-MAX_USER_FACTS:]
        self.store.put(FACTS_KEY, cleaned)
        return cleaned

    def save_conversation_summary(self, conversation_id: str, summary: str) -> ConversationSummary:
        """Store the summary for a conversation, replacing any earlier one."""
        entry = ConversationSummary(id=conversation_id, summary=summary[:SUMMARY_MAX_CHARS], date=_today())

        def _replace(items):
            kept = [item for item in (items or []) if item.get("id") != conversation_id]
            kept.append(entry.to_dict())
            return kept[-MAX_CONVERSATION_SUMMARIES:]

        self.store.update(SUMMARIES_KEY, _replace, default=[])
        return entry

    # -------------------------------------------------------------------------
    # Compaction
    # -------------------------------------------------------------------------

    def compact(self, old_messages: Sequence[ChatMessage], existing_summary: Optional[str]) -> Optional[str]:
        """Merge ``old_messages`` into the existing summary.

        An empty transcript returns the existing summary untouched.
        Raises AnthropicError when the completion call fails.
        """
        transcript = serialize_messages(old_messages)
        if not transcript.strip():
            return existing_summary

        prior = ""
        if existing_summary:
            prior = f"Previous context summary:\n{existing_summary}\n\nNew messages to incorporate:\n"

        summary = self._complete(COMPACTION_SYSTEM_PROMPT, f"{prior}{transcript}").strip()
        if not summary:
            return existing_summary

        log_event(
            self.store,
            EventType.COMPACTION,
            f"Compacted {len(old_messages)} messages",
            {"messageCount": len(old_messages), "summaryLength": len(summary), "summaryPreview": summary[:150]},
        )
        return summary

    def prepare_context(self, messages: Sequence[ChatMessage | Dict[str, Any]]) -> List[ChatMessage]:
        """Return the message window to send to the model for the next turn.

        Compacts everything except the last ``KEEP_RECENT`` messages once the
        window exceeds ``COMPACTION_THRESHOLD``. When compaction fails the old
        messages are dropped anyway. A stored summary is prepended as context.
        """
        window = coerce_messages(messages)

        if len(window) > COMPACTION_THRESHOLD:
            old, recent = window[:-KEEP_RECENT], window[-KEEP_RECENT:]
            try:
                summary = self.compact(old, self.store.get(COMPACTION_KEY))
                self.save_compaction(summary)
            except (AnthropicError, StorageError) as exc:
                logger.warning(f"Compaction failed, truncating instead: {exc}")
                log_event(
                    self.store,
                    EventType.COMPACTION_ERROR,
                    "Compaction failed, dropped older messages",
                    {"error": str(exc), "dropped": len(old)},
                )
            window = trim_leading_tool_results(recent)

        summary = self.store.get(COMPACTION_KEY)
        if summary:
            window.insert(0, ChatMessage(role=ROLE_USER, content=f"{CONTEXT_PREFIX}\n{summary}"))
        return window

    # -------------------------------------------------------------------------
    # Facts
    # -------------------------------------------------------------------------

    def extract_facts(self, recent_messages: Sequence[ChatMessage], existing_facts: Sequence[str]) -> List[str]:
        """Return ``existing_facts`` plus any new durable facts found in the messages.

        Never raises for completion or parse failures; the input is returned
        unchanged in that case.
        """
        existing = list(existing_facts)
        transcript = serialize_messages(recent_messages)
        if not transcript.strip():
            return existing

        known = ""
        if existing:
            known = "Already known facts:\n" + "\n".join(f"- {f}" for f in existing) + "\n\n"

        try:
            text = self._complete(FACTS_SYSTEM_PROMPT, f"{known}Conversation:\n{transcript}")
        except AnthropicError as exc:
            logger.warning(f"Fact extraction failed: {exc}")
            log_event(self.store, EventType.MEMORY_ERROR, "Fact extraction call failed", {"error": str(exc)})
            return existing

        decoded = decode_string_array(text)
        if decoded.method == METHOD_FAILED:
            logger.warning(f"Could not parse facts from model output: {text[:300]}")
            log_event(
                self.store,
                EventType.FACT_PARSE_ERROR,
                "Failed to extract facts from model output",
                {"rawOutput": text[:300], "transcript": transcript[:200]},
            )
            return existing
        if decoded.method == METHOD_LINES:
            log_event(
                self.store,
                EventType.FACT_PARSE_FALLBACK,
                f"JSON parse failed, recovered {len(decoded.items)} fact(s) from plain text",
                {"rawOutput": text[:300], "recoveredFacts": decoded.items},
            )

        known_keys = {f.strip().lower() for f in existing}
        new_facts = [f for f in _clean_facts(decoded.items) if f.lower() not in known_keys]
        merged = (existing + new_facts)[-MAX_USER_FACTS:]

        if new_facts:
            log_event(
                self.store,
                EventType.FACT_EXTRACTION,
                f"Extracted {len(new_facts)} new fact(s)",
                {"newFacts": new_facts, "totalFacts": len(merged)},
            )

        if len(merged) >= CONSOLIDATION_THRESHOLD:
            return self.consolidate(merged)
        return merged

    def consolidate(self, facts: Sequence[str]) -> List[str]:
        """Ask the model to merge near-duplicate facts; keep the originals on any failure."""
        original = list(facts)
        prompt = "Facts to consolidate:\n" + "\n".join(f"- {f}" for f in original)
        try:
            text = self._complete(CONSOLIDATION_SYSTEM_PROMPT, prompt)
        except AnthropicError as exc:
            return self._consolidation_failed(original, str(exc))

        decoded = decode_string_array(text)
        consolidated = _clean_facts(decoded.items)
        if decoded.method == METHOD_FAILED or not consolidated:
            return self._consolidation_failed(original, f"unusable output: {text[:200]}")

        consolidated = consolidated[:MAX_USER_FACTS]
        logger.info(f"Consolidated {len(original)} facts down to {len(consolidated)}")
        log_event(
            self.store,
            EventType.FACT_CONSOLIDATION,
            f"Consolidated {len(original)} facts into {len(consolidated)}",
            {"before": len(original), "after": len(consolidated)},
        )
        return consolidated

    def _consolidation_failed(self, facts: List[str], error: str) -> List[str]:
        logger.warning(f"Fact consolidation failed, keeping originals: {error}")
        log_event(
            self.store,
            EventType.MEMORY_ERROR,
            "Fact consolidation failed, kept originals",
            {"error": error, "factCount": len(facts)},
        )
        return facts

    # -------------------------------------------------------------------------
    # Conversation summaries
    # -------------------------------------------------------------------------

    def generate_summary(self, recent_messages: Sequence[ChatMessage]) -> str:
        transcript = serialize_messages(recent_messages)
        if not transcript.strip():
            return "Empty conversation"

        text = self._complete(SUMMARY_SYSTEM_PROMPT, transcript)
        lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
        summary = (lines[0] if lines else "").strip('"')[:SUMMARY_MAX_CHARS] or "Conversation"
        log_event(self.store, EventType.SUMMARY_GENERATED, summary)
        return summary

    # -------------------------------------------------------------------------
    # Turn hook
    # -------------------------------------------------------------------------

    def update_after_turn(self, conversation_id: str, messages: Sequence[ChatMessage | Dict[str, Any]]) -> bool:
        """Extract facts and refresh the conversation summary after a chat turn.

        Returns True when memory was updated. Failures are logged, never raised.
        """
        tail = coerce_messages(messages)[-AFTER_TURN_WINDOW:]
        if not has_substantive_content(tail):
            log_event(
                self.store,
                EventType.MEMORY_SKIP,
                "Skipped memory update: no substantive content",
                {"conversationId": conversation_id, "messageCount": len(tail)},
            )
            return False

        try:
            facts = self.extract_facts(tail, self.load_user_facts())
            self.save_user_facts(facts)
            summary = self.generate_summary(tail)
            self.save_conversation_summary(conversation_id, summary)
        except Exception as exc:
            logger.warning(f"Memory update failed for {conversation_id}: {exc}")
            log_event(
                self.store,
                EventType.MEMORY_ERROR,
                "Memory update after chat turn failed",
                {"conversationId": conversation_id, "error": str(exc)},
            )
            return False
        return True

    # -------------------------------------------------------------------------
    # User edits and sync
    # -------------------------------------------------------------------------

    def replace_user_facts(self, facts: Sequence[str]) -> List[str]:
        with self.store.lock:
            saved = self.save_user_facts(facts)
        log_event(self.store, EventType.MEMORY_EDIT, f"User replaced facts ({len(saved)} total)")
        return saved

    def delete_user_fact(self, index: int) -> List[str]:
        """Remove the fact at ``index``. Raises IndexError when out of range."""
        with self.store.lock:
            facts = self.load_user_facts()
            if index < 0 or index >= len(facts):
                raise IndexError(f"No fact at index {index}")
            removed = facts.pop(index)
            self.store.put(FACTS_KEY, facts)
        log_event(self.store, EventType.MEMORY_EDIT, f"User deleted fact: {removed}")
        return facts

    def update_memory(
        self,
        *,
        compaction_summary: Optional[str] = None,
        clear_compaction: bool = False,
        user_facts: Optional[Sequence[str]] = None,
    ) -> AgentMemory:
        """Apply direct user edits to memory."""
        with self.store.lock:
            if clear_compaction:
                self.save_compaction(None)
            elif compaction_summary is not None:
                self.save_compaction(compaction_summary)
            if user_facts is not None:
                self.save_user_facts(user_facts)
        log_event(self.store, EventType.MEMORY_EDIT, "User updated memory")
        return self.load_memory()

    def merge_memory_from(self, source: Dict[str, Any]) -> AgentMemory:
        """Merge memory exported from another agent instance.

        Facts are unioned; summaries are keyed by conversation id with the
        newer date winning, then ordered by date.
        """
        incoming_facts = source.get("userFacts") or source.get("user_facts") or []
        incoming_summaries = source.get("conversationSummaries") or source.get("conversation_summaries") or []

        with self.store.lock:
            facts = _clean_facts(self.load_user_facts() + list(incoming_facts))
            self.save_user_facts(facts)

            by_id: Dict[str, ConversationSummary] = {
                s.id: s for s in self.load_memory().conversation_summaries
            }
            for item in incoming_summaries:
                if not isinstance(item, dict):
                    continue
                entry = ConversationSummary.from_dict(item)
                current = by_id.get(entry.id)
                if current is None or entry.date >= current.date:
                    by_id[entry.id] = entry
            merged = sorted(by_id.values(), key=lambda s: s.date)[-MAX_CONVERSATION_SUMMARIES:]
            self.store.put(SUMMARIES_KEY, [s.to_dict() for s in merged])

        log_event(
            self.store,
            EventType.MEMORY_SYNC,
            f"Merged memory: {len(incoming_facts)} fact(s), {len(incoming_summaries)} summary(ies)",
        )
        return self.load_memory()

    def get_serializable_memory(self) -> Dict[str, Any]:
        return self.load_memory().to_api_dict()

    def get_full_memory_debug(self, event_limit: int = 50) -> Dict[str, Any]:
        data = self.get_serializable_memory()
        data["events"] = [e.to_dict() for e in get_events(self.store, limit=event_limit)]
        return data
