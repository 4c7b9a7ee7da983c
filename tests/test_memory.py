"""Tests for the Memory Manager.

This module tests:
- Context compaction and its failure path
- Fact extraction, fallback parsing, capping and consolidation
- Per-conversation summaries
- The after-turn hook, user edits and cross-instance merge
- The bounded event log
"""
from __future__ import annotations

import pytest

from inbox_agent.llm.anthropic_client import AnthropicError
from inbox_agent.memory import (
    COMPACTION_THRESHOLD,
    KEEP_RECENT,
    MAX_CONVERSATION_SUMMARIES,
    MAX_EVENTS,
    MAX_USER_FACTS,
    ChatMessage,
    EventType,
    MemoryManager,
    get_events,
    log_event,
    serialize_messages,
)
from inbox_agent.memory.manager import CONTEXT_PREFIX


def _conversation(count):
    return [
        ChatMessage(role="user" if i % 2 == 0 else "assistant", content=f"message {i}")
        for i in range(count)
    ]


def _event_types(store):
    return [e.type for e in get_events(store)]


# =============================================================================
# Transcript
# =============================================================================

class TestSerializeMessages:
    def test_transcript_format(self):
        messages = [
            ChatMessage(role="system", content="hidden"),
            ChatMessage(role="user", content="Find the invoice"),
            ChatMessage(role="assistant", content="", tool_calls=[{"name": "search"}, {"name": "read"}]),
            ChatMessage(role="tool", content={"found": 1}, tool_call_id="t1"),
            ChatMessage(role="assistant", content="Found it."),
        ]
        assert serialize_messages(messages) == (
            "User: Find the invoice\n"
            "Assistant: [made 2 tool calls]\n"
            'Tool result: {"found": 1}\n'
            "Assistant: Found it."
        )

    def test_tool_output_truncated(self):
        transcript = serialize_messages([ChatMessage(role="tool", content="x" * 1000)])
        assert transcript == "Tool result: " + "x" * 300


# =============================================================================
# Compaction
# =============================================================================

class TestPrepareContext:
    """Live window compaction before each chat turn."""

    def test_short_window_unchanged(self, store, completion_factory):
        completion = completion_factory()
        manager = MemoryManager(store, completion)
        messages = _conversation(COMPACTION_THRESHOLD)

        window = manager.prepare_context(messages)

        assert [m.content for m in window] == [m.content for m in messages]
        assert completion.calls == []

    def test_long_window_compacted(self, store, completion_factory):
        completion = completion_factory(["User asked about invoices from Acme."])
        manager = MemoryManager(store, completion)

        window = manager.prepare_context(_conversation(20))

        assert len(window) == KEEP_RECENT + 1
        assert window[0].role == "user"
        assert window[0].content.startswith(CONTEXT_PREFIX)
        assert "invoices from Acme" in window[0].content
        assert window[1].content == "message 10"
        assert manager.load_memory().compaction_summary == "User asked about invoices from Acme."
        assert EventType.COMPACTION.value in _event_types(store)

    def test_previous_summary_merged(self, store, completion_factory):
        completion = completion_factory(["Merged summary."])
        manager = MemoryManager(store, completion)
        manager.save_compaction("Earlier summary.")

        manager.prepare_context(_conversation(18))

        assert "Previous context summary:\nEarlier summary." in completion.calls[0]["prompt"]
        assert manager.load_memory().compaction_summary == "Merged summary."

    def test_failure_truncates_and_logs(self, store, completion_factory):
        completion = completion_factory([AnthropicError("timeout")])
        manager = MemoryManager(store, completion)

        window = manager.prepare_context(_conversation(20))

        assert len(window) == KEEP_RECENT
        assert window[0].content == "message 10"
        assert EventType.COMPACTION_ERROR.value in _event_types(store)

    def test_leading_tool_results_trimmed(self, store, completion_factory):
        completion = completion_factory(["Summary."])
        manager = MemoryManager(store, completion)
        messages = _conversation(17)
        messages[7] = ChatMessage(role="tool", content="orphaned result", tool_call_id="t1")

        window = manager.prepare_context(messages)

        assert all(m.role != "tool" for m in window)
        assert window[1].content == "message 8"

    def test_stored_summary_prepended_to_short_window(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory())
        manager.save_compaction("Context from before.")

        window = manager.prepare_context([{"role": "user", "content": "hi"}])

        assert len(window) == 2
        assert window[0].content == f"{CONTEXT_PREFIX}\nContext from before."


# =============================================================================
# Facts
# =============================================================================

class TestExtractFacts:
    """Durable fact extraction after a turn."""

    def _turn(self):
        return [
            ChatMessage(role="user", content="I work at Acme and my email is ty@acme.com"),
            ChatMessage(role="assistant", content="Got it."),
        ]

    def test_new_facts_appended_without_repeats(self, store, completion_factory):
        completion = completion_factory(['["user works at acme", "User\'s email is ty@acme.com"]'])
        manager = MemoryManager(store, completion)

        facts = manager.extract_facts(self._turn(), ["User works at Acme"])

        assert facts == ["User works at Acme", "User's email is ty@acme.com"]
        assert "Already known facts:\n- User works at Acme" in completion.calls[0]["prompt"]
        assert EventType.FACT_EXTRACTION.value in _event_types(store)

    def test_plain_text_fallback(self, store, completion_factory):
        completion = completion_factory(["- User works at Acme\n- User prefers short replies"])
        manager = MemoryManager(store, completion)

        facts = manager.extract_facts(self._turn(), [])

        assert facts == ["User works at Acme", "User prefers short replies"]
        assert EventType.FACT_PARSE_FALLBACK.value in _event_types(store)

    def test_unparseable_output_keeps_existing(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory(["[not json"]))

        assert manager.extract_facts(self._turn(), ["Existing fact"]) == ["Existing fact"]
        assert EventType.FACT_PARSE_ERROR.value in _event_types(store)

    def test_completion_failure_keeps_existing(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory([AnthropicError("503")]))

        assert manager.extract_facts(self._turn(), ["Existing fact"]) == ["Existing fact"]
        assert EventType.MEMORY_ERROR.value in _event_types(store)

    def test_consolidation_at_threshold(self, store, completion_factory):
        existing = [f"Fact {i} about the user" for i in range(29)]
        completion = completion_factory(['["One new fact"]', '["Consolidated fact A", "Consolidated fact B"]'])
        manager = MemoryManager(store, completion)

        facts = manager.extract_facts(self._turn(), existing)

        assert facts == ["Consolidated fact A", "Consolidated fact B"]
        assert len(completion.calls) == 2
        assert EventType.FACT_CONSOLIDATION.value in _event_types(store)

    def test_consolidation_failure_keeps_originals(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory([AnthropicError("overloaded")]))
        facts = [f"Fact {i}" for i in range(30)]

        assert manager.consolidate(facts) == facts
        assert EventType.MEMORY_ERROR.value in _event_types(store)

    def test_saved_facts_capped_to_newest(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory())
        saved = manager.save_user_facts([f"Fact {i}" for i in range(MAX_USER_FACTS + 5)])

        assert len(saved) == MAX_USER_FACTS
        assert saved[0] == "Fact 5"
        assert saved[-1] == f"Fact {MAX_USER_FACTS + 4}"


# =============================================================================
# Summaries and turn hook
# =============================================================================

class TestConversationSummaries:
    def test_summary_replaced_per_conversation(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory())
        manager.save_conversation_summary("c1", "First version")
        manager.save_conversation_summary("c1", "Second version")

        summaries = manager.load_memory().conversation_summaries
        assert [(s.id, s.summary) for s in summaries] == [("c1", "Second version")]

    def test_summaries_capped(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory())
        for i in range(MAX_CONVERSATION_SUMMARIES + 5):
            manager.save_conversation_summary(f"c{i}", f"Summary {i}")

        summaries = manager.load_memory().conversation_summaries
        assert len(summaries) == MAX_CONVERSATION_SUMMARIES
        assert summaries[0].id == "c5"

    def test_empty_conversation(self, store, completion_factory):
        completion = completion_factory()
        manager = MemoryManager(store, completion)
        assert manager.generate_summary([]) == "Empty conversation"
        assert completion.calls == []


class TestUpdateAfterTurn:
    def test_skips_trivial_turn(self, store, completion_factory):
        completion = completion_factory()
        manager = MemoryManager(store, completion)

        updated = manager.update_after_turn("c1", [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "Hello!"},
        ])

        assert updated is False
        assert completion.calls == []
        assert _event_types(store) == [EventType.MEMORY_SKIP.value]

    def test_records_facts_and_summary(self, store, completion_factory):
        completion = completion_factory(['["User works at Acme"]', "Reviewed Acme invoices due this week"])
        manager = MemoryManager(store, completion)

        updated = manager.update_after_turn("conv-1", [
            {"role": "user", "content": "I work at Acme, show me invoices due this week"},
            {"role": "assistant", "content": "Here are three invoices."},
        ])

        memory = manager.load_memory()
        assert updated is True
        assert memory.user_facts == ["User works at Acme"]
        assert memory.conversation_summaries[0].id == "conv-1"
        assert memory.conversation_summaries[0].summary == "Reviewed Acme invoices due this week"

    def test_summary_failure_is_swallowed(self, store, completion_factory):
        completion = completion_factory(['["User works at Acme"]', AnthropicError("timeout")])
        manager = MemoryManager(store, completion)

        updated = manager.update_after_turn("conv-1", [
            {"role": "user", "content": "I work at Acme"},
            {"role": "assistant", "content": "Noted."},
        ])

        assert updated is False
        assert EventType.MEMORY_ERROR.value in _event_types(store)


class TestUserEdits:
    def test_delete_fact(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory())
        manager.replace_user_facts(["A fact", "B fact"])

        assert manager.delete_user_fact(0) == ["B fact"]
        with pytest.raises(IndexError):
            manager.delete_user_fact(5)

    def test_update_memory_clears_compaction(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory())
        manager.save_compaction("Old summary")

        memory = manager.update_memory(clear_compaction=True, user_facts=["Likes tea", "likes tea"])

        assert memory.compaction_summary is None
        assert memory.user_facts == ["Likes tea"]
        assert EventType.MEMORY_EDIT.value in _event_types(store)

    def test_merge_memory_from_other_instance(self, store, completion_factory):
        manager = MemoryManager(store, completion_factory())
        manager.replace_user_facts(["Works at Acme"])
        store.put("memory:conversation_summaries", [
            {"id": "c1", "summary": "Old", "date": "2026-01-01"},
        ])

        memory = manager.merge_memory_from({
            "userFacts": ["works at acme", "Has two kids"],
            "conversationSummaries": [
                {"id": "c1", "summary": "Newer", "date": "2026-02-01"},
                {"id": "c0", "summary": "Oldest", "date": "2025-12-01"},
            ],
        })

        assert memory.user_facts == ["Works at Acme", "Has two kids"]
        assert [(s.id, s.summary) for s in memory.conversation_summaries] == [("c0", "Oldest"), ("c1", "Newer")]
        assert EventType.MEMORY_SYNC.value in _event_types(store)


class TestEventLog:
    def test_bounded_and_filtered(self, store):
        for i in range(MAX_EVENTS + 10):
            log_event(store, EventType.SCAN, f"scan {i}")
        log_event(store, EventType.SCAN_ERROR, "boom")

        events = get_events(store)
        assert len(events) == MAX_EVENTS
        assert events[-1].detail == "boom"
        assert [e.detail for e in get_events(store, event_type=EventType.SCAN_ERROR)] == ["boom"]
        assert [e.detail for e in get_events(store, limit=2)] == [f"scan {MAX_EVENTS + 9}", "boom"]
