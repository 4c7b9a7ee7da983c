"""Tests for the Task Store.

This module tests:
- Task serialization
- Suggestion insertion, duplicate tracking and idempotence
- Accept / decline transitions and learned patterns
- Direct edits, reordering and the end-of-day sweep
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from inbox_agent.memory.events import EventType, get_events
from inbox_agent.task_store import (
    MAX_ARCHIVED,
    InvalidTransition,
    SourceRef,
    SuggestionCandidate,
    Task,
    TaskStatus,
    UserResponse,
    accept_suggestion,
    add_suggestions,
    archive_completed_tasks,
    build_preference_context,
    complete_task,
    create_task,
    decline_suggestion,
    load_archived_tasks,
    load_preferences,
    load_tasks,
    load_tracked_source_ids,
    reorder_tasks,
    undecline_suggestion,
    update_preferences,
    update_task,
)
from inbox_agent.task_store.store import ARCHIVED_KEY


def _candidate(title, message_id="m1", thread_id="t1", sender="Dad <dad@gmail.com>"):
    return SuggestionCandidate(
        title=title,
        source=SourceRef(message_id=message_id, thread_id=thread_id, subject="Selling the 4Runner", sender=sender),
    )


def _feedback(store):
    return [e.detail for e in get_events(store, event_type=EventType.TASK_FEEDBACK)]


# =============================================================================
# Serialization
# =============================================================================

class TestTaskSerialization:
    def test_round_trip_keeps_sources(self):
        task = Task(
            id="todo_1",
            title="Call buyer",
            status=TaskStatus.SUGGESTED.value,
            sources=(SourceRef(message_id="m1", thread_id="t1", sender="Dad"),),
            agent_suggested=True,
        )
        restored = Task.from_dict(task.to_dict())
        assert restored.sources == task.sources
        assert restored.agent_suggested is True

    def test_api_dict_is_camel_case(self):
        task = Task(id="todo_1", title="Call buyer", scheduled_date="2026-03-12")
        data = task.to_api_dict()
        assert data["scheduledDate"] == "2026-03-12"
        assert "scheduled_date" not in data


# =============================================================================
# Suggestions
# =============================================================================

class TestAddSuggestions:
    """Insertion of classifier output with duplicate detection."""

    def test_creates_suggested_tasks_after_existing(self, store):
        create_task(store, "Existing item", add_to_top=False)

        created = add_suggestions(store, [_candidate("Call buyer about 4Runner")])

        assert len(created) == 1
        task = created[0]
        assert task.status == TaskStatus.SUGGESTED.value
        assert task.agent_suggested is True
        assert task.suggested_at is not None
        assert task.id.startswith("todo_")
        assert task.sort_order > max(t.sort_order for t in load_tasks(store) if t.id != task.id)

    def test_repeated_insert_is_idempotent(self, store):
        candidates = [_candidate("Call buyer about 4Runner")]
        add_suggestions(store, candidates)

        assert add_suggestions(store, candidates) == []
        assert len(load_tasks(store)) == 1

    def test_thread_id_blocks_new_message_in_same_thread(self, store):
        add_suggestions(store, [_candidate("Call buyer about 4Runner", message_id="m1", thread_id="t1")])

        assert add_suggestions(store, [_candidate("Send title paperwork", message_id="m2", thread_id="t1")]) == []

    def test_similar_titles_deduped_within_one_call(self, store):
        created = add_suggestions(store, [
            _candidate("Reply to Dad about selling the 4Runner", message_id="m1", thread_id="t1"),
            _candidate("Reply to Dad re: selling 4Runner", message_id="m2", thread_id="t2"),
        ])
        assert [t.title for t in created] == ["Reply to Dad about selling the 4Runner"]

    def test_completed_task_does_not_block(self, store):
        task = add_suggestions(store, [_candidate("Call buyer about 4Runner")])[0]
        accept_suggestion(store, task.id)
        complete_task(store, task.id)

        assert "m1" not in load_tracked_source_ids(store)

    def test_declined_task_blocks_forever(self, store):
        task = add_suggestions(store, [_candidate("Call buyer about 4Runner")])[0]
        decline_suggestion(store, task.id, "Already handled")

        assert {"m1", "t1"} <= load_tracked_source_ids(store)
        assert add_suggestions(store, [_candidate("Something else entirely")]) == []


class TestAcceptDecline:
    def test_accept_moves_to_front_of_pending(self, store):
        first = create_task(store, "First pending")
        second = create_task(store, "Second pending")
        suggestion = add_suggestions(store, [_candidate("Reply to Dad about the 4Runner")])[0]

        accepted = accept_suggestion(store, suggestion.id)

        assert accepted.status == TaskStatus.PENDING.value
        assert accepted.user_response == UserResponse.ACCEPTED.value
        assert accepted.sort_order < min(first.sort_order, second.sort_order)
        assert "reply requests" in load_preferences(store).accepted_patterns
        assert _feedback(store) == ["User accepted AI suggestion: Reply to Dad about the 4Runner"]

    def test_accept_twice_rejected(self, store):
        suggestion = add_suggestions(store, [_candidate("Call buyer")])[0]
        accept_suggestion(store, suggestion.id)

        with pytest.raises(InvalidTransition):
            accept_suggestion(store, suggestion.id)

    def test_accept_unknown_returns_none(self, store):
        assert accept_suggestion(store, "todo_missing") is None

    def test_decline_archives_with_reason(self, store):
        suggestion = add_suggestions(store, [_candidate("Pay invoice from Acme")])[0]

        declined = decline_suggestion(store, suggestion.id, "Not mine")

        assert load_tasks(store) == []
        archived = load_archived_tasks(store)
        assert [t.id for t in archived] == [suggestion.id]
        assert declined.declined_reason == "Not mine"
        assert declined.archived_at is not None
        assert "payments and billing" in load_preferences(store).declined_patterns
        assert _feedback(store) == ["User declined AI suggestion: Pay invoice from Acme (reason: Not mine)"]

    def test_decline_pending_rejected(self, store):
        task = create_task(store, "Manual task")
        with pytest.raises(InvalidTransition):
            decline_suggestion(store, task.id)

    def test_undecline_restores_suggestion(self, store):
        suggestion = add_suggestions(store, [_candidate("Call buyer")])[0]
        decline_suggestion(store, suggestion.id)

        restored = undecline_suggestion(store, suggestion.id)

        assert restored.status == TaskStatus.SUGGESTED.value
        assert load_archived_tasks(store) == []
        assert [t.id for t in load_tasks(store)] == [suggestion.id]


# =============================================================================
# Direct edits
# =============================================================================

class TestUpdateTask:
    def test_unknown_field_rejected(self, store):
        task = create_task(store, "Manual task")
        with pytest.raises(ValueError):
            update_task(store, task.id, {"sources": []})

    def test_status_must_use_lifecycle_operations(self, store):
        task = create_task(store, "Manual task")
        with pytest.raises(ValueError):
            update_task(store, task.id, {"status": "archived"})

    def test_title_edit_on_suggestion_records_feedback(self, store):
        suggestion = add_suggestions(store, [_candidate("Call buyer")])[0]

        updated = update_task(store, suggestion.id, {"title": "Call buyer about price"})

        assert updated.title == "Call buyer about price"
        assert _feedback(store) == ['User edited task title: "Call buyer" -> "Call buyer about price"']

    def test_complete_and_reopen(self, store):
        task = create_task(store, "Manual task")
        assert complete_task(store, task.id).completed_at is not None
        assert update_task(store, task.id, {"status": "pending"}).completed_at is None

    def test_missing_task_returns_none(self, store):
        assert update_task(store, "todo_missing", {"title": "x"}) is None

    def test_blank_title_rejected(self, store):
        with pytest.raises(ValueError):
            create_task(store, "   ")


class TestReorderAndSweep:
    def test_reorder_assigns_dense_keys(self, store):
        a = create_task(store, "A", add_to_top=False)
        b = create_task(store, "B", add_to_top=False)
        c = create_task(store, "C", add_to_top=False)

        ordered = reorder_tasks(store, [c.id, a.id])

        assert [t.title for t in ordered] == ["C", "A", "B"]
        assert [t.sort_order for t in ordered] == [0, 1, 2]
        assert b.id == ordered[2].id

    def test_sweep_archives_tasks_completed_before_today(self, store):
        task = create_task(store, "Finished yesterday")
        complete_task(store, task.id)

        assert archive_completed_tasks(store) == 0

        tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
        assert archive_completed_tasks(store, tomorrow) == 1
        assert load_tasks(store) == []
        assert load_archived_tasks(store)[0].status == TaskStatus.ARCHIVED.value


class TestArchiveCap:
    """The archive keeps the newest MAX_ARCHIVED entries, oldest evicted first."""

    def _seed_archive(self, store, count):
        old = [Task(id=f"old_{i}", title=f"Old task {i}", status=TaskStatus.ARCHIVED.value) for i in range(count)]
        store.put(ARCHIVED_KEY, [t.to_dict() for t in old])

    def test_decline_evicts_oldest(self, store):
        self._seed_archive(store, MAX_ARCHIVED)
        suggestion = add_suggestions(store, [_candidate("Pay invoice from Acme")])[0]

        decline_suggestion(store, suggestion.id)

        archived = load_archived_tasks(store)
        assert len(archived) == MAX_ARCHIVED
        assert archived[0].id == "old_1"
        assert archived[-1].id == suggestion.id

    def test_sweep_evicts_oldest(self, store):
        self._seed_archive(store, MAX_ARCHIVED - 1)
        for title in ("Pay electricity bill", "Book flights to Denver", "Renew passport"):
            complete_task(store, create_task(store, title).id)

        tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
        assert archive_completed_tasks(store, tomorrow) == 3

        ids = [t.id for t in load_archived_tasks(store)]
        assert len(ids) == MAX_ARCHIVED
        assert ids[0] == "old_2"
        assert "old_0" not in ids and "old_1" not in ids


class TestPreferences:
    def test_update_preferences_rejects_bad_fields(self, store):
        prefs, rejected = update_preferences(store, {
            "auto_suggest": False,
            "add_to_top": "yes",
            "unknown": 1,
        })
        assert prefs.auto_suggest is False
        assert prefs.add_to_top is True
        assert sorted(rejected) == ["add_to_top", "unknown"]

    def test_preference_context(self, store):
        create_task(store, "Pay invoice from Acme")
        update_preferences(store, {"declined_patterns": ["newsletters and promotions"]})

        context = build_preference_context(load_preferences(store), load_tasks(store))

        assert "Active to-do items (1):" in context
        assert "Pay invoice from Acme" in context
        assert "newsletters and promotions" in context
