"""Chat-thread scan over threads queued by :mod:`inbox_agent.threads`.

Runs the same dedupe, classify, validate and emit steps as the inbox
scan. Every loaded thread is marked processed afterwards, whether or
not it produced a suggestion; a new message re-queues it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..memory.events import EventType, log_event
from ..storage import KeyValueStore
from ..task_store.store import (
    SourceKind,
    SourceRef,
    SuggestionCandidate,
    TaskPreferences,
    add_suggestions,
    load_archived_tasks,
    load_categories,
    load_preferences,
    load_tasks,
    recent_feedback,
    tracked_source_ids,
)
from ..threads.store import (
    ChatThread,
    load_thread_config,
    load_unprocessed_threads,
    mark_threads_processed,
    thread_key,
)
from .classifier import (
    ClassifiedItem,
    chunked,
    classify_batch,
    resolve_models,
    steering_notes,
    title_matches_source,
    truncate,
)

logger = logging.getLogger(__name__)

THREAD_INDEX_FIELD = "sourceThreadIndex"
REASON_DISABLED = "disabled"


@dataclass
class ThreadScanResult:
    suggested: int = 0
    tokens_used: int = 0
    threads_scanned: int = 0
    skipped_duplicate: int = 0
    rejected: int = 0
    skipped: Optional[str] = None

    def to_api_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "suggested": self.suggested,
            "tokensUsed": self.tokens_used,
            "threadsScanned": self.threads_scanned,
            "skippedDuplicate": self.skipped_duplicate,
        }
        if self.skipped:
            data["skipped"] = self.skipped
        return data


def thread_source_text(thread: ChatThread) -> str:
    parts = [thread.channel_name or thread.channel_id]
    for message in thread.messages:
        parts.append(f"{message.author_name} {message.text}")
    return " ".join(parts)


def source_ref_for_thread(thread: ChatThread) -> SourceRef:
    trigger = thread.trigger_message()
    return SourceRef(
        message_id=thread_key(thread.channel_id, thread.trigger_message_ts),
        thread_id=thread_key(thread.channel_id, thread.thread_ts),
        subject=thread.channel_label,
        sender=trigger.author_name if trigger else "Unknown",
        snippet=truncate(trigger.text if trigger else "", 200),
        account=thread.channel_id,
        kind=SourceKind.CHAT.value,
    )


def format_thread_block(index: int, thread: ChatThread) -> str:
    participants = ", ".join(dict.fromkeys(m.author_name for m in thread.messages))
    conversation = "\n".join(f"  {m.author_name}: {truncate(m.text, 150)}" for m in thread.messages)
    return f"[{index}] {thread.channel_label} - participants: {participants}\n{conversation}"


def build_thread_prompt(
    threads: Sequence[ChatThread],
    prefs: TaskPreferences,
    categories: Sequence[str] = (),
    feedback: Sequence[str] = (),
) -> str:
    thread_list = "\n\n".join(format_thread_block(i, t) for i, t in enumerate(threads))
    if categories:
        category_note = (
            f"\n\nExisting categories: {', '.join(categories)}. Prefer these; "
            "suggest a new short category only if none fit."
        )
    else:
        category_note = '\n\nNo categories exist yet. You may suggest 1-2 short lowercase labels (e.g. "work", "eng").'

    return f"""You are a strict chat triage filter. Only flag conversations that need a CONCRETE personal action from the user.

CREATE a to-do ONLY when the conversation:
- asks the user a direct question or request
- assigns the user a task or deliverable
- mentions a deadline, meeting or scheduling need
- needs a decision, review or approval from the user

ALWAYS SKIP: general chatter, announcements, bot messages, resolved conversations, status updates with no action.

When in doubt, skip it.{steering_notes(prefs, feedback)}{category_note}

Threads (the user's assistant was mentioned in each):
{thread_list}

CRITICAL: titles must reference only people, channels and topics that appear in the thread.

Return a JSON array. Each object has:
- "title": who and what, e.g. "Reply to Sarah in #product about API review"
- "{THREAD_INDEX_FIELD}": N, the [N] index of the source thread
- "description": one sentence of specific context
- "categories": 1-2 category labels
- "scheduledDate": "YYYY-MM-DD" when a deadline is mentioned, otherwise omit

If nothing needs action return []
JSON only:"""


def partition_tracked_threads(threads: Sequence[ChatThread], tracked: set) -> Tuple[List[ChatThread], int]:
    untracked = [
        t for t in threads
        if thread_key(t.channel_id, t.thread_ts) not in tracked
        and thread_key(t.channel_id, t.trigger_message_ts) not in tracked
    ]
    return untracked, len(threads) - len(untracked)


def scan_threads_for_tasks(
    store: KeyValueStore,
    completion,
    *,
    models: Optional[Sequence[str]] = None,
) -> ThreadScanResult:
    """Classify unprocessed chat threads into task suggestions."""
    if not load_thread_config(store).enabled:
        return ThreadScanResult(skipped=REASON_DISABLED)

    threads = load_unprocessed_threads(store)
    if not threads:
        return ThreadScanResult()

    with store.lock:
        tracked = tracked_source_ids(load_tasks(store), load_archived_tasks(store))
        prefs = load_preferences(store)
        categories = load_categories(store)
    feedback = recent_feedback(store)

    untracked, skipped = partition_tracked_threads(threads, tracked)
    result = ThreadScanResult(threads_scanned=len(threads), skipped_duplicate=skipped)
    logger.info(f"Thread scan: {len(threads)} unprocessed, {skipped} already tracked")

    found: List[Tuple[ClassifiedItem, ChatThread]] = []
    model_order = resolve_models(completion, models)
    batches = list(chunked(untracked))
    for number, batch in enumerate(batches, start=1):
        label = f"Thread batch {number}/{len(batches)}"
        outcome = classify_batch(
            completion,
            build_thread_prompt(batch, prefs, categories, feedback),
            source_count=len(batch),
            index_field=THREAD_INDEX_FIELD,
            models=model_order,
            label=label,
        )
        result.tokens_used += outcome.tokens_used
        if outcome.error:
            log_event(
                store,
                EventType.SCAN_ERROR,
                f"{label} failed: {outcome.error}",
                {"batchSize": len(batch), "error": outcome.error},
            )
            continue
        found.extend((item, batch[item.source_index]) for item in outcome.items)

    # Batches that failed still count as processed; a missing API key
    # raises above and leaves every thread queued.
    mark_threads_processed(store, threads)

    candidates = []
    for item, thread in found:
        if not title_matches_source(item.title, thread_source_text(thread)):
            result.rejected += 1
            logger.warning(f"Discarding ungrounded thread suggestion {item.title!r} ({thread.channel_label})")
            continue
        candidates.append(
            SuggestionCandidate(
                title=item.title,
                description=item.description,
                scheduled_date=item.scheduled_date,
                categories=item.categories,
                source=source_ref_for_thread(thread),
            )
        )

    created = add_suggestions(store, candidates) if candidates else []
    result.suggested = len(created)
    if untracked:
        log_event(
            store,
            EventType.SCAN,
            f"Thread scan: {len(created)} to-do(s) suggested from {len(untracked)} threads",
            {
                "suggested": result.suggested,
                "tokensUsed": result.tokens_used,
                "threadsScanned": result.threads_scanned,
                "skippedDuplicate": result.skipped_duplicate,
            },
        )
    return result
