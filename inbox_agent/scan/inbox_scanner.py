"""Mailbox scan: fetch -> dedupe -> pre-filter -> classify -> validate -> emit.

Only metadata (sender, subject, snippet, list headers) is fetched. Messages
already tied to open or declined work are skipped before any model call,
and automated senders are dropped by cheap pattern checks.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..memory.events import EventType, log_event
from ..storage import KeyValueStore
from ..task_store.store import (
    SourceKind,
    SourceRef,
    SuggestionCandidate,
    TaskPreferences,
    TaskStatus,
    add_suggestions,
    load_archived_tasks,
    load_preferences,
    load_tasks,
    recent_feedback,
    tracked_source_ids,
)
from .classifier import (
    chunked,
    classify_batch,
    existing_titles_note,
    resolve_models,
    steering_notes,
    title_matches_source,
    truncate,
)
from .providers import MAX_PER_ACCOUNT, InboxMessage, MailAccount, fetch_inbox_messages

logger = logging.getLogger(__name__)

NOREPLY_PATTERN = re.compile(
    r"\b(noreply|no-reply|no_reply|donotreply|mailer-daemon|notifications?@|updates?@"
    r"|news@|digest@|newsletter@|marketing@|promo@|announce@|info@)\b",
    re.IGNORECASE,
)

FREE_MAIL_DOMAINS = frozenset({
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "icloud.com",
    "aol.com", "protonmail.com", "mail.com", "me.com",
})

_NAME_RE = re.compile(r'^"?([^"<]+)"?\s*<')
_DOMAIN_RE = re.compile(r"@([^>\s]+)")

EMAIL_INDEX_FIELD = "sourceEmailIndex"


@dataclass
class ScanResult:
    """Counts reported by a scan; ``skipped`` names why a scan did not run."""

    suggested: int = 0
    tokens_used: int = 0
    emails_scanned: int = 0
    skipped_duplicate: int = 0
    filtered: int = 0
    rejected: int = 0
    skipped: Optional[str] = None

    def to_api_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "suggested": self.suggested,
            "tokensUsed": self.tokens_used,
            "emailsScanned": self.emails_scanned,
            "skippedDuplicate": self.skipped_duplicate,
        }
        if self.skipped:
            data["skipped"] = self.skipped
        return data


def extract_sender_name(sender: str) -> str:
    match = _NAME_RE.match(sender or "")
    if match:
        return match.group(1).strip()
    return (sender or "").split("@")[0]


def extract_company(sender: str) -> str:
    """Company hint from the sender's domain; empty for free mail providers."""
    match = _DOMAIN_RE.search(sender or "")
    if not match:
        return ""
    domain = match.group(1).lower()
    if domain in FREE_MAIL_DOMAINS:
        return ""
    return domain.split(".")[0]


def is_automated(message: InboxMessage) -> bool:
    return message.is_mailing_list or bool(NOREPLY_PATTERN.search(message.sender or ""))


def partition_tracked(messages: Sequence[InboxMessage], tracked: Set[str]) -> Tuple[List[InboxMessage], int]:
    """Split off messages whose message or thread id is already tracked."""
    untracked = [m for m in messages if m.id not in tracked and m.thread_id not in tracked]
    return untracked, len(messages) - len(untracked)


def format_email_line(index: int, message: InboxMessage) -> str:
    name = extract_sender_name(message.sender)
    company = extract_company(message.sender)
    tag = f"{name} ({company})" if company else name
    unread = "*" if message.unread else ""
    return f'[{index}] {tag}{unread}: "{truncate(message.subject, 80)}" - {truncate(message.snippet, 120)}'


def build_email_prompt(
    messages: Sequence[InboxMessage],
    prefs: TaskPreferences,
    feedback: Sequence[str] = (),
    existing_titles: Sequence[str] = (),
) -> str:
    email_list = "\n".join(format_email_line(i, m) for i, m in enumerate(messages))
    return f"""You are a strict email triage filter. Only flag emails that need a CONCRETE personal action.

CREATE a to-do ONLY when the email:
- comes from a real person or company writing to the user directly
- needs a specific action: reply, approve, pay, sign, schedule, review, submit, RSVP, follow up
- has a clear deliverable or deadline

ALWAYS SKIP:
- newsletters, digests, marketing and promotions
- automated notifications (code hosting, chat, social media, shipping, login alerts)
- receipts, order confirmations and renewals (unless a payment failed)
- mailing list posts and informational email with no action
- password resets, verification codes, welcome and onboarding mail

When in doubt, skip it.{steering_notes(prefs, feedback)}{existing_titles_note(existing_titles)}

Emails (* = unread):
{email_list}

CRITICAL: every title MUST reference only names, companies, topics and actions that literally appear in its email above. Never invent names or topics. If email [N] is from "Dad" about selling a car, the title mentions "Dad" and the car.

Return a JSON array. Each object has:
- "title": the task itself, specific enough to act on without more context
- "{EMAIL_INDEX_FIELD}": N, the [N] index of the source email
- "description": only for essential detail the title cannot carry (amount, phone number, date); usually omit
- "scheduledDate": "YYYY-MM-DD" when a deadline is mentioned, otherwise omit

If nothing needs action return []
JSON only:"""


def scan_inbox_for_tasks(
    store: KeyValueStore,
    completion,
    accounts: Sequence[MailAccount],
    *,
    models: Optional[Sequence[str]] = None,
    max_per_account: int = MAX_PER_ACCOUNT,
) -> ScanResult:
    """Scan linked inboxes and store new task suggestions.

    Always returns counts; completion and provider failures reduce the
    result instead of raising.
    """
    t0 = time.monotonic()
    messages = fetch_inbox_messages(accounts, max_per_account)
    if not messages:
        logger.info("Inbox scan: no messages fetched")
        return ScanResult()

    with store.lock:
        active = load_tasks(store)
        tracked = tracked_source_ids(active, load_archived_tasks(store))
        prefs = load_preferences(store)
    feedback = recent_feedback(store)

    untracked, skipped = partition_tracked(messages, tracked)
    actionable = [m for m in untracked if not is_automated(m)]
    filtered = len(untracked) - len(actionable)
    result = ScanResult(emails_scanned=len(messages), skipped_duplicate=skipped, filtered=filtered)
    logger.info(
        f"Inbox scan: {len(messages)} fetched, {skipped} already tracked, {filtered} automated"
    )
    if not actionable:
        return result

    existing_titles = [t.title for t in active if t.status != TaskStatus.ARCHIVED.value]
    model_order = resolve_models(completion, models)
    batches = list(chunked(actionable))
    found: List[Tuple[Any, InboxMessage]] = []

    for number, batch in enumerate(batches, start=1):
        label = f"Inbox batch {number}/{len(batches)}"
        prompt = build_email_prompt(batch, prefs, feedback, existing_titles)
        outcome = classify_batch(
            completion,
            prompt,
            source_count=len(batch),
            index_field=EMAIL_INDEX_FIELD,
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

    candidates = []
    for item, message in found:
        if not title_matches_source(item.title, message.source_text):
            result.rejected += 1
            logger.warning(
                f"Discarding ungrounded suggestion {item.title!r} "
                f"(source from {extract_sender_name(message.sender)}: {truncate(message.subject, 60)!r})"
            )
            continue
        candidates.append(
            SuggestionCandidate(
                title=item.title,
                description=item.description,
                scheduled_date=item.scheduled_date,
                source=SourceRef(
                    message_id=message.id,
                    thread_id=message.thread_id,
                    subject=message.subject,
                    sender=message.sender,
                    snippet=message.snippet,
                    account=message.account,
                    kind=SourceKind.EMAIL.value,
                ),
            )
        )

    created = add_suggestions(store, candidates) if candidates else []
    result.suggested = len(created)

    log_event(
        store,
        EventType.SCAN,
        f"Inbox scan: {len(created)} to-do(s) suggested from {len(actionable)} emails "
        f"({filtered} auto-filtered)",
        {
            "suggested": result.suggested,
            "tokensUsed": result.tokens_used,
            "emailsScanned": result.emails_scanned,
            "skippedDuplicate": result.skipped_duplicate,
            "rejected": result.rejected,
        },
    )
    logger.info(f"Inbox scan done in {(time.monotonic() - t0) * 1000:.0f}ms: {result.to_api_dict()}")
    return result
