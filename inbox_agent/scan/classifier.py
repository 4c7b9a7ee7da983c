"""Shared classification steps for mail and chat scans.

Both scanners batch their sources, ask the completion service for a
JSON array of task suggestions, decode it leniently and drop titles
that are not grounded in the source text.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

from ..llm.anthropic_client import AnthropicNotConfigured
from ..llm.json_recovery import decode_object_array
from ..task_store.store import TaskPreferences

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Configuration
# =============================================================================

BATCH_SIZE = 10
COMPLETION_TIMEOUT_SECONDS = 25.0
# Share of a title's meaningful words that must appear in its source.
VALIDATION_MIN_RATIO = 0.3
MIN_WORD_LENGTH = 3

CLASSIFIER_SYSTEM_PROMPT = "You are a message triage assistant. Return only valid JSON."

STOP_WORDS = frozenset({
    "the", "and", "for", "from", "about", "with", "that", "this", "has", "have",
    "will", "can", "into", "your", "their", "them", "they", "are", "was", "were",
    "been", "being", "not", "but", "all", "any", "its", "you", "our", "his", "her",
    "reply", "respond", "follow", "review", "check", "send", "rsvp", "approve",
    "sign", "pay", "submit", "schedule", "call", "email", "contact", "reach",
})

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_SOURCE_STRIP = re.compile(r"[^a-z0-9\s@.]")
_TITLE_STRIP = re.compile(r"[^a-z0-9\s]")


@dataclass(slots=True)
class ClassifiedItem:
    """One well-typed entry from a classifier response."""

    title: str
    source_index: int
    description: Optional[str] = None
    scheduled_date: Optional[str] = None
    categories: List[str] = field(default_factory=list)


@dataclass(slots=True)
class BatchOutcome:
    items: List[ClassifiedItem] = field(default_factory=list)
    tokens_used: int = 0
    model: Optional[str] = None
    error: Optional[str] = None


def chunked(items: Sequence[T], size: int = BATCH_SIZE) -> Iterator[List[T]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


def resolve_models(completion, models: Optional[Sequence[str]] = None) -> Sequence[Optional[str]]:
    """Models to try in order: explicit list, the service's own list, or its default."""
    if models:
        return list(models)
    service_models = getattr(completion, "models", None)
    if service_models:
        return list(service_models)
    return [None]


# =============================================================================
# Parsing / Validation
# =============================================================================

def parse_classification(text: str, source_count: int, index_field: str) -> List[ClassifiedItem]:
    """Keep entries with a non-empty title and an in-range numeric source index."""
    items = []
    for raw in decode_object_array(text).items:
        title = raw.get("title")
        index = raw.get(index_field)
        if not isinstance(title, str) or not title.strip():
            continue
        if isinstance(index, bool) or not isinstance(index, (int, float)):
            continue
        if int(index) != index or not 0 <= int(index) < source_count:
            continue

        description = raw.get("description")
        scheduled = raw.get("scheduledDate")
        categories = raw.get("categories")
        items.append(
            ClassifiedItem(
                title=title.strip(),
                source_index=int(index),
                description=description.strip() if isinstance(description, str) and description.strip() else None,
                scheduled_date=scheduled if isinstance(scheduled, str) and _DATE_RE.match(scheduled) else None,
                categories=[c for c in categories if isinstance(c, str) and c.strip()] if isinstance(categories, list) else [],
            )
        )
    return items


def _source_words(source_text: str) -> set:
    cleaned = _SOURCE_STRIP.sub(" ", source_text.lower())
    return {w for w in cleaned.split() if len(w) >= MIN_WORD_LENGTH}


def meaningful_title_words(title: str) -> List[str]:
    cleaned = _TITLE_STRIP.sub(" ", title.lower())
    return [w for w in cleaned.split() if len(w) >= MIN_WORD_LENGTH and w not in STOP_WORDS]


def title_matches_source(title: str, source_text: str, min_ratio: float = VALIDATION_MIN_RATIO) -> bool:
    """Reject titles whose meaningful words mostly do not occur in the source.

    A word counts as present when it equals a source word or either one
    contains the other. Titles made only of stop words pass.
    """
    words = meaningful_title_words(title)
    if not words:
        return True
    source = _source_words(source_text)
    matched = [w for w in words if w in source or any(w in s or s in w for s in source)]
    return len(matched) / len(words) >= min_ratio


# =============================================================================
# Prompt context
# =============================================================================

def steering_notes(prefs: TaskPreferences, feedback: Sequence[str]) -> str:
    notes = ""
    if prefs.declined_patterns:
        notes += f"\nAlways skip these: {', '.join(prefs.declined_patterns)}"
    if prefs.accepted_patterns:
        notes += f"\nPrioritize these: {', '.join(prefs.accepted_patterns)}"
    if feedback:
        notes += "\n\nLearn from the user's past feedback on your suggestions:\n"
        notes += "\n".join(f"- {item}" for item in feedback)
    return notes


def existing_titles_note(titles: Sequence[str]) -> str:
    if not titles:
        return ""
    listed = "\n".join(f'- "{t}"' for t in titles)
    return f"\n\nThe user already has these to-dos. Do NOT create duplicates or near-duplicates:\n{listed}"


# =============================================================================
# Completion call
# =============================================================================

def classify_batch(
    completion,
    prompt: str,
    *,
    source_count: int,
    index_field: str,
    models: Sequence[Optional[str]],
    label: str = "batch",
    timeout: float = COMPLETION_TIMEOUT_SECONDS,
) -> BatchOutcome:
    """Classify one batch, falling back to the next model on failure.

    A batch whose last model fails returns an outcome with ``error`` set and
    no items. ``AnthropicNotConfigured`` propagates without a retry.
    """
    error = None
    for attempt, model in enumerate(models):
        is_last = attempt == len(models) - 1
        try:
            result = completion.complete(CLASSIFIER_SYSTEM_PROMPT, prompt, model=model, timeout=timeout)
            items = parse_classification(result.text, source_count, index_field)
            tokens_used = int(result.tokens_used)
        except AnthropicNotConfigured:
            raise
        except Exception as exc:
            error = str(exc)
            if not is_last:
                logger.warning(f"{label}: model {model} failed, retrying with fallback: {exc}")
                continue
            logger.error(f"{label}: classification failed: {exc}")
            break

        logger.info(
            f"{label}: {len(items)} suggestion(s), {tokens_used} tokens"
            f"{' (fallback model)' if attempt > 0 else ''}"
        )
        return BatchOutcome(items=items, tokens_used=tokens_used, model=model)

    return BatchOutcome(error=error or "no model available")
