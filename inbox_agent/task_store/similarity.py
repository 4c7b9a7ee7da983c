"""Title similarity and learned-pattern helpers for task suggestions."""
from __future__ import annotations

import re
from typing import Optional, Sequence

# Share of the smaller title's significant words that must overlap.
SIMILARITY_THRESHOLD = 0.7
MIN_SIGNIFICANT_WORD_LENGTH = 3

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

NOREPLY_SENDER_MARKERS = ("noreply", "no-reply")

# Checked in order; the first match wins.
PATTERN_RULES = (
    (re.compile(r"reply|respond", re.I), "reply requests"),
    (re.compile(r"follow.?up", re.I), "follow-ups"),
    (re.compile(r"meeting|call|schedule", re.I), "meeting-related"),
    (re.compile(r"review|approve|sign", re.I), "approvals and reviews"),
    (re.compile(r"deadline|due|by\s", re.I), "deadlines"),
    (re.compile(r"rsvp|attend|event", re.I), "events and RSVPs"),
    (re.compile(r"pay|invoice|bill", re.I), "payments and billing"),
    (re.compile(r"newsletter|unsubscribe|promo", re.I), "newsletters and promotions"),
)
AUTOMATED_PATTERN = "automated notifications"


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    lowered = _NON_ALNUM.sub("", (title or "").lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def significant_words(normalized: str) -> set:
    return {w for w in normalized.split(" ") if len(w) >= MIN_SIGNIFICANT_WORD_LENGTH}


def titles_are_similar(a: str, b: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    """Return True when two task titles describe the same item.

    Similar means equal after normalization, one containing the other, or
    a word overlap of at least ``threshold`` of the smaller title's
    significant words.
    """
    na = normalize_title(a)
    nb = normalize_title(b)
    if na == nb:
        return True
    if not na or not nb:
        return False
    if na in nb or nb in na:
        return True

    words_a = significant_words(na)
    words_b = significant_words(nb)
    if not words_a or not words_b:
        return False
    overlap = len(words_a & words_b)
    return overlap / min(len(words_a), len(words_b)) >= threshold


def find_similar_title(title: str, existing: Sequence[str]) -> Optional[str]:
    for candidate in existing:
        if titles_are_similar(candidate, title):
            return candidate
    return None


def extract_pattern(title: str, sender: Optional[str] = None) -> Optional[str]:
    """Map a task title (and optionally its source sender) to a coarse category."""
    lowered = (title or "").lower()
    for regex, label in PATTERN_RULES:
        if regex.search(lowered):
            return label
    if sender:
        sender_lower = sender.lower()
        if any(marker in sender_lower for marker in NOREPLY_SENDER_MARKERS):
            return AUTOMATED_PATTERN
    return None
