"""Read-side port for mail providers and metadata-only inbox fetching.

Provider clients (Gmail or otherwise) live outside this package. They
only need ``list_messages`` and ``get_message_metadata``; auth and token
refresh are the provider's business.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

INBOX_QUERY = "in:inbox"
MAX_PER_ACCOUNT = 8
METADATA_HEADERS = ("From", "Subject", "Date", "List-Unsubscribe", "List-Id")


class MailProvider(Protocol):
    """Minimal read API of a mail provider client."""

    def list_messages(self, query: str, max_results: int) -> List[Dict[str, Any]]:
        """Return ``[{"id": ..., "threadId": ...}, ...]`` newest first."""

    def get_message_metadata(self, message_id: str, headers: Sequence[str]) -> Optional[Dict[str, Any]]:
        """Return Gmail-style metadata (id, threadId, labelIds, snippet,
        internalDate, and headers either as ``headers: {name: value}`` or
        ``payload.headers: [{name, value}]``), or None when unavailable."""


@dataclass
class MailAccount:
    """A linked mailbox and the provider client that reads it."""

    email: str
    provider: MailProvider


@dataclass
class InboxMessage:
    """Metadata for one inbox message (no body)."""

    id: str
    thread_id: str
    sender: str
    subject: str
    snippet: str
    date: str
    unread: bool
    account: str
    is_mailing_list: bool = False

    @property
    def source_text(self) -> str:
        return f"{self.sender} {self.subject} {self.snippet}"


def _header(meta: Dict[str, Any], name: str) -> str:
    wanted = name.lower()
    headers = meta.get("headers")
    if isinstance(headers, dict):
        for key, value in headers.items():
            if key.lower() == wanted:
                return str(value or "")
        return ""
    payload_headers = (meta.get("payload") or {}).get("headers") or []
    for header in payload_headers:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value") or "")
    return ""


def _format_date(meta: Dict[str, Any]) -> str:
    internal = meta.get("internalDate")
    if internal:
        try:
            return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc).isoformat()
        except (TypeError, ValueError):
            pass
    return _header(meta, "Date")


def message_from_metadata(meta: Dict[str, Any], account: str) -> InboxMessage:
    return InboxMessage(
        id=str(meta.get("id", "")),
        thread_id=str(meta.get("threadId") or meta.get("thread_id") or ""),
        sender=_header(meta, "From"),
        subject=_header(meta, "Subject"),
        snippet=str(meta.get("snippet") or ""),
        date=_format_date(meta),
        unread="UNREAD" in (meta.get("labelIds") or []),
        account=account,
        is_mailing_list=bool(_header(meta, "List-Unsubscribe") or _header(meta, "List-Id")),
    )


def fetch_account_messages(account: MailAccount, max_results: int = MAX_PER_ACCOUNT) -> List[InboxMessage]:
    """Fetch recent inbox metadata for one account. Provider errors propagate."""
    t0 = time.monotonic()
    listed = account.provider.list_messages(INBOX_QUERY, max_results) or []
    messages = []
    for item in listed[:max_results]:
        meta = account.provider.get_message_metadata(item["id"], METADATA_HEADERS)
        if meta is None:
            continue
        messages.append(message_from_metadata(meta, account.email))
    logger.info(
        f"Fetched {len(messages)}/{len(listed)} message(s) for {account.email} "
        f"({(time.monotonic() - t0) * 1000:.0f}ms)"
    )
    return messages


def fetch_inbox_messages(accounts: Sequence[MailAccount], max_per_account: int = MAX_PER_ACCOUNT) -> List[InboxMessage]:
    """Fetch inbox metadata across accounts.

    A failing account contributes nothing; the other accounts are still read.
    """
    messages: List[InboxMessage] = []
    for account in accounts:
        try:
            messages.extend(fetch_account_messages(account, max_per_account))
        except Exception as e:
            logger.error(f"Failed to fetch inbox for {account.email}: {e}")
    return messages
