"""Shared fixtures: in-memory stores, a scripted completion service and a fake mailbox."""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import patch

import pytest

from inbox_agent.llm.anthropic_client import AnthropicError, CompletionResult
from inbox_agent.scan.providers import MailAccount
from inbox_agent.storage import MemoryKeyValueStore


class ScriptedCompletion:
    """Completion service that replays scripted responses in order.

    Each response is a string (returned with ``tokens_used`` tokens), a
    CompletionResult, or an exception instance to raise.
    """

    def __init__(self, responses: Sequence[Any] = (), models=("primary-model", "fallback-model"), tokens_used: int = 100):
        self.responses = list(responses)
        self.models = tuple(models)
        self.tokens_used = tokens_used
        self.calls: List[Dict[str, Any]] = []

    def complete(self, system, prompt, *, model=None, timeout=None, max_tokens=None):
        self.calls.append({"system": system, "prompt": prompt, "model": model, "timeout": timeout})
        if not self.responses:
            raise AnthropicError("no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, CompletionResult):
            return response
        return CompletionResult(text=response, tokens_used=self.tokens_used)


class FakeMailProvider:
    """Provider returning canned Gmail-style metadata, newest first."""

    def __init__(self, messages: Sequence[Dict[str, Any]] = (), error: Optional[Exception] = None):
        self.messages = list(messages)
        self.error = error
        self.metadata_requests: List[str] = []

    def list_messages(self, query, max_results):
        if self.error:
            raise self.error
        return [{"id": m["id"], "threadId": m["threadId"]} for m in self.messages][:max_results]

    def get_message_metadata(self, message_id, headers):
        self.metadata_requests.append(message_id)
        for message in self.messages:
            if message["id"] == message_id:
                return message
        return None


def make_message(
    message_id: str,
    sender: str,
    subject: str,
    snippet: str,
    *,
    thread_id: Optional[str] = None,
    unread: bool = True,
    list_unsubscribe: Optional[str] = None,
) -> Dict[str, Any]:
    headers = {"From": sender, "Subject": subject, "Date": "Mon, 9 Mar 2026 09:00:00 -0500"}
    if list_unsubscribe:
        headers["List-Unsubscribe"] = list_unsubscribe
    return {
        "id": message_id,
        "threadId": thread_id or f"thread-{message_id}",
        "labelIds": ["INBOX", "UNREAD"] if unread else ["INBOX"],
        "snippet": snippet,
        "internalDate": "1773064800000",
        "headers": headers,
    }


DAD_EMAIL = make_message(
    "msg-dad-1",
    "Dad <dad@gmail.com>",
    "Selling the 4Runner",
    "Can you call the buyer tomorrow about the 4Runner price?",
    thread_id="thread-dad",
)


@pytest.fixture
def store():
    return MemoryKeyValueStore("test-agent")


@pytest.fixture
def file_store_dir(tmp_path):
    """Force file-backed storage into a temporary directory."""
    store_dir = tmp_path / "agent_store"
    with patch.dict(os.environ, {
        "INBOX_AGENT_STORE_FORCE_FILE": "1",
        "INBOX_AGENT_STORE_DIR": str(store_dir),
    }):
        yield store_dir


@pytest.fixture
def completion_factory():
    return ScriptedCompletion


@pytest.fixture
def dad_email():
    return dict(DAD_EMAIL)


@pytest.fixture
def dad_account():
    return MailAccount(email="me@example.com", provider=FakeMailProvider([DAD_EMAIL]))


@pytest.fixture
def mail_factory():
    """Build (provider, message) helpers without importing from conftest."""
    return FakeMailProvider, make_message
