"""Chat message model and the plain-text transcript used in memory prompts."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

TOOL_RESULT_PREVIEW_CHARS = 300

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"


@dataclass
class ChatMessage:
    """A single chat message.

    Attributes:
        role: system, user, assistant or tool
        content: Text for user/assistant/system; tool output (any JSON value) for tool
        tool_calls: Tool invocations made by an assistant message
        tool_call_id: For tool messages, the call this result answers
    """
    role: str
    content: Any = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    tool_call_id: Optional[str] = None

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = list(self.tool_calls)
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            role=data.get("role", ROLE_USER),
            content=data.get("content", ""),
            tool_calls=list(data.get("tool_calls") or data.get("toolCalls") or []),
            tool_call_id=data.get("tool_call_id") or data.get("toolCallId"),
        )


def coerce_messages(messages: Sequence[ChatMessage | Dict[str, Any]]) -> List[ChatMessage]:
    """Accept either ChatMessage objects or their dict form."""
    return [m if isinstance(m, ChatMessage) else ChatMessage.from_dict(m) for m in messages]


def serialize_messages(messages: Sequence[ChatMessage]) -> str:
    """Render messages as a plain-text transcript.

    System messages are dropped, assistant tool calls are collapsed to a
    count, and tool results are previewed.
    """
    lines: List[str] = []
    for message in messages:
        if message.role == ROLE_SYSTEM:
            continue
        if message.role == ROLE_USER:
            if message.text.strip():
                lines.append(f"User: {message.text}")
        elif message.role == ROLE_ASSISTANT:
            if message.text.strip():
                lines.append(f"Assistant: {message.text}")
            if message.tool_calls:
                count = len(message.tool_calls)
                lines.append(f"Assistant: [made {count} tool call{'s' if count != 1 else ''}]")
        elif message.role == ROLE_TOOL:
            output = message.content if isinstance(message.content, str) else json.dumps(message.content, default=str)
            lines.append(f"Tool result: {output[:TOOL_RESULT_PREVIEW_CHARS]}")
    return "\n".join(lines)


def has_substantive_content(messages: Sequence[ChatMessage]) -> bool:
    """Cheap check for whether a batch is worth a memory completion call."""
    has_user_text = any(m.role == ROLE_USER and len(m.text.strip()) > 2 for m in messages)
    has_assistant_text = any(m.role == ROLE_ASSISTANT and m.text.strip() for m in messages)
    has_tool_calls = any(m.role == ROLE_ASSISTANT and m.tool_calls for m in messages)
    return (has_user_text and has_assistant_text) or has_tool_calls


def trim_leading_tool_results(messages: Sequence[ChatMessage]) -> List[ChatMessage]:
    """Drop tool results from the front so a window never opens mid tool exchange."""
    trimmed = list(messages)
    while trimmed and trimmed[0].role == ROLE_TOOL:
        trimmed.pop(0)
    return trimmed
