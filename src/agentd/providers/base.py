from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from agentd.sessions.schema import Message, ToolCall, ToolCallFunction


@dataclass
class Choice:
    message: Message
    finish_reason: str

@dataclass
class ProviderResponse:
    choices: list[Choice]
    usage: dict[str, Any] = field(default_factory=dict)
    provider: str | None = None

    @property
    def message(self) -> Message:
        return self.choices[0].message

class ModelProvider(Protocol):
    def prompt(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse: ...

def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)

def _normalize_tool_call(raw: Any) -> ToolCall:
    function = _field(raw, "function") or {}
    arguments = _field(function, "arguments")
    if arguments is None or arguments == "":
        arguments = "{}"
    elif not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return ToolCall(
        id=_field(raw, "id") or f"call_{uuid.uuid4().hex[:12]}",
        function=ToolCallFunction(name=_field(function, "name") or "", arguments=arguments),
    )

def normalize_message(raw_message: Any, finish_reason: str | None) -> Message:
    tool_calls = [_normalize_tool_call(c) for c in (_field(raw_message, "tool_calls") or [])]
    return Message(
        role="assistant",
        content=_field(raw_message, "content") or "",
        tool_calls=tool_calls or None,
        finish_reason=finish_reason or "empty",
    )

def normalize_response(raw: Any, usage: dict[str, Any] | None = None, provider: str | None = None) -> ProviderResponse:
    """Turn a provider completion (object or dict) into canonical messages."""
    raw_choices = _field(raw, "choices") or []
    if not raw_choices:
        raise ValueError("Provider response contained no choices")
    choices = []
    for raw_choice in raw_choices:
        finish_reason = _field(raw_choice, "finish_reason") or "empty"
        message = normalize_message(_field(raw_choice, "message") or {}, finish_reason)
        choices.append(Choice(message=message, finish_reason=finish_reason))
    return ProviderResponse(choices=choices, usage=dict(usage or {}), provider=provider)
