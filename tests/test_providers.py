import json

import pytest

from agentd.errors import ProviderError
from agentd.providers import litellm_provider
from agentd.providers.base import normalize_response
from agentd.providers.litellm_provider import LiteLLMProvider


class _Function:
    def __init__(self, name, arguments):
        self.name = name
        self.arguments = arguments


class _ToolCall:
    def __init__(self, id, name, arguments):
        self.id = id
        self.function = _Function(name, arguments)


class _Msg:
    def __init__(self, content=None, tool_calls=None):
        self.content = content
        self.tool_calls = tool_calls


class _Choice:
    def __init__(self, message, finish_reason):
        self.message = message
        self.finish_reason = finish_reason


class _Resp:
    def __init__(self, choices):
        self.choices = choices


def test_normalize_object_response():
    raw = _Resp([_Choice(_Msg(None, [_ToolCall("c1", "echo", '{"text": "x"}')]), "tool_calls")])

    response = normalize_response(raw, usage={"total_tokens": 5}, provider="openai")

    message = response.message
    assert message.role == "assistant"
    assert message.content == ""
    assert message.finish_reason == "tool_calls"
    assert message.tool_calls[0].function_name == "echo"
    assert json.loads(message.tool_calls[0].arguments_json) == {"text": "x"}
    assert response.usage["total_tokens"] == 5


def test_normalize_dict_response_fills_gaps():
    raw = {
        "choices": [
            {
                "message": {
                    "content": "hi",
                    "tool_calls": [{"function": {"name": "echo", "arguments": {"text": "y"}}}],
                },
                "finish_reason": None,
            }
        ]
    }

    message = normalize_response(raw).message

    assert message.finish_reason == "empty"
    call = message.tool_calls[0]
    assert call.id.startswith("call_")
    assert json.loads(call.arguments_json) == {"text": "y"}


def test_normalize_rejects_empty_choices():
    with pytest.raises(ValueError):
        normalize_response({"choices": []})


def test_litellm_provider_wraps_failures(monkeypatch):
    def fake_completion(**kwargs):
        raise RuntimeError("401 unauthorized")

    monkeypatch.setattr(litellm_provider, "completion_with_usage", fake_completion)
    with pytest.raises(ProviderError, match="401 unauthorized"):
        LiteLLMProvider().prompt(model="gpt-4o", messages=[{"role": "user", "content": "hi"}])


def test_litellm_provider_passes_tools_and_usage(monkeypatch):
    seen = {}

    def fake_completion(**kwargs):
        seen.update(kwargs)
        return _Resp([_Choice(_Msg("hello"), "stop")]), {"total_tokens": 12, "cost_usd": 0.5}

    monkeypatch.setattr(litellm_provider, "completion_with_usage", fake_completion)
    monkeypatch.setattr(litellm_provider, "provider_for", lambda model: "openai")
    tools = [{"type": "function", "function": {"name": "echo", "parameters": {}}}]

    response = LiteLLMProvider(default_max_tokens=100).prompt(model="gpt-4o", messages=[], tools=tools)

    assert seen["tools"] == tools
    assert seen["max_tokens"] == 100
    assert response.message.content == "hello"
    assert response.usage["cost_usd"] == 0.5
    assert response.provider == "openai"
