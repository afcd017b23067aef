from pathlib import Path

import pytest

from agentd.config import DaemonConfig
from agentd.providers.base import Choice, ProviderResponse
from agentd.runtime.context import build_context
from agentd.sessions.schema import Message, ToolCall, ToolCallFunction
from agentd.tools.approval import ApprovalDecision
from agentd.tools.registry import ToolResult


def write_template(
    root: Path,
    name: str = "helper",
    tools: tuple[str, ...] = ("echo",),
    labels: tuple[str, ...] = ("team",),
    system_prompt: str = "You work in ${root_path}.",
    model: str = "gpt-4o",
) -> Path:
    templates_dir = root / "agents" / "templates"
    templates_dir.mkdir(parents=True, exist_ok=True)
    path = templates_dir / f"{name}.yaml"
    tool_lines = "".join(f"    - {t}\n" for t in tools) or "    []\n"
    label_lines = "".join(f"    - {label}\n" for label in labels) or "    []\n"
    path.write_text(
        "apiVersion: daemon/v1\n"
        "kind: Agent\n"
        "metadata:\n"
        f"  description: {name} agent\n"
        f"  model: {model}\n"
        f"  tools:\n{tool_lines}"
        f"  labels:\n{label_lines}"
        "spec:\n"
        f"  systemPrompt: \"{system_prompt}\"\n",
        encoding="utf-8",
    )
    return path


def tool_call(call_id: str, name: str, arguments: str = "{}") -> ToolCall:
    return ToolCall(id=call_id, function=ToolCallFunction(name=name, arguments=arguments))


def reply(content: str = "", tool_calls: list[ToolCall] | None = None, finish_reason: str = "stop") -> ProviderResponse:
    message = Message(role="assistant", content=content, tool_calls=tool_calls, finish_reason=finish_reason)
    return ProviderResponse(
        choices=[Choice(message=message, finish_reason=finish_reason)],
        usage={"total_tokens": 10, "cost_usd": 0.001},
        provider="openai",
    )


class ScriptedProvider:
    def __init__(self, replies=()):
        self.replies = list(replies)
        self.calls: list[dict] = []

    def prompt(self, *, model, messages, tools=None, max_tokens=None):
        self.calls.append({"model": model, "messages": messages, "tools": tools})
        if not self.replies:
            raise AssertionError("provider called more times than scripted")
        next_reply = self.replies.pop(0)
        if isinstance(next_reply, Exception):
            raise next_reply
        return next_reply


class ScriptedApproval:
    def __init__(self, *decisions: ApprovalDecision):
        self.decisions = list(decisions)
        self.requests = []

    def request(self, request):
        self.requests.append(request)
        return self.decisions.pop(0)


def _echo(args, context):
    return ToolResult(True, f"echo: {args['text']}")


ECHO_PARAMETERS = {
    "type": "object",
    "properties": {"text": {"type": "string"}},
    "required": ["text"],
}


@pytest.fixture
def config(tmp_path: Path) -> DaemonConfig:
    config = DaemonConfig(root=tmp_path, watch_poll_interval=0.01)
    config.validate()
    write_template(tmp_path)
    return config


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def approval() -> ScriptedApproval:
    return ScriptedApproval()


@pytest.fixture
def context(config, provider, approval):
    ctx = build_context(config, provider=provider, approval=approval)
    ctx.tools.register_tool("echo", "Echo text back", ECHO_PARAMETERS, _echo)
    return ctx


@pytest.fixture
def store(context):
    return context.store
