from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

API_VERSION = "daemon/v1"
KIND = "Agent"

TERMINAL_FINISH_REASONS = frozenset({"stop", "empty"})

Role = Literal["system", "user", "assistant", "tool"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class BtState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAIL = "fail"

    @classmethod
    def parse(cls, value: "BtState | str") -> "BtState":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip())

    @property
    def is_terminal(self) -> bool:
        return self in (BtState.SUCCESS, BtState.FAIL)


class ToolCallFunction(BaseModel):
    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    id: str
    type: str = "function"
    function: ToolCallFunction

    @property
    def function_name(self) -> str:
        return self.function.name

    @property
    def arguments_json(self) -> str:
        return self.function.arguments


class Message(BaseModel):
    ts: str = Field(default_factory=utc_now_iso)
    role: Role
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    finish_reason: str | None = None

    def to_api(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.model_dump() for call in self.tool_calls]
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        return message


class Usage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_tokens: int = Field(default=0, alias="totalTokens")
    total_cost: float = Field(default=0.0, alias="totalCost")

    def add(self, tokens: int, cost: float) -> None:
        self.total_tokens += int(tokens or 0)
        self.total_cost += float(cost or 0.0)


class SessionMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str | None = None
    labels: list[str] = Field(default_factory=list)
    model: str | None = None
    provider: str | None = None
    tools: list[str] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    pid: int | None = None
    timeout: float | None = None
    start_time: str | None = Field(default=None, alias="startTime")
    last_read: str | None = Field(default=None, alias="lastRead")


class SessionSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    system_prompt: str = Field(default="", alias="systemPrompt")
    messages: list[Message] = Field(default_factory=list)


class SessionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_version: Literal["daemon/v1"] = Field(default=API_VERSION, alias="apiVersion")
    kind: Literal["Agent"] = KIND
    metadata: SessionMetadata
    spec: SessionSpec = Field(default_factory=SessionSpec)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class Session:
    id: int
    state: BtState
    record: SessionRecord

    @property
    def template(self) -> str:
        return self.record.metadata.name

    @property
    def labels(self) -> list[str]:
        return self.record.metadata.labels

    @property
    def messages(self) -> list[Message]:
        return self.record.spec.messages

    @property
    def last_read(self) -> str | None:
        return self.record.metadata.last_read

    def summary(self) -> dict[str, Any]:
        last = self.messages[-1] if self.messages else None
        return {
            "session_id": self.id,
            "state": self.state.value,
            "agent": self.template,
            "model": self.record.metadata.model,
            "pid": self.record.metadata.pid,
            "labels": list(self.labels),
            "last_message": f"{last.ts} {last.role}: {last.content}" if last else "",
        }
