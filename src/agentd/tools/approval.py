from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol

logger = logging.getLogger(__name__)

ApprovalAction = Literal["approved", "rejected", "modified"]

APPROVE_KEYWORD = "APPROVE"


@dataclass
class ApprovalRequest:
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    session_id: int | None = None
    prompt: str | None = None


@dataclass
class ApprovalDecision:
    action: ApprovalAction
    prompt: str | None = None

    @property
    def approved(self) -> bool:
        return self.action == "approved"


class ApprovalPort(Protocol):
    def request(self, request: ApprovalRequest) -> ApprovalDecision: ...


class ConsoleApproval:
    """Interactive approval at the terminal.

    Only the exact word APPROVE runs the tool. R rejects, M asks for an
    alternative instruction for the model. End of input rejects.
    """

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self.input_fn = input_fn
        self.output_fn = output_fn
        self._lock = threading.Lock()

    def _describe(self, request: ApprovalRequest) -> str:
        if request.prompt:
            return request.prompt
        return f"{request.tool_name}({json.dumps(request.args, ensure_ascii=False)})"

    def request(self, request: ApprovalRequest) -> ApprovalDecision:
        with self._lock:
            who = f"Session {request.session_id}" if request.session_id is not None else "Agent"
            self.output_fn(f"\n🔧 {who} wants to run: {self._describe(request)}")
            while True:
                try:
                    answer = self.input_fn(f"Type {APPROVE_KEYWORD} to run, [R]eject, or [M]odify: ").strip()
                except (EOFError, OSError) as e:
                    logger.warning(f"Approval input unavailable, rejecting {request.tool_name}: {e}")
                    return ApprovalDecision("rejected")

                if answer == APPROVE_KEYWORD:
                    return ApprovalDecision("approved")
                if answer in ("R", "r"):
                    return ApprovalDecision("rejected")
                if answer in ("M", "m"):
                    try:
                        alternative = self.input_fn("What should the agent do instead? ").strip()
                    except (EOFError, OSError):
                        return ApprovalDecision("rejected")
                    return ApprovalDecision("modified", prompt=alternative)
                self.output_fn(f"Please type {APPROVE_KEYWORD}, R or M.")
