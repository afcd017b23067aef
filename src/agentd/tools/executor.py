from __future__ import annotations

import itertools
import json
import logging
import threading
from typing import Any, Collection

from agentd.sessions.schema import Message, Session, ToolCall
from agentd.tools.approval import ApprovalPort, ApprovalRequest
from agentd.tools.registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult
from common.events import TOOL_CALL, TOOL_RESPONSE, EventEmitter

logger = logging.getLogger(__name__)

NO_HUMANS_MESSAGE = (
    "The human is not present at the console, and your tool request did not match the allowlist, "
    "so it was automatically rejected. Use simpler and safer tools that are more likely to be on "
    "the allowlist."
)
USER_REJECTION_MESSAGE = "The user refused to run the tool. You may try alternatives, or ask them to explain."
DENIED_MESSAGE = "Tool execution denied by security policy"
ABORTED_MESSAGE = "Tool execution was aborted by user (Ctrl+C)"


def validate_required_fields(args: dict[str, Any], parameters: dict[str, Any] | None) -> ToolResult | None:
    """Return a failed result for the first missing or blank required field, else None."""
    for name in (parameters or {}).get("required") or []:
        value = args.get(name)
        if value is None:
            return ToolResult(
                False,
                f"Required field '{name}' was missing or null",
                {"validation_error": True, "missing_field": name},
            )
        if isinstance(value, str) and not value.strip():
            return ToolResult(
                False,
                f"Required field '{name}' was empty or contains only whitespace",
                {"validation_error": True, "missing_field": name},
            )
    return None


def tool_message_content(result: ToolResult) -> str:
    if result.success:
        return result.content
    return json.dumps({"success": False, "error": result.content})


def _unanswered_segments(messages: list[Message]) -> list[tuple[int, list[ToolCall]]]:
    """(insert position, open calls) for every assistant message with unanswered calls.

    A tool message answers the calls of the nearest preceding assistant
    message, so call ids only need to be unique within one message.
    """
    segments: list[tuple[int, list[ToolCall]]] = []
    calls: list[ToolCall] = []
    answered: set[str] = set()
    for index, message in enumerate(messages):
        if message.role == "assistant":
            open_calls = [c for c in calls if c.id not in answered]
            if open_calls:
                segments.append((index, open_calls))
            calls = list(message.tool_calls or [])
            answered = set()
        elif message.role == "tool" and message.tool_call_id:
            answered.add(message.tool_call_id)
    open_calls = [c for c in calls if c.id not in answered]
    if open_calls:
        segments.append((len(messages), open_calls))
    return segments


def pending_tool_calls(messages: list[Message]) -> list[ToolCall]:
    """Assistant tool calls that have no tool-role result yet, in issue order."""
    return [call for _, calls in _unanswered_segments(messages) for call in calls]


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        approval: ApprovalPort | None = None,
        events: EventEmitter | None = None,
        no_humans: bool = False,
    ):
        self.registry = registry
        self.approval = approval
        self.events = events or EventEmitter()
        self.no_humans = no_humans
        # Reentrant: the SIGINT handler runs on the main thread and may
        # interrupt it while it holds the lock.
        self._lock = threading.RLock()
        self._running: dict[int, bool] = {}
        self._tokens = itertools.count()

    @property
    def tool_running(self) -> bool:
        with self._lock:
            return bool(self._running)

    def abort_running(self) -> int:
        """Mark every handler running right now as aborted. Returns how many were marked."""
        with self._lock:
            for token in self._running:
                self._running[token] = True
            return len(self._running)

    def execute(
        self,
        name: str,
        args: dict[str, Any],
        session_id: int | None = None,
        allowed: Collection[str] | None = None,
    ) -> ToolResult:
        result = self._execute(name, args, session_id, allowed)
        self.events.emit(
            TOOL_RESPONSE,
            {
                "session_id": session_id,
                "tool_name": name,
                "success": result.success,
                "content": result.content,
                "metadata": result.metadata,
            },
        )
        return result

    def _execute(
        self,
        name: str,
        args: dict[str, Any],
        session_id: int | None,
        allowed: Collection[str] | None,
    ) -> ToolResult:
        tool = self.registry.get(name)
        if tool is None or (allowed is not None and name not in allowed):
            logger.warning(f"Session {session_id} requested unknown tool {name}")
            return ToolResult(False, f"Unknown tool: {name}", {"error": True, "reason": "unknown_tool"})

        invalid = validate_required_fields(args, tool.parameters)
        if invalid is not None:
            return invalid

        context = ToolContext(session_id=session_id)
        try:
            decision = tool.pre_tool_use(args, context) if tool.pre_tool_use else "allow"
            if decision == "deny":
                logger.info(f"Tool {name} denied by pre-tool hook")
                return ToolResult(False, DENIED_MESSAGE, {"denied": True, "reason": "security_policy"})
            if decision == "approve":
                gated = self._ask_approval(tool, args, context)
                if gated is not None:
                    return gated
            return self._run(tool, args, context)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return ToolResult(False, str(e), {"error": str(e), "reason": "tool_execution_error"})

    def _ask_approval(self, tool: ToolDefinition, args: dict[str, Any], context: ToolContext) -> ToolResult | None:
        if self.no_humans or self.approval is None:
            logger.info(f"Auto-rejected {tool.name}: no human at the console")
            return ToolResult(False, NO_HUMANS_MESSAGE, {"reason": "auto_rejection_no_humans"})

        prompt = tool.get_approval_prompt(args, context) if tool.get_approval_prompt else None
        decision = self.approval.request(
            ApprovalRequest(tool_name=tool.name, args=args, session_id=context.session_id, prompt=prompt)
        )
        if decision.action == "approved":
            return None
        if decision.action == "modified":
            return ToolResult(
                False,
                f"The user refused to run the tool. Try this instead: {decision.prompt}",
                {"modified": True, "user_prompt": decision.prompt},
            )
        return ToolResult(False, USER_REJECTION_MESSAGE, {"reason": "user_rejection"})

    def _run(self, tool: ToolDefinition, args: dict[str, Any], context: ToolContext) -> ToolResult:
        token = next(self._tokens)
        with self._lock:
            self._running[token] = False
        try:
            result = ToolResult.coerce(tool.execute(args, context))
        finally:
            with self._lock:
                aborted = self._running.pop(token)

        if aborted:
            logger.warning(f"Session {context.session_id}: tool {tool.name} aborted")
            return ToolResult(False, ABORTED_MESSAGE, {"aborted": True, "reason": "user_abort"})
        return result

    def _parse_arguments(self, call: ToolCall) -> dict[str, Any] | ToolResult:
        raw = call.arguments_json or "{}"
        try:
            args = json.loads(raw)
        except json.JSONDecodeError as e:
            return ToolResult(
                False,
                f"Invalid JSON arguments for {call.function_name}: {e}",
                {"error": str(e), "reason": "tool_execution_error"},
            )
        if not isinstance(args, dict):
            return ToolResult(
                False,
                f"Arguments for {call.function_name} must be a JSON object",
                {"error": "arguments not an object", "reason": "tool_execution_error"},
            )
        return args

    def _answer(self, session: Session, call: ToolCall) -> Message:
        parsed = self._parse_arguments(call)
        self.events.emit(
            TOOL_CALL,
            {
                "session_id": session.id,
                "tool_name": call.function_name,
                "tool_call_id": call.id,
                "args": parsed if isinstance(parsed, dict) else call.arguments_json,
            },
        )
        if isinstance(parsed, ToolResult):
            result = parsed
        else:
            result = self.execute(call.function_name, parsed, session.id, session.record.metadata.tools)

        content = ABORTED_MESSAGE if result.metadata.get("aborted") else tool_message_content(result)
        return Message(role="tool", content=content, tool_call_id=call.id)

    def process_pending_calls(self, session: Session) -> bool:
        """Answer every unresolved tool call with exactly one tool message.

        Results are placed right after the calls they answer, before any later
        assistant message.
        """
        segments = _unanswered_segments(session.messages)
        if not segments:
            return False

        inserted = 0
        for position, calls in segments:
            for call in calls:
                session.messages.insert(position + inserted, self._answer(session, call))
                inserted += 1
        return True
