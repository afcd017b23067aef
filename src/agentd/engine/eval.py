from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from agentd.config import resolve_model_alias
from agentd.errors import SessionBusy
from agentd.logs import log_conversation
from agentd.runtime.context import RuntimeContext
from agentd.sessions.schema import TERMINAL_FINISH_REASONS, BtState, Message, Session, utc_now_iso
from agentd.sessions.store import parse_session_id
from agentd.tools.registry import ToolDefinition
from common.events import RESPONSE, SESSION_END, SESSION_START, USER_REQUEST

logger = logging.getLogger(__name__)

MODEL_TRIGGER_ROLES = ("user", "tool")


def compute_next_state(messages: list[Message]) -> BtState:
    if not messages:
        return BtState.SUCCESS

    newest = messages[-1]
    if newest.role in MODEL_TRIGGER_ROLES:
        return BtState.PENDING
    if newest.role != "assistant":
        return BtState.SUCCESS

    # Calls on the newest message cannot have results after it.
    if newest.tool_calls:
        return BtState.PENDING

    reason = newest.finish_reason or "empty"
    if reason not in TERMINAL_FINISH_REASONS:
        logger.warning(f"Assistant finished with '{reason}', treating the turn as complete")
    return BtState.SUCCESS


@dataclass
class EvalResult:
    session_id: int
    state: BtState
    model_called: bool = False
    new_messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "model_called": self.model_called,
            "new_messages": len(self.new_messages),
        }


class EvalEngine:
    def __init__(self, context: RuntimeContext):
        self.context = context
        self.store = context.store
        self.executor = context.executor
        self.events = context.events

    def eval(self, session_id: int | str) -> EvalResult:
        session_id = parse_session_id(session_id)
        if not self.store.claim(session_id):
            state = self.store.get_state(session_id)
            raise SessionBusy(f"Session {session_id} is {state.value}, cannot evaluate")

        self.events.emit(SESSION_START, {"session_id": session_id})
        try:
            result = self._step(session_id)
        except BaseException as e:
            logger.error(f"Session {session_id} failed: {e}")
            try:
                self.store.set_state(session_id, BtState.FAIL)
            except Exception as state_error:
                logger.error(f"Could not mark session {session_id} failed: {state_error}")
            self.events.emit(SESSION_END, {"session_id": session_id, "state": BtState.FAIL.value, "error": str(e)})
            raise

        self.events.emit(SESSION_END, {"session_id": session_id, "state": result.state.value})
        return result

    def _step(self, session_id: int) -> EvalResult:
        session = self.store.load(session_id)
        since = session.last_read
        known = {id(m) for m in session.messages}

        tools = self.context.tools.resolve(session.record.metadata.tools)
        if self.executor.process_pending_calls(session):
            self.store.save(session.id, session)

        model_called = False
        if session.messages and session.messages[-1].role in MODEL_TRIGGER_ROLES:
            self._call_model(session, tools)
            model_called = True
            self.store.save(session.id, session)
            self.executor.process_pending_calls(session)

        state = compute_next_state(session.messages)
        new_messages = [m for m in session.messages if id(m) not in known]
        log_conversation(session.id, session.messages, since)
        if session.messages:
            session.record.metadata.last_read = max(m.ts for m in session.messages)
        state = self.store.commit(session, state)
        logger.debug(f"Session {session.id} evaluated -> {state.value}")
        return EvalResult(session.id, state, model_called, new_messages)

    def _call_model(self, session: Session, tools: list[ToolDefinition]) -> None:
        metadata = session.record.metadata
        model = resolve_model_alias(metadata.model or self.context.config.default_model)

        api_messages: list[dict[str, Any]] = []
        if session.record.spec.system_prompt:
            api_messages.append({"role": "system", "content": session.record.spec.system_prompt})
        api_messages.extend(m.to_api() for m in session.messages)

        last = session.messages[-1]
        if last.role == "user":
            self.events.emit(USER_REQUEST, {"session_id": session.id, "content": last.content})

        response = self.context.provider.prompt(
            model=model,
            messages=api_messages,
            tools=[t.schema() for t in tools] or None,
            max_tokens=self.context.config.max_tokens,
        )

        for choice in response.choices:
            session.messages.append(choice.message.model_copy(update={"ts": utc_now_iso()}))
            self.events.emit(
                RESPONSE,
                {
                    "session_id": session.id,
                    "content": choice.message.content,
                    "finish_reason": choice.finish_reason,
                    "tool_calls": len(choice.message.tool_calls or []),
                },
            )

        metadata.usage.add(response.usage.get("total_tokens", 0), response.usage.get("cost_usd", 0.0))
        if response.provider:
            metadata.provider = response.provider
        if metadata.model is None:
            metadata.model = model
