from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable

from agentd.engine.eval import EvalEngine
from agentd.errors import AgentLocked, AgentTimeout
from agentd.runtime.context import RuntimeContext
from agentd.scheduler.process import kill_process
from agentd.sessions.schema import BtState, Session, utc_now_iso
from agentd.sessions.store import SessionFilter
from agentd.sessions.templates import normalize_template_name

logger = logging.getLogger(__name__)


@dataclass
class AgentRunResult:
    session_id: int
    state: BtState
    reply: str

    def to_dict(self) -> dict:
        return {"session_id": self.session_id, "state": self.state.value, "reply": self.reply}


def last_reply(session: Session) -> str:
    for message in reversed(session.messages):
        if message.role == "assistant" and message.content.strip():
            return message.content
    return ""


def _exit_on_timeout(session_id: int, timeout: float) -> None:
    logger.error(f"Agent session {session_id} exceeded timeout of {timeout} seconds")
    os._exit(1)


class AgentRunner:
    """Create a session from a template and drive it until it settles."""

    def __init__(
        self,
        context: RuntimeContext,
        engine: EvalEngine | None = None,
        on_timeout: Callable[[int, float], None] = _exit_on_timeout,
        kill: Callable[[int], None] = kill_process,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.context = context
        self.store = context.store
        self.engine = engine or EvalEngine(context)
        self.on_timeout = on_timeout
        self.kill_process = kill
        self.clock = clock

    def _running_sessions(self, template: str) -> list[Session]:
        return self.store.list(SessionFilter(template=template, states=(BtState.RUNNING,)))

    def _take_over(self, template: str) -> None:
        for session in self._running_sessions(template):
            pid = session.record.metadata.pid
            if pid and pid != os.getpid():
                logger.info(f"Killing existing {template} session {session.id} (PID {pid})")
                self.kill_process(pid)
            self.store.kill(session.id)

    def run(
        self,
        template: str,
        prompt: str,
        timeout: float | None = None,
        lock: bool = False,
        kill: bool = False,
    ) -> AgentRunResult:
        template = normalize_template_name(template)

        if lock:
            running = self._running_sessions(template)
            if running:
                holder = running[0]
                raise AgentLocked(
                    f"Another {template} agent is already running "
                    f"(session {holder.id}, PID {holder.record.metadata.pid or 'unknown'}). "
                    "Use --kill to terminate it first, or wait for it to complete."
                )
        if kill:
            self._take_over(template)

        session_id = self.store.create(template, prompt)
        session = self.store.load(session_id)
        session.record.metadata.pid = os.getpid()
        if timeout:
            session.record.metadata.timeout = timeout
            session.record.metadata.start_time = utc_now_iso()
        self.store.save(session_id, session)
        logger.debug(f"Created session {session_id}, running until completion")

        watchdog = None
        if timeout:
            watchdog = threading.Timer(timeout, self.on_timeout, args=(session_id, timeout))
            watchdog.daemon = True
            watchdog.start()
        try:
            state = self._drive(session_id, timeout)
        finally:
            if watchdog is not None:
                watchdog.cancel()

        session = self.store.load(session_id)
        return AgentRunResult(session_id=session_id, state=state, reply=last_reply(session))

    def _drive(self, session_id: int, timeout: float | None) -> BtState:
        interval = self.context.config.watch_poll_interval
        deadline = self.clock() + timeout if timeout else None
        while True:
            iteration_start = self.clock()
            state = self.store.get_state(session_id)
            if state.is_terminal:
                logger.debug(f"Session {session_id} completed with state: {state.value}")
                return state
            if deadline is not None and iteration_start >= deadline:
                self.store.set_state(session_id, BtState.FAIL)
                raise AgentTimeout(f"Agent session {session_id} exceeded timeout of {timeout} seconds")
            if self.context.stop_event.is_set():
                raise KeyboardInterrupt
            if state == BtState.PENDING:
                result = self.engine.eval(session_id)
                if result.model_called or result.new_messages:
                    continue
            wait = min(interval, 0.5)
            self.context.stop_event.wait(wait)
