from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable

from agentd.engine.eval import EvalEngine, EvalResult
from agentd.errors import SessionBusy, SessionError
from agentd.runtime.context import RuntimeContext
from agentd.sessions.schema import BtState, Session
from agentd.sessions.store import SessionFilter
from common.parallel import run_bounded

logger = logging.getLogger(__name__)


def next_delay(interval: float, iteration_start: float, now: float) -> float:
    """Wait that keeps iterations anchored to their start times."""
    return max(0.0, interval - (now - iteration_start))


@dataclass
class PumpResult:
    processed: int
    total: int

    def to_dict(self) -> dict:
        return {"processed": self.processed, "total": self.total}


class Scheduler:
    def __init__(
        self,
        context: RuntimeContext,
        engine: EvalEngine | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.context = context
        self.store = context.store
        self.engine = engine or EvalEngine(context)
        self.clock = clock

    def _evaluate(self, session: Session) -> EvalResult | None:
        try:
            return self.engine.eval(session.id)
        except SessionBusy as e:
            logger.debug(f"Skipping session {session.id}: {e}")
            return None

    def pump(self, flt: SessionFilter | None = None) -> PumpResult:
        flt = replace(flt or SessionFilter(), states=(BtState.PENDING,))
        sessions = self.store.list(flt)
        if not sessions:
            logger.debug("No pending sessions")
            return PumpResult(processed=0, total=0)

        logger.info(f"Pumping {len(sessions)} pending session(s)")
        outcomes = run_bounded(sessions, self._evaluate, max_workers=self.context.config.max_workers)

        processed = sum(1 for o in outcomes if o.success and o.result is not None)
        failures = [o for o in outcomes if not o.success]
        for outcome in failures:
            logger.error(f"Session {outcome.task.id} evaluation failed: {outcome.error}")
        if failures:
            raise failures[0].error
        return PumpResult(processed=processed, total=len(sessions))

    def watch(
        self,
        flt: SessionFilter | None = None,
        interval: float | None = None,
        stop_event: threading.Event | None = None,
        max_iterations: int | None = None,
    ) -> int:
        """Pump repeatedly until stopped. Returns the number of iterations run."""
        interval = self.context.config.watch_poll_interval if interval is None else interval
        stop_event = stop_event or self.context.stop_event
        target = flt.session_id if flt else None
        reported: BtState | None = None

        logger.info(f"Watching sessions every {interval}s")
        iterations = 0
        while not stop_event.is_set():
            iteration_start = self.clock()
            try:
                result = self.pump(flt)
                if result.processed:
                    logger.info(f"Processed {result.processed}/{result.total} session(s)")
            except Exception as e:
                logger.error(f"Watch iteration failed: {e}")

            if target is not None:
                reported = self._report_target(target, reported)

            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break
            stop_event.wait(next_delay(interval, iteration_start, self.clock()))

        logger.info(f"Watch stopped after {iterations} iteration(s)")
        return iterations

    def _report_target(self, session_id: int, reported: BtState | None) -> BtState | None:
        try:
            state = self.store.get_state(session_id)
        except SessionError as e:
            logger.warning(f"Could not read state of session {session_id}: {e}")
            return reported
        if state.is_terminal and state != reported:
            logger.info(f"Session {session_id} reached {state.value}; still watching")
        return state
