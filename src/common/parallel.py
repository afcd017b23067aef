import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

TaskT = TypeVar("TaskT")
ResultT = TypeVar("ResultT")


@dataclass
class TaskOutcome(Generic[TaskT, ResultT]):
    task: TaskT
    result: ResultT | None
    success: bool
    error: BaseException | None = None
    duration_ms: int | None = None


def _run_one(fn: Callable[[TaskT], ResultT], task: TaskT) -> TaskOutcome[TaskT, ResultT]:
    start = time.monotonic()
    try:
        result = fn(task)
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        return TaskOutcome(task=task, result=None, success=False, error=e, duration_ms=duration_ms)
    duration_ms = int((time.monotonic() - start) * 1000)
    return TaskOutcome(task=task, result=result, success=True, duration_ms=duration_ms)


def run_bounded(
    tasks: list[TaskT],
    fn: Callable[[TaskT], ResultT],
    *,
    max_workers: int = 1,
) -> list[TaskOutcome[TaskT, ResultT]]:
    """Run `fn` over `tasks` with at most `max_workers` in flight.

    Outcomes come back in task order. Exceptions are captured per task.
    """
    if not tasks:
        return []

    workers = max(1, min(max_workers, len(tasks)))
    logger.debug(f"Running {len(tasks)} tasks with {workers} workers")

    if workers == 1:
        return [_run_one(fn, task) for task in tasks]

    outcomes: dict[int, TaskOutcome[TaskT, ResultT]] = {}
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_index = {
            executor.submit(_run_one, fn, task): index for index, task in enumerate(tasks)
        }
        for future in as_completed(future_to_index):
            outcomes[future_to_index[future]] = future.result()

    return [outcomes[index] for index in range(len(tasks))]
