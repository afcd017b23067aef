import logging
import os
import signal
import time

from agentd.errors import ProcessKillFailure

logger = logging.getLogger(__name__)

KILL_SETTLE_SECONDS = 0.1


def kill_process(pid: int, settle: float = KILL_SETTLE_SECONDS) -> None:
    """SIGKILL `pid` and verify it is gone. A process that no longer exists is fine."""
    try:
        os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug(f"Process {pid} not found (already terminated)")
        return
    except OSError as e:
        raise ProcessKillFailure(f"Failed to kill process {pid}: {e}") from e

    time.sleep(settle)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        logger.debug(f"Process {pid} successfully terminated")
        return
    except OSError as e:
        raise ProcessKillFailure(f"Could not verify process {pid} was killed: {e}") from e
    raise ProcessKillFailure(f"Failed to kill process {pid}. Process is still running.")
