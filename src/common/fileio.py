import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import yaml

logger = logging.getLogger(__name__)


class FileLockTimeout(Exception):
    pass


def load_yaml(path: str | Path) -> Any:
    """Parse a YAML file. Missing files raise FileNotFoundError, bad YAML raises yaml.YAMLError."""
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


def atomic_write_text(path: str | Path, payload: str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(f"{target.name}.{os.getpid()}.{threading.get_ident()}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, target)


def atomic_write_yaml(path: str | Path, data: Any) -> None:
    payload = yaml.safe_dump(
        data,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=1_000_000,
    )
    atomic_write_text(path, payload)


@contextmanager
def exclusive_lock(
    path: str | Path,
    timeout: float = 5.0,
    stale_after: float = 30.0,
    poll: float = 0.01,
) -> Iterator[Path]:
    """Hold `path` as a lock file created with O_CREAT|O_EXCL.

    Lock files older than `stale_after` seconds are assumed to belong to a
    crashed holder and are removed.
    """
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout

    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            try:
                age = time.time() - lock_path.stat().st_mtime
            except FileNotFoundError:
                continue
            if age > stale_after:
                logger.warning(f"Removing stale lock {lock_path} ({age:.1f}s old)")
                lock_path.unlink(missing_ok=True)
                continue
            if time.monotonic() >= deadline:
                raise FileLockTimeout(f"Timed out waiting for lock {lock_path}")
            time.sleep(poll)
            continue

        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
        finally:
            os.close(fd)
        break

    try:
        yield lock_path
    finally:
        lock_path.unlink(missing_ok=True)
