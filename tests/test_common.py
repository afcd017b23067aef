import threading
import time
from pathlib import Path

import pytest

from common.fileio import FileLockTimeout, atomic_write_yaml, exclusive_lock, load_yaml
from common.parallel import run_bounded


def test_atomic_write_yaml_keeps_key_order(tmp_path: Path):
    path = tmp_path / "nested" / "record.yaml"
    atomic_write_yaml(path, {"apiVersion": "daemon/v1", "kind": "Agent", "text": "line one\nünïcode"})

    assert path.read_text(encoding="utf-8").splitlines()[0] == "apiVersion: daemon/v1"
    assert load_yaml(path)["text"] == "line one\nünïcode"
    assert [p.name for p in path.parent.iterdir()] == ["record.yaml"]


def test_exclusive_lock_times_out_and_releases(tmp_path: Path):
    lock = tmp_path / "x.lock"
    with exclusive_lock(lock):
        assert lock.exists()
        with pytest.raises(FileLockTimeout):
            with exclusive_lock(lock, timeout=0.05):
                pass
    assert not lock.exists()


def test_exclusive_lock_breaks_stale_locks(tmp_path: Path):
    lock = tmp_path / "x.lock"
    lock.write_text("left behind")
    with exclusive_lock(lock, timeout=0.05, stale_after=-1):
        assert lock.read_text() != "left behind"


def test_run_bounded_preserves_order_and_captures_errors():
    def work(n):
        if n == 2:
            raise ValueError("two")
        time.sleep(0.01 * (4 - n))
        return n * 10

    outcomes = run_bounded([0, 1, 2, 3], work, max_workers=4)

    assert [o.task for o in outcomes] == [0, 1, 2, 3]
    assert [o.result for o in outcomes] == [0, 10, None, 30]
    assert isinstance(outcomes[2].error, ValueError)
    assert outcomes[2].success is False


def test_run_bounded_respects_worker_limit():
    active = 0
    peak = 0
    lock = threading.Lock()

    def work(n):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return n

    run_bounded(list(range(6)), work, max_workers=2)
    assert peak <= 2
    assert run_bounded([], work, max_workers=2) == []
