import os
import signal

import pytest

from agentd.engine.eval import EvalResult
from agentd.errors import AgentLocked, AgentTimeout, ProcessKillFailure
from agentd.scheduler import process
from agentd.scheduler.agent_runner import AgentRunner
from agentd.sessions.schema import BtState
from conftest import reply, tool_call


def test_runs_until_settled_and_returns_last_reply(context, provider, store):
    provider.replies = [
        reply(tool_calls=[tool_call("c1", "echo", '{"text": "x"}')], finish_reason="tool_calls"),
        reply("all done"),
    ]

    result = AgentRunner(context).run("@helper", "do the thing")

    assert result.state == BtState.SUCCESS
    assert result.reply == "all done"
    session = store.load(result.session_id)
    assert session.record.metadata.pid == os.getpid()
    assert session.record.metadata.timeout is None


def test_timeout_metadata_is_stamped(context, provider, store):
    provider.replies = [reply("ok")]
    result = AgentRunner(context, on_timeout=lambda *a: None).run("helper", "hi", timeout=30)
    metadata = store.load(result.session_id).record.metadata
    assert metadata.timeout == 30
    assert metadata.start_time is not None


def test_lock_refuses_when_template_is_running(context, store):
    busy = store.create("helper", "busy")
    store.claim(busy)

    with pytest.raises(AgentLocked):
        AgentRunner(context).run("@helper", "second")
    assert store.ids() == [busy]


def test_kill_takes_over_running_sessions(context, provider, store):
    busy = store.create("helper", "busy")
    session = store.load(busy)
    session.record.metadata.pid = 999999
    store.save(busy, session)
    store.claim(busy)
    killed = []
    provider.replies = [reply("mine now")]

    result = AgentRunner(context, kill=killed.append).run("@helper", "take over", kill=True)

    assert killed == [999999]
    assert store.get_state(busy) == BtState.FAIL
    assert result.state == BtState.SUCCESS


class _StuckEngine:
    def __init__(self):
        self.calls = 0

    def eval(self, session_id):
        self.calls += 1
        return EvalResult(session_id, BtState.PENDING)


def test_timeout_fails_the_session(context, store):
    fired = []
    engine = _StuckEngine()
    runner = AgentRunner(context, engine=engine, on_timeout=lambda sid, t: fired.append(sid))

    with pytest.raises(AgentTimeout):
        runner.run("@helper", "never ends", timeout=0.05)

    (session_id,) = store.ids()
    assert store.get_state(session_id) == BtState.FAIL
    # a step that makes no progress waits for the poll interval before retrying
    assert 0 < engine.calls < 50


def test_kill_process_tolerates_missing_process(monkeypatch):
    def fake_kill(pid, sig):
        raise ProcessLookupError

    monkeypatch.setattr(process.os, "kill", fake_kill)
    process.kill_process(1234, settle=0)


def test_kill_process_verifies_the_process_is_gone(monkeypatch):
    sent = []

    def fake_kill(pid, sig):
        sent.append(sig)
        if sig == 0:
            raise ProcessLookupError

    monkeypatch.setattr(process.os, "kill", fake_kill)
    process.kill_process(1234, settle=0)
    assert sent == [signal.SIGKILL, 0]


def test_kill_process_reports_survivors(monkeypatch):
    monkeypatch.setattr(process.os, "kill", lambda pid, sig: None)
    with pytest.raises(ProcessKillFailure):
        process.kill_process(1234, settle=0)


def test_kill_process_permission_denied(monkeypatch):
    def fake_kill(pid, sig):
        raise PermissionError("not yours")

    monkeypatch.setattr(process.os, "kill", fake_kill)
    with pytest.raises(ProcessKillFailure):
        process.kill_process(1, settle=0)
