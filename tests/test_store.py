import threading
from pathlib import Path

import pytest

from agentd.errors import CorruptRecord, InvalidState, SessionError, SessionNotFound, TemplateNotFound
from agentd.sessions.schema import BtState, Message
from agentd.sessions.store import SessionFilter, SessionStore
from agentd.sessions.templates import TemplateRegistry
from conftest import write_template


def test_next_id_is_sequential(store):
    assert [store.next_id() for _ in range(3)] == [0, 1, 2]
    assert (store.proc_dir / "_next").read_text() == "3"


def test_next_id_never_repeats_under_concurrency(store):
    seen: list[int] = []
    lock = threading.Lock()

    def worker():
        for _ in range(10):
            value = store.next_id()
            with lock:
                seen.append(value)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 80
    assert sorted(seen) == list(range(80))


def test_corrupt_counter_raises(store):
    store.ensure_dirs()
    (store.proc_dir / "_next").write_text("abc")
    with pytest.raises(CorruptRecord):
        store.next_id()


def test_create_from_template_without_prompt(store, tmp_path: Path):
    session_id = store.create("@helper")

    session = store.load(session_id)
    assert session.state == BtState.SUCCESS
    assert session.template == "helper"
    assert session.labels == ["team"]
    assert session.record.metadata.tools == ["echo"]
    assert session.record.spec.system_prompt == f"You work in {tmp_path}."
    assert session.messages == []


def test_create_with_prompt_is_pending(store):
    session_id = store.create("helper.yaml", "hello", labels=["extra", "team"])

    session = store.load(session_id)
    assert session.state == BtState.PENDING
    assert session.labels == ["team", "extra"]
    assert [(m.role, m.content) for m in session.messages] == [("user", "hello")]


def test_record_uses_contract_field_names(store):
    session_id = store.create("helper", "hi")
    text = (store.sessions_dir / f"{session_id}.yaml").read_text()
    assert "apiVersion: daemon/v1" in text
    assert "kind: Agent" in text
    assert "systemPrompt:" in text
    assert "totalTokens:" in text


def test_fork_from_session_copies_history_and_clears_ownership(store):
    source = store.create("helper", "first")
    session = store.load(source)
    session.record.metadata.pid = 1234
    session.record.metadata.start_time = "2024-01-01T00:00:00+00:00"
    store.save(source, session)

    forked = store.create(str(source), "second")

    copy = store.load(forked)
    assert [m.content for m in copy.messages] == ["first", "second"]
    assert copy.record.metadata.pid is None
    assert copy.record.metadata.start_time is None
    assert copy.state == BtState.PENDING
    assert [m.content for m in store.load(source).messages] == ["first"]


def test_unknown_template(store):
    with pytest.raises(TemplateNotFound):
        store.create("nobody")


def test_load_missing_session(store):
    with pytest.raises(SessionNotFound):
        store.load(42)
    with pytest.raises(SessionNotFound):
        store.load("not-a-number")


def test_load_corrupt_record(store):
    session_id = store.create("helper")
    (store.sessions_dir / f"{session_id}.yaml").write_text("metadata: [unclosed")
    with pytest.raises(CorruptRecord):
        store.load(session_id)


def test_load_record_with_wrong_shape(store):
    session_id = store.create("helper")
    (store.sessions_dir / f"{session_id}.yaml").write_text("apiVersion: other/v2\nkind: Agent\n")
    with pytest.raises(CorruptRecord):
        store.load(session_id)


def test_bad_state_value_is_corrupt(store):
    session_id = store.create("helper")
    (store.proc_dir / str(session_id)).write_text("sleeping")
    with pytest.raises(CorruptRecord):
        store.get_state(session_id)


def test_set_state_rejects_unknown_values(store):
    session_id = store.create("helper")
    with pytest.raises(InvalidState):
        store.set_state(session_id, "done")
    assert store.get_state(session_id) == BtState.SUCCESS


def test_push_reopens_success_and_fail(store):
    session_id = store.create("helper")

    result = store.push(session_id, "again")
    assert result["session_id"] == session_id
    assert result["message_id"] == 0
    assert result["role"] == "user"
    assert result["message"] == "again"
    assert store.get_state(session_id) == BtState.PENDING

    store.kill(session_id)
    assert store.get_state(session_id) == BtState.FAIL
    store.push(session_id, "once more")
    assert store.get_state(session_id) == BtState.PENDING


def test_claim_is_exclusive(store):
    session_id = store.create("helper", "go")

    assert store.claim(session_id) is True
    assert store.get_state(session_id) == BtState.RUNNING
    assert store.claim(session_id) is False


def test_claim_refuses_failed_sessions(store):
    session_id = store.create("helper")
    store.kill(session_id)
    assert store.claim(session_id) is False


def test_commit_keeps_messages_pushed_meanwhile(store):
    session_id = store.create("helper", "start")
    in_memory = store.load(session_id)
    store.push(session_id, "late arrival")

    in_memory.messages.append(Message(role="assistant", content="done", finish_reason="stop"))
    state = store.commit(in_memory, BtState.SUCCESS)

    assert state == BtState.PENDING
    contents = [m.content for m in store.load(session_id).messages]
    assert contents == ["start", "done", "late arrival"]


def test_update_last_read(store):
    session_id = store.create("helper")
    stamp = store.update_last_read(session_id, "2030-01-01T00:00:00.000000+00:00")
    assert store.load(session_id).last_read == stamp


def _make_labeled(store, tmp_path: Path):
    write_template(tmp_path, "other", labels=())
    a = store.create("helper", labels=["red", "blue"])
    b = store.create("helper", labels=["red"])
    c = store.create("other", labels=["blue"])
    return a, b, c


def test_list_filters_compose(store, tmp_path: Path):
    a, b, c = _make_labeled(store, tmp_path)

    def ids(flt):
        return [s.id for s in store.list(flt)]

    assert ids(None) == [a, b, c]
    assert ids(SessionFilter(labels=("red",))) == [a, b]
    assert ids(SessionFilter(labels=("red", "blue"))) == [a]
    assert ids(SessionFilter(not_labels=("blue",))) == [b]
    assert ids(SessionFilter(labels=("red",), not_labels=("blue",))) == [b]
    assert ids(SessionFilter(session_id=c)) == [c]
    assert ids(SessionFilter(session_id=c, labels=("red",))) == []
    assert ids(SessionFilter(template="other")) == [c]

    store.push(b, "hi")
    assert ids(SessionFilter(states=(BtState.PENDING,))) == [b]


def test_list_skips_unreadable_sessions(store):
    good = store.create("helper")
    bad = store.create("helper")
    (store.sessions_dir / f"{bad}.yaml").write_text("- just\n- a list\n")

    assert [s.id for s in store.list()] == [good]


def test_store_without_templates(tmp_path: Path):
    store = SessionStore(tmp_path / "proc", tmp_path / "sessions")
    with pytest.raises(SessionError):
        store.create("helper")


def test_templates_registry_is_shared(tmp_path: Path):
    write_template(tmp_path, "solo")
    templates = TemplateRegistry(tmp_path / "agents" / "templates", root_path=tmp_path)
    store = SessionStore(tmp_path / "agents" / "proc", tmp_path / "agents" / "sessions", templates=templates)
    session_id = store.create("@solo", "hi")
    assert store.load(session_id).template == "solo"
