from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

import yaml
from pydantic import ValidationError

from agentd.errors import CorruptRecord, InvalidState, LockTimeout, SessionError, SessionNotFound
from agentd.sessions.schema import (
    BtState,
    Message,
    Session,
    SessionMetadata,
    SessionRecord,
    SessionSpec,
    utc_now_iso,
)
from agentd.sessions.templates import TemplateRegistry
from common.fileio import FileLockTimeout, atomic_write_text, atomic_write_yaml, exclusive_lock, load_yaml

logger = logging.getLogger(__name__)

NEXT_FILE = "_next"
CLAIMABLE_STATES = (BtState.PENDING, BtState.SUCCESS)


def parse_session_id(value: int | str) -> int:
    if isinstance(value, int) and value >= 0:
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise SessionNotFound(value, "session ids are non-negative integers")
    return int(text)


def _message_key(message: Message) -> tuple:
    return (message.ts, message.role, message.tool_call_id, message.content)


@dataclass(frozen=True)
class SessionFilter:
    session_id: int | None = None
    labels: tuple[str, ...] = ()
    not_labels: tuple[str, ...] = ()
    states: tuple[BtState, ...] = ()
    template: str | None = None

    def matches(self, session: Session) -> bool:
        if self.session_id is not None and session.id != self.session_id:
            return False
        if self.states and session.state not in self.states:
            return False
        if self.template is not None and session.template != self.template:
            return False
        present = set(session.labels)
        if self.labels and not all(label in present for label in self.labels):
            return False
        if self.not_labels and any(label in present for label in self.not_labels):
            return False
        return True


class SessionStore:
    def __init__(
        self,
        proc_dir: str | Path,
        sessions_dir: str | Path,
        templates: TemplateRegistry | None = None,
        lock_timeout: float = 5.0,
    ):
        self.proc_dir = Path(proc_dir)
        self.sessions_dir = Path(sessions_dir)
        self.templates = templates
        self.lock_timeout = lock_timeout

    def ensure_dirs(self) -> None:
        self.proc_dir.mkdir(parents=True, exist_ok=True)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def _state_path(self, session_id: int) -> Path:
        return self.proc_dir / str(session_id)

    def _record_path(self, session_id: int) -> Path:
        return self.sessions_dir / f"{session_id}.yaml"

    @contextmanager
    def _locked(self, name: str) -> Iterator[None]:
        try:
            with exclusive_lock(self.proc_dir / f"{name}.lock", timeout=self.lock_timeout):
                yield
        except FileLockTimeout as e:
            raise LockTimeout(str(e)) from e

    # ------------------------------------------------------------------
    # ids

    def next_id(self) -> int:
        self.ensure_dirs()
        next_path = self.proc_dir / NEXT_FILE
        with self._locked(NEXT_FILE):
            try:
                raw = next_path.read_text(encoding="utf-8").strip()
            except FileNotFoundError:
                raw = "0"
            if not raw.isdigit():
                raise CorruptRecord(f"Corrupt id counter value {raw!r} in {next_path}")
            current = int(raw)
            atomic_write_text(next_path, str(current + 1))
        return current

    def ids(self) -> list[int]:
        if not self.proc_dir.exists():
            return []
        return sorted(int(p.name) for p in self.proc_dir.iterdir() if p.name.isdigit() and p.is_file())

    # ------------------------------------------------------------------
    # state lock files

    def get_state(self, session_id: int | str) -> BtState:
        session_id = parse_session_id(session_id)
        path = self._state_path(session_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise SessionNotFound(session_id, "no state file") from None
        except IsADirectoryError:
            raise CorruptRecord(f"State path for session {session_id} is not a file") from None
        try:
            return BtState.parse(raw)
        except ValueError:
            raise CorruptRecord(f"Invalid state {raw.strip()!r} for session {session_id}") from None

    def set_state(self, session_id: int | str, state: BtState | str) -> BtState:
        session_id = parse_session_id(session_id)
        try:
            state = BtState.parse(state)
        except ValueError:
            raise InvalidState(f"Refusing to write invalid state {state!r} for session {session_id}") from None
        atomic_write_text(self._state_path(session_id), state.value)
        logger.debug(f"Session {session_id} state -> {state.value}")
        return state

    def claim(self, session_id: int | str, allowed: Iterable[BtState] = CLAIMABLE_STATES) -> bool:
        """Atomically move a session from one of `allowed` states to running."""
        session_id = parse_session_id(session_id)
        allowed = tuple(allowed)
        with self._locked(str(session_id)):
            current = self.get_state(session_id)
            if current not in allowed:
                logger.debug(f"Session {session_id} not claimable from {current.value}")
                return False
            self.set_state(session_id, BtState.RUNNING)
        return True

    # ------------------------------------------------------------------
    # records

    def _read_record(self, session_id: int) -> SessionRecord:
        path = self._record_path(session_id)
        try:
            data = load_yaml(path)
        except FileNotFoundError:
            raise SessionNotFound(session_id, "no session record") from None
        except yaml.YAMLError as e:
            raise CorruptRecord(f"Session {session_id} record is not valid YAML: {e}") from e
        if not isinstance(data, dict):
            raise CorruptRecord(f"Session {session_id} record is not a mapping")
        try:
            return SessionRecord.model_validate(data)
        except ValidationError as e:
            raise CorruptRecord(f"Session {session_id} record is invalid: {e}") from e

    def _write_record(self, session_id: int, record: SessionRecord) -> None:
        atomic_write_yaml(self._record_path(session_id), record.to_document())

    def load(self, session_id: int | str) -> Session:
        session_id = parse_session_id(session_id)
        record = self._read_record(session_id)
        state = self.get_state(session_id)
        return Session(id=session_id, state=state, record=record)

    def _merge_concurrent_messages(self, session_id: int, record: SessionRecord) -> list[Message]:
        """Append messages that reached disk after `record` was loaded (e.g. a push)."""
        if not self._record_path(session_id).exists():
            return []
        on_disk = self._read_record(session_id)
        known = {_message_key(m) for m in record.spec.messages}
        merged = [m for m in on_disk.spec.messages if _message_key(m) not in known]
        record.spec.messages.extend(merged)
        return merged

    def save(self, session_id: int | str, session: Session | SessionRecord) -> list[Message]:
        """Write the record. Never touches state. Returns messages merged from disk."""
        session_id = parse_session_id(session_id)
        record = session.record if isinstance(session, Session) else session
        with self._locked(str(session_id)):
            merged = self._merge_concurrent_messages(session_id, record)
            self._write_record(session_id, record)
        return merged

    def commit(self, session: Session, state: BtState) -> BtState:
        """Write record and state together; new messages pushed meanwhile force pending."""
        with self._locked(str(session.id)):
            merged = self._merge_concurrent_messages(session.id, session.record)
            if merged:
                logger.info(f"Session {session.id}: {len(merged)} message(s) arrived during eval")
                state = BtState.PENDING
            self._write_record(session.id, session.record)
            session.state = self.set_state(session.id, state)
        return session.state

    # ------------------------------------------------------------------
    # lifecycle

    def _record_from_template(self, name: str) -> SessionRecord:
        if self.templates is None:
            raise SessionError("No template registry configured")
        template = self.templates.get(name)
        metadata = SessionMetadata(
            name=template.name,
            description=template.description,
            labels=list(template.labels),
            model=template.model,
            tools=list(template.tools),
        )
        spec = SessionSpec(system_prompt=self.templates.render_system_prompt(template))
        return SessionRecord(metadata=metadata, spec=spec)

    def _record_from_session(self, source_id: int) -> SessionRecord:
        record = self._read_record(source_id).model_copy(deep=True)
        record.metadata.pid = None
        record.metadata.timeout = None
        record.metadata.start_time = None
        return record

    def create(
        self,
        source: int | str,
        prompt: str | None = None,
        labels: Iterable[str] = (),
    ) -> int:
        """Fork a new session from a template name or an existing session id."""
        self.ensure_dirs()
        if isinstance(source, int) or str(source).strip().isdigit():
            record = self._record_from_session(parse_session_id(source))
        else:
            record = self._record_from_template(str(source))

        for label in labels:
            if label and label not in record.metadata.labels:
                record.metadata.labels.append(label)

        session_id = self.next_id()
        self._write_record(session_id, record)
        self.set_state(session_id, BtState.SUCCESS)
        logger.debug(f"Created session {session_id} from {source}")

        if prompt:
            self.push(session_id, prompt)
        return session_id

    def push(self, session_id: int | str, prompt: str) -> dict:
        session_id = parse_session_id(session_id)
        message = Message(role="user", content=prompt)
        with self._locked(str(session_id)):
            record = self._read_record(session_id)
            self.get_state(session_id)
            record.spec.messages.append(message)
            self._write_record(session_id, record)
            self.set_state(session_id, BtState.PENDING)
        return {
            "session_id": session_id,
            "message_id": len(record.spec.messages) - 1,
            "ts": message.ts,
            "role": message.role,
            "message": message.content,
        }

    def kill(self, session_id: int | str) -> BtState:
        session_id = parse_session_id(session_id)
        self.get_state(session_id)
        return self.set_state(session_id, BtState.FAIL)

    def add_labels(self, session_id: int | str, labels: Iterable[str]) -> list[str]:
        session_id = parse_session_id(session_id)
        with self._locked(str(session_id)):
            record = self._read_record(session_id)
            for label in labels:
                if label and label not in record.metadata.labels:
                    record.metadata.labels.append(label)
            self._write_record(session_id, record)
        return list(record.metadata.labels)

    def update_last_read(self, session_id: int | str, timestamp: str | None = None) -> str:
        session_id = parse_session_id(session_id)
        timestamp = timestamp or utc_now_iso()
        with self._locked(str(session_id)):
            record = self._read_record(session_id)
            record.metadata.last_read = timestamp
            self._write_record(session_id, record)
        return timestamp

    def list(self, flt: SessionFilter | None = None) -> list[Session]:
        flt = flt or SessionFilter()
        ids = self.ids()
        if flt.session_id is not None:
            ids = [i for i in ids if i == flt.session_id]
        sessions: list[Session] = []
        for session_id in ids:
            try:
                session = self.load(session_id)
            except SessionError as e:
                logger.warning(f"Skipping session {session_id}: {e}")
                continue
            if flt.matches(session):
                sessions.append(session)
        return sessions
