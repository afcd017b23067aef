class AgentdError(Exception):
    pass


class SessionError(AgentdError):
    pass


class SessionNotFound(SessionError):
    def __init__(self, session_id: int | str, detail: str = ""):
        self.session_id = session_id
        message = f"Session {session_id} not found"
        super().__init__(f"{message}: {detail}" if detail else message)


class CorruptRecord(SessionError):
    pass


class InvalidState(SessionError):
    pass


class SessionBusy(InvalidState):
    pass


class TemplateNotFound(SessionError):
    pass


class LockTimeout(SessionError):
    pass


class ProviderError(AgentdError):
    pass


class ProcessKillFailure(AgentdError):
    pass


class AgentLocked(AgentdError):
    pass


class AgentTimeout(AgentdError):
    pass
