from agentd.sessions.schema import BtState, Message, Session, SessionRecord, ToolCall
from agentd.sessions.store import SessionFilter, SessionStore
from agentd.sessions.templates import AgentTemplate, TemplateRegistry

__all__ = [
    "AgentTemplate",
    "BtState",
    "Message",
    "Session",
    "SessionFilter",
    "SessionRecord",
    "SessionStore",
    "TemplateRegistry",
    "ToolCall",
]
