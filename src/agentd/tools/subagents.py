import logging
from typing import Any, Dict

from agentd.errors import SessionError
from agentd.sessions.schema import Session
from agentd.sessions.store import SessionFilter, SessionStore, parse_session_id
from agentd.sessions.templates import normalize_template_name
from agentd.tools.registry import ToolContext, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

SUBAGENT_TOOLS = ("list_agents", "create_agent", "command_agent", "check_agent_result", "delete_agent")

SUBAGENT_LABEL = "subagent"
DELETED_LABEL = "deleted"

SESSION_ID_PARAMETER = {
    "type": "number",
    "description": "Session id of the subagent (from list_agents)",
}


def _parse_id(value: Any) -> int:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return parse_session_id(value)


class SubagentTools:
    """Lets an agent fork, instruct, read and retire other sessions.

    Only sessions labelled `subagent` can be addressed, and soft-deleted ones
    (labelled `deleted`) are refused.
    """

    def __init__(self, store: SessionStore):
        self.store = store

    def _failure(self, operation: str, content: str, error: str, session_id: Any = None) -> ToolResult:
        metadata = {"error": error, "operation": operation}
        if session_id is not None:
            metadata["session_id"] = session_id
        return ToolResult(False, content, metadata)

    def _subagent(self, args: Dict[str, Any], operation: str) -> Session | ToolResult:
        raw = args["session_id"]
        try:
            session = self.store.load(_parse_id(raw))
        except SessionError:
            return self._failure(operation, f"Session {raw} not found", "session_not_found", raw)
        if SUBAGENT_LABEL not in session.labels:
            return self._failure(
                operation,
                f"Session {session.id} is not a subagent. {operation} only works with subagent sessions.",
                "not_a_subagent",
                session.id,
            )
        if DELETED_LABEL in session.labels:
            return self._failure(operation, f"Session {session.id} has been deleted", "session_deleted", session.id)
        return session

    def list_agents(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        sessions = self.store.list(SessionFilter(labels=(SUBAGENT_LABEL,), not_labels=(DELETED_LABEL,)))
        rows = [s.summary() for s in sessions]
        lines = [f"Found {len(rows)} active subagent sessions"]
        lines.extend(f"- {row['session_id']} ({row['agent']}): {row['state']}" for row in rows)
        return ToolResult(True, "\n".join(lines), {"operation": "list_agents", "agents": rows, "count": len(rows)})

    def create_agent(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        template = normalize_template_name(str(args["agent"]))
        try:
            session_id = self.store.create(template, args["prompt"], labels=[SUBAGENT_LABEL])
        except SessionError as e:
            return self._failure("create_agent", str(e), str(e))
        logger.info(f"Session {context.session_id} created {template} subagent {session_id}")
        return ToolResult(
            True,
            f"Successfully created new {template} subagent {session_id}",
            {"operation": "create_agent", "agent": template, "session_id": session_id},
        )

    def command_agent(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        session = self._subagent(args, "command_agent")
        if isinstance(session, ToolResult):
            return session
        pushed = self.store.push(session.id, args["prompt"])
        logger.info(f"Session {context.session_id} commanded subagent {session.id}")
        return ToolResult(
            True,
            f"Successfully sent command to subagent {session.id}",
            {"operation": "command_agent", "session_id": session.id, "message_id": pushed["message_id"]},
        )

    def check_agent_result(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        session = self._subagent(args, "check_agent_result")
        if isinstance(session, ToolResult):
            return session

        last = next((m for m in reversed(session.messages) if m.role == "assistant"), None)
        metadata = {
            "operation": "check_agent_result",
            "session_id": session.id,
            "agent": session.template,
            "state": session.state.value,
            "has_response": last is not None,
        }
        if last is None:
            return ToolResult(True, f"Subagent {session.id} ({session.template}) has not responded yet", metadata)

        metadata.update(timestamp=last.ts, finish_reason=last.finish_reason)
        return ToolResult(
            True,
            f"Subagent {session.id} ({session.template}) last response:\n{last.content or '(no content)'}",
            metadata,
        )

    def delete_agent(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        session = self._subagent(args, "delete_agent")
        if isinstance(session, ToolResult):
            return session
        self.store.add_labels(session.id, [DELETED_LABEL])
        self.store.kill(session.id)
        logger.info(f"Session {context.session_id} deleted subagent {session.id}")
        return ToolResult(
            True,
            f"Successfully marked subagent {session.id} as deleted",
            {"operation": "delete_agent", "session_id": session.id, "agent": session.template},
        )


def register_subagent_tools(tools: ToolRegistry, store: SessionStore) -> None:
    subagents = SubagentTools(store)

    tools.register_tool(
        name="list_agents",
        description="List active subagent sessions with their ids, agent templates and states.",
        parameters={"type": "object", "properties": {}, "required": []},
        implementation=subagents.list_agents,
    )

    tools.register_tool(
        name="create_agent",
        description="Create and start a new subagent from a template to handle a delegated task.",
        parameters={
            "type": "object",
            "properties": {
                "agent": {"type": "string", "description": "Agent template name"},
                "prompt": {
                    "type": "string",
                    "description": "Specific initial task: objective, context, constraints and expected output",
                },
            },
            "required": ["agent", "prompt"],
        },
        implementation=subagents.create_agent,
    )

    tools.register_tool(
        name="command_agent",
        description="Send further instructions to an active subagent.",
        parameters={
            "type": "object",
            "properties": {
                "session_id": SESSION_ID_PARAMETER,
                "prompt": {"type": "string", "description": "Instructions for the subagent"},
            },
            "required": ["session_id", "prompt"],
        },
        implementation=subagents.command_agent,
    )

    tools.register_tool(
        name="check_agent_result",
        description="Get the last response from a subagent.",
        parameters={
            "type": "object",
            "properties": {"session_id": SESSION_ID_PARAMETER},
            "required": ["session_id"],
        },
        implementation=subagents.check_agent_result,
    )

    tools.register_tool(
        name="delete_agent",
        description="Soft-delete a subagent that is finished or stuck. Its session is marked deleted and failed.",
        parameters={
            "type": "object",
            "properties": {"session_id": SESSION_ID_PARAMETER},
            "required": ["session_id"],
        },
        implementation=subagents.delete_agent,
    )
