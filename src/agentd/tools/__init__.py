from agentd.tools.approval import ApprovalDecision, ApprovalPort, ApprovalRequest, ConsoleApproval
from agentd.tools.executor import ToolExecutor, validate_required_fields
from agentd.tools.registry import ToolContext, ToolDefinition, ToolRegistry, ToolResult

__all__ = [
    "ApprovalDecision",
    "ApprovalPort",
    "ApprovalRequest",
    "ConsoleApproval",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "validate_required_fields",
]
