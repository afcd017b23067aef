import logging
import shlex
import subprocess
from pathlib import Path
from typing import Any, Dict

from agentd.tools.registry import ToolContext, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

BUILTIN_TOOLS = ("read_file", "list_directory", "create_file", "execute_shell")

PROTECTED_PREFIXES = ("/etc/", "/bin/", "/usr/bin/", "/sys/", "/proc/")

SAFE_COMMANDS = {"ls", "cat", "pwd", "echo", "head", "tail", "wc", "date", "whoami", "which", "grep"}
SAFE_GIT_SUBCOMMANDS = {"status", "log", "diff", "show", "branch"}
SHELL_METACHARS = (";", "|", "&", ">", "<", "`", "$(", "\n")

SHELL_TIMEOUT = 30
MAX_LISTING = 500


class BuiltinTools:
    def __init__(self, root_path: str | Path):
        self.root_path = Path(root_path)

    def _resolve(self, filepath: str) -> Path:
        path = Path(filepath).expanduser()
        return path if path.is_absolute() else self.root_path / path

    def read_file(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        path = self._resolve(args["path"])
        try:
            return ToolResult(True, path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return ToolResult(False, f"File not found: {args['path']}")
        except (OSError, UnicodeDecodeError) as e:
            return ToolResult(False, f"Error reading {args['path']}: {e}")

    def list_directory(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        path = self._resolve(args.get("path") or ".")
        if not path.is_dir():
            return ToolResult(False, f"Not a directory: {args.get('path') or '.'}")
        entries = []
        for child in sorted(path.iterdir()):
            entries.append(f"{child.name}/" if child.is_dir() else child.name)
            if len(entries) >= MAX_LISTING:
                break
        return ToolResult(True, "\n".join(entries))

    def create_file_check(self, args: Dict[str, Any], context: ToolContext) -> str:
        path = str(self._resolve(args["path"]).resolve())
        if any(path.startswith(prefix) for prefix in PROTECTED_PREFIXES):
            return "deny"
        if Path(path).exists():
            return "approve"
        return "allow"

    def create_file_prompt(self, args: Dict[str, Any], context: ToolContext) -> str:
        return f"Overwrite existing file {args['path']}?"

    def create_file(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        path = self._resolve(args["path"])
        content = args.get("content") or ""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info(f"Wrote {len(content)} chars to {path}")
        return ToolResult(True, f"Created {args['path']}")

    def shell_check(self, args: Dict[str, Any], context: ToolContext) -> str:
        command = args["command"]
        if any(char in command for char in SHELL_METACHARS):
            return "approve"
        try:
            argv = shlex.split(command)
        except ValueError:
            return "approve"
        if not argv:
            return "approve"
        if argv[0] in SAFE_COMMANDS:
            return "allow"
        if argv[0] == "git" and len(argv) > 1 and argv[1] in SAFE_GIT_SUBCOMMANDS:
            return "allow"
        return "approve"

    def shell_prompt(self, args: Dict[str, Any], context: ToolContext) -> str:
        return f"$ {args['command']}"

    def execute_shell(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        command = args["command"]
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=self.root_path,
                capture_output=True,
                text=True,
                timeout=SHELL_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            return ToolResult(False, f"Command timed out after {SHELL_TIMEOUT}s", {"exit_code": -1})

        output = result.stdout
        if result.stderr:
            output = f"{output}\n[stderr]\n{result.stderr}" if output else result.stderr
        return ToolResult(result.returncode == 0, output, {"exit_code": result.returncode})


def register_builtin_tools(tools: ToolRegistry, root_path: str | Path) -> None:
    builtins = BuiltinTools(root_path)

    tools.register_tool(
        name="read_file",
        description="Read a text file",
        parameters={
            "type": "object",
            "properties": {"path": {"type": "string", "description": "Path to the file"}},
            "required": ["path"],
        },
        implementation=builtins.read_file,
    )

    tools.register_tool(
        name="list_directory",
        description="List the entries of a directory",
        parameters={
            "type": "object",
            "properties": {"path": {"type": "string", "description": "Directory path, defaults to ."}},
            "required": [],
        },
        implementation=builtins.list_directory,
    )

    tools.register_tool(
        name="create_file",
        description="Create or overwrite a text file",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file"},
                "content": {"type": "string", "description": "Full file content"},
            },
            "required": ["path", "content"],
        },
        implementation=builtins.create_file,
        pre_tool_use=builtins.create_file_check,
        get_approval_prompt=builtins.create_file_prompt,
    )

    tools.register_tool(
        name="execute_shell",
        description="Run a shell command in the workspace root",
        parameters={
            "type": "object",
            "properties": {"command": {"type": "string", "description": "Command to run"}},
            "required": ["command"],
        },
        implementation=builtins.execute_shell,
        pre_tool_use=builtins.shell_check,
        get_approval_prompt=builtins.shell_prompt,
    )
