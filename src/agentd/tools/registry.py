from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional

logger = logging.getLogger(__name__)

PreToolDecision = Literal["allow", "approve", "deny"]


@dataclass
class ToolContext:
    session_id: int | None = None


@dataclass
class ToolResult:
    success: bool
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "ToolResult":
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, dict) and "success" in value:
            content = value.get("content")
            if content is None:
                content = value.get("error") or value.get("result") or ""
            metadata = value.get("metadata") or {}
            return cls(bool(value["success"]), str(content), dict(metadata))
        if value is None:
            return cls(True, "")
        return cls(True, value if isinstance(value, str) else str(value))


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: Dict[str, Any]
    execute: Callable[[Dict[str, Any], ToolContext], Any]
    pre_tool_use: Optional[Callable[[Dict[str, Any], ToolContext], PreToolDecision]] = None
    get_approval_prompt: Optional[Callable[[Dict[str, Any], ToolContext], str]] = None

    def schema(self) -> Dict[str, Any]:
        parameters = dict(self.parameters or {})
        parameters.setdefault("type", "object")
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass
class _Provider:
    name: str
    loader: Callable[["ToolRegistry"], None]
    names: frozenset[str] = frozenset()
    prefix: str | None = None
    loaded: bool = False

    def supplies(self, tool_name: str) -> bool:
        if tool_name in self.names:
            return True
        return bool(self.prefix) and tool_name.startswith(self.prefix)


class ToolRegistry:
    def __init__(self):
        self.tools: Dict[str, ToolDefinition] = {}
        self._providers: List[_Provider] = []

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self.tools:
            logger.debug(f"Replacing tool {tool.name}")
        self.tools[tool.name] = tool

    def register_tool(
        self,
        name: str,
        description: str,
        parameters: Dict[str, Any],
        implementation: Callable[[Dict[str, Any], ToolContext], Any],
        **hooks,
    ) -> ToolDefinition:
        tool = ToolDefinition(name, description, parameters, implementation, **hooks)
        self.register(tool)
        return tool

    def add_provider(
        self,
        name: str,
        loader: Callable[["ToolRegistry"], None],
        names: Iterable[str] = (),
        prefix: str | None = None,
    ) -> None:
        """Register a tool source that is only loaded when one of its tools is allowed."""
        if not names and not prefix:
            raise ValueError(f"Tool provider {name} needs names or a prefix")
        self._providers.append(_Provider(name, loader, frozenset(names), prefix))

    def resolve(self, allowed: Iterable[str]) -> List[ToolDefinition]:
        allowed = list(dict.fromkeys(allowed))
        for provider in self._providers:
            if provider.loaded or not any(provider.supplies(n) for n in allowed):
                continue
            logger.debug(f"Loading tool provider {provider.name}")
            provider.loader(self)
            provider.loaded = True

        resolved = []
        for tool_name in allowed:
            tool = self.tools.get(tool_name)
            if tool is None:
                logger.warning(f"Allowed tool {tool_name} is not available")
                continue
            resolved.append(tool)
        return resolved

    def loaded_providers(self) -> List[str]:
        return [p.name for p in self._providers if p.loaded]

    def get(self, name: str) -> ToolDefinition | None:
        return self.tools.get(name)

    def schemas(self, names: Iterable[str] | None = None) -> List[Dict[str, Any]]:
        if names is None:
            return [tool.schema() for tool in self.tools.values()]
        return [self.tools[n].schema() for n in names if n in self.tools]
