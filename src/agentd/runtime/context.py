from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from agentd.config import DaemonConfig
from agentd.providers.base import ModelProvider
from agentd.providers.litellm_provider import LiteLLMProvider
from agentd.sessions.store import SessionStore
from agentd.sessions.templates import TemplateRegistry
from agentd.telemetry import UdpTelemetrySink
from agentd.tools.approval import ApprovalPort, ConsoleApproval
from agentd.tools.builtins import BUILTIN_TOOLS, register_builtin_tools
from agentd.tools.executor import ToolExecutor
from agentd.tools.registry import ToolRegistry
from agentd.tools.subagents import SUBAGENT_TOOLS, register_subagent_tools
from common.events import EventEmitter

logger = logging.getLogger(__name__)


@dataclass
class RuntimeContext:
    config: DaemonConfig
    store: SessionStore
    templates: TemplateRegistry
    tools: ToolRegistry
    provider: ModelProvider
    approval: ApprovalPort | None = None
    events: EventEmitter = field(default_factory=EventEmitter)
    no_humans: bool = False
    stop_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self):
        self.executor = ToolExecutor(
            self.tools,
            approval=self.approval,
            events=self.events,
            no_humans=self.no_humans,
        )


def build_context(
    config: DaemonConfig,
    provider: ModelProvider | None = None,
    approval: ApprovalPort | None = None,
    no_humans: bool = False,
    tools: ToolRegistry | None = None,
) -> RuntimeContext:
    templates = TemplateRegistry(config.templates_dir, root_path=config.root)
    store = SessionStore(
        config.proc_dir,
        config.sessions_dir,
        templates=templates,
        lock_timeout=config.lock_timeout,
    )
    store.ensure_dirs()

    if tools is None:
        tools = ToolRegistry()
        root = config.root
        tools.add_provider("builtin", lambda registry: register_builtin_tools(registry, root), names=BUILTIN_TOOLS)
        tools.add_provider("subagents", lambda registry: register_subagent_tools(registry, store), names=SUBAGENT_TOOLS)

    events = EventEmitter()
    if config.observe_port:
        logger.info(f"Sending telemetry to udp://127.0.0.1:{config.observe_port}")
        events.subscribe(UdpTelemetrySink(config.observe_port))

    if approval is None and not no_humans:
        approval = ConsoleApproval()

    return RuntimeContext(
        config=config,
        store=store,
        templates=templates,
        tools=tools,
        provider=provider or LiteLLMProvider(config.temperature, config.max_tokens),
        approval=approval,
        events=events,
        no_humans=no_humans,
    )
