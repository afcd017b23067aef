from agentd.runtime.context import RuntimeContext, build_context
from agentd.runtime.signals import SignalController, install_signal_handlers

__all__ = ["RuntimeContext", "SignalController", "build_context", "install_signal_handlers"]
