from agentd.scheduler.agent_runner import AgentRunner, AgentRunResult
from agentd.scheduler.process import kill_process
from agentd.scheduler.scheduler import PumpResult, Scheduler, next_delay

__all__ = ["AgentRunResult", "AgentRunner", "PumpResult", "Scheduler", "kill_process", "next_delay"]
