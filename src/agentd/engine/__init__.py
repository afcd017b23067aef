from agentd.engine.eval import EvalEngine, EvalResult, compute_next_state

__all__ = ["EvalEngine", "EvalResult", "compute_next_state"]
