from agentrun.state.store import RunStore

__all__ = ["RunStore"]
