from __future__ import annotations


class AgentRunError(RuntimeError):
    """Base class for engine errors surfaced to callers."""


class RunNotFoundError(AgentRunError):
    """Raised when a run id does not resolve to a stored run."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class InvalidRunMutationError(AgentRunError):
    """Raised when a request is rejected before any state is touched."""


class RunConflictError(AgentRunError):
    """Raised when a save loses a revision race against another writer."""


class DesignError(AgentRunError):
    """Raised when the meta-agent response does not describe an agent team."""
