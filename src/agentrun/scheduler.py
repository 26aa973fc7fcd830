from __future__ import annotations

from collections.abc import Sequence

from agentrun.models import AgentDefinition


def topological_order(agents: Sequence[AgentDefinition]) -> list[AgentDefinition]:
    """Order agents so declared dependencies run first.

    Agents are visited depth-first in declaration order and marked before
    their dependencies are walked. Unknown dependency ids are ignored and a
    cycle is not an error: its first-visited member is emitted without
    waiting for the rest of the cycle.
    """
    by_id: dict[str, AgentDefinition] = {}
    for agent in agents:
        by_id.setdefault(agent.id, agent)

    visited: set[str] = set()
    ordered: list[AgentDefinition] = []

    def _visit(agent_id: str) -> None:
        if agent_id in visited:
            return
        visited.add(agent_id)
        agent = by_id.get(agent_id)
        if agent is None:
            return
        for dependency in agent.dependencies or []:
            _visit(dependency)
        ordered.append(agent)

    for agent in agents:
        _visit(agent.id)
    return ordered
