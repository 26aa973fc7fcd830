"""Derivation of fork and ghost runs, and ghost promotion.

These functions build or mutate ``AgentRun`` documents in memory; the
controller persists them.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence

from agentrun.errors import InvalidRunMutationError
from agentrun.models import AgentDefinition, AgentRun, AgentStep


def apply_prompt_edit(
    agents: Sequence[AgentDefinition],
    agent_id: str | None,
    prompt: str | None,
) -> list[AgentDefinition]:
    """Copy ``agents``, replacing one agent's prompt when an edit is given."""
    if not agent_id or prompt is None:
        return [copy.deepcopy(agent) for agent in agents]
    return [
        agent.with_prompt(prompt) if agent.id == agent_id else copy.deepcopy(agent)
        for agent in agents
    ]


def clamp_step_index(step_index: int, step_count: int) -> int:
    return max(0, min(step_index, step_count - 1))


def fork_run(
    parent: AgentRun,
    step_index: int,
    *,
    edited_agent_id: str | None = None,
    edited_prompt: str | None = None,
) -> AgentRun:
    if not parent.agent_definitions or not parent.steps:
        raise InvalidRunMutationError("Run has no agents or steps to fork.")

    index = clamp_step_index(step_index, len(parent.steps))
    steps: list[AgentStep] = []
    for position, step in enumerate(parent.steps):
        if position < index:
            steps.append(copy.deepcopy(step))
        else:
            steps.append(
                AgentStep(agent_id=step.agent_id, agent_name=step.agent_name or step.agent_id)
            )

    return AgentRun(
        user_goal=parent.user_goal,
        project_name=f"{parent.project_name} (fork)",
        status="designing",
        agent_definitions=apply_prompt_edit(
            parent.agent_definitions, edited_agent_id, edited_prompt
        ),
        steps=steps,
        llm_provider=parent.llm_provider,
        mission_brief=copy.deepcopy(parent.mission_brief),
        forked_from_run_id=parent.id,
        forked_at_step_index=index,
    )


def ghost_run(live: AgentRun, agent_id: str, new_prompt: str) -> AgentRun:
    if not live.agent_definitions:
        raise InvalidRunMutationError("Run has no agents to ghost.")
    if not agent_id or not isinstance(new_prompt, str):
        raise InvalidRunMutationError("agent_id and new_prompt are required.")
    if all(agent.id != agent_id for agent in live.agent_definitions):
        raise InvalidRunMutationError(f"Agent '{agent_id}' is not part of run {live.id}.")

    steps: list[AgentStep] = []
    for step in live.steps:
        seeded = copy.deepcopy(step)
        seeded.status = "pending"
        steps.append(seeded)

    return AgentRun(
        user_goal=live.user_goal,
        project_name=f"{live.project_name} (ghost)",
        status="designing",
        agent_definitions=apply_prompt_edit(live.agent_definitions, agent_id, new_prompt),
        steps=steps,
        llm_provider=live.llm_provider,
        mission_brief=copy.deepcopy(live.mission_brief),
        ghost_of_run_id=live.id,
    )


def promote_ghost(live: AgentRun, ghost: AgentRun) -> AgentRun:
    """Copy the ghost's agent definitions onto its live run; steps are left alone."""
    if ghost.ghost_of_run_id != live.id:
        raise InvalidRunMutationError(
            f"Run {ghost.id} is not a ghost of run {live.id}."
        )
    if not ghost.agent_definitions:
        raise InvalidRunMutationError("Ghost run has no agent definitions.")
    live.agent_definitions = [copy.deepcopy(agent) for agent in ghost.agent_definitions]
    return live
