from __future__ import annotations

import json
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from agentrun.agents.supervisor import USER_HINT_KEY, SupervisorAgent
from agentrun.extraction import extract_agent_output
from agentrun.models import AgentDefinition, AgentStep, utcnow_iso
from agentrun.pricing import estimate_cost

logger = structlog.get_logger("executor")


@dataclass(frozen=True, slots=True)
class ExplicitSource:
    agent_id: str


@dataclass(frozen=True, slots=True)
class GoalSeed:
    pass


@dataclass(frozen=True, slots=True)
class FullMerge:
    pass


InputSpec = ExplicitSource | GoalSeed | FullMerge


def resolve_input_spec(
    agent: AgentDefinition,
    outputs: Mapping[str, dict[str, Any]],
) -> InputSpec:
    if agent.input_source and agent.input_source in outputs:
        return ExplicitSource(agent.input_source)
    if not outputs:
        return GoalSeed()
    return FullMerge()


def build_input_payload(
    spec: InputSpec,
    agent: AgentDefinition,
    outputs: Mapping[str, dict[str, Any]],
    ordered_agents: Sequence[AgentDefinition],
    user_goal: str,
) -> dict[str, Any]:
    if isinstance(spec, ExplicitSource):
        return dict(outputs[spec.agent_id])
    if isinstance(spec, GoalSeed):
        return {"user_goal": user_goal}

    payload: dict[str, Any] = {}
    for earlier in ordered_agents:
        if earlier.id == agent.id:
            break
        previous = outputs.get(earlier.id)
        if previous:
            payload.update(previous)
    return payload


class StepExecutor:
    """Drives one agent definition through a single model call."""

    def __init__(self, supervisor: SupervisorAgent, *, observation_chars: int = 500) -> None:
        self.supervisor = supervisor
        self.observation_chars = observation_chars

    @staticmethod
    def mark_running(step: AgentStep) -> None:
        step.status = "running"
        step.started_at = utcnow_iso()
        step.error = None

    def _record_usage(self, step: AgentStep, tokens_in: int | None, tokens_out: int | None) -> None:
        tokens_in = tokens_in or 0
        tokens_out = tokens_out or 0
        if not (tokens_in or tokens_out):
            return
        caller = self.supervisor.caller
        step.tokens_in = tokens_in
        step.tokens_out = tokens_out
        step.cost_usd = estimate_cost(caller.provider, caller.model, tokens_in, tokens_out)

    async def execute(
        self,
        agent: AgentDefinition,
        step: AgentStep,
        outputs: dict[str, dict[str, Any]],
        ordered_agents: Sequence[AgentDefinition],
        user_goal: str,
        user_hint: str | None = None,
    ) -> AgentStep:
        """Run ``agent`` and record the outcome on ``step``.

        On success the output is also stored in ``outputs``. A raised model
        call leaves the step ``failed`` with its error; the caller decides what
        that means for the run.
        """
        spec = resolve_input_spec(agent, outputs)
        payload = build_input_payload(spec, agent, outputs, ordered_agents, user_goal)
        if user_hint:
            payload[USER_HINT_KEY] = user_hint
        step.input = payload
        if step.status != "running":
            self.mark_running(step)

        log = logger.bind(agent_id=agent.id, input_spec=type(spec).__name__)
        log.info("step_started")
        started = time.monotonic()
        try:
            response = await self.supervisor.run_step(agent, payload)
        except Exception as exc:
            step.status = "failed"
            step.error = str(exc) or exc.__class__.__name__
            step.completed_at = utcnow_iso()
            step.duration_ms = int((time.monotonic() - started) * 1000)
            log.error("step_failed", error=step.error)
            return step

        step.duration_ms = int((time.monotonic() - started) * 1000)
        step.completed_at = utcnow_iso()
        self._record_usage(step, response.tokens_in, response.tokens_out)

        output = extract_agent_output(response.text)
        outputs[agent.id] = output
        step.output = output
        step.observation = json.dumps(output, ensure_ascii=False)[: self.observation_chars]
        step.status = "complete"
        log.info("step_completed", duration_ms=step.duration_ms, cost_usd=step.cost_usd)
        return step
