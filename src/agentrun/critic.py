from __future__ import annotations

import json
import re

import structlog

from agentrun.agents.critic import CriticAgent
from agentrun.models import AgentRun, AgentStep, CriticResult

logger = structlog.get_logger("critic")

MIN_QUALIFYING_STEPS = 2


def qualifies(step: AgentStep) -> bool:
    return step.status == "complete" and bool(step.output or step.observation)


def summarize_steps(run: AgentRun) -> str:
    """Numbered summary of qualifying steps, numbered by their position in the run."""
    parts: list[str] = []
    for index, step in enumerate(run.steps):
        if not qualifies(step):
            continue
        parts.append(
            f"Step {index + 1} ({step.agent_id}):\n"
            f"Observation: {step.observation or 'N/A'}\n"
            f"Output: {json.dumps(step.output or {}, ensure_ascii=False)}"
        )
    return "\n\n".join(parts)


def mentions_step(finding: str, step_number: int) -> bool:
    return re.search(rf"\bstep\s+{step_number}\b", finding, re.IGNORECASE) is not None


class CriticEvaluator:
    """Post-hoc contradiction scan over a run's completed steps."""

    def __init__(self, critic: CriticAgent) -> None:
        self.critic = critic

    async def evaluate(self, run: AgentRun) -> bool:
        """Write ``critic_result`` onto the run's steps.

        Returns ``False`` when the critic call failed; prior results are then
        left untouched.
        """
        qualifying = [step for step in run.steps if qualifies(step)]
        if len(qualifying) < MIN_QUALIFYING_STEPS:
            for step in run.steps:
                step.critic_result = CriticResult.neutral()
            return True

        try:
            verdict = await self.critic.review(summarize_steps(run))
        except Exception as exc:
            logger.error("critic_failed", run_id=run.id, error=str(exc))
            return False

        for index, step in enumerate(run.steps):
            findings = [item for item in verdict.contradictions if mentions_step(item, index + 1)]
            if findings:
                step.critic_result = CriticResult(
                    contradictions=findings,
                    severity=verdict.severity,
                    step_index=index,
                )
            else:
                step.critic_result = CriticResult.neutral(step_index=index)
        logger.info(
            "critic_completed",
            run_id=run.id,
            contradictions=len(verdict.contradictions),
            severity=verdict.severity,
        )
        return True
