import asyncio
import json
from pathlib import Path

import pytest

from agentrun.agents import CriticAgent
from agentrun.backends.base import ModelCallError, ModelCaller, ModelResponse
from agentrun.controller import RunController
from agentrun.critic import CriticEvaluator, mentions_step, summarize_steps
from agentrun.errors import InvalidRunMutationError
from agentrun.models import AgentRun, AgentStep, CriticResult
from agentrun.state import RunStore


class VerdictCaller(ModelCaller):
    def __init__(self, verdict: dict | None = None, *, fail: bool = False) -> None:
        self.verdict = verdict or {"contradictions": [], "severity": "low"}
        self.fail = fail
        self.calls: list[str] = []

    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        _ = system_prompts
        self.calls.append(human_prompt)
        if self.fail:
            raise ModelCallError("critic offline")
        return ModelResponse(text=json.dumps(self.verdict))


def _run_with_steps(*statuses: str) -> AgentRun:
    run = AgentRun(user_goal="Write a report", status="complete")
    run.steps = [
        AgentStep(
            agent_id=f"agent_{index}",
            status=status,  # type: ignore[arg-type]
            output={"claim": f"value {index}"} if status == "complete" else None,
            observation=f"observed {index}" if status == "complete" else None,
        )
        for index, status in enumerate(statuses)
    ]
    return run


@pytest.mark.parametrize("statuses", [(), ("complete",), ("complete", "failed", "pending")])
def test_below_threshold_skips_model_and_neutralizes(statuses: tuple[str, ...]) -> None:
    caller = VerdictCaller()
    run = _run_with_steps(*statuses)

    assert asyncio.run(CriticEvaluator(CriticAgent(caller)).evaluate(run)) is True

    assert caller.calls == []
    assert all(step.critic_result == CriticResult.neutral() for step in run.steps)


def test_findings_attach_to_mentioned_steps() -> None:
    caller = VerdictCaller(
        {"contradictions": ["Step 1 says 10 but Step 3 says 12"], "severity": "high"}
    )
    run = _run_with_steps("complete", "complete", "complete")

    asyncio.run(CriticEvaluator(CriticAgent(caller)).evaluate(run))

    assert len(caller.calls) == 1
    assert "Step 1 (agent_0)" in caller.calls[0]
    first, second, third = (step.critic_result for step in run.steps)
    assert first == CriticResult(["Step 1 says 10 but Step 3 says 12"], "high", 0)
    assert third == CriticResult(["Step 1 says 10 but Step 3 says 12"], "high", 2)
    assert second == CriticResult.neutral(1)


def test_critic_failure_leaves_previous_results() -> None:
    run = _run_with_steps("complete", "complete")
    previous = CriticResult(["old finding"], "medium", 0)
    run.steps[0].critic_result = previous

    ok = asyncio.run(CriticEvaluator(CriticAgent(VerdictCaller(fail=True))).evaluate(run))

    assert ok is False
    assert run.steps[0].critic_result == previous
    assert run.steps[1].critic_result is None


def test_summary_numbers_steps_by_run_position() -> None:
    run = _run_with_steps("failed", "complete", "complete")

    summary = summarize_steps(run)

    assert "Step 1" not in summary
    assert "Step 2 (agent_1)" in summary
    assert "Step 3 (agent_2)" in summary


def test_step_mentions_use_word_boundaries() -> None:
    assert mentions_step("step 2 disagrees", 2)
    assert mentions_step("As STEP  2 notes", 2)
    assert not mentions_step("Step 12 disagrees", 2)
    assert not mentions_step("Step 21 disagrees", 2)


def test_controller_persists_critic_results(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    run = store.save(_run_with_steps("complete", "complete"))
    critic = VerdictCaller({"contradictions": ["Step 2 contradicts itself"], "severity": "medium"})
    controller = RunController(store, lambda provider: critic, critic_caller=critic)

    updated = asyncio.run(controller.run_critic(run.id))

    assert updated.steps[0].critic_result == CriticResult.neutral(0)
    assert updated.steps[1].critic_result == CriticResult(
        ["Step 2 contradicts itself"], "medium", 1
    )
    assert store.get(run.id).steps[1].critic_result == updated.steps[1].critic_result


def test_controller_requires_critic_model(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    run = store.save(_run_with_steps("complete", "complete"))
    controller = RunController(store, lambda provider: VerdictCaller())

    with pytest.raises(InvalidRunMutationError):
        asyncio.run(controller.run_critic(run.id))
