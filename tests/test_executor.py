import asyncio

import pytest

from agentrun.agents import SupervisorAgent
from agentrun.backends.base import ModelCallError, ModelCaller, ModelResponse
from agentrun.executor import (
    ExplicitSource,
    FullMerge,
    GoalSeed,
    StepExecutor,
    build_input_payload,
    resolve_input_spec,
)
from agentrun.models import AgentDefinition, AgentStep


class ReplyCaller(ModelCaller):
    provider = "openai"
    model = "gpt-3.5-turbo"

    def __init__(self, text: str, tokens: tuple[int, int] | None = (1000, 1000)) -> None:
        self.text = text
        self.tokens = tokens
        self.prompts: list[tuple[list[str], str]] = []

    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        self.prompts.append((system_prompts, human_prompt))
        if self.tokens is None:
            return ModelResponse(text=self.text)
        return ModelResponse(text=self.text, tokens_in=self.tokens[0], tokens_out=self.tokens[1])


class FailingCaller(ModelCaller):
    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        _ = system_prompts, human_prompt
        raise ModelCallError("provider exploded", provider="openai")


AGENTS = [
    AgentDefinition(id="a", prompt="collect"),
    AgentDefinition(id="b", prompt="draft", input_source="a"),
    AgentDefinition(id="c", prompt="merge"),
]


def test_input_spec_resolution() -> None:
    assert resolve_input_spec(AGENTS[0], {}) == GoalSeed()
    assert resolve_input_spec(AGENTS[1], {"a": {"x": 1}}) == ExplicitSource("a")
    assert resolve_input_spec(AGENTS[1], {"z": {"x": 1}}) == FullMerge()
    assert resolve_input_spec(AGENTS[2], {"a": {"x": 1}}) == FullMerge()


def test_explicit_source_payload_equals_source_output() -> None:
    outputs = {"a": {"idea": "moon", "tone": "quiet"}}

    payload = build_input_payload(ExplicitSource("a"), AGENTS[1], outputs, AGENTS, "goal")

    assert payload == {"idea": "moon", "tone": "quiet"}
    payload["extra"] = True
    assert outputs["a"] == {"idea": "moon", "tone": "quiet"}


def test_goal_seed_payload() -> None:
    assert build_input_payload(GoalSeed(), AGENTS[0], {}, AGENTS, "write") == {"user_goal": "write"}


def test_full_merge_uses_earlier_agents_in_order() -> None:
    outputs = {"a": {"k": "from a", "a_only": 1}, "b": {"k": "from b"}, "c": {"k": "from c"}}

    payload = build_input_payload(FullMerge(), AGENTS[2], outputs, AGENTS, "goal")

    assert payload == {"k": "from b", "a_only": 1}


def test_execute_records_output_observation_and_cost() -> None:
    caller = ReplyCaller('Thought: ok\n{"output": {"poem": "' + "x" * 50 + '"}}')
    executor = StepExecutor(SupervisorAgent(caller), observation_chars=20)
    step = AgentStep.pending_for(AGENTS[0])
    outputs: dict = {}

    asyncio.run(executor.execute(AGENTS[0], step, outputs, AGENTS, "write a poem"))

    assert step.status == "complete"
    assert step.input == {"user_goal": "write a poem"}
    assert step.output == {"poem": "x" * 50}
    assert outputs["a"] == step.output
    assert step.observation is not None and len(step.observation) == 20
    assert step.tokens_in == 1000 and step.tokens_out == 1000
    assert step.cost_usd == pytest.approx(0.0005 + 0.0015)
    assert step.started_at and step.completed_at
    assert step.duration_ms is not None

    system_prompts, human_prompt = caller.prompts[0]
    assert 'You are agent "a"' in system_prompts[-1]
    assert '"user_goal": "write a poem"' in human_prompt


def test_execute_without_usage_leaves_cost_empty() -> None:
    caller = ReplyCaller("no json at all", tokens=None)
    executor = StepExecutor(SupervisorAgent(caller))
    step = AgentStep.pending_for(AGENTS[0])

    asyncio.run(executor.execute(AGENTS[0], step, {}, AGENTS, "goal"))

    assert step.output == {"raw": "no json at all"}
    assert step.cost_usd is None
    assert step.tokens_in is None


def test_user_hint_is_added_to_payload_and_prompt() -> None:
    caller = ReplyCaller('{"output": {}}')
    executor = StepExecutor(SupervisorAgent(caller))
    step = AgentStep.pending_for(AGENTS[0])

    asyncio.run(
        executor.execute(AGENTS[0], step, {}, AGENTS, "goal", user_hint="keep it short")
    )

    assert step.input == {"user_goal": "goal", "_user_hint": "keep it short"}
    assert "USER HINT (follow this): keep it short" in caller.prompts[0][1]


def test_failed_call_marks_step_failed_without_output() -> None:
    executor = StepExecutor(SupervisorAgent(FailingCaller()))
    step = AgentStep.pending_for(AGENTS[0])
    outputs: dict = {}

    result = asyncio.run(executor.execute(AGENTS[0], step, outputs, AGENTS, "goal"))

    assert result is step
    assert step.status == "failed"
    assert step.error == "provider exploded"
    assert step.output is None
    assert step.completed_at is not None
    assert outputs == {}
