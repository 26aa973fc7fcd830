from __future__ import annotations

import json
from typing import Any

from agentrun.agents.base import PromptedAgent
from agentrun.backends.base import ModelResponse
from agentrun.models import AgentDefinition

USER_HINT_KEY = "_user_hint"


class SupervisorAgent(PromptedAgent):
    role = "supervisor"
    prompt_file = "supervisor.md"
    fallback_prompt = """
You are the Supervisor Agent. You orchestrate sub-agents and ensure correct hand-offs.
""".strip()

    @staticmethod
    def agent_instructions(agent: AgentDefinition) -> str:
        return f'You are agent "{agent.id}". Your instructions:\n\n{agent.prompt}'

    @staticmethod
    def build_human_prompt(payload: dict[str, Any]) -> str:
        prompt = f"Input for this step:\n{json.dumps(payload, ensure_ascii=False, indent=2)}"
        hint = payload.get(USER_HINT_KEY)
        if hint:
            prompt += f"\n\nUSER HINT (follow this): {hint}"
        return (
            f"{prompt}\n\nProcess this and provide your output. Include Thought, Action, "
            "Observation, Reflection in your reasoning. End with a JSON block: "
            '{"output": {...}} with the data for the next step.'
        )

    async def run_step(self, agent: AgentDefinition, payload: dict[str, Any]) -> ModelResponse:
        return await self.ask(
            self.build_human_prompt(payload),
            extra_system_prompts=[self.agent_instructions(agent)],
        )
