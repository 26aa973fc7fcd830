from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from agentrun.agents.base import PromptedAgent
from agentrun.errors import DesignError
from agentrun.extraction import extract_json
from agentrun.models import AgentDefinition, MissionBrief

UNTITLED_NAMES = {"", "untitled"}


@dataclass(slots=True)
class TeamDesign:
    agents: list[AgentDefinition]
    project_name: str | None = None
    mission_brief: MissionBrief | None = None


def validate_agent_ids(agents: list[AgentDefinition]) -> str | None:
    """Return a description of the first id problem, or ``None`` when ids are valid."""
    seen: set[str] = set()
    for position, agent in enumerate(agents):
        if not agent.id.strip():
            return f"agent at position {position} has an empty id"
        if agent.id in seen:
            return f"duplicate agent id '{agent.id}'"
        seen.add(agent.id)
    return None


class ArchitectAgent(PromptedAgent):
    """Meta-agent that turns a user goal into an agent team."""

    role = "architect"
    prompt_file = "architect.md"
    fallback_prompt = """
You are a Strategic Orchestrator. Design a team of specialized agents for the user's goal
and answer with a JSON block containing project_name, mission_brief and agents.
""".strip()

    @staticmethod
    def parse_design(content: str) -> TeamDesign:
        parsed = extract_json(content)
        raw_agents: Any = parsed.get("agents") if parsed else None
        if not isinstance(raw_agents, list):
            raw_agents = parsed.get("agent") if parsed else None
        if not isinstance(raw_agents, list):
            keys = json.dumps(sorted(parsed.keys())) if parsed else "null"
            raise DesignError(
                "Creator agent did not return valid JSON with agents array. "
                f"Got: {keys}. Raw content (first 500 chars): {content[:500]}"
            )

        agents = [AgentDefinition.from_dict(item) for item in raw_agents if isinstance(item, dict)]
        if not agents:
            raise DesignError(
                "Creator agent returned an empty agents array. "
                f"Raw content (first 500 chars): {content[:500]}"
            )
        problem = validate_agent_ids(agents)
        if problem:
            raise DesignError(f"Creator agent returned invalid agents: {problem}.")

        project_name = parsed.get("project_name") if parsed else None
        if isinstance(project_name, str) and project_name.strip().lower() not in UNTITLED_NAMES:
            project_name = project_name.strip().replace("_", " ")
        else:
            project_name = None

        brief = parsed.get("mission_brief") if parsed else None
        return TeamDesign(
            agents=agents,
            project_name=project_name,
            mission_brief=MissionBrief.from_dict(brief) if isinstance(brief, dict) else None,
        )

    async def design(self, user_goal: str) -> TeamDesign:
        response = await self.ask(
            f"User goal: {user_goal}\n\nDesign the agent team and output the JSON configuration."
        )
        return self.parse_design(response.text)
