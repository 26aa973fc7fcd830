from __future__ import annotations

import structlog

from agentrun.agents.base import PromptedAgent
from agentrun.models import DEFAULT_PROJECT_NAME

logger = structlog.get_logger("titles")


class TitleAgent(PromptedAgent):
    """Best-effort short titles for run goals."""

    role = "title"
    prompt_file = "title.md"
    fallback_prompt = "Generate a 2-6 word title for the goal. Output only the title."

    async def generate(self, user_goal: str) -> str:
        goal = (user_goal or "").strip()
        if not goal:
            return DEFAULT_PROJECT_NAME
        try:
            response = await self.ask(f"Generate a concise title for this goal:\n\n{goal}")
        except Exception as exc:
            logger.warning("title_generation_failed", error=str(exc))
            return DEFAULT_PROJECT_NAME
        title = response.text.strip().strip("\"'").strip()[:80]
        return title or DEFAULT_PROJECT_NAME
