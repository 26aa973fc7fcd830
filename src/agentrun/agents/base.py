from __future__ import annotations

from collections.abc import Sequence
from importlib import resources

from agentrun.backends.base import ModelCaller, ModelResponse


class PromptedAgent:
    role: str = "agent"
    prompt_file: str | None = None
    fallback_prompt: str = "You are a helpful assistant."

    def __init__(self, caller: ModelCaller) -> None:
        self.caller = caller
        self.system_prompt = self._load_system_prompt()

    def _load_system_prompt(self) -> str:
        if not self.prompt_file:
            return self.fallback_prompt.strip()
        try:
            prompt_path = resources.files("agentrun.prompts").joinpath(self.prompt_file)
            return prompt_path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, ModuleNotFoundError):
            return self.fallback_prompt.strip()

    async def ask(
        self,
        human_prompt: str,
        *,
        extra_system_prompts: Sequence[str] = (),
    ) -> ModelResponse:
        return await self.caller.invoke([self.system_prompt, *extra_system_prompts], human_prompt)
