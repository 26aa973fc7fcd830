from __future__ import annotations

import asyncio
from typing import Any

from openai import OpenAI

from agentrun.backends.base import ModelCallError, ModelCaller, ModelResponse


class OpenAICaller(ModelCaller):
    """Chat Completions caller built on the official SDK."""

    provider = "openai"

    def __init__(
        self,
        *,
        model: str,
        temperature: float = 0.0,
        api_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = OpenAI(api_key=self.api_key) if self.api_key else OpenAI()
            except Exception as exc:
                raise ModelCallError(
                    f"OpenAI client could not be created: {exc}",
                    provider="openai",
                    retriable=False,
                ) from exc
        return self._client

    @staticmethod
    def build_messages(system_prompts: list[str], human_prompt: str) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": prompt} for prompt in system_prompts]
        messages.append({"role": "user", "content": human_prompt})
        return messages

    @staticmethod
    def _extract_text(payload: Any) -> str:
        choices = getattr(payload, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return content if isinstance(content, str) else ""

    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        client = self._get_client()

        def _request() -> Any:
            return client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=self.build_messages(system_prompts, human_prompt),
            )

        try:
            payload = await asyncio.to_thread(_request)
        except Exception as exc:
            raise ModelCallError(
                f"OpenAI chat completion failed: {exc}",
                provider="openai",
                retriable=True,
            ) from exc

        usage = getattr(payload, "usage", None)
        return ModelResponse(
            text=self._extract_text(payload),
            tokens_in=getattr(usage, "prompt_tokens", None),
            tokens_out=getattr(usage, "completion_tokens", None),
        )
