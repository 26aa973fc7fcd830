from __future__ import annotations

from typing import Any

import requests

from agentrun.backends.base import ModelCallError, ModelResponse
from agentrun.backends.http import HttpJsonCaller

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class AnthropicCaller(HttpJsonCaller):
    provider = "anthropic"

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        request_timeout: float = 120.0,
        api_url: str = ANTHROPIC_API_URL,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            model=model,
            api_key=api_key,
            temperature=temperature,
            request_timeout=request_timeout,
            session=session,
        )
        self.max_tokens = max_tokens
        self.api_url = api_url

    def build_body(self, system_prompts: list[str], human_prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": "\n\n".join(system_prompts),
            "messages": [{"role": "user", "content": human_prompt}],
        }

    @staticmethod
    def parse_response(data: dict[str, Any]) -> ModelResponse:
        content = data.get("content")
        if not isinstance(content, list):
            raise ModelCallError(
                f"Unexpected Anthropic response format: {data}",
                provider="anthropic",
                retriable=False,
            )
        text = "".join(
            str(block.get("text", ""))
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        return ModelResponse(
            text=text,
            tokens_in=usage.get("input_tokens"),
            tokens_out=usage.get("output_tokens"),
        )

    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        data = await self._post_json_async(
            self.api_url,
            body=self.build_body(system_prompts, human_prompt),
            headers={
                "x-api-key": self._require_api_key(),
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )
        return self.parse_response(data)
