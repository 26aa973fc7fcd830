from __future__ import annotations

from typing import Any

import requests

from agentrun.backends.base import ModelCallError, ModelResponse
from agentrun.backends.http import HttpJsonCaller

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GoogleCaller(HttpJsonCaller):
    provider = "google"

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None,
        temperature: float = 0.0,
        request_timeout: float = 120.0,
        api_base: str = GEMINI_API_BASE,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            model=model,
            api_key=api_key,
            temperature=temperature,
            request_timeout=request_timeout,
            session=session,
        )
        self.api_base = api_base.rstrip("/")

    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def build_body(self, system_prompts: list[str], human_prompt: str) -> dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": prompt} for prompt in system_prompts]},
            "contents": [{"role": "user", "parts": [{"text": human_prompt}]}],
            "generationConfig": {"temperature": self.temperature},
        }

    @staticmethod
    def parse_response(data: dict[str, Any]) -> ModelResponse:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelCallError(
                f"Unexpected Gemini response format: {exc}; data={data}",
                provider="google",
                retriable=False,
            ) from exc
        text = "".join(
            str(part.get("text", "")) for part in parts if isinstance(part, dict)
        )
        usage = data.get("usageMetadata") if isinstance(data.get("usageMetadata"), dict) else {}
        return ModelResponse(
            text=text,
            tokens_in=usage.get("promptTokenCount"),
            tokens_out=usage.get("candidatesTokenCount"),
        )

    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        data = await self._post_json_async(
            self.endpoint(),
            body=self.build_body(system_prompts, human_prompt),
            params={"key": self._require_api_key()},
        )
        return self.parse_response(data)
