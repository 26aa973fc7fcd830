from __future__ import annotations

import asyncio
from typing import Any

import requests

from agentrun.backends.base import ModelCallError, ModelCaller

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class HttpJsonCaller(ModelCaller):
    """Shared plumbing for providers reached over a JSON HTTP API."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None,
        temperature: float = 0.0,
        request_timeout: float = 120.0,
        session: requests.Session | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.request_timeout = request_timeout
        self.session = session or requests.Session()

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ModelCallError(
                f"No API key configured for provider '{self.provider}'.",
                provider=self.provider,
                retriable=False,
            )
        return self.api_key

    def _post_json(
        self,
        url: str,
        *,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = self.session.post(
                url,
                headers={"Content-Type": "application/json", **(headers or {})},
                params=params,
                json=body,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            raise ModelCallError(
                f"{self.provider} request failed: {exc}",
                provider=self.provider,
                retriable=True,
            ) from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"text": resp.text}

        if not resp.ok:
            raise ModelCallError(
                f"{self.provider} HTTP {resp.status_code}: {data}",
                provider=self.provider,
                status_code=resp.status_code,
                retriable=resp.status_code in TRANSIENT_STATUS_CODES,
            )
        if not isinstance(data, dict):
            raise ModelCallError(
                f"{self.provider} returned a non-object payload.",
                provider=self.provider,
                retriable=False,
            )
        return data

    async def _post_json_async(self, url: str, **kwargs: Any) -> dict[str, Any]:
        return await asyncio.to_thread(self._post_json, url, **kwargs)
