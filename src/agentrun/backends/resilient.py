from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from agentrun.backends.base import ModelCallError, ModelCaller, ModelResponse, ModelTimeoutError

CallerEventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 0
    backoff_seconds: float = 0.5
    timeout_seconds: float = 120.0


class ResilientCaller(ModelCaller):
    """Wraps a caller with a per-call timeout and an opt-in retry budget."""

    def __init__(
        self,
        inner: ModelCaller,
        retry_policy: RetryPolicy,
        event_hook: CallerEventHook | None = None,
    ) -> None:
        self.inner = inner
        self.retry_policy = retry_policy
        self.event_hook = event_hook

    @property
    def provider(self) -> str:  # type: ignore[override]
        return self.inner.provider

    @property
    def model(self) -> str:  # type: ignore[override]
        return self.inner.model

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    async def _attempt(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        try:
            return await asyncio.wait_for(
                self.inner.invoke(system_prompts, human_prompt),
                timeout=self.retry_policy.timeout_seconds,
            )
        except TimeoutError as exc:
            raise ModelTimeoutError(
                f"Model call timed out after {self.retry_policy.timeout_seconds:.1f}s",
                provider=self.provider,
                retriable=True,
            ) from exc

    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        errors: list[str] = []
        for attempt in range(self.retry_policy.max_retries + 1):
            if attempt > 0:
                delay = self.retry_policy.backoff_seconds * (2 ** (attempt - 1))
                self._emit(
                    {
                        "event": "caller_retry",
                        "provider": self.provider,
                        "attempt": attempt,
                        "delay_seconds": delay,
                    }
                )
                await asyncio.sleep(delay)
            try:
                return await self._attempt(system_prompts, human_prompt)
            except ModelCallError as exc:
                errors.append(f"{self.provider}[{attempt}]: {exc}")
                self._emit(
                    {
                        "event": "caller_attempt_failed",
                        "provider": self.provider,
                        "attempt": attempt,
                        "error": str(exc),
                        "retriable": exc.retriable,
                    }
                )
                if not exc.retriable:
                    break

        summary = "; ".join(errors[-6:])
        raise ModelCallError(
            f"All model call attempts failed. {summary}",
            provider=self.provider,
            retriable=False,
        )
