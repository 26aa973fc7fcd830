from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class ModelCallError(RuntimeError):
    """Raised when a model provider call fails."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retriable = retriable


class ModelTimeoutError(ModelCallError):
    """Raised when a model call exceeds the configured timeout."""


@dataclass(slots=True)
class ModelResponse:
    text: str
    tokens_in: int | None = None
    tokens_out: int | None = None


class ModelCaller(ABC):
    provider: str = "openai"
    model: str = ""

    @abstractmethod
    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        """Send system prompts plus one human message and return the reply."""
