from agentrun.backends.anthropic_messages import AnthropicCaller
from agentrun.backends.base import (
    ModelCallError,
    ModelCaller,
    ModelResponse,
    ModelTimeoutError,
)
from agentrun.backends.google_gemini import GoogleCaller
from agentrun.backends.openai_chat import OpenAICaller
from agentrun.backends.resilient import ResilientCaller, RetryPolicy

__all__ = [
    "AnthropicCaller",
    "GoogleCaller",
    "ModelCallError",
    "ModelCaller",
    "ModelResponse",
    "ModelTimeoutError",
    "OpenAICaller",
    "ResilientCaller",
    "RetryPolicy",
]
