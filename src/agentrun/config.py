from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from agentrun.models import LLMProvider


@dataclass(slots=True)
class EngineConfig:
    state_dir: str = ".agentrun"
    default_provider: LLMProvider = "openai"
    observation_chars: int = 500


@dataclass(slots=True)
class ModelsConfig:
    openai: str = "gpt-3.5-turbo"
    anthropic: str = "claude-3-5-sonnet-20241022"
    google: str = "gemini-1.5-pro"
    critic: str = "gpt-4o-mini"
    temperature: float = 0.0

    def for_provider(self, provider: str) -> str:
        if provider == "anthropic":
            return self.anthropic
        if provider == "google":
            return self.google
        return self.openai


@dataclass(slots=True)
class CallerConfig:
    max_retries: int = 0
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass(slots=True)
class AgentRunConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    caller: CallerConfig = field(default_factory=CallerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> AgentRunConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> AgentRunConfig:
        return cls(
            engine=EngineConfig(**data.get("engine", {})),
            models=ModelsConfig(**data.get("models", {})),
            caller=CallerConfig(**data.get("caller", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_dict(self) -> dict:
        return {
            "engine": {
                "state_dir": self.engine.state_dir,
                "default_provider": self.engine.default_provider,
                "observation_chars": self.engine.observation_chars,
            },
            "models": {
                "openai": self.models.openai,
                "anthropic": self.models.anthropic,
                "google": self.models.google,
                "critic": self.models.critic,
                "temperature": self.models.temperature,
            },
            "caller": {
                "max_retries": self.caller.max_retries,
                "retry_backoff_seconds": self.caller.retry_backoff_seconds,
                "timeout_seconds": self.caller.timeout_seconds,
            },
            "logging": {
                "level": self.logging.level,
                "json": self.logging.json,
            },
        }

    def apply_env(self, environ: Mapping[str, str] | None = None) -> AgentRunConfig:
        """Let the usual model environment variables override file values."""
        env = os.environ if environ is None else environ
        overrides = {
            "OPENAI_MODEL": "openai",
            "ANTHROPIC_MODEL": "anthropic",
            "GOOGLE_MODEL": "google",
            "CRITIC_MODEL": "critic",
        }
        for variable, attribute in overrides.items():
            value = env.get(variable, "").strip()
            if value:
                setattr(self.models, attribute, value)
        temperature = env.get("OPENAI_TEMPERATURE", "").strip()
        if temperature:
            try:
                self.models.temperature = float(temperature)
            except ValueError:
                pass
        return self


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if rendered else "0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: AgentRunConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ["engine", "models", "caller", "logging"]:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> AgentRunConfig:
    if not path.exists():
        return AgentRunConfig.default()
    return AgentRunConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: AgentRunConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
