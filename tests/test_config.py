import tomllib
from pathlib import Path

from agentrun import __version__
from agentrun.config import AgentRunConfig, dumps_toml, load_config, save_config


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "agentrun.toml"
    config = AgentRunConfig.default()
    config.engine.state_dir = "state"
    config.engine.default_provider = "anthropic"
    config.engine.observation_chars = 300
    config.models.critic = "gpt-4o"
    config.models.temperature = 0.7
    config.caller.max_retries = 2
    config.logging.json = True

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.engine.state_dir == "state"
    assert loaded.engine.default_provider == "anthropic"
    assert loaded.engine.observation_chars == 300
    assert loaded.models.critic == "gpt-4o"
    assert loaded.models.temperature == 0.7
    assert loaded.models.openai == "gpt-3.5-turbo"
    assert loaded.caller.max_retries == 2
    assert loaded.caller.timeout_seconds == 120.0
    assert loaded.logging.json is True


def test_missing_config_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.toml")

    assert config.engine.state_dir == ".agentrun"
    assert config.engine.observation_chars == 500
    assert config.caller.max_retries == 0


def test_toml_dump_contains_all_sections() -> None:
    rendered = dumps_toml(AgentRunConfig.default())

    for section in ["[engine]", "[models]", "[caller]", "[logging]"]:
        assert section in rendered
    assert "retry_backoff_seconds" in rendered
    assert 'critic = "gpt-4o-mini"' in rendered
    assert "json = false" in rendered


def test_environment_overrides_models() -> None:
    config = AgentRunConfig.default().apply_env(
        {
            "OPENAI_MODEL": "gpt-4o",
            "ANTHROPIC_MODEL": " ",
            "CRITIC_MODEL": "gpt-4-turbo",
            "OPENAI_TEMPERATURE": "not-a-number",
        }
    )

    assert config.models.openai == "gpt-4o"
    assert config.models.anthropic == "claude-3-5-sonnet-20241022"
    assert config.models.critic == "gpt-4-turbo"
    assert config.models.temperature == 0.0
    assert config.models.for_provider("openai") == "gpt-4o"
    assert config.models.for_provider("google") == "gemini-1.5-pro"


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
