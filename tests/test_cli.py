import json
import re
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from agentrun.backends.base import ModelCaller, ModelResponse
from agentrun.cli import cli
from agentrun.config import load_config, save_config

AGENT_PATTERN = re.compile(r'You are agent "([^"]+)"')
RUN_ID_PATTERN = re.compile(r"Run ID: (\S+)")

DESIGN = {
    "project_name": "Moon Poem",
    "agents": [
        {"id": "A", "prompt": "Pick a theme."},
        {"id": "B", "prompt": "Write the poem.", "input_source": "A"},
    ],
}


class FakeCaller(ModelCaller):
    async def invoke(self, system_prompts: list[str], human_prompt: str) -> ModelResponse:
        if human_prompt.startswith("Generate a concise title"):
            return ModelResponse(text="Moon Poem Title")
        if human_prompt.startswith("Analyze these agent steps"):
            return ModelResponse(text='{"contradictions": [], "severity": "low"}')
        match = AGENT_PATTERN.search(system_prompts[-1]) if len(system_prompts) > 1 else None
        if match is None:
            return ModelResponse(text=json.dumps(DESIGN))
        return ModelResponse(
            text=json.dumps({"output": {match.group(1): "done"}}), tokens_in=10, tokens_out=10
        )


def _fake_caller(provider: str, config: Any, *, model: str | None = None) -> ModelCaller:
    _ = provider, config, model
    return FakeCaller()


def _run_id(output: str) -> str:
    match = RUN_ID_PATTERN.search(output)
    assert match, output
    return match.group(1)


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("agentrun.cli._build_caller", _fake_caller)
    runner = CliRunner()
    result = runner.invoke(cli, ["init"])
    assert result.exit_code == 0, result.output
    config = load_config(tmp_path / "agentrun.toml")
    config.logging.level = "WARNING"
    save_config(tmp_path / "agentrun.toml", config)
    return tmp_path


def test_init_writes_config_and_state_dir(workspace: Path) -> None:
    assert (workspace / "agentrun.toml").exists()
    assert (workspace / ".agentrun" / "runs").is_dir()


def test_cli_full_lifecycle(workspace: Path) -> None:
    runner = CliRunner()

    created = runner.invoke(cli, ["create", "Write a poem about the moon", "--run"])
    assert created.exit_code == 0, created.output
    assert "Status: complete" in created.output
    run_id = _run_id(created.output)

    shown = runner.invoke(cli, ["show", run_id])
    assert shown.exit_code == 0, shown.output
    payload = json.loads(shown.output)
    assert payload["status"] == "complete"
    assert payload["project_name"] == "Moon Poem"
    assert [step["status"] for step in payload["steps"]] == ["complete", "complete"]

    listed = runner.invoke(cli, ["list"])
    assert run_id in listed.output

    forked = runner.invoke(cli, ["fork", run_id, "--step", "1", "--run"])
    assert forked.exit_code == 0, forked.output
    assert "Status: complete" in forked.output
    fork_id = _run_id(forked.output)
    assert fork_id != run_id

    ghost = runner.invoke(cli, ["ghost", run_id, "B", "Write a sonnet."])
    assert ghost.exit_code == 0, ghost.output
    ghost_id = _run_id(ghost.output)
    assert ghost_id in runner.invoke(cli, ["ghosts", run_id]).output

    promoted = runner.invoke(cli, ["promote", run_id, ghost_id])
    assert promoted.exit_code == 0, promoted.output
    assert json.loads(runner.invoke(cli, ["show", run_id]).output)["agent_definitions"][1][
        "prompt"
    ] == "Write a sonnet."

    critic = runner.invoke(cli, ["critic", run_id])
    assert critic.exit_code == 0, critic.output
    assert json.loads(critic.output)[0]["contradictions"] == []

    analytics = runner.invoke(cli, ["analytics"])
    rows = {row["agent_id"]: row for row in json.loads(analytics.output)}
    assert rows["A"]["success_rate"] == 100

    renamed = runner.invoke(cli, ["rename", run_id, "Lunar"])
    assert "Lunar" in renamed.output

    deleted = runner.invoke(cli, ["delete", fork_id])
    assert deleted.exit_code == 0
    missing = runner.invoke(cli, ["show", fork_id])
    assert missing.exit_code != 0
    assert f"Run not found: {fork_id}" in missing.output


def test_cli_breakpoint_and_resume(workspace: Path) -> None:
    runner = CliRunner()
    created = runner.invoke(cli, ["create", "Write a poem about the moon"])
    run_id = _run_id(created.output)
    assert "Project: Moon Poem Title" in created.output

    paused = runner.invoke(cli, ["execute", run_id, "--breakpoint", "1"])
    assert paused.exit_code == 0, paused.output
    assert "Status: paused" in paused.output
    assert "Paused before step: 1" in paused.output

    again = runner.invoke(cli, ["execute", run_id])
    assert again.exit_code != 0
    assert "resume" in again.output

    resumed = runner.invoke(cli, ["resume", run_id, "--hint", "rhyme"])
    assert resumed.exit_code == 0, resumed.output
    assert "Status: complete" in resumed.output


def test_cli_draft_agents_file(workspace: Path) -> None:
    runner = CliRunner()
    created = runner.invoke(cli, ["create", "Write a poem about the moon", "--design-only"])
    run_id = _run_id(created.output)
    assert "Status: draft" in created.output

    definitions = workspace / "agents.json"
    definitions.write_text(
        json.dumps([{"id": "solo", "prompt": "Do everything."}]), encoding="utf-8"
    )
    updated = runner.invoke(cli, ["agents", run_id, str(definitions)])
    assert updated.exit_code == 0, updated.output
    assert "Updated 1 agent definitions" in updated.output

    executed = runner.invoke(cli, ["execute", run_id])
    assert "Status: complete" in executed.output
    assert '"solo": "done"' in executed.output
