from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import click
import structlog

from agentrun.backends import (
    AnthropicCaller,
    GoogleCaller,
    ModelCaller,
    OpenAICaller,
    ResilientCaller,
    RetryPolicy,
)
from agentrun.config import AgentRunConfig, load_config, save_config
from agentrun.controller import Acknowledgement, RunController
from agentrun.errors import AgentRunError
from agentrun.logging import configure_logging
from agentrun.models import LLM_PROVIDERS, AgentRun, Breakpoint
from agentrun.state import RunStore

logger = structlog.get_logger("cli")

T = TypeVar("T")

API_KEY_VARIABLES = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


@dataclass(slots=True)
class Runtime:
    root: Path
    config_path: Path
    config: AgentRunConfig
    store: RunStore
    controller: RunController


def _resolve_config_path(root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = root / config_path
    return config_path.resolve()


def _build_single_caller(
    provider: str, config: AgentRunConfig, *, model: str | None = None
) -> ModelCaller:
    api_key = os.environ.get(API_KEY_VARIABLES.get(provider, ""), "") or None
    model_name = model or config.models.for_provider(provider)
    timeout = float(config.caller.timeout_seconds)
    if provider == "anthropic":
        return AnthropicCaller(
            model=model_name,
            api_key=api_key,
            temperature=config.models.temperature,
            request_timeout=timeout,
        )
    if provider == "google":
        return GoogleCaller(
            model=model_name,
            api_key=api_key,
            temperature=config.models.temperature,
            request_timeout=timeout,
        )
    return OpenAICaller(model=model_name, temperature=config.models.temperature, api_key=api_key)


def _log_caller_event(event: dict[str, Any]) -> None:
    payload = dict(event)
    name = payload.pop("event", "caller_event")
    logger.warning(name, **payload)


def _build_caller(
    provider: str, config: AgentRunConfig, *, model: str | None = None
) -> ModelCaller:
    policy = RetryPolicy(
        max_retries=max(0, int(config.caller.max_retries)),
        backoff_seconds=max(0.0, float(config.caller.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.caller.timeout_seconds)),
    )
    return ResilientCaller(
        _build_single_caller(provider, config, model=model),
        policy,
        event_hook=_log_caller_event,
    )


def _load_runtime(root: Path, config_path: Path) -> Runtime:
    config = load_config(config_path).apply_env()
    configure_logging(config.logging.level, json_output=config.logging.json)
    state_dir = Path(config.engine.state_dir)
    if not state_dir.is_absolute():
        state_dir = root / state_dir
    store = RunStore(state_dir)
    controller = RunController(
        store,
        lambda provider: _build_caller(provider, config),
        critic_caller=_build_caller("openai", config, model=config.models.critic),
        config=config,
    )
    return Runtime(
        root=root,
        config_path=config_path,
        config=config,
        store=store,
        controller=controller,
    )


def _runtime(config_value: str) -> Runtime:
    root = Path.cwd().resolve()
    return _load_runtime(root, _resolve_config_path(root, config_value))


def _run(coro_factory: Callable[[], Awaitable[T]]) -> T:
    async def _main() -> T:
        return await coro_factory()

    try:
        return asyncio.run(_main())
    except AgentRunError as exc:
        raise click.ClickException(str(exc)) from exc


async def _await_ack(runtime: Runtime, ack: Awaitable[Acknowledgement]) -> AgentRun:
    acknowledgement = await ack
    if acknowledgement.task is not None:
        await acknowledgement.task
    await runtime.controller.drain()
    return runtime.store.get(acknowledgement.run_id)


def _echo_run(run: AgentRun) -> None:
    click.echo(f"Run ID: {run.id}")
    click.echo(f"Project: {run.project_name}")
    click.echo(f"Status: {run.status}")
    if run.paused_at_step_index is not None:
        click.echo(f"Paused before step: {run.paused_at_step_index}")
    if run.error:
        click.echo(f"Error: {run.error}")


config_option = click.option(
    "--config", "config_value", default="agentrun.toml", show_default=True
)


@click.group()
def cli() -> None:
    """Agent run engine CLI."""


@cli.command("init")
@click.option("--provider", type=click.Choice(LLM_PROVIDERS), default=None)
@config_option
def init_command(provider: str | None, config_value: str) -> None:
    root = Path.cwd().resolve()
    config_path = _resolve_config_path(root, config_value)
    config = load_config(config_path)
    if provider:
        config.engine.default_provider = provider  # type: ignore[assignment]
    save_config(config_path, config)

    state_dir = Path(config.engine.state_dir)
    if not state_dir.is_absolute():
        state_dir = root / state_dir
    RunStore(state_dir)

    click.echo(f"Initialized agentrun in {root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Default provider: {config.engine.default_provider}")


@cli.command("create")
@click.argument("goal")
@click.option("--provider", type=click.Choice(LLM_PROVIDERS), default=None)
@click.option("--design-only", is_flag=True, default=False)
@click.option("--run", "run_now", is_flag=True, default=False)
@config_option
def create_command(
    goal: str, provider: str | None, design_only: bool, run_now: bool, config_value: str
) -> None:
    if design_only and run_now:
        raise click.UsageError("--design-only and --run are mutually exclusive.")
    runtime = _runtime(config_value)
    controller = runtime.controller

    async def _create() -> AgentRun:
        run = await controller.create(goal, provider)
        if design_only:
            return await _await_ack(runtime, controller.design(run.id))
        if run_now:
            return await _await_ack(runtime, controller.execute(run.id))
        await controller.drain()
        return runtime.store.get(run.id)

    _echo_run(_run(_create))


@cli.command("design")
@click.argument("run_id")
@config_option
def design_command(run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    run = _run(lambda: _await_ack(runtime, runtime.controller.design(run_id)))
    _echo_run(run)
    for agent in run.agent_definitions:
        click.echo(f"  {agent.id}")


@cli.command("execute")
@click.argument("run_id")
@click.option("--breakpoint", "breakpoints", type=int, multiple=True)
@click.option("--edit-agent", "edited_agent_id", default=None)
@click.option("--edit-prompt", "edited_prompt", default=None)
@click.option("--hint", "user_hint", default=None)
@click.option("--provider", type=click.Choice(LLM_PROVIDERS), default=None)
@config_option
def execute_command(
    run_id: str,
    breakpoints: tuple[int, ...],
    edited_agent_id: str | None,
    edited_prompt: str | None,
    user_hint: str | None,
    provider: str | None,
    config_value: str,
) -> None:
    runtime = _runtime(config_value)
    run = _run(
        lambda: _await_ack(
            runtime,
            runtime.controller.execute(
                run_id,
                breakpoints=[Breakpoint(step_index=index) for index in breakpoints]
                if breakpoints
                else None,
                edited_agent_id=edited_agent_id,
                edited_prompt=edited_prompt,
                user_hint=user_hint,
                llm_provider=provider,
            ),
        )
    )
    _echo_run(run)
    if run.final_output:
        click.echo(run.final_output)


@cli.command("resume")
@click.argument("run_id")
@click.option("--hint", "user_hint", default=None)
@config_option
def resume_command(run_id: str, user_hint: str | None, config_value: str) -> None:
    runtime = _runtime(config_value)
    run = _run(lambda: _await_ack(runtime, runtime.controller.resume(run_id, user_hint)))
    _echo_run(run)
    if run.final_output:
        click.echo(run.final_output)


@cli.command("recover")
@click.argument("run_id")
@config_option
def recover_command(run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    _echo_run(_run(lambda: _await_ack(runtime, runtime.controller.recover(run_id))))


@cli.command("fork")
@click.argument("run_id")
@click.option("--step", "step_index", type=int, required=True)
@click.option("--edit-agent", "edited_agent_id", default=None)
@click.option("--edit-prompt", "edited_prompt", default=None)
@click.option("--run", "execute", is_flag=True, default=False)
@config_option
def fork_command(
    run_id: str,
    step_index: int,
    edited_agent_id: str | None,
    edited_prompt: str | None,
    execute: bool,
    config_value: str,
) -> None:
    runtime = _runtime(config_value)
    run = _run(
        lambda: _await_ack(
            runtime,
            runtime.controller.fork(
                run_id,
                step_index,
                edited_agent_id=edited_agent_id,
                edited_prompt=edited_prompt,
                execute=execute,
            ),
        )
    )
    _echo_run(run)


@cli.command("ghost")
@click.argument("run_id")
@click.argument("agent_id")
@click.argument("prompt")
@click.option("--run", "execute", is_flag=True, default=False)
@config_option
def ghost_command(
    run_id: str, agent_id: str, prompt: str, execute: bool, config_value: str
) -> None:
    runtime = _runtime(config_value)
    run = _run(
        lambda: _await_ack(
            runtime, runtime.controller.ghost(run_id, agent_id, prompt, execute=execute)
        )
    )
    _echo_run(run)


@cli.command("promote")
@click.argument("run_id")
@click.argument("ghost_run_id")
@config_option
def promote_command(run_id: str, ghost_run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    run = _run(lambda: runtime.controller.promote_ghost(run_id, ghost_run_id))
    click.echo(f"Promoted {ghost_run_id} onto {run.id}")


@cli.command("critic")
@click.argument("run_id")
@config_option
def critic_command(run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    run = _run(lambda: runtime.controller.run_critic(run_id))
    payload = [
        {"step": index, "agent_id": step.agent_id, **step.critic_result.to_dict()}
        for index, step in enumerate(run.steps)
        if step.critic_result is not None
    ]
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.command("agents")
@click.argument("run_id")
@click.argument("definitions_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@config_option
def agents_command(run_id: str, definitions_file: Path, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        raw = json.loads(definitions_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Invalid JSON in {definitions_file}: {exc}") from exc
    if isinstance(raw, dict):
        raw = raw.get("agents", [])
    if not isinstance(raw, list):
        raise click.ClickException("Expected a JSON array of agent definitions.")
    run = _run(lambda: runtime.controller.update_agent_definitions(run_id, raw))
    click.echo(f"Updated {len(run.agent_definitions)} agent definitions on {run.id}")


@cli.command("show")
@click.argument("run_id")
@config_option
def show_command(run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        run = runtime.controller.get(run_id)
    except AgentRunError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(run.to_dict(), ensure_ascii=False, indent=2))


@cli.command("list")
@click.option("--limit", type=int, default=50, show_default=True)
@config_option
def list_command(limit: int, config_value: str) -> None:
    runtime = _runtime(config_value)
    runs = runtime.controller.list_runs(limit)
    if not runs:
        click.echo("No runs found.")
        return
    for run in runs:
        click.echo(f"{run.id} {run.status:<9} {run.project_name}")


@cli.command("ghosts")
@click.argument("run_id")
@config_option
def ghosts_command(run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    ghosts = runtime.controller.list_ghosts(run_id)
    if not ghosts:
        click.echo("No ghost runs found.")
        return
    for ghost in ghosts:
        click.echo(f"{ghost.id} {ghost.status:<9} {ghost.project_name}")


@cli.command("analytics")
@config_option
def analytics_command(config_value: str) -> None:
    runtime = _runtime(config_value)
    click.echo(json.dumps(runtime.controller.analytics(), ensure_ascii=False, indent=2))


@cli.command("rename")
@click.argument("run_id")
@click.argument("name")
@config_option
def rename_command(run_id: str, name: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        run = runtime.controller.rename(run_id, name)
    except AgentRunError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Renamed {run.id}: {run.project_name}")


@cli.command("title")
@click.argument("run_id")
@config_option
def title_command(run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    run = _run(lambda: runtime.controller.generate_title(run_id))
    click.echo(run.project_name)


@cli.command("delete")
@click.argument("run_id")
@config_option
def delete_command(run_id: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        runtime.controller.delete(run_id)
    except AgentRunError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Deleted {run_id}")
