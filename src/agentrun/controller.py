from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from agentrun.agents import ArchitectAgent, CriticAgent, SupervisorAgent, TitleAgent
from agentrun.agents.architect import validate_agent_ids
from agentrun.backends.base import ModelCaller
from agentrun.config import AgentRunConfig
from agentrun.critic import CriticEvaluator
from agentrun.errors import DesignError, InvalidRunMutationError, RunNotFoundError
from agentrun.executor import StepExecutor
from agentrun.forking import apply_prompt_edit, fork_run, ghost_run, promote_ghost
from agentrun.models import (
    DEFAULT_PROJECT_NAME,
    LLM_PROVIDERS,
    AgentDefinition,
    AgentRun,
    AgentStep,
    Breakpoint,
)
from agentrun.scheduler import topological_order
from agentrun.state.store import RunStore

logger = structlog.get_logger("controller")

CallerFactory = Callable[[str], ModelCaller]


@dataclass(slots=True)
class Acknowledgement:
    run_id: str
    status: str
    task: asyncio.Task[AgentRun] | None = None


class RunController:
    """Owns run state transitions and drives steps in scheduler order.

    Public operations validate synchronously, then hand execution to a
    background task and return an ``Acknowledgement``. Failures inside a
    task are written onto the run document, never raised to the caller.
    """

    def __init__(
        self,
        store: RunStore,
        caller_factory: CallerFactory,
        *,
        critic_caller: ModelCaller | None = None,
        config: AgentRunConfig | None = None,
    ) -> None:
        self.store = store
        self.caller_factory = caller_factory
        self.critic_caller = critic_caller
        self.config = config or AgentRunConfig.default()
        self._tasks: dict[str, asyncio.Task[AgentRun]] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------ tasks

    def is_in_flight(self, run_id: str) -> bool:
        task = self._tasks.get(run_id)
        return task is not None and not task.done()

    def _start(self, run_id: str, **options: Any) -> asyncio.Task[AgentRun]:
        if self.is_in_flight(run_id):
            raise InvalidRunMutationError("Run already in progress.")
        task = asyncio.create_task(self._run_workflow(run_id, **options), name=f"run:{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run_id, None))
        return task

    def _spawn_background(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait(self, run_id: str) -> AgentRun:
        """Wait for any in-flight task of ``run_id`` and return the stored run."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self.store.get(run_id)

    async def drain(self) -> None:
        pending = [*self._tasks.values(), *self._background]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------ operations

    async def create(
        self,
        user_goal: str,
        llm_provider: str | None = None,
        *,
        generate_title: bool = True,
    ) -> AgentRun:
        goal = (user_goal or "").strip()
        if not goal:
            raise InvalidRunMutationError("user_goal is required.")
        provider = llm_provider or self.config.engine.default_provider
        if provider not in LLM_PROVIDERS:
            raise InvalidRunMutationError(f"Unknown provider: {provider}")
        run = self.store.save(AgentRun(user_goal=goal, llm_provider=provider))
        logger.info("run_created", run_id=run.id, llm_provider=provider)
        if generate_title and self.critic_caller is not None:
            self._spawn_background(self._refresh_title(run.id, goal))
        return run

    async def design(self, run_id: str) -> Acknowledgement:
        run = self.store.get(run_id)
        if run.status != "designing":
            raise InvalidRunMutationError("Run must be in designing status.")
        task = self._start(run_id, design_only=True)
        return Acknowledgement(run_id=run_id, status="draft", task=task)

    async def execute(
        self,
        run_id: str,
        *,
        breakpoints: Iterable[Breakpoint | dict[str, Any]] | None = None,
        edited_agent_id: str | None = None,
        edited_prompt: str | None = None,
        user_hint: str | None = None,
        llm_provider: str | None = None,
    ) -> Acknowledgement:
        run = self.store.get(run_id)
        if run.status == "running" or self.is_in_flight(run_id):
            raise InvalidRunMutationError("Run already in progress.")
        if run.status == "paused":
            raise InvalidRunMutationError("Run is paused; use resume to continue it.")

        changed = False
        if breakpoints is not None:
            run.breakpoints = _coerce_breakpoints(breakpoints)
            changed = True
        if llm_provider:
            if llm_provider not in LLM_PROVIDERS:
                raise InvalidRunMutationError(f"Unknown provider: {llm_provider}")
            run.llm_provider = llm_provider  # type: ignore[assignment]
            changed = True
        if user_hint is not None:
            run.user_hint = user_hint or None
            changed = True
        if changed:
            self.store.save(run)

        task = self._start(
            run_id,
            edited_agent_id=edited_agent_id,
            edited_prompt=edited_prompt,
            user_hint=user_hint or None,
        )
        return Acknowledgement(run_id=run_id, status="running", task=task)

    async def resume(self, run_id: str, user_hint: str | None = None) -> Acknowledgement:
        run = self.store.get(run_id)
        if run.status != "paused":
            raise InvalidRunMutationError("Run is not paused.")
        if self.is_in_flight(run_id):
            raise InvalidRunMutationError("Run already in progress.")
        if user_hint is not None:
            run.user_hint = user_hint or None
            self.store.save(run)
        task = self._start(run_id, resume=True, user_hint=user_hint or None)
        return Acknowledgement(run_id=run_id, status="running", task=task)

    async def recover(self, run_id: str) -> Acknowledgement:
        """Continue a run left ``running`` by a crashed process."""
        run = self.store.get(run_id)
        if run.status != "running":
            raise InvalidRunMutationError("Only runs left in running status can be recovered.")
        task = self._start(run_id, recover=True)
        return Acknowledgement(run_id=run_id, status="running", task=task)

    async def fork(
        self,
        run_id: str,
        step_index: int,
        *,
        edited_agent_id: str | None = None,
        edited_prompt: str | None = None,
        execute: bool = False,
    ) -> Acknowledgement:
        parent = self.store.get(run_id)
        forked = self.store.save(
            fork_run(
                parent,
                step_index,
                edited_agent_id=edited_agent_id,
                edited_prompt=edited_prompt,
            )
        )
        logger.info(
            "run_forked",
            run_id=forked.id,
            parent_run_id=parent.id,
            step_index=forked.forked_at_step_index,
        )
        if not execute:
            return Acknowledgement(run_id=forked.id, status=forked.status)
        return await self.execute(forked.id)

    async def ghost(
        self,
        run_id: str,
        agent_id: str,
        new_prompt: str,
        *,
        execute: bool = False,
    ) -> Acknowledgement:
        live = self.store.get(run_id)
        ghost = self.store.save(ghost_run(live, agent_id, new_prompt))
        logger.info("ghost_created", run_id=ghost.id, live_run_id=live.id, agent_id=agent_id)
        if not execute:
            return Acknowledgement(run_id=ghost.id, status=ghost.status)
        return await self.execute(ghost.id)

    async def promote_ghost(self, live_run_id: str, ghost_run_id: str) -> AgentRun:
        live = self.store.get(live_run_id)
        ghost = self.store.get(ghost_run_id)
        if live.status == "running" or self.is_in_flight(live_run_id):
            raise InvalidRunMutationError("Cannot promote onto a run that is executing.")
        promote_ghost(live, ghost)
        saved = self.store.save(live, expected_revision=live.revision)
        logger.info("ghost_promoted", run_id=live_run_id, ghost_run_id=ghost_run_id)
        return saved

    async def run_critic(self, run_id: str) -> AgentRun:
        run = self.store.get(run_id)
        if self.critic_caller is None:
            raise InvalidRunMutationError("No critic model is configured.")
        evaluator = CriticEvaluator(CriticAgent(self.critic_caller))
        if not await evaluator.evaluate(run):
            return self.store.get(run_id)

        def _apply(fresh: AgentRun) -> None:
            for index, step in enumerate(fresh.steps):
                if index < len(run.steps):
                    step.critic_result = run.steps[index].critic_result

        return self.store.update(run_id, _apply)

    async def update_agent_definitions(
        self,
        run_id: str,
        definitions: Sequence[AgentDefinition | dict[str, Any]],
    ) -> AgentRun:
        run = self.store.get(run_id)
        if run.status != "draft":
            raise InvalidRunMutationError(
                "Can only edit agent definitions when run is in draft status."
            )
        agents: list[AgentDefinition] = []
        for item in definitions:
            if isinstance(item, AgentDefinition):
                agents.append(item)
            elif (
                isinstance(item, dict)
                and isinstance(item.get("id"), str)
                and isinstance(item.get("prompt"), str)
            ):
                agents.append(AgentDefinition.from_dict(item))
        problem = validate_agent_ids(agents)
        if problem:
            raise InvalidRunMutationError(f"Invalid agent definitions: {problem}.")
        run.agent_definitions = agents
        run.reset_steps()
        return self.store.save(run, expected_revision=run.revision)

    # ------------------------------------------------------------ queries

    def get(self, run_id: str) -> AgentRun:
        return self.store.get(run_id)

    def list_runs(self, limit: int = 50) -> list[AgentRun]:
        return self.store.list_runs()[:limit]

    def list_ghosts(self, run_id: str) -> list[AgentRun]:
        return [run for run in self.store.list_runs() if run.ghost_of_run_id == run_id]

    def analytics(self) -> list[dict[str, Any]]:
        """Per-agent success rate, average cost and duration over finished runs."""
        by_agent: dict[str, dict[str, float]] = {}
        for run in self.store.list_runs():
            if run.status not in {"complete", "failed"}:
                continue
            for step in run.steps:
                if not step.agent_id:
                    continue
                current = by_agent.setdefault(
                    step.agent_id, {"total": 0, "success": 0, "cost": 0.0, "duration": 0}
                )
                current["total"] += 1
                if step.status == "complete":
                    current["success"] += 1
                current["cost"] += step.cost_usd or 0.0
                current["duration"] += step.duration_ms or 0

        return [
            {
                "agent_id": agent_id,
                "total_runs": int(data["total"]),
                "success_rate": round(data["success"] / data["total"] * 100),
                "avg_cost_usd": round(data["cost"] / data["total"], 4),
                "avg_duration_sec": round(data["duration"] / data["total"] / 1000, 1),
            }
            for agent_id, data in by_agent.items()
        ]

    def rename(self, run_id: str, project_name: str) -> AgentRun:
        name = (project_name or "").strip()[:120]

        def _apply(run: AgentRun) -> None:
            if name:
                run.project_name = name

        return self.store.update(run_id, _apply)

    def delete(self, run_id: str) -> None:
        if self.is_in_flight(run_id):
            raise InvalidRunMutationError("Cannot delete a run that is executing.")
        self.store.delete(run_id)
        logger.info("run_deleted", run_id=run_id)

    async def generate_title(self, run_id: str) -> AgentRun:
        run = self.store.get(run_id)
        caller = self.critic_caller or self.caller_factory(run.llm_provider)
        title = await TitleAgent(caller).generate(run.user_goal)

        def _apply(fresh: AgentRun) -> None:
            fresh.project_name = title

        return self.store.update(run_id, _apply)

    async def _refresh_title(self, run_id: str, goal: str) -> None:
        if self.critic_caller is None:
            return
        title = await TitleAgent(self.critic_caller).generate(goal)
        if not title or title == DEFAULT_PROJECT_NAME:
            return

        def _apply(run: AgentRun) -> None:
            if run.project_name == DEFAULT_PROJECT_NAME:
                run.project_name = title

        try:
            await asyncio.to_thread(self.store.update, run_id, _apply)
        except Exception as exc:
            logger.warning("title_update_failed", run_id=run_id, error=str(exc))

    # ------------------------------------------------------------ workflow

    def _save_sync(self, run: AgentRun) -> None:
        # Keep a title written by the background title task.
        if run.project_name == DEFAULT_PROJECT_NAME:
            try:
                stored = self.store.get(run.id).project_name
            except RunNotFoundError:
                stored = DEFAULT_PROJECT_NAME
            if stored and stored != DEFAULT_PROJECT_NAME:
                run.project_name = stored
        self.store.save(run)

    async def _save(self, run: AgentRun) -> None:
        # The store lock sleeps while it waits; keep it off the event loop.
        await asyncio.to_thread(self._save_sync, run)

    async def _design(self, run: AgentRun, caller: ModelCaller) -> bool:
        run.status = "designing"
        await self._save(run)
        try:
            design = await ArchitectAgent(caller).design(run.user_goal)
        except DesignError as exc:
            run.status = "failed"
            run.error = str(exc)
            await self._save(run)
            logger.error("design_failed", run_id=run.id, error=run.error)
            return False

        if design.project_name:
            run.project_name = design.project_name
        elif self.critic_caller is not None:
            run.project_name = await TitleAgent(self.critic_caller).generate(run.user_goal)
        run.agent_definitions = design.agents
        run.mission_brief = design.mission_brief
        run.reset_steps()
        logger.info("run_designed", run_id=run.id, agents=[agent.id for agent in design.agents])
        return True

    async def _prepare_from_origin(
        self,
        run: AgentRun,
        origin_id: str,
        start: int,
        edited_agent_id: str | None,
        edited_prompt: str | None,
    ) -> bool:
        try:
            origin = self.store.get(origin_id)
        except RunNotFoundError:
            origin = None
        if origin is None or not origin.agent_definitions or not origin.steps:
            run.status = "failed"
            run.error = "Fork source run not found or has no agents"
            await self._save(run)
            logger.error("fork_source_missing", run_id=run.id, origin_run_id=origin_id)
            return False

        source = run.agent_definitions or origin.agent_definitions
        run.agent_definitions = apply_prompt_edit(source, edited_agent_id, edited_prompt)
        steps: list[AgentStep] = []
        for index, agent in enumerate(run.agent_definitions):
            inherited = origin.steps[index] if index < len(origin.steps) else None
            if index < start and inherited is not None and inherited.status == "complete":
                seeded = AgentStep.from_dict(inherited.to_dict())
                seeded.agent_id = agent.id
                seeded.agent_name = agent.id
                steps.append(seeded)
            else:
                steps.append(AgentStep.pending_for(agent))
        run.steps = steps
        return True

    async def _run_workflow(
        self,
        run_id: str,
        *,
        design_only: bool = False,
        resume: bool = False,
        recover: bool = False,
        edited_agent_id: str | None = None,
        edited_prompt: str | None = None,
        user_hint: str | None = None,
    ) -> AgentRun:
        run = self.store.get(run_id)
        try:
            caller = self.caller_factory(run.llm_provider)
            if resume or recover:
                ordered = topological_order(run.agent_definitions)
                if resume:
                    start = _position_of_step(run, ordered, run.paused_at_step_index or 0)
                    run.paused_at_step_index = None
                else:
                    start = _first_unfinished_position(run, ordered)
                    for step in run.steps:
                        if step.status == "running":
                            step.status = "pending"
                run.status = "running"
                run.error = None
                await self._save(run)
                logger.info("run_resumed", run_id=run.id, start_position=start, recover=recover)
            else:
                origin_id = run.forked_from_run_id or run.ghost_of_run_id
                from_origin = bool(origin_id) and run.status != "draft"
                if from_origin:
                    if not await self._prepare_from_origin(
                        run,
                        origin_id,
                        run.forked_at_step_index or 0,
                        edited_agent_id,
                        edited_prompt,
                    ):
                        return run
                elif run.status == "draft" and run.agent_definitions:
                    start = 0
                    run.agent_definitions = apply_prompt_edit(
                        run.agent_definitions, edited_agent_id, edited_prompt
                    )
                    run.reset_steps()
                else:
                    start = 0
                    if not await self._design(run, caller):
                        return run
                    if design_only:
                        run.status = "draft"
                        await self._save(run)
                        logger.info("run_drafted", run_id=run.id)
                        return run
                ordered = topological_order(run.agent_definitions)
                if from_origin:
                    # Inherited steps are indexed by declaration, not scheduler order.
                    start = _first_unfinished_position(run, ordered)
                run.status = "running"
                run.error = None
                run.final_output = None
                run.paused_at_step_index = None
                await self._save(run)
                logger.info("run_started", run_id=run.id, start_position=start)

            return await self._execute_steps(
                run,
                ordered,
                start,
                caller=caller,
                skip_breakpoints=resume or recover,
                user_hint=user_hint,
            )
        except Exception as exc:
            logger.exception("run_failed", run_id=run_id, error=str(exc))
            run.status = "failed"
            run.error = str(exc) or "Workflow failed"
            await self._save(run)
            return run

    async def _execute_steps(
        self,
        run: AgentRun,
        ordered: list[AgentDefinition],
        start: int,
        *,
        caller: ModelCaller,
        skip_breakpoints: bool,
        user_hint: str | None,
    ) -> AgentRun:
        outputs: dict[str, dict[str, Any]] = {}
        for agent in ordered[:start]:
            index = run.step_index_for(agent.id)
            if index < 0:
                continue
            step = run.steps[index]
            if step.status == "complete" and step.output is not None:
                outputs[agent.id] = step.output

        executor = StepExecutor(
            SupervisorAgent(caller),
            observation_chars=self.config.engine.observation_chars,
        )
        pending_hint = user_hint
        for agent in ordered[start:]:
            index = run.step_index_for(agent.id)
            if index < 0:
                continue
            step = run.steps[index]

            if not skip_breakpoints and run.pauses_before(index):
                run.status = "paused"
                run.paused_at_step_index = index
                await self._save(run)
                logger.info("run_paused", run_id=run.id, step_index=index, agent_id=agent.id)
                return run

            executor.mark_running(step)
            await self._save(run)
            await executor.execute(
                agent,
                step,
                outputs,
                ordered,
                run.user_goal,
                user_hint=pending_hint,
            )
            pending_hint = None

            if step.status == "failed":
                run.status = "failed"
                run.error = step.error
                await self._save(run)
                logger.error("run_failed", run_id=run.id, step_index=index, error=step.error)
                return run
            await self._save(run)

        final = outputs.get(ordered[-1].id) if ordered else None
        run.final_output = (
            json.dumps(final, ensure_ascii=False, indent=2) if final is not None else None
        )
        run.status = "complete"
        await self._save(run)
        logger.info("run_completed", run_id=run.id)
        return run


def _coerce_breakpoints(items: Iterable[Breakpoint | dict[str, Any]]) -> list[Breakpoint]:
    breakpoints: list[Breakpoint] = []
    for item in items:
        if isinstance(item, Breakpoint):
            breakpoints.append(item)
        elif isinstance(item, dict):
            parsed = Breakpoint.from_dict(item)
            if parsed is not None:
                breakpoints.append(parsed)
    return breakpoints


def _position_of_step(run: AgentRun, ordered: list[AgentDefinition], step_index: int) -> int:
    """Scheduler position of the agent owning ``run.steps[step_index]``."""
    if 0 <= step_index < len(run.steps):
        agent_id = run.steps[step_index].agent_id
        for position, agent in enumerate(ordered):
            if agent.id == agent_id:
                return position
    return step_index


def _first_unfinished_position(run: AgentRun, ordered: list[AgentDefinition]) -> int:
    for position, agent in enumerate(ordered):
        index = run.step_index_for(agent.id)
        if index >= 0 and run.steps[index].status != "complete":
            return position
    return len(ordered)
