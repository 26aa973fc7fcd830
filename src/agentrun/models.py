from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

RunStatus = Literal["designing", "draft", "running", "complete", "failed", "paused"]
StepStatus = Literal["pending", "running", "complete", "failed"]
Severity = Literal["low", "medium", "high"]
LLMProvider = Literal["openai", "anthropic", "google"]

RUN_STATUSES = ("designing", "draft", "running", "complete", "failed", "paused")
TERMINAL_STATUSES = frozenset({"complete", "failed"})
LLM_PROVIDERS = ("openai", "anthropic", "google")
SEVERITIES = ("low", "medium", "high")
PAUSE_BEFORE_STEP = "pause_before_step"
DEFAULT_PROJECT_NAME = "Untitled"


def utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def new_run_id() -> str:
    return f"run-{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}-{uuid4().hex[:8]}"


def _str_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(item) for item in value]


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class AgentDefinition:
    id: str
    prompt: str
    tools: list[str] | None = None
    input_source: str | None = None
    next_step: str | None = None
    dependencies: list[str] | None = None

    def with_prompt(self, prompt: str) -> AgentDefinition:
        return AgentDefinition(
            id=self.id,
            prompt=prompt,
            tools=list(self.tools) if self.tools is not None else None,
            input_source=self.input_source,
            next_step=self.next_step,
            dependencies=list(self.dependencies) if self.dependencies is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "tools": self.tools,
            "input_source": self.input_source,
            "next_step": self.next_step,
            "dependencies": self.dependencies,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentDefinition:
        """Build a definition, accepting both snake_case and camelCase keys."""
        return cls(
            id=str(data.get("id") or data.get("agent_id") or ""),
            prompt=str(data.get("prompt") or ""),
            tools=_str_list(data.get("tools")),
            input_source=_optional_str(data.get("input_source") or data.get("inputSource")),
            next_step=_optional_str(data.get("next_step") or data.get("nextStep")),
            dependencies=_str_list(data.get("dependencies")),
        )


@dataclass(slots=True)
class CriticResult:
    contradictions: list[str] = field(default_factory=list)
    severity: Severity = "low"
    step_index: int | None = None

    @classmethod
    def neutral(cls, step_index: int | None = None) -> CriticResult:
        return cls(contradictions=[], severity="low", step_index=step_index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "contradictions": list(self.contradictions),
            "severity": self.severity,
            "step_index": self.step_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CriticResult:
        severity = data.get("severity")
        return cls(
            contradictions=_str_list(data.get("contradictions")) or [],
            severity=severity if severity in SEVERITIES else "low",
            step_index=_optional_int(data.get("step_index")),
        )


@dataclass(slots=True)
class AgentStep:
    agent_id: str
    agent_name: str | None = None
    status: StepStatus = "pending"
    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    observation: str | None = None
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    duration_ms: int | None = None
    cost_usd: float | None = None
    critic_result: CriticResult | None = None

    @classmethod
    def pending_for(cls, agent: AgentDefinition) -> AgentStep:
        return cls(agent_id=agent.id, agent_name=agent.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "status": self.status,
            "input": self.input,
            "output": self.output,
            "observation": self.observation,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "duration_ms": self.duration_ms,
            "cost_usd": self.cost_usd,
            "critic_result": self.critic_result.to_dict() if self.critic_result else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentStep:
        critic = data.get("critic_result")
        status = data.get("status")
        cost = data.get("cost_usd")
        return cls(
            agent_id=str(data.get("agent_id") or ""),
            agent_name=_optional_str(data.get("agent_name")),
            status=status if status in {"pending", "running", "complete", "failed"} else "pending",
            input=data.get("input") if isinstance(data.get("input"), dict) else None,
            output=data.get("output") if isinstance(data.get("output"), dict) else None,
            observation=_optional_str(data.get("observation")),
            error=_optional_str(data.get("error")),
            started_at=_optional_str(data.get("started_at")),
            completed_at=_optional_str(data.get("completed_at")),
            tokens_in=_optional_int(data.get("tokens_in")),
            tokens_out=_optional_int(data.get("tokens_out")),
            duration_ms=_optional_int(data.get("duration_ms")),
            cost_usd=float(cost) if isinstance(cost, (int, float)) else None,
            critic_result=CriticResult.from_dict(critic) if isinstance(critic, dict) else None,
        )


@dataclass(slots=True)
class Breakpoint:
    step_index: int
    type: str = PAUSE_BEFORE_STEP

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "step_index": self.step_index}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Breakpoint | None:
        step_index = _optional_int(data.get("step_index", data.get("stepIndex")))
        if step_index is None:
            return None
        return cls(step_index=step_index, type=str(data.get("type") or PAUSE_BEFORE_STEP))


@dataclass(slots=True)
class MissionBrief:
    summary: str | None = None
    inputs: list[str] | None = None
    stages: list[str] | None = None
    success_criteria: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "inputs": self.inputs,
            "stages": self.stages,
            "success_criteria": self.success_criteria,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MissionBrief:
        summary = data.get("summary")
        return cls(
            summary=summary if isinstance(summary, str) else None,
            inputs=_str_list(data.get("inputs")),
            stages=_str_list(data.get("stages")),
            success_criteria=_str_list(
                data.get("success_criteria", data.get("successCriteria"))
            ),
        )


@dataclass(slots=True)
class AgentRun:
    user_goal: str
    id: str = field(default_factory=new_run_id)
    project_name: str = DEFAULT_PROJECT_NAME
    status: RunStatus = "designing"
    agent_definitions: list[AgentDefinition] = field(default_factory=list)
    steps: list[AgentStep] = field(default_factory=list)
    final_output: str | None = None
    error: str | None = None
    llm_provider: LLMProvider = "openai"
    mission_brief: MissionBrief | None = None
    breakpoints: list[Breakpoint] = field(default_factory=list)
    paused_at_step_index: int | None = None
    user_hint: str | None = None
    forked_from_run_id: str | None = None
    forked_at_step_index: int | None = None
    ghost_of_run_id: str | None = None
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)
    revision: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def reset_steps(self) -> None:
        self.steps = [AgentStep.pending_for(agent) for agent in self.agent_definitions]

    def step_index_for(self, agent_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.agent_id == agent_id:
                return index
        return -1

    def pauses_before(self, step_index: int) -> bool:
        return any(
            bp.type == PAUSE_BEFORE_STEP and bp.step_index == step_index
            for bp in self.breakpoints
        )

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_name": self.project_name,
            "user_goal": self.user_goal,
            "status": self.status,
            "created_at": self.created_at,
            "forked_from_run_id": self.forked_from_run_id,
            "ghost_of_run_id": self.ghost_of_run_id,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_goal": self.user_goal,
            "project_name": self.project_name,
            "status": self.status,
            "agent_definitions": [agent.to_dict() for agent in self.agent_definitions],
            "steps": [step.to_dict() for step in self.steps],
            "final_output": self.final_output,
            "error": self.error,
            "llm_provider": self.llm_provider,
            "mission_brief": self.mission_brief.to_dict() if self.mission_brief else None,
            "breakpoints": [bp.to_dict() for bp in self.breakpoints],
            "paused_at_step_index": self.paused_at_step_index,
            "user_hint": self.user_hint,
            "forked_from_run_id": self.forked_from_run_id,
            "forked_at_step_index": self.forked_at_step_index,
            "ghost_of_run_id": self.ghost_of_run_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, revision: int = 0) -> AgentRun:
        status = data.get("status")
        provider = data.get("llm_provider")
        brief = data.get("mission_brief")
        breakpoints = [
            bp
            for bp in (
                Breakpoint.from_dict(item)
                for item in data.get("breakpoints") or []
                if isinstance(item, dict)
            )
            if bp is not None
        ]
        return cls(
            id=str(data["id"]),
            user_goal=str(data.get("user_goal") or ""),
            project_name=str(data.get("project_name") or DEFAULT_PROJECT_NAME),
            status=status if status in RUN_STATUSES else "designing",
            agent_definitions=[
                AgentDefinition.from_dict(item)
                for item in data.get("agent_definitions") or []
                if isinstance(item, dict)
            ],
            steps=[
                AgentStep.from_dict(item)
                for item in data.get("steps") or []
                if isinstance(item, dict)
            ],
            final_output=_optional_str(data.get("final_output")),
            error=_optional_str(data.get("error")),
            llm_provider=provider if provider in LLM_PROVIDERS else "openai",
            mission_brief=MissionBrief.from_dict(brief) if isinstance(brief, dict) else None,
            breakpoints=breakpoints,
            paused_at_step_index=_optional_int(data.get("paused_at_step_index")),
            user_hint=_optional_str(data.get("user_hint")),
            forked_from_run_id=_optional_str(data.get("forked_from_run_id")),
            forked_at_step_index=_optional_int(data.get("forked_at_step_index")),
            ghost_of_run_id=_optional_str(data.get("ghost_of_run_id")),
            created_at=str(data.get("created_at") or utcnow_iso()),
            updated_at=str(data.get("updated_at") or utcnow_iso()),
            revision=revision,
        )
