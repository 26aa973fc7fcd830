import json
from pathlib import Path

import pytest

from agentrun.errors import RunConflictError, RunNotFoundError
from agentrun.models import AgentDefinition, AgentRun, Breakpoint
from agentrun.state import RunStore


def _run(goal: str = "write a poem", **kwargs) -> AgentRun:
    return AgentRun(user_goal=goal, **kwargs)


def test_save_and_get_roundtrip(tmp_path: Path) -> None:
    store = RunStore(tmp_path / ".agentrun")
    run = _run(
        agent_definitions=[AgentDefinition(id="a", prompt="p", dependencies=["b"])],
        breakpoints=[Breakpoint(step_index=1)],
    )
    run.reset_steps()

    store.save(run)
    loaded = store.get(run.id)

    assert loaded.to_dict() == run.to_dict()
    assert loaded.revision == 1
    assert (tmp_path / ".agentrun" / "runs" / f"{run.id}.json").exists()


def test_each_save_bumps_revision(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    run = store.save(_run())
    store.save(run)

    assert store.get(run.id).revision == 2


def test_stale_expected_revision_conflicts(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    run = store.save(_run())
    stale = store.get(run.id)
    store.save(run)

    with pytest.raises(RunConflictError):
        store.save(stale, expected_revision=stale.revision)


def test_update_applies_change(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    run = store.save(_run())

    def _rename(current: AgentRun) -> None:
        current.project_name = "Moon Poems"

    updated = store.update(run.id, _rename)

    assert updated.project_name == "Moon Poems"
    assert store.get(run.id).project_name == "Moon Poems"
    assert store.get(run.id).revision == 2


def test_missing_and_invalid_ids(tmp_path: Path) -> None:
    store = RunStore(tmp_path)

    with pytest.raises(RunNotFoundError) as excinfo:
        store.get("run-missing")
    assert str(excinfo.value) == "Run not found: run-missing"

    with pytest.raises(RunNotFoundError):
        store.get("../escape")


def test_legacy_payload_without_envelope(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    legacy = {"user_goal": "old goal", "status": "complete", "steps": []}
    (store.runs_dir / "run-legacy.json").write_text(json.dumps(legacy), encoding="utf-8")

    run = store.get("run-legacy")

    assert run.id == "run-legacy"
    assert run.status == "complete"
    assert run.revision == 1


def test_list_runs_newest_first_and_delete(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    older = store.save(_run("first", created_at="2024-01-01T00:00:00+00:00"))
    newer = store.save(_run("second", created_at="2024-02-01T00:00:00+00:00"))

    assert [run.id for run in store.list_runs()] == [newer.id, older.id]

    store.delete(older.id)

    assert [run.id for run in store.list_runs()] == [newer.id]
    with pytest.raises(RunNotFoundError):
        store.delete(older.id)
