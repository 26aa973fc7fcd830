from __future__ import annotations

import json
import os
import re
import tempfile
import time
from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from agentrun.errors import AgentRunError, RunConflictError, RunNotFoundError
from agentrun.models import AgentRun, utcnow_iso

RUN_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class RunStore:
    """Whole-document JSON persistence for runs, one file per run.

    Each file holds an envelope ``{schema_version, revision, updated_at, data}``.
    ``save`` replaces the document atomically; passing ``expected_revision``
    turns it into a compare-and-swap.
    """

    SCHEMA_VERSION = 1

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir.resolve()
        self.runs_dir = self.state_dir / "runs"
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def _run_file(self, run_id: str) -> Path:
        if not RUN_ID_PATTERN.match(run_id):
            raise RunNotFoundError(run_id)
        return self.runs_dir / f"{run_id}.json"

    def _lock_file(self, run_id: str) -> Path:
        return self.runs_dir / f".{run_id}.lock"

    @contextmanager
    def _run_lock(self, run_id: str, timeout_seconds: float = 3.0):
        lock_file = self._lock_file(run_id)
        start = time.monotonic()
        while True:
            try:
                fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > timeout_seconds:
                    raise AgentRunError(f"Timed out waiting for lock on run {run_id}.") from exc
                time.sleep(0.02)

        try:
            yield
        finally:
            try:
                lock_file.unlink()
            except FileNotFoundError:
                pass

    def _read_envelope(self, run_id: str) -> dict[str, Any] | None:
        run_file = self._run_file(run_id)
        if not run_file.exists():
            return None
        try:
            raw = json.loads(run_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        if not isinstance(raw, dict):
            return None
        if "schema_version" in raw and "data" in raw and "revision" in raw:
            return {
                "schema_version": int(raw.get("schema_version") or self.SCHEMA_VERSION),
                "revision": int(raw.get("revision") or 1),
                "updated_at": raw.get("updated_at") or utcnow_iso(),
                "data": raw.get("data"),
            }
        return {
            "schema_version": self.SCHEMA_VERSION,
            "revision": 1,
            "updated_at": utcnow_iso(),
            "data": raw,
        }

    def _write_envelope(self, run_id: str, envelope: dict[str, Any]) -> None:
        serialized = json.dumps(envelope, ensure_ascii=False, separators=(",", ":"))
        fd, tmp_path = tempfile.mkstemp(prefix=f".{run_id}-", dir=self.runs_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialized)
            os.replace(tmp_path, self._run_file(run_id))
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def exists(self, run_id: str) -> bool:
        return self._read_envelope(run_id) is not None

    def get(self, run_id: str) -> AgentRun:
        envelope = self._read_envelope(run_id)
        if envelope is None or not isinstance(envelope.get("data"), dict):
            raise RunNotFoundError(run_id)
        data = dict(envelope["data"])
        data.setdefault("id", run_id)
        return AgentRun.from_dict(data, revision=int(envelope["revision"]))

    def save(self, run: AgentRun, *, expected_revision: int | None = None) -> AgentRun:
        with self._run_lock(run.id):
            current = self._read_envelope(run.id)
            current_revision = int(current["revision"]) if current else 0
            if expected_revision is not None and expected_revision != current_revision:
                raise RunConflictError(f"Concurrent update detected for run '{run.id}'.")
            run.updated_at = utcnow_iso()
            run.revision = current_revision + 1
            self._write_envelope(
                run.id,
                {
                    "schema_version": self.SCHEMA_VERSION,
                    "revision": run.revision,
                    "updated_at": run.updated_at,
                    "data": run.to_dict(),
                },
            )
        return run

    def update(self, run_id: str, updater: Callable[[AgentRun], None]) -> AgentRun:
        """Read-modify-write with a revision check, retried on conflicts."""
        last_error: RunConflictError | None = None
        for _ in range(4):
            run = self.get(run_id)
            updater(run)
            try:
                return self.save(run, expected_revision=run.revision)
            except RunConflictError as exc:
                last_error = exc
                time.sleep(0.01)
        raise last_error or RunConflictError(f"Update failed for run '{run_id}'.")

    def delete(self, run_id: str) -> None:
        run_file = self._run_file(run_id)
        with self._run_lock(run_id):
            if not run_file.exists():
                raise RunNotFoundError(run_id)
            run_file.unlink()

    def list_runs(self) -> list[AgentRun]:
        """All stored runs, newest first."""
        runs: list[AgentRun] = []
        for run_file in self.runs_dir.glob("*.json"):
            try:
                runs.append(self.get(run_file.stem))
            except RunNotFoundError:
                continue
        runs.sort(key=lambda run: (run.created_at, run.id), reverse=True)
        return runs
