import os
import shlex
import subprocess
import sys
from pathlib import Path

import pytest

from plan_cycle.__main__ import EXIT_INTERRUPTED, main
from plan_cycle.controller import CycleController
from plan_cycle.models import CycleState, CycleStatus
from plan_cycle.plan_parser import render_task
from plan_cycle.state_store import CycleStateStore

REPO_ROOT = Path(__file__).resolve().parents[1]

PLAN = (
    "# Phase 1 Plan 1-1: Greeting\n\n## Objective\n\nAdd a greeting module to the project.\n\n"
    + render_task("Greeting", "Create 'lib/greet.js' and export function greet", files=["lib/greet.js"])
    + "\n"
)

CREATE_GREETING = (
    "import pathlib; pathlib.Path('lib').mkdir(exist_ok=True); "
    "pathlib.Path('lib/greet.js').write_text('export function greet() {}\\n')"
)


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    # main() exports the workspace root; register it so it is restored afterwards.
    monkeypatch.setenv("PLAN_CYCLE_WORKSPACE_ROOT", str(tmp_path))
    for name in ("PLAN_CYCLE_EXECUTOR_CMD", "PLAN_CYCLE_STATE_FILE", "PLAN_CYCLE_PLANNING_DIR"):
        monkeypatch.delenv(name, raising=False)
    planning = tmp_path / ".planning"
    planning.mkdir()
    (planning / "phase-1.PLAN.md").write_text(PLAN, encoding="utf-8")
    return tmp_path


def _python(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def test_status_without_cycle(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--workspace-root", str(workspace), "status"]) == 0
    assert "No active cycle" in capsys.readouterr().out


def test_status_reports_active_cycle(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    store = CycleStateStore(workspace / ".plan-cycle" / "cycle-state.json")
    assert store.save(CycleState(phase=1, current_state=CycleStatus.VERIFYING, attempts=1))
    assert main(["--workspace-root", str(workspace), "status"]) == 0
    out = capsys.readouterr().out
    assert "state=VERIFYING" in out
    assert "attempts=1/3" in out
    assert "can_resume=True" in out


def test_run_executes_and_verifies(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("PLAN_CYCLE_EXECUTOR_CMD", _python(CREATE_GREETING))
    assert main(["--workspace-root", str(workspace), "run", "1"]) == 0
    out = capsys.readouterr().out
    assert "success=True" in out
    assert "completeness=100%" in out
    assert (workspace / "lib" / "greet.js").is_file()
    assert not (workspace / ".plan-cycle" / "cycle-state.json").exists()


def test_run_failure_prints_state_and_hints(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("PLAN_CYCLE_EXECUTOR_CMD", _python("import sys; sys.exit(3)"))
    assert main(["--workspace-root", str(workspace), "run", "1"]) == 1
    out = capsys.readouterr().out
    assert "code=EXECUTION_FAILED" in out
    assert "cycle_state:" in out
    assert "plan-cycle resume" in out

    assert main(["--workspace-root", str(workspace), "status"]) == 0
    out = capsys.readouterr().out
    assert "state=FAILED" in out
    assert "can_resume=False" in out


def test_run_missing_plan(workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("PLAN_CYCLE_EXECUTOR_CMD", _python("pass"))
    assert main(["--workspace-root", str(workspace), "run", "7"]) == 1
    out = capsys.readouterr().out
    assert "code=PLAN_NOT_FOUND" in out
    assert "suggestion:" in out
    assert "Check plan path is correct" in out


def test_run_without_planning_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PLAN_CYCLE_WORKSPACE_ROOT", str(tmp_path))
    assert main(["--workspace-root", str(tmp_path), "run", "1"]) == 1


def test_invalid_configuration_exits_nonzero(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PLAN_CYCLE_MAX_ATTEMPTS", "lots")
    assert main(["--workspace-root", str(workspace), "status"]) == 1


def test_interrupt_exits_130(workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    def interrupted(self: CycleController, phase: str, options: object = None) -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(CycleController, "run_cycle", interrupted)
    assert main(["--workspace-root", str(workspace), "run", "1"]) == EXIT_INTERRUPTED
    assert "Resume with: plan-cycle resume" in capsys.readouterr().out


def test_resume_without_state_fails(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--workspace-root", str(workspace), "resume"]) == 1
    assert "No cycle state found" in capsys.readouterr().out


def test_review_plan_reports_issues(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    plan = workspace / "REVIEW.PLAN.md"
    plan.write_text(render_task("Windows", "Write it", files=["lib\\w.js"]) + "\n", encoding="utf-8")
    assert main(["--workspace-root", str(workspace), "review", "REVIEW.PLAN.md", "--auto-fix"]) == 0
    out = capsys.readouterr().out
    assert "Issues Found" in out
    assert "applied_fixes=1" in out
    assert "lib/w.js" in plan.read_text(encoding="utf-8")


def test_review_directory_and_missing_target(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--workspace-root", str(workspace), "review", ".planning"]) == 0
    assert "plans=1 tasks=1 ok=1 issues=0" in capsys.readouterr().out
    assert main(["--workspace-root", str(workspace), "review", "missing.md"]) == 1


def test_module_entry_point_runs(tmp_path: Path) -> None:
    env = os.environ.copy()
    env["PYTHONPATH"] = str(REPO_ROOT / "src") + os.pathsep + env.get("PYTHONPATH", "")
    env.pop("PLAN_CYCLE_WORKSPACE_ROOT", None)

    result = subprocess.run(
        [sys.executable, "-m", "plan_cycle", "--workspace-root", str(tmp_path), "status"],
        cwd=REPO_ROOT,
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )

    assert result.returncode == 0, result.stderr
    assert "No active cycle" in result.stdout


def test_workspace_env_file_is_loaded(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Register the variable so whatever the .env file sets is undone afterwards.
    monkeypatch.setenv("PLAN_CYCLE_MAX_ATTEMPTS", "3")
    monkeypatch.delenv("PLAN_CYCLE_MAX_ATTEMPTS")
    (workspace / ".env").write_text("PLAN_CYCLE_MAX_ATTEMPTS=lots\n", encoding="utf-8")
    assert main(["--workspace-root", str(workspace), "status"]) == 1
