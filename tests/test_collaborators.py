import shlex
import signal
import sys
from pathlib import Path

import pytest

from plan_cycle.collaborators import (
    CommandExecutor,
    ConsoleConfirmer,
    ExecutorFixer,
    FixPlanWriter,
    ManualExecutor,
    PlanReviewVerifier,
)
from plan_cycle.errors import CycleError, ErrorCode, recovery_hints
from plan_cycle.models import CycleOptions, ExecutionResult, VerificationResult
from plan_cycle.plan_parser import extract_tasks, render_task
from plan_cycle.progress import InterruptController, ProgressReporter


def _python(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def test_console_confirmer_answers() -> None:
    prompts: list[str] = []

    def answer(value: str):
        def _input(prompt: str) -> str:
            prompts.append(prompt)
            return value

        return _input

    assert ConsoleConfirmer(answer("")).confirm("Apply?") is True
    assert ConsoleConfirmer(answer("Y")).confirm("Apply?") is True
    assert ConsoleConfirmer(answer(" no ")).confirm("Apply?") is False
    assert ConsoleConfirmer(answer("N")).confirm("Apply?") is False
    assert prompts[0] == "Apply? (Y/n): "


def test_console_confirmer_treats_eof_as_decline() -> None:
    def closed(prompt: str) -> str:
        raise EOFError

    assert ConsoleConfirmer(closed).confirm("Apply?") is False


def test_command_executor_argv() -> None:
    plan = Path("/work/phase-1.PLAN.md")
    assert CommandExecutor("agent run --plan={plan} -v").build_argv(plan) == [
        "agent",
        "run",
        "--plan=/work/phase-1.PLAN.md",
        "-v",
    ]
    assert CommandExecutor("agent 'two words'").build_argv(plan) == ["agent", "two words", str(plan)]
    with pytest.raises(ValueError):
        CommandExecutor("   ")


def test_command_executor_runs_in_workspace(tmp_path: Path) -> None:
    code = "import pathlib, sys; pathlib.Path('seen.txt').write_text(sys.argv[1]); print('ok')"
    executor = CommandExecutor(_python(code), cwd=tmp_path)
    result = executor.execute(tmp_path / "plan.md", CycleOptions())
    assert result.success is True
    assert "ok" in result.output
    assert result.metadata["returncode"] == 0
    assert (tmp_path / "seen.txt").read_text() == str(tmp_path / "plan.md")


def test_command_executor_reports_failure_and_timeout(tmp_path: Path) -> None:
    failed = CommandExecutor(_python("import sys; sys.stderr.write('bad'); sys.exit(3)"), cwd=tmp_path)
    result = failed.execute(tmp_path / "plan.md", CycleOptions())
    assert result.success is False
    assert result.metadata["returncode"] == 3
    assert "bad" in result.output

    slow = CommandExecutor(_python("import time; time.sleep(10)"), cwd=tmp_path, timeout_seconds=1)
    result = slow.execute(tmp_path / "plan.md", CycleOptions())
    assert result.success is False
    assert "timed out" in result.output


def test_manual_executor_uses_confirmation(tmp_path: Path) -> None:
    announced: list[str] = []
    executor = ManualExecutor(ConsoleConfirmer(lambda prompt: "n"), announce=announced.append)
    result = executor.execute(tmp_path / "plan.md", CycleOptions())
    assert result.success is False
    assert result.output == "Execution not confirmed"
    assert str(tmp_path / "plan.md") in announced[0]


def test_plan_review_verifier_completeness(tmp_path: Path) -> None:
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "a.js").write_text("export const a = 1;\n", encoding="utf-8")
    plan = tmp_path / "PLAN.md"
    plan.write_text(
        render_task("Done", "Create 'lib/a.js' and export const a", files=["lib/a.js"])
        + "\n"
        + render_task("Todo", "Create 'lib/b.js'", files=["lib/b.js"])
        + "\n",
        encoding="utf-8",
    )
    result = PlanReviewVerifier(tmp_path).verify(plan)
    assert result.success is False
    assert result.completeness == 50
    assert result.missing == ["Todo"]
    assert result.complete is False


def test_plan_review_verifier_edge_cases(tmp_path: Path) -> None:
    verifier = PlanReviewVerifier(tmp_path)
    with pytest.raises(FileNotFoundError):
        verifier.verify(tmp_path / "absent.md")

    empty = tmp_path / "EMPTY.md"
    empty.write_text("# Nothing here\n", encoding="utf-8")
    result = verifier.verify(empty)
    assert result.success is False
    assert result.completeness == 0
    assert result.issues == ["Plan has no verifiable tasks"]


def test_fix_plan_writer_outputs_parseable_plan(tmp_path: Path) -> None:
    writer = FixPlanWriter(tmp_path / ".planning")
    verification = VerificationResult(
        success=False, completeness=50, issues=["Todo: missing file"], missing=["Todo", "Other"]
    )
    debug = writer.diagnose(tmp_path / "PLAN.md", verification)

    fix_plan = Path(debug.fix_plan_path)
    assert fix_plan == tmp_path / ".planning" / "debug" / "FIX_PLAN.md"
    assert [task.name for task in extract_tasks(fix_plan.read_text(encoding="utf-8"))] == [
        "Complete: Todo",
        "Complete: Other",
    ]
    report = Path(debug.report_path or "").read_text(encoding="utf-8")
    assert "**Completeness:** 50%" in report
    assert "- Todo: missing file" in report


class _StubExecutor:
    def __init__(self, result: ExecutionResult) -> None:
        self.result = result
        self.plans: list[Path] = []

    def execute(self, plan_path: Path, options: CycleOptions) -> ExecutionResult:
        self.plans.append(plan_path)
        return self.result


def test_executor_fixer(tmp_path: Path) -> None:
    ok = _StubExecutor(ExecutionResult(success=True))
    ExecutorFixer(ok).apply(tmp_path / "FIX_PLAN.md", CycleOptions())
    assert ok.plans == [tmp_path / "FIX_PLAN.md"]

    ExecutorFixer(_StubExecutor(None)).apply(tmp_path / "FIX_PLAN.md", CycleOptions())  # type: ignore[arg-type]

    failing = ExecutorFixer(_StubExecutor(ExecutionResult(success=False, output="tests red")))
    with pytest.raises(RuntimeError, match="tests red"):
        failing.apply(tmp_path / "FIX_PLAN.md", CycleOptions())


def test_progress_reporter_tracks_single_phase(caplog: pytest.LogCaptureFixture) -> None:
    reporter = ProgressReporter()
    with caplog.at_level("INFO"):
        reporter.start("planning", "Validating")
        reporter.start("executing")
        assert reporter.current_phase == "executing"
        reporter.succeed("ok")
    assert reporter.current_phase is None
    assert "[executing] done in" in caplog.text
    reporter.fail("ignored when idle")


def test_interrupt_controller_raises_keyboard_interrupt_and_restores() -> None:
    before = signal.getsignal(signal.SIGTERM)
    reporter = ProgressReporter()
    with InterruptController(reporter, resume_hint="plan-cycle resume") as controller:
        reporter.start("verifying")
        with pytest.raises(KeyboardInterrupt):
            controller._handle(signal.SIGTERM, None)
        assert controller.interrupted_by == "SIGTERM"
    assert signal.getsignal(signal.SIGTERM) == before


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        (ErrorCode.MAX_ATTEMPTS_REACHED, "plan-cycle run <phase> --max-attempts 5"),
        (ErrorCode.FIX_DECLINED, "plan-cycle run <phase> --auto-fix"),
        (ErrorCode.PLAN_NOT_FOUND, "Check plan path is correct"),
        (ErrorCode.EXECUTION_FAILED, "Resume cycle: plan-cycle resume"),
    ],
)
def test_recovery_hints(code: ErrorCode, expected: str) -> None:
    assert any(expected in hint for hint in recovery_hints(CycleError(code, "x")))


def test_recovery_hints_for_plain_exception() -> None:
    assert recovery_hints(ValueError("x"), program="pc")[1] == "Resume cycle: pc resume"
