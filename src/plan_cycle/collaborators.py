from __future__ import annotations

import logging
import shlex
import subprocess
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from .models import (
    CycleOptions,
    DebugResult,
    ExecutionResult,
    TaskStatus,
    VerificationResult,
    clamp_completeness,
    utc_now,
)
from .plan_parser import render_task
from .utils import atomic_write_text
from .validator import PlanValidator

logger = logging.getLogger(__name__)

PLAN_PLACEHOLDER = "{plan}"
DEBUG_DIRNAME = "debug"
DEBUG_REPORT_NAME = "DEBUG_REPORT.md"
FIX_PLAN_NAME = "FIX_PLAN.md"


class Executor(Protocol):
    """Carries out a plan and reports what happened.  ``None`` counts as success."""

    def execute(self, plan_path: Path, options: CycleOptions) -> ExecutionResult | None:
        ...


class Verifier(Protocol):
    """Measures how much of a plan is actually done."""

    def verify(self, plan_path: Path) -> VerificationResult:
        ...


class DebugEngine(Protocol):
    """Turns a failed verification into a fix plan on disk."""

    def diagnose(self, plan_path: Path, verification: VerificationResult) -> DebugResult:
        ...


class Fixer(Protocol):
    """Applies a fix plan.  May raise ``FixDeclinedError``."""

    def apply(self, fix_plan_path: Path, options: CycleOptions) -> None:
        ...


class Confirmer(Protocol):
    def confirm(self, question: str) -> bool:
        ...


class ConsoleConfirmer:
    """Yes/no prompt on stdin.  An empty answer means yes."""

    def __init__(self, input_fn: Callable[[str], str] = input) -> None:
        self._input = input_fn

    def confirm(self, question: str) -> bool:
        try:
            answer = self._input(f"{question} (Y/n): ")
        except EOFError:
            logger.warning("No interactive input available; treating %r as declined", question)
            return False
        return answer.strip().lower() not in {"n", "no"}


class CommandExecutor:
    """Run a shell-style command template against the plan.

    ``{plan}`` in any argument is replaced with the plan path; when the
    template has no placeholder the path is appended as the last argument.
    The command runs without a shell.
    """

    def __init__(self, command: str, *, cwd: Path | None = None, timeout_seconds: int = 0) -> None:
        if not command.strip():
            raise ValueError("executor command must be non-empty")
        self.command = command
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    def build_argv(self, plan_path: Path) -> list[str]:
        argv = shlex.split(self.command)
        if not any(PLAN_PLACEHOLDER in arg for arg in argv):
            return [*argv, str(plan_path)]
        return [arg.replace(PLAN_PLACEHOLDER, str(plan_path)) for arg in argv]

    def execute(self, plan_path: Path, options: CycleOptions) -> ExecutionResult:
        argv = self.build_argv(plan_path)
        logger.info("Executing plan with: %s", shlex.join(argv))
        started = time.monotonic()
        try:
            completed = subprocess.run(
                argv,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds or None,
            )
        except subprocess.TimeoutExpired:
            return ExecutionResult(
                success=False,
                output=f"Execution timed out after {self.timeout_seconds} seconds",
                duration=time.monotonic() - started,
                metadata={"command": argv, "returncode": None},
            )
        output = completed.stdout + completed.stderr
        if options.verbose and output:
            logger.info("Executor output:\n%s", output.rstrip())
        return ExecutionResult(
            success=completed.returncode == 0,
            output=output,
            duration=time.monotonic() - started,
            metadata={"command": argv, "returncode": completed.returncode},
        )


class ManualExecutor:
    """Hand the plan to a human and wait for confirmation that it was carried out."""

    def __init__(self, confirmer: Confirmer, *, announce: Callable[[str], None] = print) -> None:
        self.confirmer = confirmer
        self.announce = announce

    def execute(self, plan_path: Path, options: CycleOptions) -> ExecutionResult:
        started = time.monotonic()
        self.announce(f"Execute the plan at {plan_path}, then return here.")
        done = self.confirmer.confirm("Has the plan been executed?")
        return ExecutionResult(
            success=done,
            output="" if done else "Execution not confirmed",
            duration=time.monotonic() - started,
            metadata={"mode": "manual"},
        )


class PlanReviewVerifier:
    """Completeness is the share of plan tasks already present in the tree."""

    def __init__(self, root: Path) -> None:
        self.validator = PlanValidator(root)

    def verify(self, plan_path: Path) -> VerificationResult:
        review = self.validator.review_plan(plan_path)
        if not review.success:
            raise FileNotFoundError(review.error)

        total = review.summary.total
        if total == 0:
            return VerificationResult(
                success=False,
                completeness=0,
                issues=["Plan has no verifiable tasks"],
            )

        issues: list[str] = []
        missing: list[str] = []
        for reviewed in review.tasks:
            if reviewed.validation.status == TaskStatus.ALREADY_COMPLETE:
                continue
            missing.append(reviewed.task.name)
            issues.extend(
                f"{reviewed.task.name}: {issue.message}" for issue in reviewed.validation.issues
            )
        completeness = clamp_completeness(100 * review.summary.already_complete / total)
        return VerificationResult(
            success=not missing,
            completeness=completeness,
            issues=issues,
            missing=missing,
        )


class FixPlanWriter:
    """Write ``DEBUG_REPORT.md`` and a follow-up ``FIX_PLAN.md`` for a failed verification.

    The fix plan uses the same task grammar as regular plans, one task per
    missing deliverable, so any executor can run it.
    """

    def __init__(self, planning_dir: Path) -> None:
        self.debug_dir = planning_dir / DEBUG_DIRNAME

    def diagnose(self, plan_path: Path, verification: VerificationResult) -> DebugResult:
        report_path = self.debug_dir / DEBUG_REPORT_NAME
        fix_plan_path = self.debug_dir / FIX_PLAN_NAME
        atomic_write_text(report_path, self.render_report(plan_path, verification))
        atomic_write_text(fix_plan_path, self.render_fix_plan(plan_path, verification))
        logger.info("Wrote debug report %s and fix plan %s", report_path, fix_plan_path)
        return DebugResult(fix_plan_path=str(fix_plan_path), report_path=str(report_path))

    def render_report(self, plan_path: Path, verification: VerificationResult) -> str:
        lines = [
            "# Debug Report",
            "",
            f"**Plan:** {plan_path}",
            f"**Date:** {utc_now().date().isoformat()}",
            f"**Completeness:** {verification.completeness}%",
            "",
            "## Issues",
            "",
        ]
        lines.extend(f"- {issue}" for issue in verification.issues)
        if not verification.issues:
            lines.append("- No specific issues reported")
        lines.extend(["", "## Missing Deliverables", ""])
        lines.extend(f"- {item}" for item in verification.missing)
        if not verification.missing:
            lines.append("- None identified")
        lines.append("")
        return "\n".join(lines)

    def render_fix_plan(self, plan_path: Path, verification: VerificationResult) -> str:
        targets = verification.missing or [f"Remaining work from {plan_path.name}"]
        blocks = [
            render_task(
                f"Complete: {target}",
                f"Finish the outstanding work for '{target}' described in {plan_path}. "
                "Do not re-implement deliverables that already exist.",
                verify="Re-run verification for the original plan",
            )
            for target in targets
        ]
        header = [
            f"# Fix Plan for {plan_path.name}",
            "",
            "## Objective",
            "",
            f"Close the gaps found while verifying {plan_path} ({verification.completeness}% complete).",
            "",
        ]
        return "\n".join(header) + "\n" + "\n\n".join(blocks) + "\n"


class ExecutorFixer:
    """Apply a fix plan by running it through an ``Executor``."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def apply(self, fix_plan_path: Path, options: CycleOptions) -> None:
        result = self.executor.execute(fix_plan_path, options)
        if result is not None and not result.success:
            raise RuntimeError(f"Fix plan execution failed: {result.output[:200] or 'no output'}")
