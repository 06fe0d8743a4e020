"""Entry point for `python -m plan_cycle` and the `plan-cycle` CLI script."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from plan_cycle.controller import CycleController
from plan_cycle.errors import CycleError, recovery_hints
from plan_cycle.models import CycleOptions, CycleResult
from plan_cycle.progress import InterruptController, ProgressReporter
from plan_cycle.settings import RuntimeSettings
from plan_cycle.state_store import CycleStateStore
from plan_cycle.validator import PlanValidator

PROG = "plan-cycle"
EXIT_INTERRUPTED = 130


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=PROG, description="Plan, execute, verify and fix in a resumable cycle")
    parser.add_argument(
        "--workspace-root",
        type=Path,
        default=None,
        help="Project root holding the planning directory and cycle state (default: cwd)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Start a cycle for a phase number or plan path")
    run.add_argument("phase", help="Phase number (resolves to <planning-dir>/phase-N.PLAN.md) or plan path")
    run.add_argument("--max-attempts", type=int, default=None, help="Debug/fix attempts before giving up")
    run.add_argument("--auto-fix", action="store_true", help="Apply plan and fix-plan fixes without asking")
    run.add_argument("--continue-on-fail", action="store_true", help="Accept an incomplete verification")
    run.add_argument("--verbose", action="store_true", help="Show per-phase details")
    run.add_argument("--strict", action="store_true", help="Treat existing functions/exports as conflicts")

    subparsers.add_parser("resume", help="Resume an interrupted cycle")
    subparsers.add_parser("status", help="Show the active cycle, if any")

    review = subparsers.add_parser("review", help="Review a plan (or a directory of plans) against the codebase")
    review.add_argument("plan", type=Path, help="Plan file or directory")
    review.add_argument("--auto-fix", action="store_true", help="Write mechanical fixes back into the plan")
    review.add_argument("--strict", action="store_true", help="Treat existing functions/exports as conflicts")
    return parser.parse_args(argv)


def _print_result(result: CycleResult) -> None:
    print(f"success={result.success}")
    print(f"plan={result.plan_path}")
    print(f"completeness={result.completeness}%")
    print(f"attempts={result.attempts}")
    print(f"duration_seconds={result.duration_seconds}")
    if result.resumed:
        print("resumed=True")


def _print_failure(exc: BaseException, store: CycleStateStore) -> None:
    print(f"Cycle failed: {exc}")
    code = getattr(exc, "code", None)
    if code is not None:
        print(f"code={code.value}")
    suggestion = getattr(exc, "suggestion", None)
    if suggestion:
        print(f"suggestion: {suggestion}")
    recoverable = isinstance(exc, CycleError) and exc.recoverable
    if not recoverable:
        state = store.load()
        if state is not None:
            print("cycle_state:")
            print(state.model_dump_json(by_alias=True, indent=2))
    print("next steps:")
    for hint in recovery_hints(exc, program=PROG):
        print(f"  - {hint}")


def _status(store: CycleStateStore) -> int:
    summary = store.get_state_summary()
    if summary is None:
        print("No active cycle")
        return 0
    print(f"phase={summary.phase}")
    print(f"state={summary.current_state.value}")
    print(f"attempts={summary.attempts}/{summary.max_attempts}")
    print(f"completeness={summary.completeness}%")
    print(f"elapsed_seconds={summary.elapsed_seconds}")
    print(f"can_resume={summary.can_resume}")
    return 0


def _review(root: Path, target: Path, *, strict: bool, auto_fix: bool) -> int:
    validator = PlanValidator(root, strict=strict, auto_fix=auto_fix)
    resolved = target if target.is_absolute() else root / target
    if resolved.is_dir():
        directory_review = validator.review_all_plans(resolved)
        if not directory_review.success:
            logging.error("%s", directory_review.error)
            return 1
        for review in directory_review.plans:
            print(review.report or f"{review.plan_path}: all {review.summary.total} task(s) ready")
        print(
            f"plans={directory_review.total_plans} tasks={directory_review.total_tasks} "
            f"ok={directory_review.ok} issues={directory_review.issues}"
        )
        return 0

    review = validator.review_plan(resolved)
    if not review.success:
        logging.error("%s", review.error)
        return 1
    print(review.report or f"{review.plan_path}: all {review.summary.total} task(s) ready")
    if review.fixes is not None and review.fixes.written:
        print(f"applied_fixes={len(review.fixes.fixed)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    repo = args.workspace_root if args.workspace_root is not None else Path.cwd()
    env_path = repo / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    # Set workspace root before constructing any settings objects.
    if args.workspace_root is not None:
        os.environ["PLAN_CYCLE_WORKSPACE_ROOT"] = str(args.workspace_root.resolve())

    try:
        settings = RuntimeSettings.from_env()
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1
    root = settings.workspace_root_path
    store = CycleStateStore(settings.state_file_path(root))

    if args.command == "status":
        return _status(store)
    if args.command == "review":
        return _review(root, args.plan, strict=args.strict, auto_fix=args.auto_fix)

    planning_dir = settings.planning_dir_path(root)
    if not planning_dir.is_dir():
        logging.error("Planning directory not found: %s", planning_dir)
        return 1

    reporter = ProgressReporter(verbose=getattr(args, "verbose", False))
    controller = CycleController(root, settings, reporter=reporter, store=store)
    with InterruptController(reporter, resume_hint=f"{PROG} resume"):
        try:
            if args.command == "resume":
                result = controller.resume_cycle()
            else:
                options = CycleOptions(
                    max_attempts=args.max_attempts if args.max_attempts is not None else settings.max_attempts,
                    auto_fix=args.auto_fix,
                    continue_on_fail=args.continue_on_fail,
                    verbose=args.verbose,
                    strict=args.strict or settings.strict_review,
                )
                summary = store.get_state_summary()
                if (
                    summary is not None
                    and summary.can_resume
                    and controller.confirmer.confirm(
                        f"A cycle for {summary.phase} is in {summary.current_state.value}. Resume it?"
                    )
                ):
                    result = controller.resume_cycle()
                else:
                    result = controller.run_cycle(args.phase, options)
        except KeyboardInterrupt:
            print(f"Cycle interrupted. Resume with: {PROG} resume")
            return EXIT_INTERRUPTED
        except Exception as exc:  # noqa: BLE001
            logging.debug("Cycle failure details", exc_info=True)
            _print_failure(exc, store)
            return 1

    _print_result(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
