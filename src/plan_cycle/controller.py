from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, TypedDict, TypeVar

from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel

from .collaborators import (
    CommandExecutor,
    Confirmer,
    ConsoleConfirmer,
    DebugEngine,
    Executor,
    ExecutorFixer,
    FixPlanWriter,
    Fixer,
    ManualExecutor,
    PlanReviewVerifier,
    Verifier,
)
from .errors import CycleError, ErrorCode, FixDeclinedError
from .models import (
    RESUMABLE_STATES,
    CycleOptions,
    CycleResult,
    CycleState,
    CycleStatus,
    DebugResult,
    ExecutionResult,
    TransitionRecord,
    TransitionResult,
    VerificationResult,
    utc_now,
)
from .plan_parser import has_task_marker
from .progress import ProgressReporter
from .settings import RuntimeSettings
from .state_store import CycleStateStore
from .utils import resolve_under
from .validator import PlanValidator

logger = logging.getLogger(__name__)

STATE_SUMMARY_FILE = "STATE.md"

ResultT = TypeVar("ResultT", bound=BaseModel)


def _coerce_result(model: type[ResultT], value: Any) -> ResultT:
    """Accept a model instance or a mapping; anything else fails validation."""
    if isinstance(value, model):
        return value
    return model.model_validate(value)


class CycleGraphState(TypedDict, total=False):
    plan_path: str
    entry: str
    route: str
    success: bool
    attempts: int
    completeness: int


class CycleController:
    """Plan -> execute -> verify cycle with a bounded debug/fix retry loop.

    The cycle is a LangGraph ``StateGraph`` with one node per phase.  Every
    node persists its transitions through ``CycleStateStore`` before it
    returns, so an interrupted run can be resumed from the last recorded
    phase.  Phase failures are raised as ``CycleError``; ``run_cycle`` and
    ``resume_cycle`` mark the persisted cycle ``FAILED`` before re-raising.
    ``KeyboardInterrupt`` is never handled here.
    """

    def __init__(
        self,
        root: Path | str | None = None,
        settings: RuntimeSettings | None = None,
        *,
        executor: Executor | None = None,
        verifier: Verifier | None = None,
        debug_engine: DebugEngine | None = None,
        fixer: Fixer | None = None,
        confirmer: Confirmer | None = None,
        reporter: ProgressReporter | None = None,
        store: CycleStateStore | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.root = Path(root) if root is not None else self.settings.workspace_root_path
        self.planning_dir = self.settings.planning_dir_path(self.root)
        self.store = store if store is not None else CycleStateStore(self.settings.state_file_path(self.root))
        self.reporter = reporter if reporter is not None else ProgressReporter()

        self.confirmer = confirmer if confirmer is not None else ConsoleConfirmer()
        if executor is None:
            if self.settings.executor_command:
                executor = CommandExecutor(
                    self.settings.executor_command,
                    cwd=self.root,
                    timeout_seconds=self.settings.executor_timeout_seconds,
                )
            else:
                executor = ManualExecutor(self.confirmer)
        self.executor = executor
        self.verifier = verifier if verifier is not None else PlanReviewVerifier(self.root)
        self.debug_engine = debug_engine if debug_engine is not None else FixPlanWriter(self.planning_dir)
        self.fixer = fixer if fixer is not None else ExecutorFixer(self.executor)

        self._options = CycleOptions()
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(CycleGraphState)
        graph.add_node("planning", self._planning_node)
        graph.add_node("executing", self._executing_node)
        graph.add_node("verifying", self._verifying_node)
        graph.add_node("debugging", self._debugging_node)
        graph.add_node("fixing", self._fixing_node)
        graph.add_node("complete", self._complete_node)

        graph.add_conditional_edges(
            START,
            self._entry_route,
            {
                "planning": "planning",
                "executing": "executing",
                "verifying": "verifying",
                "debugging": "debugging",
                "fixing": "fixing",
            },
        )
        graph.add_edge("planning", "executing")
        graph.add_edge("executing", "verifying")
        graph.add_conditional_edges(
            "verifying",
            self._verification_route,
            {
                "complete": "complete",
                "debugging": "debugging",
            },
        )
        graph.add_edge("debugging", "fixing")
        graph.add_edge("fixing", "verifying")
        graph.add_edge("complete", END)
        return graph

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_plan_path(self, phase: str | int) -> Path:
        """Map a phase number to its plan file; anything else is a plan path."""
        text = str(phase).strip()
        if not text:
            raise ValueError("A phase number or plan path is required")
        if text.isdigit():
            return self.planning_dir / f"phase-{int(text)}.PLAN.md"
        return resolve_under(self.root, text)

    def initialize_cycle(self, phase: str | int, options: CycleOptions) -> CycleState:
        plan_path = self.resolve_plan_path(phase)
        if not plan_path.is_file():
            raise CycleError(
                ErrorCode.PLAN_NOT_FOUND,
                f"Plan not found: {plan_path}",
                suggestion=f"Create the plan first or check the path: {plan_path}",
            )
        state = CycleState(
            phase=phase,
            plan_path=str(plan_path),
            current_state=CycleStatus.PLANNING,
            max_attempts=options.max_attempts,
            options=options,
            history=[
                TransitionRecord(
                    state=CycleStatus.PLANNING,
                    result=TransitionResult.PENDING,
                    details="Cycle started",
                )
            ],
        )
        if not self.store.save(state):
            raise RuntimeError(f"Unable to persist cycle state to {self.store.state_file_path}")
        logger.info("Started cycle for %s (max attempts %d)", plan_path, options.max_attempts)
        return state

    def run_cycle(self, phase: str | int, options: CycleOptions | None = None) -> CycleResult:
        """Run a fresh cycle for *phase*, replacing any previous cycle state."""
        if options is None:
            options = CycleOptions(max_attempts=self.settings.max_attempts, strict=self.settings.strict_review)
        started = time.monotonic()
        state = self.initialize_cycle(phase, options)
        return self._run(state, CycleStatus.PLANNING, started, resumed=False)

    def resume_cycle(self) -> CycleResult:
        """Continue the persisted cycle from its last recorded phase."""
        state = self.store.load()
        if state is None:
            raise RuntimeError(f"No cycle state found at {self.store.state_file_path}")
        if state.current_state not in RESUMABLE_STATES:
            raise RuntimeError(f"Cannot resume from state: {state.current_state.value}")
        logger.info(
            "Resuming cycle for %s from %s (attempt %d/%d)",
            state.plan_path,
            state.current_state.value,
            state.attempts,
            state.max_attempts,
        )
        return self._run(state, state.current_state, time.monotonic(), resumed=True)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _run(self, state: CycleState, entry: CycleStatus, started: float, *, resumed: bool) -> CycleResult:
        self._options = state.options
        self.reporter.verbose = state.options.verbose
        initial: CycleGraphState = {
            "plan_path": state.plan_path or "",
            "entry": entry.value,
            "route": "",
            "success": False,
        }
        try:
            result = self.graph.invoke(
                initial,
                config={"recursion_limit": max(self.settings.recursion_limit, 4 * state.max_attempts + 10)},
            )
        except Exception as exc:
            self.reporter.stop()
            self.store.set_last_error(exc)
            self.store.update_state(CycleStatus.FAILED, TransitionResult.FAILURE, str(exc))
            raise
        return CycleResult(
            success=bool(result.get("success")),
            phase=state.phase,
            plan_path=state.plan_path or "",
            duration_seconds=int(time.monotonic() - started),
            attempts=int(result.get("attempts", state.attempts)),
            completeness=int(result.get("completeness", state.completeness)),
            resumed=resumed,
        )

    def _entry_route(self, state: CycleGraphState) -> str:
        entry = CycleStatus(state["entry"])
        if entry == CycleStatus.PLANNING:
            return "planning"
        if entry == CycleStatus.EXECUTING:
            return "executing"
        if entry == CycleStatus.VERIFYING:
            return "verifying"
        if entry == CycleStatus.DEBUGGING:
            return "debugging" if self.store.get_verification_result() is not None else "verifying"
        if entry == CycleStatus.FIXING:
            return "fixing" if self.store.get_debug_result() is not None else "verifying"
        raise RuntimeError(f"Cannot resume from state: {entry.value}")

    def _verification_route(self, state: CycleGraphState) -> str:
        return state["route"]

    def _phase_failure(self, status: CycleStatus, code: ErrorCode, message: str) -> CycleError:
        self.reporter.fail(message)
        self.store.update_state(status, TransitionResult.FAILURE, message)
        return CycleError(code, message)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _planning_node(self, state: CycleGraphState) -> dict[str, Any]:
        plan_path = Path(state["plan_path"])
        self.reporter.start("planning", f"Validating {plan_path.name}")
        self.store.update_state(CycleStatus.PLANNING, TransitionResult.PENDING, "Validating plan")

        if not plan_path.is_file():
            raise self._phase_failure(CycleStatus.PLANNING, ErrorCode.PLAN_NOT_FOUND, f"Plan not found: {plan_path}")
        try:
            content = plan_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise self._phase_failure(
                CycleStatus.PLANNING, ErrorCode.INVALID_PLAN, f"Plan could not be read: {exc}"
            ) from exc
        if len(content) < self.settings.min_plan_length:
            raise self._phase_failure(
                CycleStatus.PLANNING,
                ErrorCode.INVALID_PLAN,
                f"Plan is too short ({len(content)} characters, minimum {self.settings.min_plan_length})",
            )
        if not has_task_marker(content):
            raise self._phase_failure(
                CycleStatus.PLANNING, ErrorCode.INVALID_PLAN, "Plan does not contain any tasks"
            )

        validator = PlanValidator(self.root, strict=self._options.strict, auto_fix=self._options.auto_fix)
        review = validator.review_plan(plan_path)
        summary = review.summary
        details = (
            f"{summary.total} task(s): {summary.ok} ready, {summary.already_complete} already complete, "
            f"{summary.total - summary.ok - summary.already_complete} with issues"
        )
        logger.info("Plan review: %s", details)
        if review.report:
            logger.debug("Plan review report:\n%s", review.report)
        if review.fixes is not None and review.fixes.written:
            self.reporter.note(f"Applied {len(review.fixes.fixed)} automatic plan fix(es)")

        self.store.update_state(CycleStatus.PLANNING, TransitionResult.SUCCESS, details)
        self.reporter.succeed(details)
        return {}

    def _executing_node(self, state: CycleGraphState) -> dict[str, Any]:
        plan_path = Path(state["plan_path"])
        self.reporter.start("executing", f"Executing {plan_path.name}")
        self.store.update_state(CycleStatus.EXECUTING, TransitionResult.PENDING, "Executing plan")
        try:
            raw = self.executor.execute(plan_path, self._options)
            # No payload means the executor finished without complaint.
            result = ExecutionResult() if raw is None else _coerce_result(ExecutionResult, raw)
        except Exception as exc:
            raise self._phase_failure(
                CycleStatus.EXECUTING, ErrorCode.EXECUTION_FAILED, f"Execution failed: {exc}"
            ) from exc

        self.store.set_execution_result(result)
        if not result.success:
            reason = result.output.strip()[:200] or "executor reported failure"
            raise self._phase_failure(CycleStatus.EXECUTING, ErrorCode.EXECUTION_FAILED, f"Execution failed: {reason}")

        self.store.update_state(CycleStatus.EXECUTING, TransitionResult.SUCCESS, "Plan executed")
        self.reporter.succeed()
        return {}

    def _verifying_node(self, state: CycleGraphState) -> dict[str, Any]:
        plan_path = Path(state["plan_path"])
        self.reporter.start("verifying", "Checking completeness")
        self.store.update_state(CycleStatus.VERIFYING, TransitionResult.PENDING, "Verifying")
        try:
            result = _coerce_result(VerificationResult, self.verifier.verify(plan_path))
        except Exception as exc:
            raise self._phase_failure(
                CycleStatus.VERIFYING, ErrorCode.VERIFICATION_FAILED, f"Verification failed: {exc}"
            ) from exc

        self.store.update_completeness(result.completeness)
        self.store.set_verification_result(result)
        details = f"{result.completeness}% complete"
        for issue in result.issues:
            self.reporter.note(issue)

        if result.complete:
            self.store.update_state(CycleStatus.VERIFYING, TransitionResult.SUCCESS, details)
            self.reporter.succeed(details)
            return {"route": "complete", "success": True}

        self.store.update_state(CycleStatus.VERIFYING, TransitionResult.FAILURE, details)
        self.reporter.fail(details)
        if self._options.continue_on_fail:
            logger.warning("Verification incomplete (%s); continuing as requested", details)
            return {"route": "complete", "success": False}

        current = self.store.load()
        attempts = current.attempts if current is not None else 0
        max_attempts = current.max_attempts if current is not None else self._options.max_attempts
        if attempts >= max_attempts:
            raise CycleError(
                ErrorCode.MAX_ATTEMPTS_REACHED,
                f"Maximum attempts ({max_attempts}) reached at {details}",
                attempts=attempts,
                max_attempts=max_attempts,
            )
        # Attempt count and DEBUGGING entry share one write.
        self.store.update_state(
            CycleStatus.DEBUGGING,
            TransitionResult.PENDING,
            f"Analyzing failures (attempt {attempts + 1}/{max_attempts})",
            attempts=attempts + 1,
        )
        logger.info("Starting debug/fix attempt %d of %d", attempts + 1, max_attempts)
        return {"route": "debugging", "success": False}

    def _debugging_node(self, state: CycleGraphState) -> dict[str, Any]:
        # Entry record already written by the verifying node (or persisted before a resume).
        plan_path = Path(state["plan_path"])
        self.reporter.start("debugging", "Analyzing failures")
        verification = self.store.get_verification_result()
        if verification is None:
            raise self._phase_failure(
                CycleStatus.DEBUGGING, ErrorCode.DEBUG_FAILED, "Debugging failed: no verification result"
            )
        try:
            debug = _coerce_result(DebugResult, self.debug_engine.diagnose(plan_path, verification))
        except Exception as exc:
            raise self._phase_failure(
                CycleStatus.DEBUGGING, ErrorCode.DEBUG_FAILED, f"Debugging failed: {exc}"
            ) from exc

        self.store.set_debug_result(debug)
        self.store.update_state(CycleStatus.DEBUGGING, TransitionResult.SUCCESS, "Fix plan generated")
        self.reporter.succeed(debug.fix_plan_path)
        return {}

    def _fixing_node(self, state: CycleGraphState) -> dict[str, Any]:
        self.reporter.start("fixing", "Applying fix")
        self.store.update_state(CycleStatus.FIXING, TransitionResult.PENDING, "Applying fix")
        debug = self.store.get_debug_result()
        fix_plan = resolve_under(self.root, debug.fix_plan_path) if debug is not None else None
        if fix_plan is None or not fix_plan.is_file():
            raise self._phase_failure(
                CycleStatus.FIXING, ErrorCode.FIX_FAILED, f"Fix failed: fix plan not found ({fix_plan})"
            )

        if not self._options.auto_fix:
            self.reporter.stop()
            if not self.confirmer.confirm(f"Apply fix from {fix_plan}?"):
                raise self._phase_failure(CycleStatus.FIXING, ErrorCode.FIX_DECLINED, "Fix declined by user")
        try:
            self.fixer.apply(fix_plan, self._options)
        except FixDeclinedError as exc:
            raise self._phase_failure(CycleStatus.FIXING, ErrorCode.FIX_DECLINED, f"Fix declined: {exc}") from exc
        except Exception as exc:
            raise self._phase_failure(CycleStatus.FIXING, ErrorCode.FIX_FAILED, f"Fix failed: {exc}") from exc

        self.store.update_state(CycleStatus.FIXING, TransitionResult.SUCCESS, "Fix applied")
        self.reporter.succeed()
        return {}

    def _complete_node(self, state: CycleGraphState) -> dict[str, Any]:
        success = bool(state.get("success"))
        current = self.store.load()
        attempts = current.attempts if current is not None else 0
        completeness = current.completeness if current is not None else 0
        details = "Cycle complete" if success else f"Cycle complete with partial verification ({completeness}%)"

        self.store.update_state(
            CycleStatus.COMPLETE,
            TransitionResult.SUCCESS if success else TransitionResult.FAILURE,
            details,
        )
        self._append_state_summary(current, success)
        self.store.clear()
        logger.info("%s after %d debug/fix attempt(s)", details, attempts)
        return {"attempts": attempts, "completeness": completeness}

    def _append_state_summary(self, state: CycleState | None, success: bool) -> None:
        summary_path = self.planning_dir / STATE_SUMMARY_FILE
        if not summary_path.is_file():
            logger.warning("%s not found, skipping update", summary_path)
            return
        phase = state.phase if state is not None else None
        entry = [
            "",
            f"### Cycle {'complete' if success else 'finished with gaps'}: {phase}",
            f"- Completed: {utc_now().isoformat()}",
            f"- Plan: {state.plan_path if state is not None else ''}",
            f"- Attempts: {state.attempts if state is not None else 0}",
            f"- Completeness: {state.completeness if state is not None else 0}%",
            "",
        ]
        with summary_path.open("a", encoding="utf-8") as handle:
            handle.write("\n".join(entry))
