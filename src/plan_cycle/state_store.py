from __future__ import annotations

import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import (
    RESUMABLE_STATES,
    CycleState,
    CycleStatus,
    DebugResult,
    ErrorSnapshot,
    ExecutionResult,
    StateSummary,
    TransitionRecord,
    TransitionResult,
    VerificationResult,
    clamp_completeness,
    utc_now,
)
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

_EXECUTION_OUTPUT_LIMIT = 1000


def _milliseconds_between(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))


class CycleStateStore:
    """Single-document JSON store for the one active cycle of a project.

    Every mutator is a full read-modify-write of the document.  Callers get
    booleans back instead of exceptions: a failed write is logged and
    reported as ``False`` so the cycle itself decides how to react.  There is
    no inter-process locking; one live cycle per directory is assumed.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def state_file_path(self) -> Path:
        """Path to the cycle state JSON file."""
        return self.path

    # ------------------------------------------------------------------
    # Core persistence
    # ------------------------------------------------------------------

    def save(self, state: CycleState | dict[str, Any]) -> bool:
        """Validate, stamp and atomically persist *state*.

        Args:
            state: A ``CycleState`` or a mapping accepted by it.  The
                ``currentState`` field is required; absent optional fields
                get their defaults.

        Returns:
            ``True`` if the document was written, ``False`` otherwise.
        """
        try:
            if isinstance(state, CycleState):
                document = state.model_copy(deep=True)
            else:
                if not state.get("currentState") and not state.get("current_state"):
                    raise ValueError("currentState is required")
                document = CycleState.model_validate(state)
            document.last_updated = utc_now()
            atomic_write_text(self.path, document.model_dump_json(by_alias=True, indent=2))
        except (OSError, ValueError, ValidationError) as exc:
            logger.error("Failed to save cycle state to %s: %s", self.path, exc)
            return False
        return True

    def load(self) -> CycleState | None:
        """Return the persisted state, or ``None`` if absent or invalid.

        Corrupt documents are never repaired; they read as absent.
        """
        if not self.path.is_file():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Failed to read cycle state %s: %s", self.path, exc)
            return None
        try:
            return CycleState.model_validate_json(text)
        except ValidationError as exc:
            logger.warning("Invalid cycle state file %s: %s", self.path, exc.errors()[0]["msg"])
            return None

    def clear(self) -> bool:
        """Delete the state file.  Idempotent."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to clear cycle state %s: %s", self.path, exc)
            return False
        return True

    def is_resumable(self) -> bool:
        state = self.load()
        return state is not None and state.current_state in RESUMABLE_STATES

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update_state(
        self,
        new_state: CycleStatus,
        result: TransitionResult = TransitionResult.PENDING,
        details: str = "",
        **updates: Any,
    ) -> bool:
        """Append a transition record for *new_state* and make it current.

        Args:
            new_state: State being entered or reported on.
            result: Outcome of the transition.
            details: Free-text details stored on the record.
            **updates: Additional ``CycleState`` fields to overwrite.

        Returns:
            ``True`` if persisted, ``False`` when there is no active cycle or
            the write failed.
        """
        state = self.load()
        if state is None:
            logger.error("Cannot update state: no active cycle")
            return False

        now = utc_now()
        duration = _milliseconds_between(state.history[-1].timestamp, now) if state.history else 0
        state.history.append(
            TransitionRecord(
                state=new_state,
                timestamp=now,
                duration=duration,
                result=result,
                details=details,
            )
        )
        state.current_state = new_state
        for key, value in updates.items():
            setattr(state, key, value)
        return self.save(state)

    def increment_attempts(self) -> bool:
        state = self.load()
        if state is None:
            return False
        state.attempts += 1
        return self.save(state)

    def is_max_attempts_reached(self) -> bool:
        state = self.load()
        if state is None:
            return False
        return state.attempts >= state.max_attempts

    def update_completeness(self, completeness: int | float) -> bool:
        state = self.load()
        if state is None:
            return False
        state.completeness = clamp_completeness(completeness)
        return self.save(state)

    def set_last_error(self, error: BaseException | str) -> bool:
        """Overwrite ``lastError`` with a snapshot of *error*."""
        state = self.load()
        if state is None:
            return False
        code = getattr(error, "code", None)
        traceback_text = None
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            traceback_text = "".join(traceback.format_exception(error)).strip()
        state.last_error = ErrorSnapshot(
            message=str(error) or type(error).__name__,
            code=getattr(code, "value", code) or "UNKNOWN",
            traceback=traceback_text,
        )
        return self.save(state)

    # ------------------------------------------------------------------
    # Phase results
    # ------------------------------------------------------------------

    def set_execution_result(self, result: ExecutionResult) -> bool:
        state = self.load()
        if state is None:
            return False
        state.execution_result = result.model_copy(
            update={"output": result.output[:_EXECUTION_OUTPUT_LIMIT], "timestamp": utc_now()}
        )
        return self.save(state)

    def get_execution_result(self) -> ExecutionResult | None:
        state = self.load()
        return state.execution_result if state is not None else None

    def set_verification_result(self, result: VerificationResult) -> bool:
        state = self.load()
        if state is None:
            return False
        state.verification_result = result.model_copy(update={"timestamp": utc_now()})
        return self.save(state)

    def get_verification_result(self) -> VerificationResult | None:
        state = self.load()
        return state.verification_result if state is not None else None

    def set_debug_result(self, result: DebugResult | None) -> bool:
        state = self.load()
        if state is None:
            return False
        state.debug_result = result
        return self.save(state)

    def get_debug_result(self) -> DebugResult | None:
        state = self.load()
        return state.debug_result if state is not None else None

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def get_state_summary(self) -> StateSummary | None:
        state = self.load()
        if state is None:
            return None
        elapsed = int((utc_now() - state.start_time).total_seconds())
        return StateSummary(
            phase=state.phase,
            current_state=state.current_state,
            attempts=state.attempts,
            max_attempts=state.max_attempts,
            completeness=state.completeness,
            elapsed_seconds=max(0, elapsed),
            can_resume=state.current_state in RESUMABLE_STATES,
        )
