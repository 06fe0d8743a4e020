from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    INVALID_PLAN = "INVALID_PLAN"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"
    DEBUG_FAILED = "DEBUG_FAILED"
    FIX_DECLINED = "FIX_DECLINED"
    FIX_FAILED = "FIX_FAILED"


RECOVERABLE_CODES = frozenset({ErrorCode.FIX_DECLINED, ErrorCode.MAX_ATTEMPTS_REACHED})


class CycleError(RuntimeError):
    """Fatal cycle failure tagged with exactly one ``ErrorCode``.

    Phase failures are raised ``from`` the original exception so the cause
    survives on ``__cause__``.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        suggestion: str | None = None,
        attempts: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.attempts = attempts
        self.max_attempts = max_attempts

    @property
    def recoverable(self) -> bool:
        return self.code in RECOVERABLE_CODES


class FixDeclinedError(RuntimeError):
    """Raised by a fixer when a human rejects the proposed remediation."""


def recovery_hints(error: BaseException, *, program: str = "plan-cycle") -> list[str]:
    """Return concrete next commands for a failed cycle, most useful first."""
    code = getattr(error, "code", None)
    if code == ErrorCode.MAX_ATTEMPTS_REACHED:
        return [
            "Review verification output",
            "Fix issues manually",
            f"Increase max attempts: {program} run <phase> --max-attempts 5",
            f"Skip verification: {program} run <phase> --continue-on-fail",
        ]
    if code == ErrorCode.FIX_DECLINED:
        return [
            "Review fix plan manually",
            f"Apply fixes automatically: {program} run <phase> --auto-fix",
            f"Start the cycle again once fixed: {program} run <phase>",
        ]
    if code == ErrorCode.PLAN_NOT_FOUND:
        return [
            "Generate the plan for this phase first",
            "Check plan path is correct",
        ]
    return [
        "Review error details above",
        f"Resume cycle: {program} resume",
        f"Start fresh: {program} run <phase>",
    ]
