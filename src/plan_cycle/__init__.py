from importlib.metadata import PackageNotFoundError, version

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
from .controller import CycleController
from .errors import CycleError, ErrorCode, FixDeclinedError, recovery_hints
from .inspector import CodeInspector
from .models import (
    CycleOptions,
    CycleResult,
    CycleState,
    CycleStatus,
    DebugResult,
    ExecutionResult,
    PlanReview,
    PlanTask,
    TaskStatus,
    TaskValidation,
    VerificationResult,
)
from .progress import InterruptController, ProgressReporter
from .settings import RuntimeSettings
from .state_store import CycleStateStore
from .symbols import SymbolTable, extract_symbols
from .validator import PlanValidator


def get_version() -> str:
    try:
        return version("plan-cycle")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "CodeInspector",
    "CommandExecutor",
    "Confirmer",
    "ConsoleConfirmer",
    "CycleController",
    "CycleError",
    "CycleOptions",
    "CycleResult",
    "CycleState",
    "CycleStateStore",
    "CycleStatus",
    "DebugEngine",
    "DebugResult",
    "ErrorCode",
    "ExecutionResult",
    "Executor",
    "ExecutorFixer",
    "FixDeclinedError",
    "FixPlanWriter",
    "Fixer",
    "InterruptController",
    "ManualExecutor",
    "PlanReview",
    "PlanReviewVerifier",
    "PlanTask",
    "PlanValidator",
    "ProgressReporter",
    "RuntimeSettings",
    "SymbolTable",
    "TaskStatus",
    "TaskValidation",
    "VerificationResult",
    "Verifier",
    "extract_symbols",
    "get_version",
    "recovery_hints",
]
