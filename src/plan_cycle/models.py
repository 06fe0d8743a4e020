from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Cycle state machine (persisted)
# ---------------------------------------------------------------------------


class CycleStatus(str, Enum):
    IDLE = "IDLE"
    PLANNING = "PLANNING"
    EXECUTING = "EXECUTING"
    VERIFYING = "VERIFYING"
    DEBUGGING = "DEBUGGING"
    FIXING = "FIXING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


RESUMABLE_STATES = frozenset(
    {
        CycleStatus.PLANNING,
        CycleStatus.EXECUTING,
        CycleStatus.VERIFYING,
        CycleStatus.DEBUGGING,
        CycleStatus.FIXING,
    }
)
TERMINAL_STATES = frozenset({CycleStatus.COMPLETE, CycleStatus.FAILED})


class TransitionResult(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class _CamelModel(BaseModel):
    """Base for documents persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TransitionRecord(_CamelModel):
    state: CycleStatus
    timestamp: datetime = Field(default_factory=utc_now)
    duration: int = 0
    result: TransitionResult = TransitionResult.PENDING
    details: str = ""


class ErrorSnapshot(_CamelModel):
    message: str
    code: str = "UNKNOWN"
    traceback: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class CycleOptions(_CamelModel):
    """Resolved execution configuration for one cycle, validated once at start."""

    max_attempts: int = Field(default=3, ge=1)
    auto_fix: bool = False
    continue_on_fail: bool = False
    verbose: bool = False
    strict: bool = False


class ExecutionResult(_CamelModel):
    success: bool = True
    output: str = ""
    artifacts: list[str] = Field(default_factory=list)
    duration: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


class VerificationResult(_CamelModel):
    success: bool
    completeness: int = 0
    issues: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("completeness")
    @classmethod
    def _clamp_completeness(cls, value: int) -> int:
        return clamp_completeness(value)

    @property
    def complete(self) -> bool:
        return self.success and self.completeness >= 100


class DebugResult(_CamelModel):
    fix_plan_path: str
    report_path: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class CycleState(_CamelModel):
    """The single live cycle document for a working directory."""

    phase: str | int | None = None
    plan_path: str | None = None
    current_state: CycleStatus
    start_time: datetime = Field(default_factory=utc_now)
    last_updated: datetime | None = None
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=0)
    options: CycleOptions = Field(default_factory=CycleOptions)
    history: list[TransitionRecord] = Field(default_factory=list)
    last_error: ErrorSnapshot | None = None
    completeness: int = 0
    execution_result: ExecutionResult | None = None
    verification_result: VerificationResult | None = None
    debug_result: DebugResult | None = None

    @field_validator("completeness")
    @classmethod
    def _clamp_completeness(cls, value: int) -> int:
        return clamp_completeness(value)


def clamp_completeness(value: int | float) -> int:
    return int(min(100, max(0, round(value))))


@dataclass(frozen=True)
class StateSummary:
    phase: str | int | None
    current_state: CycleStatus
    attempts: int
    max_attempts: int
    completeness: int
    elapsed_seconds: int
    can_resume: bool


@dataclass(frozen=True)
class CycleResult:
    success: bool
    phase: str | int | None
    plan_path: str
    duration_seconds: int
    attempts: int
    completeness: int
    resumed: bool = False


# ---------------------------------------------------------------------------
# Plan validation (ephemeral)
# ---------------------------------------------------------------------------


class TaskStatus(str, Enum):
    OK = "ok"
    ALREADY_COMPLETE = "already_complete"
    PATH_ERROR = "path_error"
    MISSING_DEPENDENCY = "missing_dependency"
    CONFLICT = "conflict"


class SuggestionType(str, Enum):
    FIX_PATH = "fix_path"
    FIX_DIRECTORY = "fix_directory"
    INSTALL_DEPENDENCY = "install_dependency"


@dataclass
class PlanTask:
    name: str
    type: str | None = None
    files: list[str] = field(default_factory=list)
    action: str | None = None
    verify: str | None = None
    done: str | None = None
    raw_content: str = ""


@dataclass(frozen=True)
class ValidationIssue:
    type: TaskStatus
    message: str
    file: str | None = None
    function: str | None = None
    export: str | None = None
    module: str | None = None
    details: tuple[str, ...] = ()


@dataclass(frozen=True)
class Suggestion:
    type: SuggestionType
    original: str | None = None
    suggested: str | None = None
    command: str | None = None


@dataclass(frozen=True)
class FileExpectation:
    """Symbols a task is expected to produce in one target file."""

    file: str
    names: tuple[str, ...]


@dataclass
class TaskValidation:
    status: TaskStatus = TaskStatus.OK
    issues: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)

    def has_issue(self, issue_type: TaskStatus) -> bool:
        return any(issue.type == issue_type for issue in self.issues)


@dataclass
class ReviewedTask:
    task: PlanTask
    validation: TaskValidation


@dataclass
class PlanInfo:
    title: str | None = None
    objective: str | None = None
    phase: int | None = None
    plan: str | None = None
    dependencies: list[str] = field(default_factory=list)
    success_criteria: list[str] = field(default_factory=list)
    verification: str | None = None


@dataclass
class ReviewSummary:
    total: int = 0
    ok: int = 0
    already_complete: int = 0
    path_errors: int = 0
    missing_dependencies: int = 0
    conflicts: int = 0

    def record(self, status: TaskStatus) -> None:
        if status == TaskStatus.OK:
            self.ok += 1
        elif status == TaskStatus.ALREADY_COMPLETE:
            self.already_complete += 1
        elif status == TaskStatus.PATH_ERROR:
            self.path_errors += 1
        elif status == TaskStatus.MISSING_DEPENDENCY:
            self.missing_dependencies += 1
        elif status == TaskStatus.CONFLICT:
            self.conflicts += 1

    @property
    def ready(self) -> bool:
        return self.ok == self.total


@dataclass
class AutoFixEntry:
    task: str
    type: str
    original: str | None = None
    suggested: str | None = None


@dataclass
class AutoFixResult:
    fixed: list[AutoFixEntry] = field(default_factory=list)
    skipped: list[AutoFixEntry] = field(default_factory=list)
    new_content: str | None = None
    written: bool = False


@dataclass
class PlanReview:
    plan_path: str
    success: bool = True
    error: str | None = None
    info: PlanInfo = field(default_factory=PlanInfo)
    tasks: list[ReviewedTask] = field(default_factory=list)
    summary: ReviewSummary = field(default_factory=ReviewSummary)
    report: str | None = None
    fixes: AutoFixResult | None = None


@dataclass
class DirectoryReview:
    directory: str
    success: bool = True
    error: str | None = None
    plans: list[PlanReview] = field(default_factory=list)
    total_plans: int = 0
    total_tasks: int = 0
    ok: int = 0
    issues: int = 0
