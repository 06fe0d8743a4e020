from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    state_file: str = ".plan-cycle/cycle-state.json"
    planning_dir: str = ".planning"
    max_attempts: int = 3
    min_plan_length: int = 100
    recursion_limit: int = 1_000
    executor_command: str = ""
    executor_timeout_seconds: int = 0
    strict_review: bool = False
    workspace_root: str = ""

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            state_file=os.getenv("PLAN_CYCLE_STATE_FILE", ".plan-cycle/cycle-state.json"),
            planning_dir=os.getenv("PLAN_CYCLE_PLANNING_DIR", ".planning"),
            max_attempts=_get_env_int("PLAN_CYCLE_MAX_ATTEMPTS", default=3, minimum=1, maximum=100),
            min_plan_length=_get_env_int("PLAN_CYCLE_MIN_PLAN_LENGTH", default=100, minimum=0),
            recursion_limit=_get_env_int("PLAN_CYCLE_RECURSION_LIMIT", default=1_000, minimum=25),
            executor_command=os.getenv("PLAN_CYCLE_EXECUTOR_CMD", ""),
            executor_timeout_seconds=_get_env_int("PLAN_CYCLE_EXECUTOR_TIMEOUT", default=0, minimum=0),
            strict_review=_get_env_bool("PLAN_CYCLE_STRICT_REVIEW", default=False),
            workspace_root=os.getenv("PLAN_CYCLE_WORKSPACE_ROOT", ""),
        ).normalized()

    @property
    def workspace_root_path(self) -> Path:
        """Return the workspace root as a Path, defaulting to cwd if unset."""
        return Path(self.workspace_root) if self.workspace_root else Path.cwd()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        state_file = self.state_file.strip()
        if not state_file:
            raise ValueError("PLAN_CYCLE_STATE_FILE must be non-empty")
        planning_dir = self.planning_dir.strip()
        if not planning_dir:
            raise ValueError("PLAN_CYCLE_PLANNING_DIR must be non-empty")

        # -- Numeric bounds validation --
        if self.max_attempts < 1:
            raise ValueError(f"PLAN_CYCLE_MAX_ATTEMPTS must be >= 1, got: {self.max_attempts}")
        if self.min_plan_length < 0:
            raise ValueError(f"PLAN_CYCLE_MIN_PLAN_LENGTH must be >= 0, got: {self.min_plan_length}")
        if self.recursion_limit > 100_000:
            raise ValueError(
                f"PLAN_CYCLE_RECURSION_LIMIT must be <= 100000, got: {self.recursion_limit}"
            )
        if self.executor_timeout_seconds < 0:
            raise ValueError(
                f"PLAN_CYCLE_EXECUTOR_TIMEOUT must be >= 0, got: {self.executor_timeout_seconds}"
            )

        return RuntimeSettings(
            state_file=state_file,
            planning_dir=planning_dir,
            max_attempts=self.max_attempts,
            min_plan_length=self.min_plan_length,
            recursion_limit=self.recursion_limit,
            executor_command=self.executor_command.strip(),
            executor_timeout_seconds=self.executor_timeout_seconds,
            strict_review=self.strict_review,
            workspace_root=self.workspace_root.strip(),
        )

    def state_file_path(self, repo_root: Path) -> Path:
        path = Path(self.state_file)
        return path if path.is_absolute() else repo_root / path

    def planning_dir_path(self, repo_root: Path) -> Path:
        path = Path(self.planning_dir)
        return path if path.is_absolute() else repo_root / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got: {raw!r}")
