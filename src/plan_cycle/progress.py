from __future__ import annotations

import logging
import signal
import threading
import time
from types import FrameType, TracebackType
from typing import Any

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Log phase start/finish lines with elapsed time.

    At most one phase is active; starting a new one closes the previous one.
    """

    def __init__(self, *, verbose: bool = False) -> None:
        self.verbose = verbose
        self.current_phase: str | None = None
        self._started_at: float | None = None

    def start(self, phase: str, message: str = "") -> None:
        if self.current_phase is not None:
            self.stop()
        self.current_phase = phase
        self._started_at = time.monotonic()
        logger.info("[%s] %s", phase, message or "started")

    def _elapsed(self) -> float:
        return time.monotonic() - self._started_at if self._started_at is not None else 0.0

    def succeed(self, message: str = "") -> None:
        if self.current_phase is None:
            return
        logger.info("[%s] done in %.1fs %s", self.current_phase, self._elapsed(), message)
        self._reset()

    def fail(self, message: str = "") -> None:
        if self.current_phase is None:
            return
        logger.warning("[%s] failed after %.1fs: %s", self.current_phase, self._elapsed(), message)
        self._reset()

    def note(self, message: str) -> None:
        """Detail line, only shown in verbose mode."""
        if self.verbose:
            logger.info("  %s", message)
        else:
            logger.debug("  %s", message)

    def stop(self) -> None:
        if self.current_phase is not None:
            logger.debug("[%s] stopped after %.1fs", self.current_phase, self._elapsed())
        self._reset()

    def _reset(self) -> None:
        self.current_phase = None
        self._started_at = None


class InterruptController:
    """Own the SIGINT/SIGTERM handlers for the duration of a cycle.

    On a signal the active phase is logged and ``KeyboardInterrupt`` is raised
    in the main thread, unwinding the cycle without any state transition.  The
    previous handlers are restored on exit.  Outside the main thread this is a
    no-op, since handlers can only be installed there.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, reporter: ProgressReporter | None = None, *, resume_hint: str = "") -> None:
        self.reporter = reporter
        self.resume_hint = resume_hint
        self.interrupted_by: str | None = None
        self._previous: dict[int, Any] = {}

    def _handle(self, signum: int, _frame: FrameType | None) -> None:
        self.interrupted_by = signal.Signals(signum).name
        phase = self.reporter.current_phase if self.reporter is not None else None
        logger.warning("Caught %s during %s; cycle state is saved", self.interrupted_by, phase or "cycle")
        if self.resume_hint:
            logger.warning("Resume with: %s", self.resume_hint)
        raise KeyboardInterrupt(self.interrupted_by)

    def install(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in self.SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)

    def restore(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def __enter__(self) -> InterruptController:
        self.install()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.restore()
