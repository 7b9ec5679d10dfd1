"""
Background trigger for retention passes.

Writers call ``request()`` and return immediately. A single daemon thread
waits on a one-slot queue; requests made while a pass is already pending
collapse into that pending pass. Every request is followed by at least one
pass that starts after it.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from rotate_on_write.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from rotate_on_write.retention import RetentionResult

logger = get_logger(__name__)


class TriggerState(str, Enum):
    """State of the cleanup worker."""

    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class TriggerStats:
    """Counters for the cleanup worker."""

    requested: int = 0
    coalesced: int = 0
    passes_run: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "requested": self.requested,
            "coalesced": self.coalesced,
            "passes_run": self.passes_run,
            "failures": self.failures,
        }


class CleanupTrigger:
    """
    Coalescing, non-blocking scheduler for a cleanup action.

    Requests and completed passes are numbered. A pass records the newest
    request number it saw when it started; once it finishes, every request up
    to that number is satisfied. ``wait_idle`` waits for all requests made so
    far to be satisfied.
    """

    def __init__(
        self,
        action: Callable[[], RetentionResult | None],
        name: str = "rotate-on-write-cleanup",
    ) -> None:
        """
        Initialize the trigger.

        Args:
            action: Callable that runs one cleanup pass.
            name: Name of the worker thread.
        """
        self._action = action
        self._name = name
        self._logger = logger.bind(component="cleanup-trigger", worker=name)

        self._signal: queue.Queue[None] = queue.Queue(maxsize=1)
        self._cond = threading.Condition()
        self._thread: threading.Thread | None = None
        self._running = False
        self._stopping = False
        self._requested = 0
        self._completed = 0
        self._stats = TriggerStats()
        self._last_result: RetentionResult | None = None

    @property
    def state(self) -> TriggerState:
        """Get current worker state."""
        with self._cond:
            return TriggerState.RUNNING if self._running else TriggerState.STOPPED

    @property
    def stats(self) -> TriggerStats:
        """Get worker statistics."""
        return self._stats

    @property
    def last_result(self) -> RetentionResult | None:
        """Result of the most recent pass, if it returned one."""
        return self._last_result

    def request(self) -> None:
        """Schedule a pass without blocking."""
        with self._cond:
            self._requested += 1
            self._stats.requested += 1
            if not self._running:
                self._start_locked()

        try:
            self._signal.put_nowait(None)
        except queue.Full:
            with self._cond:
                self._stats.coalesced += 1

    def wait_idle(self, timeout: float | None = None) -> bool:
        """
        Wait until every request made so far has been covered by a finished pass.

        Returns:
            True if idle, False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._completed >= self._requested, timeout)

    def stop(self, timeout: float = 10.0) -> None:
        """
        Finish pending work and stop the worker.

        A pass already running always completes. A later ``request()`` starts
        a new worker.
        """
        with self._cond:
            if not self._running:
                return
            self._stopping = True
            thread = self._thread

        try:
            self._signal.put_nowait(None)
        except queue.Full:
            pass

        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                self._logger.warning("cleanup_worker_stop_timeout", timeout=timeout)

    def _start_locked(self) -> None:
        self._running = True
        self._stopping = False
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        self._logger.debug("cleanup_worker_started")

    def _run(self) -> None:
        while True:
            self._signal.get()

            with self._cond:
                target = self._requested
                pending = target > self._completed

            if pending:
                self._run_pass(target)

            with self._cond:
                if self._stopping and self._requested <= self._completed:
                    self._running = False
                    self._thread = None
                    self._cond.notify_all()
                    break

        self._logger.debug("cleanup_worker_stopped", stats=self._stats.to_dict())

    def _run_pass(self, target: int) -> None:
        failed = False
        try:
            result = self._action()
        except Exception as e:
            failed = True
            self._logger.error("cleanup_pass_crashed", error=str(e), error_type=type(e).__name__)
        else:
            self._last_result = result
            if result is not None and result.error is not None:
                failed = True
                self._logger.warning(
                    "cleanup_pass_failed",
                    error=result.error.to_dict(),
                    error_count=len(result.errors),
                )
        finally:
            with self._cond:
                self._stats.passes_run += 1
                if failed:
                    self._stats.failures += 1
                self._completed = max(self._completed, target)
                self._cond.notify_all()
