"""
Shutdown Coordinator

On a termination signal, checkpoints every running task within one time
budget, then runs cleanup callbacks.

Sequence:
1. Ignore the signal if a shutdown is already in progress
2. Stop accepting new tasks
3. Checkpoint all running tasks concurrently, bounded by a single timeout
   - success: interruption recorded as resumable, task marked interrupted,
     user notified
   - failure: task marked failed with the checkpoint error
   - still running at the deadline: task marked failed
4. Run cleanup callbacks one after another; a failing callback is logged and
   the rest still run
"""

import asyncio
import inspect
import logging
import signal
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Any, Protocol, Union

from .checkpoint_manager import CheckpointManager
from .checkpoint_model import Interruption
from .errors import CheckpointError
from .notification_engine import NotificationEngine, NotificationKind
from .task_model import Task

logger = logging.getLogger("shutdown_coordinator")

DEFAULT_TIMEOUT_SECONDS = 30.0

CleanupCallback = Callable[[], Union[None, Awaitable[None]]]


class RunningTaskSource(Protocol):
    """What the coordinator needs from whoever owns the tasks."""

    def stop_accepting(self) -> None: ...

    def get_running_tasks(self) -> List[Task]: ...

    def mark_task_interrupted(self, task: Task, interruption: Interruption) -> None: ...

    def mark_task_failed(self, task: Task, reason: str) -> None: ...


@dataclass(frozen=True)
class TaskShutdownOutcome:
    task_id: str
    resumable: bool
    checkpoint_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ShutdownReport:
    signal: Optional[str]
    outcomes: List[TaskShutdownOutcome] = field(default_factory=list)
    timed_out: bool = False
    duration_seconds: float = 0.0
    cleanup_errors: int = 0

    @property
    def resumable_count(self) -> int:
        return sum(1 for o in self.outcomes if o.resumable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal": self.signal,
            "timed_out": self.timed_out,
            "duration_seconds": round(self.duration_seconds, 3),
            "cleanup_errors": self.cleanup_errors,
            "outcomes": [
                {"task_id": o.task_id, "resumable": o.resumable, "checkpoint_id": o.checkpoint_id, "error": o.error}
                for o in self.outcomes
            ],
        }


class ShutdownCoordinator:
    """
    Orderly shutdown for the task execution core.

    Args:
        tasks: Owner of the running tasks
        checkpoints: Checkpoint manager
        notifier: Notification sink
        timeout_seconds: Budget for the whole checkpoint phase
    """

    def __init__(
        self,
        tasks: RunningTaskSource,
        checkpoints: CheckpointManager,
        notifier: NotificationEngine,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.tasks = tasks
        self.checkpoints = checkpoints
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds
        self._cleanup: List[CleanupCallback] = []
        self._in_progress = False
        self.last_report: Optional[ShutdownReport] = None

    @property
    def is_shutting_down(self) -> bool:
        return self._in_progress

    def register_cleanup(self, callback: CleanupCallback) -> None:
        self._cleanup.append(callback)

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Route SIGINT and SIGTERM to shutdown()."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_signal, sig.name)
        logger.info("Shutdown signal handlers installed")

    def _on_signal(self, signal_name: str) -> None:
        logger.info(f"Received {signal_name}")
        asyncio.ensure_future(self.shutdown(signal_name))

    async def shutdown(self, signal_name: Optional[str] = None) -> Optional[ShutdownReport]:
        """
        Run the shutdown sequence.

        Returns:
            ShutdownReport, or None if a shutdown was already in progress
        """
        if self._in_progress:
            logger.info(f"Shutdown already in progress, ignoring {signal_name or 'request'}")
            return None
        self._in_progress = True

        started = time.monotonic()
        report = ShutdownReport(signal=signal_name)

        self.tasks.stop_accepting()
        running = list(self.tasks.get_running_tasks())
        logger.info(f"Shutting down ({signal_name or 'requested'}): {len(running)} running task(s)")

        if running:
            await self._checkpoint_all(running, signal_name, report)

        report.cleanup_errors = await self._run_cleanup()
        report.duration_seconds = time.monotonic() - started
        self.last_report = report
        logger.info(
            f"Shutdown complete in {report.duration_seconds:.2f}s: "
            f"{report.resumable_count}/{len(running)} task(s) resumable"
        )
        return report

    async def _checkpoint_all(self, running: List[Task], signal_name: Optional[str], report: ShutdownReport) -> None:
        pending_by_task = {
            asyncio.ensure_future(self._checkpoint_task(task, signal_name)): task
            for task in running
        }
        done, pending = await asyncio.wait(pending_by_task.keys(), timeout=self.timeout_seconds)

        for future in done:
            report.outcomes.append(future.result())

        if pending:
            report.timed_out = True
            logger.error(f"Shutdown timeout ({self.timeout_seconds}s) reached with {len(pending)} task(s) pending")
            for future in pending:
                future.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for future in pending:
                task = pending_by_task[future]
                reason = f"Shutdown timed out after {self.timeout_seconds}s before checkpoint completed"
                self.tasks.mark_task_failed(task, reason)
                report.outcomes.append(TaskShutdownOutcome(task.task_id, False, error=reason))

    async def _checkpoint_task(self, task: Task, signal_name: Optional[str]) -> TaskShutdownOutcome:
        try:
            outcome = await self.checkpoints.create_checkpoint(task)
            if not outcome.ok:
                raise CheckpointError(task.task_id, outcome.message)
            checkpoint = outcome.value

            interruption = await self.checkpoints.record_interruption(
                task.task_id,
                reason=f"Process shutdown ({signal_name or 'requested'})",
                checkpoint_id=checkpoint.checkpoint_id,
                signal=signal_name,
            )
            self.tasks.mark_task_interrupted(task, interruption)
        except Exception as e:
            reason = f"Failed to checkpoint during shutdown: {e}"
            logger.error(f"Task {task.task_id}: {reason}")
            self.tasks.mark_task_failed(task, reason)
            return TaskShutdownOutcome(task.task_id, False, error=reason)

        await self.notifier.notify(
            f"Task paused for restart at iteration {task.iteration}. It will resume automatically.",
            kind=NotificationKind.INTERRUPTED,
            task_id=task.task_id,
            recipient=task.channel_id,
        )
        return TaskShutdownOutcome(task.task_id, True, checkpoint_id=checkpoint.checkpoint_id)

    async def _run_cleanup(self) -> int:
        errors = 0
        for callback in self._cleanup:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                errors += 1
                logger.error(f"Cleanup callback {getattr(callback, '__name__', callback)} failed: {e}")
        return errors
