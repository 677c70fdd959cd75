"""
Task Manager

Owns every Task in the process and drives each one through:

    estimate -> (decompose -> plan -> batches of loops) or single loop
             -> verify -> completed / failed

It is also the running-task source for the Shutdown Coordinator and resumes
interrupted tasks from their checkpoints on startup.

Features:
- Each task runs as its own asyncio task; tasks share no mutable state
- Subtasks run as child loops with a budget of estimated iterations + 5
- Progress updates trigger periodic checkpoints of the parent task
- Terminal tasks have their checkpoint tracking cleared
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Dict, List, Any, Tuple

from .checkpoint_manager import CheckpointManager
from .checkpoint_model import Checkpoint, Interruption
from .complexity_estimator import estimate_complexity, iteration_limit, needs_decomposition
from .errors import AutopilotError, NotAcceptingTasksError, TaskNotFoundError
from .execution_loop import ExecutionLoop
from .execution_planner import ExecutionPlanner, SubTaskResult
from .notification_engine import NotificationEngine, NotificationKind
from .outcome_verifier import EXPECTED_FILES, OutcomeVerifier
from .task_decomposer import TaskDecomposer
from .task_model import ArtifactManifest, ComplexityEstimate, SubTask, Task, TaskPhase, TaskStatus
from .verification_model import VerificationContext, VerificationResult

logger = logging.getLogger("task_manager")

SUBTASK_EXTRA_ITERATIONS = 5


def build_resume_prompt(checkpoint: Checkpoint) -> str:
    """First message of a resumed task."""
    lines = [
        f"[RESUME FROM CHECKPOINT {checkpoint.sequence}]",
        "",
        f"Original task: {checkpoint.goal}",
        "",
        "Progress so far:",
        f"- Phase: {checkpoint.phase}",
        f"- Iterations completed: {checkpoint.iteration}",
        f"- Tool calls made: {checkpoint.tool_call_count}",
    ]
    if checkpoint.workspace_path:
        lines += ["", f"Workspace: {checkpoint.workspace_path}"]
    if checkpoint.discoveries:
        lines += ["", "Discoveries:"] + [f"- {d}" for d in checkpoint.discoveries]
    artifacts = checkpoint.artifacts
    if not artifacts.is_empty():
        lines += ["", "Artifacts created:"]
        if artifacts.files_created:
            lines.append(f"- Files: {', '.join(artifacts.files_created)}")
        if artifacts.urls_deployed:
            lines.append(f"- URLs: {', '.join(artifacts.urls_deployed)}")
        if artifacts.repos_created:
            lines.append(f"- Repos: {', '.join(artifacts.repos_created)}")
    lines += [
        "",
        "Continue from where you left off. Do not repeat work that is already done.",
    ]
    return "\n".join(lines)


class TaskManager:
    """
    Task lifecycle orchestration.

    Args:
        loop: Execution loop
        decomposer: Task decomposer
        planner: Execution planner
        checkpoints: Checkpoint manager
        verifier: Outcome verifier
        notifier: Notification sink
        workspace_root: Parent directory for per-task workspaces
        auto_resume: Resume interrupted tasks on startup
    """

    def __init__(
        self,
        loop: ExecutionLoop,
        decomposer: TaskDecomposer,
        planner: ExecutionPlanner,
        checkpoints: CheckpointManager,
        verifier: OutcomeVerifier,
        notifier: NotificationEngine,
        workspace_root: Path,
        auto_resume: bool = True,
    ):
        self.loop = loop
        self.decomposer = decomposer
        self.planner = planner
        self.checkpoints = checkpoints
        self.verifier = verifier
        self.notifier = notifier
        self.workspace_root = Path(workspace_root)
        self.auto_resume = auto_resume
        self._tasks: Dict[str, Task] = {}
        self._runners: Dict[str, asyncio.Task] = {}
        self._stop_events: Dict[str, asyncio.Event] = {}
        self._verifications: Dict[str, VerificationResult] = {}
        self._accepting = True

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def submit(
        self,
        goal: str,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        task_type: Optional[str] = None,
        verification: Optional[VerificationContext] = None,
    ) -> Task:
        """
        Accept a goal and start running it in the background.

        Raises:
            NotAcceptingTasksError: during shutdown
        """
        if not self._accepting:
            raise NotAcceptingTasksError()

        task = Task(
            goal=goal,
            channel_id=channel_id,
            user_id=user_id,
            task_type=task_type,
            verification=verification,
        )
        workspace = self.workspace_root / task.task_id
        workspace.mkdir(parents=True, exist_ok=True)
        task.workspace_path = str(workspace)
        self._tasks[task.task_id] = task
        self._start(task)
        logger.info(f"Accepted task {task.task_id}: {goal[:80]}")
        return task

    def _start(self, task: Task) -> None:
        self._stop_events[task.task_id] = asyncio.Event()
        self._runners[task.task_id] = asyncio.create_task(self.run_task(task))

    async def wait_for(self, task_id: str) -> Task:
        runner = self._runners.get(task_id)
        if runner is not None:
            await runner
        return self.get_task(task_id)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def run_task(self, task: Task, verification: Optional[VerificationContext] = None) -> Task:
        """Run a task to a terminal (or interrupted) state. Never raises."""
        verification = verification or task.verification
        stop = self._stop_events.setdefault(task.task_id, asyncio.Event())
        self._tasks.setdefault(task.task_id, task)
        task.status = TaskStatus.RUNNING
        task.touch()

        interrupted = False
        try:
            estimate = estimate_complexity(task.goal, task.task_type)
            logger.info(
                f"Task {task.task_id}: {estimate.tier.value} "
                f"({estimate.recommended} iterations, {estimate.confidence.value}) - {estimate.reasoning}"
            )
            task.iteration_limit = iteration_limit(estimate)

            if needs_decomposition(estimate) and task.resumed_from is None:
                success, message = await self._run_decomposed(task, estimate, stop)
                interrupted = stop.is_set() and not success
            else:
                task.phase = TaskPhase.EXECUTING
                result = await self.loop.run(task, cancel_event=stop)
                success, message = result.success, result.message
                interrupted = result.interrupted
        except AutopilotError as e:
            success, message = False, e.message
        except Exception as e:
            logger.error(f"Task {task.task_id}: unexpected error: {type(e).__name__}: {e}")
            success, message = False, f"Error: {e}"

        if interrupted:
            # Shutdown owns the final status of interrupted work
            logger.info(f"Task {task.task_id}: stopped for shutdown at iteration {task.iteration}")
            return task

        if success:
            message = await self._verify(task, verification, message)
            self._finish(task, TaskStatus.COMPLETED, message)
            await self.notify(task, message, NotificationKind.COMPLETED)
        else:
            self._finish(task, TaskStatus.FAILED, message)
            await self.notify(task, f"Task failed: {message}", NotificationKind.FAILED)
        return task

    async def _run_decomposed(self, task: Task, estimate: ComplexityEstimate, stop: asyncio.Event) -> Tuple[bool, str]:
        task.phase = TaskPhase.PLANNING
        decomposition = await self.decomposer.decompose(task.goal, estimate)
        batches = self.planner.plan(list(decomposition.subtasks))
        await self.notify(
            task,
            f"Split into {len(decomposition.subtasks)} subtasks across {len(batches)} batch(es)",
            NotificationKind.SYSTEM,
        )

        task.phase = TaskPhase.EXECUTING

        async def run_subtask(subtask: SubTask) -> SubTaskResult:
            if stop.is_set():
                return SubTaskResult(subtask.subtask_id, False, "Skipped: shutdown in progress")
            child = Task(
                goal=subtask.description,
                task_id=f"{task.task_id}.{subtask.subtask_id}",
                channel_id=task.channel_id,
                user_id=task.user_id,
                status=TaskStatus.RUNNING,
                phase=TaskPhase.EXECUTING,
                workspace_path=task.workspace_path,
                discoveries=task.discoveries,
                artifacts=task.artifacts,
            )
            result = await self.loop.run(
                child,
                max_iterations=subtask.estimated_iterations + SUBTASK_EXTRA_ITERATIONS,
                cancel_event=stop,
                checkpoint=False,
            )
            task.transcript.append({
                "role": "assistant",
                "content": f"[{subtask.subtask_id}] {'done' if result.success else 'failed'}: {result.message}",
            })
            await self.update_task_progress(task, result.iterations, result.tool_calls)
            return SubTaskResult(subtask.subtask_id, result.success, result.message, result.iterations, result.tool_calls)

        if not task.transcript:
            task.transcript.append({"role": "user", "content": task.goal})
        plan_result = await self.planner.execute(batches, run_subtask)
        message = plan_result.message or "No subtasks produced output"
        if plan_result.failed:
            message += f"\n\nFailed subtasks: {', '.join(plan_result.failed)}"
        return plan_result.success, message

    async def _verify(self, task: Task, verification: Optional[VerificationContext], message: str) -> str:
        if verification is None and (task.task_type or "").lower() not in EXPECTED_FILES:
            return message
        task.phase = TaskPhase.VERIFYING
        context = verification or VerificationContext(task_type=task.task_type)
        if context.workspace_path is None:
            context.workspace_path = task.workspace_path
        if context.deployment_url is None and task.artifacts.urls_deployed:
            context.deployment_url = task.artifacts.urls_deployed[-1]

        result = await self.verifier.verify(task.task_id, context)
        self._verifications[task.task_id] = result
        if result.verified:
            return f"{message}\n\n{result.summary}"
        hints = "\n".join(f"- {s}" for s in result.suggestions)
        return f"{message}\n\n{result.summary}" + (f"\nSuggestions:\n{hints}" if hints else "")

    def _finish(self, task: Task, status: TaskStatus, message: str) -> None:
        task.status = status
        task.result_message = message
        task.touch()
        self._stop_events.pop(task.task_id, None)
        self.checkpoints.clear_task_tracking(task.task_id, delete_checkpoints=True)
        logger.info(f"Task {task.task_id} {status.value} after {task.iteration} iteration(s)")

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    async def update_task_progress(
        self,
        task: Task,
        iterations: int = 0,
        tool_calls: int = 0,
        discovery: Optional[str] = None,
    ) -> None:
        """Add progress to a task and checkpoint it when one is due."""
        task.iteration += iterations
        task.tool_call_count += tool_calls
        if discovery:
            task.discoveries.append(discovery)
        task.touch()
        if self.checkpoints.should_checkpoint(task.task_id, task.iteration):
            outcome = await self.checkpoints.create_checkpoint(task)
            if not outcome.ok:
                logger.warning(f"Task {task.task_id}: continuing without a fresh checkpoint ({outcome.message})")

    async def notify(self, task: Task, message: str, kind: NotificationKind = NotificationKind.SYSTEM) -> bool:
        return await self.notifier.notify(message, kind=kind, task_id=task.task_id, recipient=task.channel_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Task]:
        tasks = sorted(self._tasks.values(), key=lambda t: t.created_at)
        return [t for t in tasks if status is None or t.status == status]

    def get_verification(self, task_id: str) -> Optional[VerificationResult]:
        return self._verifications.get(task_id)

    def record_verification(self, result: VerificationResult) -> None:
        self._verifications[result.task_id] = result

    @property
    def accepting(self) -> bool:
        return self._accepting

    # -------------------------------------------------------------------------
    # Shutdown Coordinator Interface
    # -------------------------------------------------------------------------

    def stop_accepting(self) -> None:
        """Refuse new tasks and ask running loops to stop at their next boundary."""
        self._accepting = False
        for event in self._stop_events.values():
            event.set()

    def get_running_tasks(self) -> List[Task]:
        return [t for t in self._tasks.values() if t.status == TaskStatus.RUNNING]

    def mark_task_interrupted(self, task: Task, interruption: Interruption) -> None:
        task.status = TaskStatus.INTERRUPTED
        task.last_checkpoint_id = interruption.checkpoint_id
        task.result_message = interruption.reason
        task.touch()

    def mark_task_failed(self, task: Task, reason: str) -> None:
        task.status = TaskStatus.FAILED
        task.result_message = reason
        task.touch()

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for running loops to leave, then cancel stragglers."""
        runners = [r for r in self._runners.values() if not r.done()]
        if not runners:
            return
        done, pending = await asyncio.wait(runners, timeout=timeout)
        for runner in pending:
            runner.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} task runner(s) that did not stop in {timeout}s")

    # -------------------------------------------------------------------------
    # Resume
    # -------------------------------------------------------------------------

    def set_auto_resume(self, enabled: bool) -> None:
        self.auto_resume = enabled
        logger.info(f"Auto-resume {'enabled' if enabled else 'disabled'}")

    async def resume_interrupted_tasks(self) -> List[Task]:
        """Restart every resumable task from its latest checkpoint."""
        if not self.auto_resume:
            logger.info("Auto-resume disabled, leaving interrupted tasks alone")
            return []

        resumed: List[Task] = []
        interruptions = await asyncio.to_thread(self.checkpoints.get_resumable_tasks)
        for interruption in interruptions:
            check = await asyncio.to_thread(self.checkpoints.can_resume_task, interruption.task_id)
            if not check.can_resume:
                logger.info(f"Not resuming {interruption.task_id}: {check.reason}")
                await self.checkpoints.mark_resume_attempted(interruption.task_id, succeeded=False)
                if check.checkpoint is not None:
                    await self.notifier.notify(
                        f"Could not resume task: {check.reason}",
                        kind=NotificationKind.FAILED,
                        task_id=interruption.task_id,
                        recipient=check.checkpoint.channel_id,
                    )
                continue

            task = self._task_from_checkpoint(check.checkpoint)
            self._tasks[task.task_id] = task
            self._start(task)
            await self.checkpoints.mark_resume_attempted(task.task_id, succeeded=True)
            await self.notify(
                task,
                f"Resuming from checkpoint {check.checkpoint.sequence} (iteration {task.iteration})",
                NotificationKind.RESUMED,
            )
            resumed.append(task)

        if resumed:
            logger.info(f"Resumed {len(resumed)} interrupted task(s)")
        return resumed

    @staticmethod
    def _task_from_checkpoint(checkpoint: Checkpoint) -> Task:
        return Task(
            goal=checkpoint.goal,
            task_id=checkpoint.task_id,
            channel_id=checkpoint.channel_id,
            user_id=checkpoint.user_id,
            task_type=checkpoint.task_type,
            status=TaskStatus.PENDING,
            phase=TaskPhase.EXECUTING,
            iteration=checkpoint.iteration,
            tool_call_count=checkpoint.tool_call_count,
            workspace_path=checkpoint.workspace_path,
            discoveries=list(checkpoint.discoveries),
            artifacts=ArtifactManifest.from_dict(checkpoint.artifacts.to_dict()),
            transcript=[{"role": "user", "content": build_resume_prompt(checkpoint)}],
            memory_state=checkpoint.memory_state,
            verification=VerificationContext.from_dict(checkpoint.verification) if checkpoint.verification else None,
            last_checkpoint_id=checkpoint.checkpoint_id,
            resumed_from=checkpoint.sequence,
        )

    def summary(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {s.value: 0 for s in TaskStatus}
        for task in self._tasks.values():
            counts[task.status.value] += 1
        return {
            "accepting": self._accepting,
            "auto_resume": self.auto_resume,
            "tasks": counts,
            "notifications": dict(self.notifier.stats),
        }
