"""
Checkpoint Manager

Decides when to snapshot a task, writes the snapshot, and answers whether an
interrupted task can be resumed.

Checkpointing:
- should_checkpoint: iteration delta since the last checkpoint >= interval
- create_checkpoint: truncated transcript, next gap-free sequence number,
  then prune to the newest max_per_task checkpoints
- A failed write returns a RECOVERABLE Outcome; the task keeps running

Resumability (checked in order, first failure is the reason):
1. No checkpoint exists
2. Checkpoint older than max age
3. Workspace path no longer exists
4. Too little progress (iteration < 3 and tool calls < 2)
"""

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, List, Any

from .checkpoint_model import Checkpoint, Interruption, ResumeCheck, ResumeRejection
from .checkpoint_store import CheckpointStore
from .task_model import ArtifactManifest, Outcome, Task

logger = logging.getLogger("checkpoint_manager")

DEFAULT_INTERVAL = 10
DEFAULT_KEEP_RECENT = 20
DEFAULT_MAX_PER_TASK = 5
DEFAULT_MAX_AGE_SECONDS = 3600
MIN_RESUME_ITERATIONS = 3
MIN_RESUME_TOOL_CALLS = 2


def truncate_transcript(transcript: List[Dict[str, Any]], keep_recent: int = DEFAULT_KEEP_RECENT) -> List[Dict[str, Any]]:
    """
    Keep the first message and the last `keep_recent` messages.

    The elided middle is replaced by one marker message. Transcripts of
    keep_recent + 1 entries or fewer are returned unchanged.
    """
    if len(transcript) <= keep_recent + 1:
        return list(transcript)
    removed = len(transcript) - keep_recent - 1
    marker = {"role": "user", "content": f"[CHECKPOINT: {removed} messages truncated]"}
    return [transcript[0], marker] + list(transcript[-keep_recent:])


class CheckpointManager:
    """
    Checkpoint lifecycle for running tasks.

    Args:
        store: Durable checkpoint store
        interval: Iterations between periodic checkpoints
        keep_recent: Transcript tail length kept in a checkpoint
        max_per_task: Checkpoints kept per task after pruning
        max_age_seconds: Oldest checkpoint that may still be resumed
    """

    def __init__(
        self,
        store: CheckpointStore,
        interval: int = DEFAULT_INTERVAL,
        keep_recent: int = DEFAULT_KEEP_RECENT,
        max_per_task: int = DEFAULT_MAX_PER_TASK,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    ):
        self.store = store
        self.interval = interval
        self.keep_recent = keep_recent
        self.max_per_task = max_per_task
        self.max_age_seconds = max_age_seconds
        self._last_iteration: Dict[str, int] = {}
        self._last_sequence: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.failed_writes = 0

    # -------------------------------------------------------------------------
    # Checkpointing
    # -------------------------------------------------------------------------

    def should_checkpoint(self, task_id: str, iteration: int) -> bool:
        return iteration - self._last_iteration.get(task_id, 0) >= self.interval

    async def create_checkpoint(self, task: Task) -> Outcome:
        """
        Snapshot a task.

        Returns:
            Outcome.success(checkpoint) or Outcome.recoverable(reason)
        """
        lock = self._locks.setdefault(task.task_id, asyncio.Lock())
        async with lock:
            try:
                checkpoint = await asyncio.to_thread(self._write, task)
            except Exception as e:
                self.failed_writes += 1
                # Re-read the sequence from disk on the next attempt
                self._last_sequence.pop(task.task_id, None)
                logger.error(f"Checkpoint failed for {task.task_id}: {type(e).__name__}: {e}")
                return Outcome.recoverable(f"Checkpoint failed: {e}")

        self._last_iteration[task.task_id] = task.iteration
        task.last_checkpoint_id = checkpoint.checkpoint_id
        logger.info(
            f"Checkpoint #{checkpoint.sequence} for {task.task_id} "
            f"(iteration {task.iteration}, {len(checkpoint.transcript)} messages)"
        )
        return Outcome.success(checkpoint)

    def _write(self, task: Task) -> Checkpoint:
        if task.task_id not in self._last_sequence:
            self._last_sequence[task.task_id] = self.store.last_sequence(task.task_id)

        checkpoint = Checkpoint(
            checkpoint_id=f"cp-{uuid.uuid4().hex[:12]}",
            task_id=task.task_id,
            sequence=self._last_sequence[task.task_id] + 1,
            phase=task.phase.value,
            iteration=task.iteration,
            tool_call_count=task.tool_call_count,
            transcript=truncate_transcript(task.transcript, self.keep_recent),
            workspace_path=task.workspace_path,
            discoveries=list(task.discoveries),
            artifacts=ArtifactManifest.from_dict(task.artifacts.to_dict()),
            memory_state=task.memory_state,
            goal=task.goal,
            channel_id=task.channel_id,
            user_id=task.user_id,
            task_type=task.task_type,
            verification=task.verification.to_dict() if task.verification else None,
        )
        self.store.append(checkpoint)
        self._last_sequence[task.task_id] = checkpoint.sequence
        self.store.prune(task.task_id, self.max_per_task)
        return checkpoint

    def get_latest_checkpoint(self, task_id: str) -> Optional[Checkpoint]:
        return self.store.latest(task_id)

    # -------------------------------------------------------------------------
    # Resumability
    # -------------------------------------------------------------------------

    def can_resume_task(self, task_id: str, now: Optional[datetime] = None) -> ResumeCheck:
        checkpoint = self.store.latest(task_id)
        if checkpoint is None:
            return ResumeCheck(False, "No checkpoint found", ResumeRejection.NO_CHECKPOINT)

        age = checkpoint.age_seconds(now)
        if age > self.max_age_seconds:
            return ResumeCheck(
                False,
                f"Checkpoint too old ({int(age // 60)} minutes)",
                ResumeRejection.TOO_OLD,
                checkpoint,
            )

        if checkpoint.workspace_path and not Path(checkpoint.workspace_path).exists():
            return ResumeCheck(
                False,
                "Workspace no longer exists",
                ResumeRejection.WORKSPACE_MISSING,
                checkpoint,
            )

        if checkpoint.iteration < MIN_RESUME_ITERATIONS and checkpoint.tool_call_count < MIN_RESUME_TOOL_CALLS:
            return ResumeCheck(
                False,
                "Insufficient progress to resume (better to restart)",
                ResumeRejection.INSUFFICIENT_PROGRESS,
                checkpoint,
            )

        return ResumeCheck(True, "Checkpoint valid for resume", checkpoint=checkpoint)

    # -------------------------------------------------------------------------
    # Interruptions
    # -------------------------------------------------------------------------

    async def record_interruption(
        self,
        task_id: str,
        reason: str,
        checkpoint_id: Optional[str] = None,
        signal: Optional[str] = None,
    ) -> Interruption:
        """Record an interruption. Resumable iff a checkpoint id is given."""
        interruption = Interruption(
            task_id=task_id,
            reason=reason,
            is_resumable=checkpoint_id is not None,
            checkpoint_id=checkpoint_id,
            signal=signal,
        )
        await asyncio.to_thread(self.store.append_interruption, interruption)
        logger.info(f"Recorded interruption for {task_id}: {reason} (resumable={interruption.is_resumable})")
        return interruption

    async def mark_resume_attempted(self, task_id: str, succeeded: bool) -> Optional[Interruption]:
        current = await asyncio.to_thread(self.store.get_interruption, task_id)
        if current is None:
            logger.warning(f"No interruption recorded for {task_id}")
            return None
        updated = current.with_resume_result(succeeded)
        await asyncio.to_thread(self.store.append_interruption, updated)
        return updated

    def get_resumable_tasks(self) -> List[Interruption]:
        return self.store.list_resumable()

    def clear_task_tracking(self, task_id: str, delete_checkpoints: bool = False) -> None:
        """Forget in-memory state for a finished task."""
        self._last_iteration.pop(task_id, None)
        self._last_sequence.pop(task_id, None)
        self._locks.pop(task_id, None)
        if delete_checkpoints:
            self.store.delete_all(task_id)
