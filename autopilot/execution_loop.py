"""
Execution Loop

Effect runner for the execution state machine. Drives one task (or one
subtask) through reasoning requests and tool calls until it completes,
fails, or is interrupted.

CONSTRAINTS:
- run() never raises: any internal error ends the loop as failed
- Tool calls run in request order; every result reaches the transcript
- Cancellation is observed only between "tool results appended" and
  "next request sent", never in the middle of a tool call
- Notifications are best effort and never interrupt the loop
- Periodic checkpoints go through the Checkpoint Manager; a failed write is
  logged and the loop carries on
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, List, Any

from .checkpoint_manager import CheckpointManager
from .execution_state import (
    CheckpointDue,
    DispatchTools,
    FailureReason,
    InternalError,
    LoopPhase,
    LoopState,
    Notify,
    ReadyToRequest,
    RequestCompletion,
    RequestSent,
    ResponseReceived,
    Started,
    ToolResultsReady,
    initial_state,
    transition,
)
from .notification_engine import NotificationEngine, NotificationKind
from .reasoning_client import ReasoningClient
from .task_model import Task
from .tools import ToolContext, ToolRegistry

logger = logging.getLogger("execution_loop")

SYSTEM_PROMPT = (
    "You are an autonomous assistant working inside a task workspace. "
    "Use the available tools to accomplish the user's goal. Record important "
    "findings with note_discovery. When the goal is achieved, reply with a "
    "short summary and no tool calls."
)

_NOTIFY_KINDS = {
    "iteration": NotificationKind.ITERATION,
    "tool_call": NotificationKind.TOOL_CALL,
    "tool_result": NotificationKind.TOOL_RESULT,
    "completed": NotificationKind.COMPLETED,
    "failed": NotificationKind.FAILED,
}


@dataclass(frozen=True)
class LoopResult:
    task_id: str
    success: bool
    message: str
    iterations: int
    tool_calls: int
    failure: Optional[FailureReason] = None
    interrupted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "success": self.success,
            "message": self.message,
            "iterations": self.iterations,
            "tool_calls": self.tool_calls,
            "failure": self.failure.value if self.failure else None,
            "interrupted": self.interrupted,
        }


class ExecutionLoop:
    """
    Runs tasks against a reasoning client and a tool registry.

    Args:
        reasoning_client: Reasoning service
        tools: Tool registry
        notifier: Notification sink
        checkpoints: Optional checkpoint manager for periodic snapshots
        tool_timeout: Per-tool-call ceiling in seconds
        reasoning_timeout: Per-request ceiling in seconds
    """

    def __init__(
        self,
        reasoning_client: ReasoningClient,
        tools: ToolRegistry,
        notifier: NotificationEngine,
        checkpoints: Optional[CheckpointManager] = None,
        tool_timeout: float = 120.0,
        reasoning_timeout: float = 180.0,
    ):
        self.reasoning_client = reasoning_client
        self.tools = tools
        self.notifier = notifier
        self.checkpoints = checkpoints
        self.tool_timeout = tool_timeout
        self.reasoning_timeout = reasoning_timeout

    async def run(
        self,
        task: Task,
        max_iterations: Optional[int] = None,
        prompt: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        checkpoint: bool = True,
    ) -> LoopResult:
        """
        Drive a task to a terminal loop state.

        Args:
            task: Task to run; progress counters and transcript are updated in place
            max_iterations: Budget (defaults to task.iteration_limit)
            prompt: First user message (defaults to the goal); ignored when the
                task already has a transcript to continue from
            cancel_event: Set to stop at the next iteration boundary
            checkpoint: Take periodic checkpoints for this task
        """
        budget = max_iterations if max_iterations is not None else task.iteration_limit
        base_iteration = task.iteration
        base_tool_calls = task.tool_call_count
        seed = task.transcript if task.transcript else (prompt or task.goal)
        latest = [initial_state(seed, budget)]

        try:
            state = await self._drive(task, latest, cancel_event, checkpoint, base_iteration, base_tool_calls)
        except Exception as e:
            state = latest[0]
            logger.error(f"Task {task.task_id}: execution loop error: {type(e).__name__}: {e}")
            state, effects = transition(state, InternalError(f"Error: {e}"))
            await self._notify_all(task, effects)

        self._sync(task, state, base_iteration, base_tool_calls)
        interrupted = not state.is_terminal

        if interrupted:
            message = f"Interrupted after {state.iteration} iteration(s)"
        else:
            message = state.final_message or ""
        logger.info(
            f"Task {task.task_id}: loop ended in {state.phase.value} "
            f"after {state.iteration} iteration(s), {state.tool_call_count} tool call(s)"
        )
        return LoopResult(
            task_id=task.task_id,
            success=state.phase == LoopPhase.COMPLETED,
            message=message,
            iterations=state.iteration,
            tool_calls=state.tool_call_count,
            failure=state.failure,
            interrupted=interrupted,
        )

    async def _drive(
        self,
        task: Task,
        latest: List[LoopState],
        cancel_event: Optional[asyncio.Event],
        checkpoint: bool,
        base_iteration: int,
        base_tool_calls: int,
    ) -> LoopState:
        ctx = ToolContext(
            workspace_path=Path(task.workspace_path or "."),
            discoveries=task.discoveries,
            artifacts=task.artifacts,
            command_timeout=self.tool_timeout,
        )
        catalog = self.tools.catalog()
        state = latest[0]
        pending = [Started()]

        while pending:
            event = pending.pop(0)
            state, effects = transition(state, event)
            latest[0] = state
            self._sync(task, state, base_iteration, base_tool_calls)

            for effect in effects:
                if isinstance(effect, Notify):
                    await self._notify(task, effect)

                elif isinstance(effect, CheckpointDue):
                    if checkpoint and self.checkpoints is not None:
                        await self._maybe_checkpoint(task)

                elif isinstance(effect, ReadyToRequest):
                    if cancel_event is not None and cancel_event.is_set():
                        logger.info(f"Task {task.task_id}: stop requested, leaving loop at iteration boundary")
                        return state
                    pending.append(RequestSent())

                elif isinstance(effect, RequestCompletion):
                    try:
                        response = await asyncio.wait_for(
                            self.reasoning_client.complete(effect.messages, catalog, SYSTEM_PROMPT),
                            timeout=self.reasoning_timeout,
                        )
                    except asyncio.TimeoutError:
                        pending.append(InternalError(f"Reasoning request timed out after {self.reasoning_timeout}s"))
                        continue
                    except Exception as e:
                        pending.append(InternalError(f"Error: {e}"))
                        continue
                    pending.append(ResponseReceived(response))

                elif isinstance(effect, DispatchTools):
                    results = []
                    for request in effect.requests:
                        results.append(await self.tools.dispatch(request, ctx, timeout=self.tool_timeout))
                    pending.append(ToolResultsReady(results))

        return state

    async def _maybe_checkpoint(self, task: Task) -> None:
        if not self.checkpoints.should_checkpoint(task.task_id, task.iteration):
            return
        outcome = await self.checkpoints.create_checkpoint(task)
        if not outcome.ok:
            logger.warning(f"Task {task.task_id}: continuing without a fresh checkpoint ({outcome.message})")

    def _sync(self, task: Task, state: LoopState, base_iteration: int, base_tool_calls: int) -> None:
        task.iteration = base_iteration + state.iteration
        task.tool_call_count = base_tool_calls + state.tool_call_count
        task.transcript = list(state.transcript)
        task.touch()

    async def _notify(self, task: Task, effect: Notify) -> None:
        await self.notifier.notify(
            effect.message,
            kind=_NOTIFY_KINDS.get(effect.kind, NotificationKind.SYSTEM),
            task_id=task.task_id,
            recipient=task.channel_id,
        )

    async def _notify_all(self, task: Task, effects: List[Any]) -> None:
        for effect in effects:
            if isinstance(effect, Notify):
                await self._notify(task, effect)
