"""
Execution Planner

Orders a subtask graph into batches and runs the batches.

Planning:
- Each batch holds every unscheduled subtask whose dependencies are all
  scheduled, sorted by descending priority
- When no subtask is ready (dependency cycle, unknown dependency) the rest are
  emitted as one terminal batch flagged is_cycle_fallback, and a warning is
  logged. With strict=True a PlanValidationError is raised instead.

Execution:
- A batch runs in parallel (gather, join all) when it has more than one member
  and its first member is tagged parallel
- Otherwise members run one after another; a failed member is recorded and
  the next one still runs
- Iteration and tool-call counters accumulate across the whole plan
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Any, Set

from .errors import PlanValidationError
from .task_model import ExecutionBatch, SubTask

logger = logging.getLogger("execution_planner")


@dataclass(frozen=True)
class SubTaskResult:
    subtask_id: str
    success: bool
    message: str
    iterations: int = 0
    tool_calls: int = 0


@dataclass
class PlanResult:
    results: List[SubTaskResult] = field(default_factory=list)
    total_iterations: int = 0
    total_tool_calls: int = 0

    @property
    def success(self) -> bool:
        return bool(self.results)

    @property
    def failed(self) -> List[str]:
        return [r.subtask_id for r in self.results if not r.success]

    @property
    def message(self) -> str:
        return "\n\n".join(f"[{r.subtask_id}] {r.message}" for r in self.results if r.message)

    def record(self, result: SubTaskResult) -> None:
        self.results.append(result)
        self.total_iterations += result.iterations
        self.total_tool_calls += result.tool_calls

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_iterations": self.total_iterations,
            "total_tool_calls": self.total_tool_calls,
            "failed": self.failed,
            "results": [
                {"subtask_id": r.subtask_id, "success": r.success, "message": r.message}
                for r in self.results
            ],
        }


SubTaskRunner = Callable[[SubTask], Awaitable[SubTaskResult]]


def plan(subtasks: List[SubTask], strict: bool = False) -> List[ExecutionBatch]:
    """
    Compute execution batches.

    Args:
        subtasks: Subtask graph
        strict: Raise PlanValidationError on a cycle instead of emitting a fallback batch

    Returns:
        Ordered batches covering every subtask exactly once
    """
    remaining: List[SubTask] = list(subtasks)
    scheduled: Set[str] = set()
    batches: List[ExecutionBatch] = []

    while remaining:
        ready = [s for s in remaining if all(d in scheduled for d in s.dependencies)]

        if not ready:
            stuck = [s.subtask_id for s in remaining]
            if strict:
                raise PlanValidationError(stuck)
            logger.warning(
                f"No subtask is ready; running {len(stuck)} remaining subtasks as one final batch: "
                f"{', '.join(stuck)}"
            )
            batches.append(ExecutionBatch(tuple(remaining), is_cycle_fallback=True))
            break

        ready.sort(key=lambda s: s.priority, reverse=True)
        batches.append(ExecutionBatch(tuple(ready)))
        scheduled.update(s.subtask_id for s in ready)
        remaining = [s for s in remaining if s.subtask_id not in scheduled]

    return batches


class ExecutionPlanner:
    """Runs planned batches through a subtask runner."""

    def __init__(self, strict: bool = False):
        self.strict = strict

    def plan(self, subtasks: List[SubTask]) -> List[ExecutionBatch]:
        return plan(subtasks, strict=self.strict)

    async def execute(self, batches: List[ExecutionBatch], runner: SubTaskRunner) -> PlanResult:
        result = PlanResult()
        for index, batch in enumerate(batches, start=1):
            mode = "parallel" if batch.runs_in_parallel else "sequential"
            logger.info(f"Batch {index}/{len(batches)} ({mode}): {', '.join(batch.subtask_ids)}")

            if batch.runs_in_parallel:
                outcomes = await asyncio.gather(
                    *(runner(s) for s in batch.subtasks),
                    return_exceptions=True,
                )
                for subtask, outcome in zip(batch.subtasks, outcomes):
                    result.record(self._as_result(subtask, outcome))
            else:
                for subtask in batch.subtasks:
                    try:
                        outcome = await runner(subtask)
                    except Exception as e:
                        outcome = e
                    result.record(self._as_result(subtask, outcome))

        return result

    @staticmethod
    def _as_result(subtask: SubTask, outcome: Any) -> SubTaskResult:
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.error(f"Subtask {subtask.subtask_id} raised: {type(outcome).__name__}: {outcome}")
            return SubTaskResult(subtask.subtask_id, False, f"Error: {outcome}")
        if not outcome.success:
            logger.info(f"Subtask {subtask.subtask_id} failed: {outcome.message}")
        return outcome
