"""
Task Data Models

Enums and dataclasses shared by the estimator, decomposer, planner, execution
loop and task manager.

Task is the only mutable model here. It is owned by the Task Manager and
mutated by the Execution Loop and the Shutdown Coordinator. Estimates,
subtasks and batches are immutable once produced.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Any, Tuple

from .verification_model import VerificationContext


# -----------------------------------------------------------------------------
# Task Lifecycle
# -----------------------------------------------------------------------------
class TaskStatus(str, Enum):
    """
    Task lifecycle status.

    COMPLETED and FAILED are terminal. INTERRUPTED tasks may be resumed.
    """
    PENDING = "pending"
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    FAILED = "failed"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskPhase(str, Enum):
    """Coarse progress marker stored in checkpoints."""
    ESTIMATING = "estimating"
    PLANNING = "planning"
    EXECUTING = "executing"
    VERIFYING = "verifying"


@dataclass
class ArtifactManifest:
    """Things a task produced that outlive it."""
    files_created: List[str] = field(default_factory=list)
    urls_deployed: List[str] = field(default_factory=list)
    repos_created: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "files_created": list(self.files_created),
            "urls_deployed": list(self.urls_deployed),
            "repos_created": list(self.repos_created),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ArtifactManifest":
        data = data or {}
        return cls(
            files_created=list(data.get("files_created", [])),
            urls_deployed=list(data.get("urls_deployed", [])),
            repos_created=list(data.get("repos_created", [])),
        )

    def is_empty(self) -> bool:
        return not (self.files_created or self.urls_deployed or self.repos_created)


@dataclass
class Task:
    """
    One accepted user goal tracked through its full lifecycle.

    The transcript holds reasoning-service messages in the
    {"role": ..., "content": ...} shape.
    """
    goal: str
    task_id: str = field(default_factory=lambda: f"task-{uuid.uuid4().hex[:12]}")
    channel_id: Optional[str] = None
    user_id: Optional[str] = None
    task_type: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    phase: TaskPhase = TaskPhase.ESTIMATING
    iteration_limit: int = 15
    iteration: int = 0
    tool_call_count: int = 0
    workspace_path: Optional[str] = None
    discoveries: List[str] = field(default_factory=list)
    artifacts: ArtifactManifest = field(default_factory=ArtifactManifest)
    transcript: List[Dict[str, Any]] = field(default_factory=list)
    memory_state: Optional[Dict[str, Any]] = None
    verification: Optional[VerificationContext] = None
    last_checkpoint_id: Optional[str] = None
    resumed_from: Optional[int] = None
    result_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "goal": self.goal,
            "channel_id": self.channel_id,
            "user_id": self.user_id,
            "task_type": self.task_type,
            "status": self.status.value,
            "phase": self.phase.value,
            "iteration_limit": self.iteration_limit,
            "iteration": self.iteration,
            "tool_call_count": self.tool_call_count,
            "workspace_path": self.workspace_path,
            "discoveries": list(self.discoveries),
            "artifacts": self.artifacts.to_dict(),
            "last_checkpoint_id": self.last_checkpoint_id,
            "resumed_from": self.resumed_from,
            "result_message": self.result_message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# -----------------------------------------------------------------------------
# Complexity Estimation
# -----------------------------------------------------------------------------
class ComplexityTier(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    VERY_COMPLEX = "very_complex"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ComplexityEstimate:
    """Iteration budget for a goal. Immutable."""
    tier: ComplexityTier
    recommended: int
    min_iterations: int
    max_iterations: int
    confidence: Confidence
    reasoning: str
    requires_decomposition: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "recommended": self.recommended,
            "min_iterations": self.min_iterations,
            "max_iterations": self.max_iterations,
            "confidence": self.confidence.value,
            "reasoning": self.reasoning,
            "requires_decomposition": self.requires_decomposition,
        }


# -----------------------------------------------------------------------------
# Decomposition & Planning
# -----------------------------------------------------------------------------
class ExecutionMode(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


@dataclass(frozen=True)
class SubTask:
    """A decomposed unit of a Task with its own dependencies and budget."""
    subtask_id: str
    description: str
    estimated_iterations: int
    dependencies: Tuple[str, ...] = ()
    priority: int = 5
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.subtask_id,
            "description": self.description,
            "estimated_iterations": self.estimated_iterations,
            "dependencies": list(self.dependencies),
            "priority": self.priority,
            "mode": self.mode.value,
        }


@dataclass(frozen=True)
class ExecutionBatch:
    """
    SubTasks whose dependencies are all satisfied by earlier batches.

    is_cycle_fallback marks the terminal batch the planner emits when the
    remaining subtasks can never become ready.
    """
    subtasks: Tuple[SubTask, ...]
    is_cycle_fallback: bool = False

    @property
    def runs_in_parallel(self) -> bool:
        return len(self.subtasks) > 1 and self.subtasks[0].mode == ExecutionMode.PARALLEL

    @property
    def subtask_ids(self) -> List[str]:
        return [s.subtask_id for s in self.subtasks]


@dataclass(frozen=True)
class Decomposition:
    """Decomposer output: the estimate it settled on plus the subtask graph."""
    estimate: ComplexityEstimate
    subtasks: Tuple[SubTask, ...]
    source: str
    flattened: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimate": self.estimate.to_dict(),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "source": self.source,
            "flattened": self.flattened,
        }


# -----------------------------------------------------------------------------
# Unified Outcome
# -----------------------------------------------------------------------------
class OutcomeKind(str, Enum):
    """
    How an operation ended.

    RECOVERABLE failures are reported and the caller carries on.
    FATAL failures end the task.
    """
    OK = "ok"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    """Single result type for operations that can fail."""
    kind: OutcomeKind
    message: str = ""
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "Outcome":
        return cls(OutcomeKind.OK, message, value)

    @classmethod
    def recoverable(cls, message: str, value: Any = None) -> "Outcome":
        return cls(OutcomeKind.RECOVERABLE, message, value)

    @classmethod
    def fatal(cls, message: str, value: Any = None) -> "Outcome":
        return cls(OutcomeKind.FATAL, message, value)
