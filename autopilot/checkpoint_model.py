"""
Checkpoint Data Models

Checkpoint: durable snapshot of a task's in-flight execution state.
Interruption: one record per interruption event, updated only by appending
a newer record when a resume is attempted.
ResumeCheck: answer to "can this task resume?" with the rejection reason.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Any

from .task_model import ArtifactManifest


@dataclass(frozen=True)
class Checkpoint:
    """
    Snapshot of a task.

    sequence numbers for a task start at 1 and increase by exactly 1.
    """
    checkpoint_id: str
    task_id: str
    sequence: int
    phase: str
    iteration: int
    tool_call_count: int
    transcript: List[Dict[str, Any]]
    workspace_path: Optional[str] = None
    discoveries: List[str] = field(default_factory=list)
    artifacts: ArtifactManifest = field(default_factory=ArtifactManifest)
    memory_state: Optional[Dict[str, Any]] = None
    goal: str = ""
    channel_id: Optional[str] = None
    user_id: Optional[str] = None
    task_type: Optional[str] = None
    verification: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or datetime.utcnow()) - self.created_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checkpoint_id": self.checkpoint_id,
            "task_id": self.task_id,
            "sequence": self.sequence,
            "phase": self.phase,
            "iteration": self.iteration,
            "tool_call_count": self.tool_call_count,
            "transcript": self.transcript,
            "workspace_path": self.workspace_path,
            "discoveries": list(self.discoveries),
            "artifacts": self.artifacts.to_dict(),
            "memory_state": self.memory_state,
            "goal": self.goal,
            "channel_id": self.channel_id,
            "user_id": self.user_id,
            "task_type": self.task_type,
            "verification": self.verification,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            checkpoint_id=data["checkpoint_id"],
            task_id=data["task_id"],
            sequence=int(data["sequence"]),
            phase=data.get("phase", "executing"),
            iteration=int(data.get("iteration", 0)),
            tool_call_count=int(data.get("tool_call_count", 0)),
            transcript=list(data.get("transcript", [])),
            workspace_path=data.get("workspace_path"),
            discoveries=list(data.get("discoveries", [])),
            artifacts=ArtifactManifest.from_dict(data.get("artifacts")),
            memory_state=data.get("memory_state"),
            goal=data.get("goal", ""),
            channel_id=data.get("channel_id"),
            user_id=data.get("user_id"),
            task_type=data.get("task_type"),
            verification=data.get("verification"),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class Interruption:
    """Why and how a task stopped before finishing."""
    task_id: str
    reason: str
    is_resumable: bool
    checkpoint_id: Optional[str] = None
    signal: Optional[str] = None
    resume_attempted: bool = False
    resume_succeeded: Optional[bool] = None
    interrupted_at: datetime = field(default_factory=datetime.utcnow)

    def with_resume_result(self, succeeded: bool) -> "Interruption":
        return replace(self, resume_attempted=True, resume_succeeded=succeeded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "reason": self.reason,
            "is_resumable": self.is_resumable,
            "checkpoint_id": self.checkpoint_id,
            "signal": self.signal,
            "resume_attempted": self.resume_attempted,
            "resume_succeeded": self.resume_succeeded,
            "interrupted_at": self.interrupted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interruption":
        return cls(
            task_id=data["task_id"],
            reason=data.get("reason", ""),
            is_resumable=bool(data.get("is_resumable", False)),
            checkpoint_id=data.get("checkpoint_id"),
            signal=data.get("signal"),
            resume_attempted=bool(data.get("resume_attempted", False)),
            resume_succeeded=data.get("resume_succeeded"),
            interrupted_at=datetime.fromisoformat(data["interrupted_at"]),
        )


class ResumeRejection(str, Enum):
    """First failing resumability check."""
    NO_CHECKPOINT = "no_checkpoint"
    TOO_OLD = "too_old"
    WORKSPACE_MISSING = "workspace_missing"
    INSUFFICIENT_PROGRESS = "insufficient_progress"


@dataclass(frozen=True)
class ResumeCheck:
    can_resume: bool
    reason: str
    rejection: Optional[ResumeRejection] = None
    checkpoint: Optional[Checkpoint] = None
