"""
Autopilot Errors

Structured exceptions raised inside components. They are caught at component
boundaries (Execution Loop, Decomposer, Verifier, Shutdown Coordinator) and
converted into an Outcome or a terminal task state, so none of them escape to
a caller that runs a task.
"""

from typing import Any, Dict, List


class AutopilotError(Exception):
    """Base error with structured details."""
    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class PlanValidationError(AutopilotError):
    def __init__(self, unscheduled: List[str]):
        super().__init__(
            code="PLAN_CYCLE",
            message=f"Dependency cycle among subtasks: {', '.join(unscheduled)}",
            details={"unscheduled": unscheduled}
        )


class CheckpointError(AutopilotError):
    def __init__(self, task_id: str, reason: str):
        super().__init__(
            code="CHECKPOINT_FAILED",
            message=f"Checkpoint failed for task '{task_id}': {reason}",
            details={"task_id": task_id}
        )


class ReasoningError(AutopilotError):
    def __init__(self, reason: str, status_code: int = None):
        super().__init__(
            code="REASONING_FAILED",
            message=f"Reasoning service call failed: {reason}",
            details={"status_code": status_code}
        )


class ConfigError(AutopilotError):
    def __init__(self, path: str, reason: str):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Invalid configuration in {path}: {reason}",
            details={"path": path}
        )


class TaskNotFoundError(AutopilotError):
    def __init__(self, task_id: str):
        super().__init__(
            code="TASK_NOT_FOUND",
            message=f"Task '{task_id}' not found",
            details={"task_id": task_id}
        )


class NotAcceptingTasksError(AutopilotError):
    def __init__(self):
        super().__init__(
            code="NOT_ACCEPTING_TASKS",
            message="Shutdown in progress; new tasks are not accepted",
        )
