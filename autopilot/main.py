"""
Autopilot - FastAPI Application

HTTP surface for the task execution core:
- Submit goals and follow their progress
- Estimate complexity without running anything
- Verify a task's outcome on demand
- List tasks that were interrupted and can resume

Services are built once at startup from Settings and passed to each other
explicitly. Stopping the server (SIGINT/SIGTERM under uvicorn) runs the
Shutdown Coordinator so running tasks are checkpointed before exit.
"""

import logging
from dataclasses import dataclass
from typing import Optional, List

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import __version__
from .checkpoint_manager import CheckpointManager
from .checkpoint_store import CheckpointStore
from .complexity_estimator import estimate_complexity, iteration_limit, needs_decomposition
from .config import Settings, load_settings
from .errors import NotAcceptingTasksError, TaskNotFoundError
from .execution_loop import ExecutionLoop
from .execution_planner import ExecutionPlanner
from .notification_engine import NotificationEngine, logging_channel, telegram_channel
from .outcome_verifier import OutcomeVerifier
from .reasoning_client import AnthropicReasoningClient, ReasoningClient
from .shutdown_coordinator import ShutdownCoordinator
from .task_decomposer import TaskDecomposer
from .task_manager import TaskManager
from .task_model import TaskStatus
from .tools import ToolRegistry
from .verification_model import VerificationContext

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("autopilot")


# -----------------------------------------------------------------------------
# Service Wiring
# -----------------------------------------------------------------------------
@dataclass
class Services:
    settings: Settings
    checkpoints: CheckpointManager
    notifier: NotificationEngine
    verifier: OutcomeVerifier
    manager: TaskManager
    coordinator: ShutdownCoordinator


def build_services(settings: Settings, reasoning_client: Optional[ReasoningClient] = None) -> Services:
    """
    Construct every service from settings.

    Args:
        settings: Runtime settings
        reasoning_client: Override for the reasoning service (defaults to the
            Anthropic Messages API)
    """
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.workspace_root.mkdir(parents=True, exist_ok=True)

    checkpoints = CheckpointManager(
        CheckpointStore(settings.checkpoint_dir),
        interval=settings.checkpoint_interval,
        keep_recent=settings.checkpoint_keep_recent,
        max_per_task=settings.max_checkpoints_per_task,
        max_age_seconds=settings.checkpoint_max_age_seconds,
    )

    notifier = NotificationEngine(log_file=settings.notification_log)
    notifier.register_channel("log", logging_channel)
    if settings.telegram_bot_token:
        notifier.register_channel(
            "telegram", telegram_channel(settings.telegram_bot_token, settings.telegram_chat_id)
        )

    if reasoning_client is None:
        if not settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY is not set; reasoning requests will fail")
        reasoning_client = AnthropicReasoningClient(
            api_key=settings.anthropic_api_key or "",
            model=settings.reasoning_model,
            url=settings.reasoning_url,
            max_tokens=settings.reasoning_max_tokens,
            timeout=settings.reasoning_timeout_seconds,
        )

    loop = ExecutionLoop(
        reasoning_client,
        ToolRegistry(),
        notifier,
        checkpoints=checkpoints,
        tool_timeout=settings.tool_timeout_seconds,
        reasoning_timeout=settings.reasoning_timeout_seconds,
    )
    verifier = OutcomeVerifier(
        threshold=settings.verify_threshold,
        probe_timeout=settings.probe_timeout_seconds,
        command_timeout=settings.command_timeout_seconds,
        results_file=settings.data_dir / "verifications.jsonl",
    )
    manager = TaskManager(
        loop=loop,
        decomposer=TaskDecomposer(reasoning_client),
        planner=ExecutionPlanner(),
        checkpoints=checkpoints,
        verifier=verifier,
        notifier=notifier,
        workspace_root=settings.workspace_root,
        auto_resume=settings.auto_resume,
    )
    coordinator = ShutdownCoordinator(
        manager, checkpoints, notifier, timeout_seconds=settings.shutdown_timeout_seconds
    )
    coordinator.register_cleanup(manager.drain)

    return Services(
        settings=settings,
        checkpoints=checkpoints,
        notifier=notifier,
        verifier=verifier,
        manager=manager,
        coordinator=coordinator,
    )


services: Optional[Services] = None


def get_services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not initialised")
    return services


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class TaskCreateRequest(BaseModel):
    """Request model for submitting a goal."""
    goal: str = Field(..., min_length=1, max_length=4000)
    channel_id: Optional[str] = None
    user_id: Optional[str] = None
    task_type: Optional[str] = Field(None, description="Project type hint (website, api, python, ...)")
    deployment_url: Optional[str] = None
    expected_files: Optional[List[str]] = None
    build_command: Optional[str] = None
    test_command: Optional[str] = None

    def verification_context(self) -> Optional[VerificationContext]:
        if not any([self.deployment_url, self.expected_files, self.build_command, self.test_command]):
            return None
        return VerificationContext(
            task_type=self.task_type,
            deployment_url=self.deployment_url,
            expected_files=self.expected_files,
            build_command=self.build_command,
            test_command=self.test_command,
        )


class EstimateRequest(BaseModel):
    """Request model for a complexity estimate."""
    goal: str = Field(..., min_length=1, max_length=4000)
    task_type: Optional[str] = None


class VerifyRequest(BaseModel):
    """Request model for on-demand verification."""
    task_type: Optional[str] = None
    deployment_url: Optional[str] = None
    expected_files: Optional[List[str]] = None
    build_command: Optional[str] = None
    test_command: Optional[str] = None
    check_git: bool = True


# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
app = FastAPI(
    title="Autopilot",
    description="Autonomous task execution core: plans, runs, checkpoints and verifies goals",
    version=__version__,
)


@app.get("/")
async def root():
    """Health check with a summary of task states."""
    svc = get_services()
    return {
        "service": "autopilot",
        "version": __version__,
        "status": "shutting_down" if svc.coordinator.is_shutting_down else "running",
        **svc.manager.summary(),
    }


@app.post("/tasks", status_code=202)
async def create_task(request: TaskCreateRequest):
    """Submit a goal. The task runs in the background."""
    svc = get_services()
    try:
        task = svc.manager.submit(
            request.goal,
            channel_id=request.channel_id,
            user_id=request.user_id,
            task_type=request.task_type,
            verification=request.verification_context(),
        )
    except NotAcceptingTasksError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return {"task_id": task.task_id, "status": task.status.value, "workspace_path": task.workspace_path}


@app.get("/tasks")
async def list_tasks(status: Optional[TaskStatus] = None):
    svc = get_services()
    tasks = svc.manager.list_tasks(status)
    return {"count": len(tasks), "tasks": [t.to_dict() for t in tasks]}


@app.get("/tasks/resumable")
async def list_resumable():
    """Interruptions that still have a resume attempt pending."""
    svc = get_services()
    interruptions = svc.checkpoints.get_resumable_tasks()
    return {"count": len(interruptions), "interruptions": [i.to_dict() for i in interruptions]}


@app.get("/tasks/{task_id}")
async def get_task(task_id: str):
    svc = get_services()
    try:
        task = svc.manager.get_task(task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    data = task.to_dict()
    verification = svc.manager.get_verification(task_id)
    data["verification"] = verification.to_dict() if verification else None
    return data


@app.post("/tasks/{task_id}/verify")
async def verify_task(task_id: str, request: VerifyRequest):
    """Collect fresh evidence for a task's outcome."""
    svc = get_services()
    try:
        task = svc.manager.get_task(task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    context = VerificationContext(
        workspace_path=task.workspace_path,
        task_type=request.task_type or task.task_type,
        deployment_url=request.deployment_url or (task.artifacts.urls_deployed[-1] if task.artifacts.urls_deployed else None),
        expected_files=request.expected_files,
        build_command=request.build_command,
        test_command=request.test_command,
        check_git=request.check_git,
    )
    result = await svc.verifier.verify(task_id, context)
    svc.manager.record_verification(result)
    return result.to_dict()


@app.post("/estimate")
async def estimate(request: EstimateRequest):
    """Complexity estimate for a goal, without running it."""
    result = estimate_complexity(request.goal, request.task_type)
    return {
        **result.to_dict(),
        "needs_decomposition": needs_decomposition(result),
        "iteration_limit": iteration_limit(result),
    }


# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------
@app.on_event("startup")
async def startup_event():
    """Build services (unless already injected) and resume interrupted work."""
    global services
    if services is None:
        settings = load_settings()
        logging.getLogger().setLevel(settings.log_level)
        services = build_services(settings)
    logger.info(f"Autopilot v{__version__} starting (data dir: {services.settings.data_dir})")

    resumed = await services.manager.resume_interrupted_tasks()
    if resumed:
        logger.info(f"Resumed: {', '.join(t.task_id for t in resumed)}")


@app.on_event("shutdown")
async def shutdown_event():
    """Checkpoint running tasks before the process exits."""
    if services is None:
        return
    logger.info("Autopilot shutting down...")
    report = await services.coordinator.shutdown("server shutdown")
    if report is not None and report.outcomes:
        logger.info(f"Shutdown report: {report.to_dict()}")


# -----------------------------------------------------------------------------
# Main Entry Point (for development)
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
