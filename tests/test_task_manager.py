"""
Unit Tests for Task Manager

Tests cover:
1. Single-loop tasks from intake to COMPLETED / FAILED
2. Decomposed tasks running as child loops
3. Verification of completion claims
4. Resuming interrupted tasks from checkpoints
5. Cooperation with the Shutdown Coordinator
"""

import asyncio

import pytest

from autopilot.checkpoint_model import Checkpoint
from autopilot.errors import NotAcceptingTasksError, ReasoningError, TaskNotFoundError
from autopilot.execution_loop import ExecutionLoop
from autopilot.execution_planner import ExecutionPlanner
from autopilot.notification_engine import NotificationKind
from autopilot.outcome_verifier import OutcomeVerifier
from autopilot.reasoning_client import ReasoningClient
from autopilot.shutdown_coordinator import ShutdownCoordinator
from autopilot.task_decomposer import TaskDecomposer
from autopilot.task_manager import TaskManager, build_resume_prompt
from autopilot.task_model import TaskStatus
from autopilot.tools import ToolRegistry
from autopilot.verification_model import VerificationContext

from .conftest import ScriptedReasoningClient, text_response, tool_response


class EndlessClient(ReasoningClient):
    """Keeps asking for tools until the loop is stopped."""

    def __init__(self):
        self.calls = 0

    async def complete(self, messages, tools=None, system=None):
        self.calls += 1
        await asyncio.sleep(0.02)
        return tool_response("note_discovery", {"note": f"step {self.calls}"}, tool_use_id=f"tu-{self.calls}")


@pytest.fixture
def build_manager(tmp_path, checkpoint_manager, notifier):
    """Factory wiring a TaskManager around a given reasoning client."""
    def _build(client, auto_resume=True):
        loop = ExecutionLoop(
            client, ToolRegistry(), notifier, checkpoints=checkpoint_manager, tool_timeout=5.0, reasoning_timeout=5.0
        )
        return TaskManager(
            loop=loop,
            decomposer=TaskDecomposer(client),
            planner=ExecutionPlanner(),
            checkpoints=checkpoint_manager,
            verifier=OutcomeVerifier(command_timeout=10.0),
            notifier=notifier,
            workspace_root=tmp_path / "workspaces",
            auto_resume=auto_resume,
        )
    return _build


async def _interrupt(checkpoint_manager, task):
    outcome = await checkpoint_manager.create_checkpoint(task)
    await checkpoint_manager.record_interruption(
        task.task_id, reason="Process shutdown (SIGTERM)", checkpoint_id=outcome.value.checkpoint_id, signal="SIGTERM"
    )
    return outcome.value


def _checkpoint_of(task):
    return Checkpoint(
        checkpoint_id="cp-test",
        task_id=task.task_id,
        sequence=1,
        phase=task.phase.value,
        iteration=task.iteration,
        tool_call_count=task.tool_call_count,
        transcript=[],
        workspace_path=task.workspace_path,
        discoveries=list(task.discoveries),
        artifacts=task.artifacts,
        goal=task.goal,
        channel_id=task.channel_id,
    )


# -----------------------------------------------------------------------------
# Single Loop Tests
# -----------------------------------------------------------------------------
class TestSingleLoop:
    """Simple goals run as one loop."""

    @pytest.mark.asyncio
    async def test_listing_goal_completes(self, build_manager, notifier):
        client = ScriptedReasoningClient([
            tool_response("note_discovery", {"note": "user has 12 repositories"}),
            text_response("Your five most recent repositories are: a, b, c, d, e"),
        ])
        manager = build_manager(client)

        task = manager.submit("list my five most recent repositories", channel_id="chat-1")
        task = await manager.wait_for(task.task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.iteration_limit == 15
        assert task.iteration == 2
        assert task.discoveries == ["user has 12 repositories"]
        assert task.result_message.startswith("Your five most recent repositories")
        assert any(n.kind == NotificationKind.COMPLETED and n.task_id == task.task_id for n in notifier.sent)

    @pytest.mark.asyncio
    async def test_reasoning_failure_fails_task(self, build_manager, notifier):
        manager = build_manager(ScriptedReasoningClient([ReasoningError("overloaded", status_code=529)]))

        task = manager.submit("list my open pull requests", channel_id="chat-1")
        task = await manager.wait_for(task.task_id)

        assert task.status == TaskStatus.FAILED
        failed = [n for n in notifier.sent if n.kind == NotificationKind.FAILED]
        assert failed and failed[-1].message.startswith("Task failed:")

    @pytest.mark.asyncio
    async def test_workspace_created_per_task(self, build_manager, tmp_path):
        manager = build_manager(ScriptedReasoningClient())
        task = manager.submit("list my open pull requests")
        assert task.workspace_path == str(tmp_path / "workspaces" / task.task_id)
        await manager.wait_for(task.task_id)

    @pytest.mark.asyncio
    async def test_verified_completion(self, build_manager):
        client = ScriptedReasoningClient([
            tool_response("write_file", {"path": "index.html", "content": "<h1>Launch</h1>"}),
            text_response("Landing page written"),
        ])
        manager = build_manager(client)

        task = manager.submit(
            "create an index page",
            verification=VerificationContext(expected_files=["index.html"], check_git=False),
        )
        task = await manager.wait_for(task.task_id)

        assert task.status == TaskStatus.COMPLETED
        assert "Verification passed" in task.result_message
        assert manager.get_verification(task.task_id).verified is True


# -----------------------------------------------------------------------------
# Decomposition Tests
# -----------------------------------------------------------------------------
class TestDecomposedRun:
    """Large goals run as batches of child loops."""

    @pytest.mark.asyncio
    async def test_loop_goal_runs_subtasks(self, build_manager, notifier):
        client = ScriptedReasoningClient()
        manager = build_manager(client)

        task = manager.submit("go through every customer invoice and send a reminder email", channel_id="chat-1")
        task = await manager.wait_for(task.task_id)

        assert task.status == TaskStatus.COMPLETED
        # fetch_items plus five item loops, one iteration each
        assert len(client.calls) == 6
        assert task.iteration == 6
        assert "[fetch_items] done" in task.transcript[1]["content"]
        assert any(n.message.startswith("Split into 6 subtasks across 2 batch(es)") for n in notifier.sent)


# -----------------------------------------------------------------------------
# Query Tests
# -----------------------------------------------------------------------------
class TestQueries:
    """Lookup, listing and intake refusal."""

    def test_unknown_task(self, build_manager):
        with pytest.raises(TaskNotFoundError):
            build_manager(ScriptedReasoningClient()).get_task("task-missing")

    def test_refuses_after_stop_accepting(self, build_manager):
        manager = build_manager(ScriptedReasoningClient())
        manager.stop_accepting()
        with pytest.raises(NotAcceptingTasksError):
            manager.submit("list my repositories")

    @pytest.mark.asyncio
    async def test_summary_counts_statuses(self, build_manager):
        manager = build_manager(ScriptedReasoningClient())
        task = manager.submit("list my repositories")
        await manager.wait_for(task.task_id)

        summary = manager.summary()
        assert summary["accepting"] is True
        assert summary["tasks"]["completed"] == 1
        assert [t.task_id for t in manager.list_tasks(TaskStatus.COMPLETED)] == [task.task_id]


# -----------------------------------------------------------------------------
# Resume Tests
# -----------------------------------------------------------------------------
class TestResume:
    """Interrupted tasks restart from their latest checkpoint."""

    def test_resume_prompt(self, make_task):
        task = make_task(iteration=7, tool_call_count=5, discoveries=["uses pnpm"])
        task.artifacts.files_created.append("index.html")
        from_task = build_resume_prompt(_checkpoint_of(task))

        assert from_task.startswith("[RESUME FROM CHECKPOINT 1]")
        assert "Original task: build a landing page" in from_task
        assert "- Iterations completed: 7" in from_task
        assert "- uses pnpm" in from_task
        assert "- Files: index.html" in from_task
        assert from_task.endswith("Do not repeat work that is already done.")

    @pytest.mark.asyncio
    async def test_resumes_interrupted_task(self, build_manager, checkpoint_manager, make_task, notifier):
        original = make_task(iteration=6, tool_call_count=4)
        original.transcript = [{"role": "user", "content": original.goal}]
        await _interrupt(checkpoint_manager, original)

        client = ScriptedReasoningClient([text_response("Landing page finished")])
        manager = build_manager(client)

        resumed = await manager.resume_interrupted_tasks()

        assert [t.task_id for t in resumed] == [original.task_id]
        task = await manager.wait_for(original.task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.resumed_from == 1
        first_message = client.calls[0]["messages"][0]["content"]
        assert first_message.startswith("[RESUME FROM CHECKPOINT 1]")

        record = checkpoint_manager.store.get_interruption(original.task_id)
        assert record.resume_attempted is True
        assert record.resume_succeeded is True
        assert checkpoint_manager.get_resumable_tasks() == []
        assert any(n.kind == NotificationKind.RESUMED for n in notifier.sent)

    @pytest.mark.asyncio
    async def test_resumed_task_keeps_owner_and_verification(self, build_manager, checkpoint_manager, make_task, workspace):
        (workspace / "index.html").write_text("<h1>Launch</h1>")
        context = VerificationContext(expected_files=["index.html"], check_git=False)
        original = make_task(iteration=6, tool_call_count=4, user_id="user-7", task_type="coding", verification=context)
        original.transcript = [{"role": "user", "content": original.goal}]
        await _interrupt(checkpoint_manager, original)

        manager = build_manager(ScriptedReasoningClient([text_response("Landing page finished")]))
        await manager.resume_interrupted_tasks()
        task = await manager.wait_for(original.task_id)

        assert task is not original
        assert task.user_id == "user-7"
        assert task.task_type == "coding"
        assert task.verification.expected_files == ["index.html"]
        assert task.verification.check_git is False
        assert task.status == TaskStatus.COMPLETED
        assert "Verification passed" in task.result_message
        assert manager.get_verification(task.task_id).verified is True

    @pytest.mark.asyncio
    async def test_low_progress_task_not_resumed(self, build_manager, checkpoint_manager, make_task, notifier):
        original = make_task(iteration=1, tool_call_count=0)
        await _interrupt(checkpoint_manager, original)
        manager = build_manager(ScriptedReasoningClient())

        assert await manager.resume_interrupted_tasks() == []

        record = checkpoint_manager.store.get_interruption(original.task_id)
        assert record.resume_attempted is True
        assert record.resume_succeeded is False
        assert any(n.message.startswith("Could not resume task: Insufficient progress") for n in notifier.sent)

    @pytest.mark.asyncio
    async def test_auto_resume_disabled(self, build_manager, checkpoint_manager, make_task):
        original = make_task(iteration=6, tool_call_count=4)
        await _interrupt(checkpoint_manager, original)
        manager = build_manager(ScriptedReasoningClient(), auto_resume=False)

        assert await manager.resume_interrupted_tasks() == []
        assert [i.task_id for i in checkpoint_manager.get_resumable_tasks()] == [original.task_id]


# -----------------------------------------------------------------------------
# Shutdown Tests
# -----------------------------------------------------------------------------
class TestShutdown:
    """A running task is checkpointed and left INTERRUPTED."""

    @pytest.mark.asyncio
    async def test_running_task_interrupted_on_shutdown(self, build_manager, checkpoint_manager, notifier):
        manager = build_manager(EndlessClient())
        coordinator = ShutdownCoordinator(manager, checkpoint_manager, notifier, timeout_seconds=5.0)
        coordinator.register_cleanup(manager.drain)

        task = manager.submit("list my open pull requests", channel_id="chat-1")
        await asyncio.sleep(0.1)
        report = await coordinator.shutdown("SIGTERM")

        assert report.resumable_count == 1
        assert task.status == TaskStatus.INTERRUPTED
        assert manager.accepting is False
        assert [i.task_id for i in checkpoint_manager.get_resumable_tasks()] == [task.task_id]
        assert checkpoint_manager.get_latest_checkpoint(task.task_id) is not None
