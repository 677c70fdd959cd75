"""
Pytest configuration for Autopilot tests.

This module provides:
1. A scripted reasoning client (no network)
2. Notification, checkpoint and task fixtures backed by tmp_path
3. Small builders for reasoning responses
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pytest

from autopilot.checkpoint_manager import CheckpointManager
from autopilot.checkpoint_store import CheckpointStore
from autopilot.notification_engine import NotificationEngine
from autopilot.reasoning_client import ReasoningClient, ReasoningResponse, StopReason, ToolUseRequest
from autopilot.task_model import Task, TaskStatus


# -----------------------------------------------------------------------------
# Scripted Reasoning Client
# -----------------------------------------------------------------------------
class ScriptedReasoningClient(ReasoningClient):
    """
    Replays a fixed list of responses.

    An Exception in the script is raised instead of returned. Once the script
    runs out, every further call ends the turn with "done".
    """

    def __init__(self, script: Optional[List[Union[ReasoningResponse, Exception]]] = None):
        self.script = list(script or [])
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, messages, tools=None, system=None) -> ReasoningResponse:
        self.calls.append({"messages": list(messages), "tools": tools, "system": system})
        if not self.script:
            return text_response("done")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def text_response(text: str, stop_reason: StopReason = StopReason.END_TURN) -> ReasoningResponse:
    return ReasoningResponse(stop_reason=stop_reason, text_blocks=[text])


def tool_response(name: str, tool_input: Optional[Dict[str, Any]] = None, tool_use_id: str = "tu-1") -> ReasoningResponse:
    return ReasoningResponse(
        stop_reason=StopReason.TOOL_USE,
        tool_uses=[ToolUseRequest(tool_use_id=tool_use_id, name=name, input=tool_input or {})],
    )


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def notifier():
    """Notification engine with a recording channel and no audit log."""
    engine = NotificationEngine()
    engine.sent = []

    async def record(notification):
        engine.sent.append(notification)
        return True

    engine.register_channel("record", record)
    return engine


@pytest.fixture
def checkpoint_store(tmp_path):
    return CheckpointStore(tmp_path / "checkpoints")


@pytest.fixture
def checkpoint_manager(checkpoint_store):
    return CheckpointManager(checkpoint_store, interval=10, keep_recent=20, max_per_task=5, max_age_seconds=3600)


@pytest.fixture
def workspace(tmp_path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def make_task(workspace):
    """Factory for running tasks inside the test workspace."""
    def _make(goal: str = "build a landing page", **overrides) -> Task:
        values = {
            "goal": goal,
            "channel_id": "chat-1",
            "status": TaskStatus.RUNNING,
            "workspace_path": str(workspace),
        }
        values.update(overrides)
        return Task(**values)
    return _make
