"""
Unit Tests for Tools and Probes

Tests cover:
1. Registry exhaustiveness and the tool catalog
2. Dispatch never raising (unknown tools, bad input, handler errors, timeouts)
3. Workspace confinement
4. HTTP and command probes
"""

import asyncio

import httpx
import pytest

from autopilot.probes import http_probe, run_command
from autopilot.reasoning_client import ToolUseRequest
from autopilot.tools import (
    DEFAULT_TOOLS,
    NoteDiscoveryInput,
    ToolContext,
    ToolName,
    ToolRegistry,
    ToolResult,
    ToolSpec,
)


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def ctx(workspace):
    return ToolContext(workspace_path=workspace, command_timeout=5.0)


def _request(name, tool_input=None):
    return ToolUseRequest(tool_use_id="tu-1", name=name, input=tool_input or {})


# -----------------------------------------------------------------------------
# Registry Tests
# -----------------------------------------------------------------------------
class TestRegistry:
    """Every ToolName has exactly one handler."""

    def test_missing_handler_rejected_at_construction(self):
        partial = [s for s in DEFAULT_TOOLS if s.name != ToolName.HTTP_GET]
        with pytest.raises(ValueError, match="http_get"):
            ToolRegistry(partial)

    def test_catalog_lists_every_tool(self, registry):
        catalog = registry.catalog()
        assert {t["name"] for t in catalog} == {t.value for t in ToolName}
        write_file = [t for t in catalog if t["name"] == "write_file"][0]
        assert set(write_file["input_schema"]["required"]) == {"path", "content"}


# -----------------------------------------------------------------------------
# Dispatch Tests
# -----------------------------------------------------------------------------
class TestDispatch:
    """dispatch() always returns a ToolResult."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, registry, ctx, workspace):
        written = await registry.dispatch(_request("write_file", {"path": "src/app.py", "content": "x = 1\n"}), ctx)
        read = await registry.dispatch(_request("read_file", {"path": "src/app.py"}), ctx)

        assert written.success is True
        assert read.output["content"] == "x = 1\n"
        assert ctx.artifacts.files_created == ["src/app.py"]

    @pytest.mark.asyncio
    async def test_file_io_runs_in_worker_thread(self, registry, ctx, monkeypatch):
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
        await registry.dispatch(_request("write_file", {"path": "notes.md", "content": "hi"}), ctx)
        await registry.dispatch(_request("read_file", {"path": "notes.md"}), ctx)

        assert "_write_text" in offloaded
        assert "read_text" in offloaded

    @pytest.mark.asyncio
    async def test_overwrite_is_not_a_new_artifact(self, registry, ctx, workspace):
        (workspace / "README.md").write_text("old")
        await registry.dispatch(_request("write_file", {"path": "README.md", "content": "new"}), ctx)
        assert ctx.artifacts.files_created == []

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry, ctx):
        result = await registry.dispatch(_request("format_disk"), ctx)
        assert result.success is False
        assert result.error == "Unknown tool: format_disk"

    @pytest.mark.asyncio
    async def test_invalid_input(self, registry, ctx):
        result = await registry.dispatch(_request("write_file", {"path": "a.txt"}), ctx)
        assert result.success is False
        assert result.error.startswith("Invalid input")

    @pytest.mark.asyncio
    async def test_path_escape_refused(self, registry, ctx):
        result = await registry.dispatch(_request("read_file", {"path": "../../etc/passwd"}), ctx)
        assert result.success is False
        assert "PermissionError" in result.error

    @pytest.mark.asyncio
    async def test_missing_file_is_tool_error(self, registry, ctx):
        result = await registry.dispatch(_request("read_file", {"path": "nope.txt"}), ctx)
        assert result.success is False
        assert "FileNotFoundError" in result.error

    @pytest.mark.asyncio
    async def test_run_command_in_workspace(self, registry, ctx, workspace):
        (workspace / "marker.txt").write_text("here")
        result = await registry.dispatch(_request("run_command", {"command": "ls"}), ctx)
        assert result.success is True
        assert result.output["exit_code"] == 0
        assert "marker.txt" in result.output["stdout"]

    @pytest.mark.asyncio
    async def test_note_discovery(self, registry, ctx):
        result = await registry.dispatch(_request("note_discovery", {"note": "API uses v2 auth"}), ctx)
        assert result.output == {"recorded": True, "total_discoveries": 1}
        assert ctx.discoveries == ["API uses v2 auth"]

    @pytest.mark.asyncio
    async def test_handler_timeout(self, ctx):
        async def stall(params, context):
            await asyncio.sleep(1)
            return {}

        specs = [s for s in DEFAULT_TOOLS if s.name != ToolName.NOTE_DISCOVERY]
        specs.append(ToolSpec(ToolName.NOTE_DISCOVERY, "stalls", NoteDiscoveryInput, stall))
        registry = ToolRegistry(specs)

        result = await registry.dispatch(_request("note_discovery", {"note": "x"}), ctx, timeout=0.05)

        assert result.success is False
        assert result.error == "Timed out after 0.05s"

    def test_failed_result_block(self):
        block = ToolResult("tu-9", "read_file", False, error="boom").to_block()
        assert block == {"type": "tool_result", "tool_use_id": "tu-9", "content": "Error: boom", "is_error": True}


# -----------------------------------------------------------------------------
# Probe Tests
# -----------------------------------------------------------------------------
class TestProbes:
    """Probes report failures as data."""

    @pytest.mark.asyncio
    async def test_http_probe_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(301, headers={"location": "/next"}))
        result = await http_probe("https://site.example", transport=transport)
        assert result.status_code == 301
        assert result.reachable is True

    @pytest.mark.asyncio
    async def test_http_probe_server_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
        result = await http_probe("https://site.example", transport=transport)
        assert result.reachable is False
        assert result.body == "down"

    @pytest.mark.asyncio
    async def test_http_probe_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await http_probe("https://site.example", transport=httpx.MockTransport(refuse))
        assert result.status_code is None
        assert "ConnectError" in result.error

    @pytest.mark.asyncio
    async def test_command_exit_code_and_output(self, workspace):
        result = await run_command("echo out; echo err 1>&2; exit 3", cwd=str(workspace))
        assert result.exit_code == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.succeeded is False

    @pytest.mark.asyncio
    async def test_command_timeout_kills_process(self, workspace):
        result = await run_command("sleep 5", cwd=str(workspace), timeout=0.1)
        assert result.timed_out is True
        assert result.exit_code is None
