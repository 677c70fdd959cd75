"""
Tools

Closed set of tools the reasoning service may call.

Each tool has:
- a ToolName member
- a pydantic input model (validated before the handler runs)
- an async handler returning a payload dict

ToolRegistry refuses to start unless every ToolName has a handler, and
dispatch() always returns a ToolResult. Unknown names, invalid input, handler
errors and timeouts all become ToolResult(success=False) so the execution
loop can feed them back to the reasoning service.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from .probes import http_probe, run_command
from .reasoning_client import ToolUseRequest
from .task_model import ArtifactManifest

logger = logging.getLogger("tools")


class ToolName(str, Enum):
    RUN_COMMAND = "run_command"
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    HTTP_GET = "http_get"
    NOTE_DISCOVERY = "note_discovery"


# -----------------------------------------------------------------------------
# Tool Inputs
# -----------------------------------------------------------------------------
class RunCommandInput(BaseModel):
    command: str = Field(..., min_length=1, description="Shell command to run in the workspace")
    timeout_seconds: Optional[float] = Field(None, gt=0, le=600)


class ReadFileInput(BaseModel):
    path: str = Field(..., min_length=1, description="Path relative to the workspace")


class WriteFileInput(BaseModel):
    path: str = Field(..., min_length=1, description="Path relative to the workspace")
    content: str = Field(..., description="Full file content")


class HttpGetInput(BaseModel):
    url: str = Field(..., pattern=r"^https?://", description="URL to fetch")


class NoteDiscoveryInput(BaseModel):
    note: str = Field(..., min_length=1, description="Fact worth remembering across a resume")


# -----------------------------------------------------------------------------
# Results & Context
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    name: str
    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_block(self) -> Dict[str, Any]:
        """tool_result transcript block."""
        if self.success:
            content = str(self.output)
        else:
            content = f"Error: {self.error}"
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": content,
            "is_error": not self.success,
        }


@dataclass
class ToolContext:
    """What a handler may touch while serving one task."""
    workspace_path: Path
    discoveries: List[str] = field(default_factory=list)
    artifacts: ArtifactManifest = field(default_factory=ArtifactManifest)
    command_timeout: float = 60.0
    http_timeout: float = 10.0

    def resolve(self, relative: str) -> Path:
        """Resolve a path and refuse anything outside the workspace."""
        root = self.workspace_path.resolve()
        target = (root / relative).resolve()
        if target != root and root not in target.parents:
            raise PermissionError(f"Path escapes workspace: {relative}")
        return target


Handler = Callable[[Any, ToolContext], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    input_model: Type[BaseModel]
    handler: Handler


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------
async def _run_command(params: RunCommandInput, ctx: ToolContext) -> Dict[str, Any]:
    ctx.workspace_path.mkdir(parents=True, exist_ok=True)
    result = await run_command(
        params.command,
        cwd=str(ctx.workspace_path),
        timeout=params.timeout_seconds or ctx.command_timeout,
    )
    if result.timed_out or result.error:
        raise RuntimeError(result.error or "command failed to start")
    return {"exit_code": result.exit_code, "stdout": result.stdout, "stderr": result.stderr}


def _write_text(target: Path, content: str) -> bool:
    """Write a file, creating parents. Returns whether it already existed."""
    target.parent.mkdir(parents=True, exist_ok=True)
    existed = target.exists()
    target.write_text(content)
    return existed


async def _read_file(params: ReadFileInput, ctx: ToolContext) -> Dict[str, Any]:
    target = ctx.resolve(params.path)
    content = await asyncio.to_thread(target.read_text)
    return {"path": params.path, "content": content}


async def _write_file(params: WriteFileInput, ctx: ToolContext) -> Dict[str, Any]:
    target = ctx.resolve(params.path)
    existed = await asyncio.to_thread(_write_text, target, params.content)
    if not existed and params.path not in ctx.artifacts.files_created:
        ctx.artifacts.files_created.append(params.path)
    return {"path": params.path, "bytes_written": len(params.content.encode())}


async def _http_get(params: HttpGetInput, ctx: ToolContext) -> Dict[str, Any]:
    probe = await http_probe(params.url, timeout=ctx.http_timeout)
    if probe.error:
        raise RuntimeError(probe.error)
    return {"url": params.url, "status_code": probe.status_code, "body": probe.body[:4000]}


async def _note_discovery(params: NoteDiscoveryInput, ctx: ToolContext) -> Dict[str, Any]:
    ctx.discoveries.append(params.note)
    return {"recorded": True, "total_discoveries": len(ctx.discoveries)}


DEFAULT_TOOLS: List[ToolSpec] = [
    ToolSpec(ToolName.RUN_COMMAND, "Run a shell command inside the task workspace.", RunCommandInput, _run_command),
    ToolSpec(ToolName.READ_FILE, "Read a text file from the task workspace.", ReadFileInput, _read_file),
    ToolSpec(ToolName.WRITE_FILE, "Create or overwrite a text file in the task workspace.", WriteFileInput, _write_file),
    ToolSpec(ToolName.HTTP_GET, "Fetch a URL and return its status code and body.", HttpGetInput, _http_get),
    ToolSpec(ToolName.NOTE_DISCOVERY, "Record a fact that should survive a restart.", NoteDiscoveryInput, _note_discovery),
]


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------
class ToolRegistry:
    """
    Exhaustive ToolName -> ToolSpec table.

    Raises ValueError at construction if any ToolName lacks a spec.
    """

    def __init__(self, specs: Optional[List[ToolSpec]] = None):
        specs = DEFAULT_TOOLS if specs is None else specs
        self._specs: Dict[ToolName, ToolSpec] = {s.name: s for s in specs}
        missing = [t.value for t in ToolName if t not in self._specs]
        if missing:
            raise ValueError(f"No handler registered for tools: {', '.join(missing)}")

    def catalog(self) -> List[Dict[str, Any]]:
        """Tool definitions in the shape the reasoning service expects."""
        return [
            {
                "name": spec.name.value,
                "description": spec.description,
                "input_schema": spec.input_model.model_json_schema(),
            }
            for spec in self._specs.values()
        ]

    async def dispatch(self, request: ToolUseRequest, ctx: ToolContext, timeout: float = 120.0) -> ToolResult:
        """Run one requested tool. Never raises."""
        try:
            name = ToolName(request.name)
        except ValueError:
            return ToolResult(request.tool_use_id, request.name, False, error=f"Unknown tool: {request.name}")

        spec = self._specs[name]
        try:
            params = spec.input_model.model_validate(request.input)
        except ValidationError as e:
            return ToolResult(request.tool_use_id, name.value, False, error=f"Invalid input: {e.errors()}")

        try:
            output = await asyncio.wait_for(spec.handler(params, ctx), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {name.value} timed out after {timeout}s")
            return ToolResult(request.tool_use_id, name.value, False, error=f"Timed out after {timeout}s")
        except Exception as e:
            logger.info(f"Tool {name.value} failed: {type(e).__name__}: {e}")
            return ToolResult(request.tool_use_id, name.value, False, error=f"{type(e).__name__}: {e}")

        return ToolResult(request.tool_use_id, name.value, True, output=output)
