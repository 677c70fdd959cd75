"""
Probes

Timed HTTP and shell probes shared by the tools and the Outcome Verifier.

Neither probe raises for an ordinary failure: an unreachable host, a timeout
or a non-zero exit all come back as data so the caller can turn them into a
ToolResult or a piece of verification evidence.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger("probes")

OUTPUT_LIMIT = 20000


@dataclass(frozen=True)
class HttpProbeResult:
    url: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    body: str = ""

    @property
    def reachable(self) -> bool:
        """2xx and 3xx both mean something is being served."""
        return self.status_code is not None and 200 <= self.status_code < 400


@dataclass(frozen=True)
class CommandResult:
    command: str
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and self.error is None

    @property
    def combined_output(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()


async def http_probe(
    url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> HttpProbeResult:
    """
    GET a URL without following redirects.

    Args:
        url: URL to probe
        timeout: Seconds before giving up
        transport: Optional httpx transport (for testing)
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url, follow_redirects=False)
        return HttpProbeResult(url=url, status_code=response.status_code, body=response.text[:OUTPUT_LIMIT])
    except httpx.HTTPError as e:
        logger.info(f"HTTP probe of {url} failed: {type(e).__name__}: {e}")
        return HttpProbeResult(url=url, error=f"{type(e).__name__}: {e}")


async def run_command(
    command: str,
    cwd: Optional[str] = None,
    timeout: float = 120.0,
) -> CommandResult:
    """
    Run a shell command and capture its output.

    The process is killed when the timeout expires.
    """
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
    except OSError as e:
        return CommandResult(command=command, exit_code=None, error=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(f"Command timed out after {timeout}s - subprocess killed: {command}")
        return CommandResult(command=command, exit_code=None, timed_out=True, error=f"Timed out after {timeout}s")

    return CommandResult(
        command=command,
        exit_code=process.returncode,
        stdout=stdout.decode(errors="replace")[-OUTPUT_LIMIT:],
        stderr=stderr.decode(errors="replace")[-OUTPUT_LIMIT:],
    )
