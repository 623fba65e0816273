"""External process capability used for archive tools."""

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from container_panel.utils import get_logger
from container_panel.utils.exceptions import ExternalToolError

logger = get_logger(__name__)


@dataclass
class ToolResult:
    """Captured outcome of an external tool run."""

    stdout: str
    stderr: str
    exit_code: int


class ToolRunner:
    """
    Runs external tools with an explicit argument vector.

    Arguments are never joined into a shell string, so file names containing
    spaces or shell metacharacters reach the tool unchanged.
    """

    def __init__(self, timeout_s: Optional[float] = None) -> None:
        """
        Initialize ToolRunner.

        Args:
            timeout_s: Kill the tool after this many seconds (None waits forever)
        """
        self.timeout_s = timeout_s

    async def run_tool(self, cmd: str, args: Sequence[str], cwd: str) -> ToolResult:
        """
        Run a tool to completion and capture its output.

        Args:
            cmd: Executable name, looked up on PATH
            args: Arguments passed to the executable
            cwd: Working directory for the process

        Returns:
            ToolResult with decoded stdout, stderr and the exit status

        Raises:
            ExternalToolError: If the tool cannot be started or times out
        """
        logger.debug(
            "Running external tool",
            extra={"tool": cmd, "tool_args": list(args), "cwd": cwd},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                cmd,
                *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            # Missing binary or unusable cwd
            raise ExternalToolError(cmd, f"failed to start: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExternalToolError(cmd, f"timed out after {self.timeout_s} seconds")

        return ToolResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=process.returncode,
        )
