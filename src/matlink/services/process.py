"""Async subprocess execution for platform networking tools."""

import asyncio
import logging
from typing import Optional, Sequence


class CommandError(RuntimeError):
    """A command exited non-zero, timed out, or could not be started."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CommandRunner:
    """Runs commands without blocking the event loop."""

    def __init__(self, timeout: float = 15.0):
        self.logger = logging.getLogger("matlink.process")
        self.timeout = timeout

    async def run(self, args: Sequence[str], timeout: Optional[float] = None) -> str:
        """Run a command and return its stdout.

        Args:
            args: Program and arguments (no shell)
            timeout: Seconds before the process is killed

        Raises:
            CommandError: On missing binary, timeout or non-zero exit
        """
        # args may contain credentials, so only the program is logged
        self.logger.debug(f"Running {args[0]}")
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CommandError(f"{args[0]} command unavailable") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout or self.timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise CommandError(f"{args[0]} command timed out") from e

        if process.returncode != 0:
            error_text = stderr.decode(errors="replace").strip()
            raise CommandError(
                f"{args[0]} failed with exit code {process.returncode}: {error_text}",
                returncode=process.returncode,
                stderr=error_text,
            )
        return stdout.decode(errors="replace")
