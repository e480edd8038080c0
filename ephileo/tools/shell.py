"""Shell tool for executing commands."""

import asyncio
import os
from typing import Any

from ephileo.logging import get_logger
from ephileo.tools.registry import PermissionGroup, Tool

log = get_logger(__name__)

DEFAULT_SHELL_TIMEOUT = 30
MAX_SHELL_OUTPUT_CHARS = 5_000
MAX_SHELL_ERROR_CHARS = 2_000


class ShellTool(Tool):
    """Execute shell commands."""

    name = "shell"
    description = "Run a shell command and return its output. Use for system info, searching, etc."
    permission_group = PermissionGroup.READ
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "Shell command to execute",
            },
        },
        "required": ["command"],
    }

    def __init__(self, timeout: float = DEFAULT_SHELL_TIMEOUT):
        self.timeout = max(1.0, float(timeout))

    async def execute(self, command: str = "", **kwargs: Any) -> str:
        """Execute a shell command.

        Args:
            command: Shell command to execute

        Returns:
            Captured stdout, or ``Error: <stderr>`` when the command fails
            or times out
        """
        command = str(command).strip()
        if not command:
            return "Error: empty command"

        env = os.environ.copy()
        env["PATH"] = os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")

        log.info("Executing shell command", command=command, timeout=self.timeout)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return f"Error: command timed out after {self.timeout:g}s"
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        stdout_text = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace").strip()
            detail = stderr_text or stdout_text.strip() or f"exit status {process.returncode}"
            return f"Error: {detail[:MAX_SHELL_ERROR_CHARS]}"

        return stdout_text[:MAX_SHELL_OUTPUT_CHARS] or "(no output)"
