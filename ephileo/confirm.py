"""Terminal confirmation for gated tool calls.

``format_tool_preview`` is plain text so it can be tested without a
terminal; ``ConsoleConfirmation`` renders it with rich and asks y/n/d.
"""

import json
import sys
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, TextIO

from rich.console import Console
from rich.prompt import Prompt
from rich.text import Text

from ephileo.exceptions import UserAbortError
from ephileo.logging import get_logger
from ephileo.tools import PermissionLevel

log = get_logger(__name__)

MAX_PREVIEW_LINES = 50
PREVIEW_BORDER = "─" * 60

PERMISSION_DESCRIPTIONS: dict[PermissionLevel, tuple[str, str]] = {
    PermissionLevel.WRITE_ONLY: ("write only (recommended)", "write/edit need approval"),
    PermissionLevel.READ_AND_WRITE: ("read and write", "all tools need approval"),
    PermissionLevel.AUTO_ACCEPT: ("auto accept all", "skip all confirmations"),
}


def format_permission_status(level: PermissionLevel | str) -> str:
    """Describe a permission level for display."""
    level = PermissionLevel(level)
    label, description = PERMISSION_DESCRIPTIONS[level]
    return f"{label} ({description})"


def format_tool_preview(tool_name: str, args: dict[str, Any]) -> str:
    """Describe what a tool call is about to do."""
    lines = [PREVIEW_BORDER]

    if tool_name == "write_file":
        path = str(args.get("path", "(unknown path)"))
        content_lines = str(args.get("content", "")).split("\n")
        lines.append(f"write_file → {path}")
        lines.append("")
        lines.extend(content_lines[:MAX_PREVIEW_LINES])
        if len(content_lines) > MAX_PREVIEW_LINES:
            lines.append(f"... ({len(content_lines) - MAX_PREVIEW_LINES} more lines)")

    elif tool_name == "edit_file":
        path = str(args.get("path", "(unknown path)"))
        lines.append(f"edit_file → {path}")
        if args.get("replace_all"):
            lines.append("(replace_all: true)")
        lines.append("")
        lines.extend(f"- {line}" for line in str(args.get("old_string", "")).split("\n"))
        lines.append("")
        lines.extend(f"+ {line}" for line in str(args.get("new_string", "")).split("\n"))

    elif tool_name == "shell":
        lines.append("shell")
        lines.append("")
        lines.append(f"$ {args.get('command', '(no command)')}")

    else:
        lines.append(tool_name)
        lines.append("")
        lines.append(json.dumps(args, indent=2, ensure_ascii=False, default=str))

    lines.append(PREVIEW_BORDER)
    return "\n".join(lines)


def _render_preview(tool_name: str, preview: str) -> Text:
    text = Text()
    for line in preview.split("\n"):
        if line == PREVIEW_BORDER:
            style = "bold"
        elif tool_name == "edit_file" and line.startswith("- "):
            style = "red"
        elif tool_name == "edit_file" and line.startswith("+ "):
            style = "green"
        elif tool_name == "shell" and line.startswith("$ "):
            style = "yellow"
        elif tool_name == "write_file" and not line.startswith("write_file"):
            style = "green"
        else:
            style = ""
        text.append(line + "\n", style=style)
    return text


class ConsoleConfirmation:
    """Confirmation callback that asks on the terminal.

    Answering ``d`` approves the call and every later one for the rest of
    the session.
    """

    def __init__(
        self,
        console: Console | None = None,
        stdin: TextIO | None = None,
        pause_interrupts: Callable[[], ContextManager[Any]] = nullcontext,
    ):
        self.console = console or Console(stderr=True)
        self.stdin = stdin or sys.stdin
        self.pause_interrupts = pause_interrupts
        self.skip_remaining = False

    def _is_interactive(self) -> bool:
        try:
            return self.stdin.isatty()
        except (AttributeError, ValueError):
            return False

    async def __call__(self, tool_name: str, args: dict[str, Any]) -> bool:
        if self.skip_remaining:
            return True

        self.console.print(_render_preview(tool_name, format_tool_preview(tool_name, args)))

        if not self._is_interactive():
            self.console.print(Text("[non-TTY input: auto-approving tool]", style="dim"))
            return True

        # Ctrl+C at the prompt has to raise KeyboardInterrupt here.
        with self.pause_interrupts():
            try:
                answer = Prompt.ask(
                    "[dim]y - yes, n - no, d - don't ask again[/dim]",
                    choices=["y", "n", "d"],
                    default="y",
                    console=self.console,
                )
            except (KeyboardInterrupt, EOFError) as e:
                raise UserAbortError() from e

        if answer == "d":
            log.info("Confirmations disabled for this session")
            self.skip_remaining = True
            return True
        return answer == "y"
