"""Slash command registry for the interactive REPL."""

import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Union


@dataclass
class CommandResult:
    """Outcome of a slash command.

    ``handled`` tells the REPL not to send the input to the model.
    """

    handled: bool = True
    message: str = ""
    exit: bool = False


CommandHandler = Callable[[str], Union[CommandResult, Awaitable[CommandResult]]]


@dataclass
class _Command:
    name: str
    description: str
    handler: CommandHandler


class CommandRegistry:
    """Maps ``/name`` to a handler that receives the rest of the line."""

    def __init__(self):
        self._commands: dict[str, _Command] = {}

    def register(self, name: str, description: str, handler: CommandHandler) -> None:
        self._commands[name.lstrip("/")] = _Command(name.lstrip("/"), description, handler)

    def _format_listing(self) -> list[str]:
        return [f"  /{cmd.name} - {cmd.description}" for cmd in self._commands.values()]

    def format_help(self) -> str:
        """List all registered commands."""
        if not self._commands:
            return "No commands available."
        return "\n".join(["Available commands:", *self._format_listing()])

    def completions(self) -> list[tuple[str, str]]:
        """``(name, description)`` pairs for autocomplete."""
        return [(f"/{cmd.name}", cmd.description) for cmd in self._commands.values()]

    async def dispatch(self, user_input: str) -> CommandResult | None:
        """Run the command in ``user_input``.

        Returns None when the input is not a slash command.
        """
        text = user_input.strip()
        if not text.startswith("/"):
            return None

        parts = text[1:].split(None, 1)
        name = parts[0] if parts else ""
        args = parts[1].strip() if len(parts) > 1 else ""

        command = self._commands.get(name)
        if command is None:
            lines = [f"Unknown command: /{name}"]
            if self._commands:
                lines.append("Available commands:")
                lines.extend(self._format_listing())
            return CommandResult(handled=True, message="\n".join(lines))

        result = command.handler(args)
        if inspect.isawaitable(result):
            result = await result
        return result
