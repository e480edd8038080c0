import pytest

from ephileo.commands import CommandRegistry, CommandResult


def _registry() -> CommandRegistry:
    registry = CommandRegistry()
    registry.register("help", "Show help", lambda args: CommandResult(message="help!"))

    async def echo(args: str) -> CommandResult:
        return CommandResult(message=f"echo:{args}")

    registry.register("echo", "Echo arguments", echo)
    return registry


@pytest.mark.asyncio
async def test_plain_input_is_not_a_command():
    assert await _registry().dispatch("hello there") is None


@pytest.mark.asyncio
async def test_dispatch_sync_handler():
    result = await _registry().dispatch("/help")

    assert result == CommandResult(handled=True, message="help!")


@pytest.mark.asyncio
async def test_dispatch_passes_trimmed_arguments():
    result = await _registry().dispatch("/echo   a b  ")

    assert result.message == "echo:a b"


@pytest.mark.asyncio
async def test_unknown_command_lists_available():
    result = await _registry().dispatch("/nope")

    assert result.handled is True
    assert result.message.splitlines() == [
        "Unknown command: /nope",
        "Available commands:",
        "  /help - Show help",
        "  /echo - Echo arguments",
    ]


def test_format_help_and_completions():
    registry = _registry()

    assert registry.format_help().splitlines()[0] == "Available commands:"
    assert registry.completions() == [("/help", "Show help"), ("/echo", "Echo arguments")]


def test_empty_registry_help():
    assert CommandRegistry().format_help() == "No commands available."
