"""Command-line entry point for Ephileo."""

import asyncio
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import typer
from rich.console import Console
from rich.markup import escape
from rich.text import Text

from ephileo import __version__
from ephileo.agent import CANCELLED_TEXT, MAX_TURNS_TEXT, NO_RESPONSE_TEXT, Agent, AgentResult
from ephileo.commands import CommandRegistry, CommandResult
from ephileo.config import Config, set_config
from ephileo.confirm import ConsoleConfirmation, format_permission_status
from ephileo.exceptions import ConfigurationError, LLMError
from ephileo.llm import LLMProvider, Message, create_client
from ephileo.logging import configure_logging, get_logger
from ephileo.memory import LearningJournal
from ephileo.prompt import build_system_prompt
from ephileo.tools import PermissionLevel, ToolRegistry, register_basic_tools

log = get_logger(__name__)

cli = typer.Typer(help="Ephileo - a local AI agent for OpenAI-compatible endpoints")

CANCELLED_TOOL_RESULT = "Cancelled by user before this tool ran."

PERMISSION_SHORTCUTS = {
    "1": PermissionLevel.WRITE_ONLY,
    "2": PermissionLevel.READ_AND_WRITE,
    "3": PermissionLevel.AUTO_ACCEPT,
}


class InterruptGuard:
    """Routes Ctrl+C to an abort event while the agent is running."""

    def __init__(self, abort_event: asyncio.Event):
        self.abort_event = abort_event
        self._installed = False

    def _on_interrupt(self) -> None:
        log.debug("Interrupt received, aborting")
        self.abort_event.set()

    def install(self) -> None:
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, self._on_interrupt)
            self._installed = True
        except (NotImplementedError, RuntimeError):
            # No loop signal support (Windows); Ctrl+C stays a KeyboardInterrupt.
            self._installed = False

    def remove(self) -> None:
        if not self._installed:
            return
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        self._installed = False

    @contextmanager
    def paused(self) -> Iterator[None]:
        """Restore the default Ctrl+C behaviour for a blocking prompt."""
        was_installed = self._installed
        self.remove()
        try:
            yield
        finally:
            if was_installed:
                self.install()


class ChatSession:
    """One terminal conversation: agent, tools, history and slash commands."""

    def __init__(
        self,
        config: Config,
        console: Console,
        show_thinking: bool = False,
        verbose: bool = False,
        client: LLMProvider | None = None,
    ):
        self.config = config
        self.console = console
        self.show_thinking = show_thinking
        self.verbose = verbose
        self.abort_event = asyncio.Event()
        self.interrupts = InterruptGuard(self.abort_event)

        self.confirmation = ConsoleConfirmation(console, pause_interrupts=self.interrupts.paused)
        self.tools = ToolRegistry(
            permission_level=config.tools.permission_level,
            confirmation_callback=self.confirmation,
        )
        register_basic_tools(self.tools, config.memory.dir, shell_timeout=config.tools.shell_timeout)
        self.journal = LearningJournal(config.memory.dir)

        self.client = client or create_client(config)
        self.agent = Agent(
            self.client,
            self.tools,
            max_turns=config.agent.max_turns,
            log_fn=self._on_log,
        )
        self.messages: list[Message] = [self._system_message()]

        self.commands = CommandRegistry()
        self.commands.register("help", "Show available commands", self._cmd_help)
        self.commands.register("permissions", "Show or set the permission level", self._cmd_permissions)
        self.commands.register("clear", "Start a fresh conversation", self._cmd_clear)
        self.commands.register("quit", "Exit Ephileo", self._cmd_quit)

    def _system_message(self) -> Message:
        return Message(role="system", content=build_system_prompt(self.journal.load()))

    def refresh_system_prompt(self) -> None:
        """Re-read the journal so learnings from earlier turns take effect."""
        self.messages[0] = self._system_message()

    def _on_log(self, line: str) -> None:
        if line.startswith("[turn") and not self.verbose:
            return
        self.console.print(Text(line, style="dim"))

    def _on_token(self, text: str, is_reasoning: bool) -> None:
        if is_reasoning:
            if self.show_thinking:
                self.console.out(text, end="", style="dim", highlight=False)
            return
        self.console.out(text, end="", highlight=False)

    def _cmd_help(self, args: str) -> CommandResult:
        return CommandResult(message=self.commands.format_help())

    def _cmd_permissions(self, args: str) -> CommandResult:
        if not args:
            lines = [f"Permission level: {format_permission_status(self.tools.permission_level)}"]
            for shortcut, level in PERMISSION_SHORTCUTS.items():
                lines.append(f"  [{shortcut}] {level.value} - {format_permission_status(level)}")
            lines.append("Usage: /permissions <level>")
            return CommandResult(message="\n".join(lines))

        choice = args.strip().lower()
        try:
            level = PERMISSION_SHORTCUTS.get(choice) or PermissionLevel(choice)
        except ValueError:
            valid = ", ".join(level.value for level in PermissionLevel)
            return CommandResult(message=f"Unknown permission level: {choice}. Use one of: {valid}")

        self.tools.set_permission_level(level)
        self.confirmation.skip_remaining = False
        return CommandResult(message=f"Permission level set to {format_permission_status(level)}")

    def _cmd_clear(self, args: str) -> CommandResult:
        self.messages[:] = [self._system_message()]
        return CommandResult(message="Conversation cleared.")

    def _cmd_quit(self, args: str) -> CommandResult:
        return CommandResult(exit=True)

    def _print_result(self, result: AgentResult) -> None:
        self.console.out("")
        # Answers were already streamed; only fixed outcomes need printing.
        if result.cancelled:
            self.console.print(Text(CANCELLED_TEXT, style="yellow"))
        elif result.final_text in (NO_RESPONSE_TEXT, MAX_TURNS_TEXT):
            self.console.print(Text(result.final_text, style="yellow"))

    async def send(self, user_input: str) -> AgentResult:
        """Run one user turn with Ctrl+C mapped to cancellation."""
        self.refresh_system_prompt()
        self.abort_event.clear()
        self.interrupts.install()
        try:
            result = await self.agent.ask(
                user_input,
                messages=self.messages,
                on_token=self._on_token,
                abort_event=self.abort_event,
            )
        finally:
            self.interrupts.remove()

        if result.cancelled:
            self._answer_pending_tool_calls()
        elif result.final_text not in (NO_RESPONSE_TEXT, MAX_TURNS_TEXT):
            self.messages.append(Message(role="assistant", content=result.final_text))
        return result

    def _answer_pending_tool_calls(self) -> None:
        """Add a result for every tool call a cancellation left unanswered."""
        for index in range(len(self.messages) - 1, -1, -1):
            message = self.messages[index]
            if message.role == "assistant" and message.tool_calls:
                answered = {
                    m.tool_call_id for m in self.messages[index + 1:] if m.role == "tool"
                }
                for call in message.tool_calls:
                    if call.id not in answered:
                        self.messages.append(
                            Message(role="tool", content=CANCELLED_TOOL_RESULT, tool_call_id=call.id)
                        )
                return
            if message.role == "user":
                return

    async def repl(self) -> None:
        provider = self.config.active_provider()
        self.console.print(
            f"[bold]Ephileo[/bold] v{__version__} - {escape(provider.model)} @ {escape(provider.base_url)}"
        )
        self.console.print(
            f"[dim]Permissions: {format_permission_status(self.tools.permission_level)}. "
            "Type /help for commands, Ctrl+C to interrupt.[/dim]"
        )

        while True:
            try:
                user_input = self.console.input("[bold green]> [/bold green]").strip()
            except (KeyboardInterrupt, EOFError):
                self.console.print()
                return
            if not user_input:
                continue

            command = await self.commands.dispatch(user_input)
            if command is not None:
                if command.message:
                    self.console.print(command.message, highlight=False, markup=False)
                if command.exit:
                    return
                continue

            try:
                result = await self.send(user_input)
            except LLMError as e:
                self.console.print(f"\n[red]Error:[/red] {escape(str(e))}", highlight=False)
                continue
            self._print_result(result)

    async def close(self) -> None:
        await self.client.close()


def _load_config(
    config_path: str,
    model: str,
    provider: str,
    permission: str,
    verbose: bool,
) -> Config:
    try:
        cfg = Config.load(Path(config_path) if config_path else None)
    except ConfigurationError as e:
        raise typer.BadParameter(str(e), param_hint="--config") from e

    if provider:
        cfg.provider = provider
    if model:
        active = cfg.active_provider()
        cfg.providers[cfg.provider] = active.model_copy(update={"model": model})
    if permission:
        try:
            cfg.tools.permission_level = PermissionLevel(permission).value
        except ValueError as e:
            raise typer.BadParameter(
                f"must be one of: {', '.join(level.value for level in PermissionLevel)}",
                param_hint="--permission",
            ) from e
    if verbose:
        cfg.logging.level = "DEBUG"

    set_config(cfg)
    configure_logging(cfg)
    return cfg


async def _run_ask(session: ChatSession, question: str) -> int:
    try:
        result = await session.send(question)
    except LLMError as e:
        session.console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        return 1
    finally:
        await session.close()
    session._print_result(result)
    return 0


async def _run_chat(session: ChatSession) -> None:
    try:
        await session.repl()
    finally:
        await session.close()


def _start_session(cfg: Config, show_thinking: bool, verbose: bool) -> ChatSession:
    console = Console()
    try:
        cfg.active_provider()
    except ConfigurationError as e:
        console.print(f"[red]{escape(str(e))}[/red]", highlight=False)
        raise typer.Exit(code=1) from e
    return ChatSession(cfg, console, show_thinking=show_thinking, verbose=verbose)


def _chat(config_path: str, model: str, provider: str, permission: str, show_thinking: bool, verbose: bool) -> None:
    cfg = _load_config(config_path, model, provider, permission, verbose)

    async def main() -> None:
        session = _start_session(cfg, show_thinking, verbose)
        await _run_chat(session)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Shutting down")


ConfigOption = typer.Option("", "-c", "--config", help="Path to config file")
ModelOption = typer.Option("", "-m", "--model", help="Override model")
ProviderOption = typer.Option("", "-p", "--provider", help="Override provider")
PermissionOption = typer.Option(
    "", "--permission", help="Permission level: write-only, read-and-write or auto-accept"
)
ThinkingOption = typer.Option(False, "--show-thinking", help="Print reasoning tokens")
VerboseOption = typer.Option(False, "-v", "--verbose", help="Debug logging")


@cli.callback(invoke_without_command=True)
def default(ctx: typer.Context) -> None:
    """Start an interactive chat when no command is given."""
    if ctx.invoked_subcommand is None:
        _chat("", "", "", "", False, False)


@cli.command()
def chat(
    config: str = ConfigOption,
    model: str = ModelOption,
    provider: str = ProviderOption,
    permission: str = PermissionOption,
    show_thinking: bool = ThinkingOption,
    verbose: bool = VerboseOption,
) -> None:
    """Start an interactive session."""
    _chat(config, model, provider, permission, show_thinking, verbose)


@cli.command()
def ask(
    question: list[str] = typer.Argument(..., help="Question to ask"),
    config: str = ConfigOption,
    model: str = ModelOption,
    provider: str = ProviderOption,
    permission: str = PermissionOption,
    show_thinking: bool = ThinkingOption,
    verbose: bool = VerboseOption,
) -> None:
    """Ask a single question and exit."""
    cfg = _load_config(config, model, provider, permission, verbose)

    async def main() -> int:
        session = _start_session(cfg, show_thinking, verbose)
        return await _run_ask(session, " ".join(question))

    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = 130
    raise typer.Exit(code=code)


@cli.command()
def version() -> None:
    """Show version information."""
    print(f"Ephileo v{__version__}")


if __name__ == "__main__":
    cli()
