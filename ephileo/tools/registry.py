"""Tool registry and base tool class.

Each tool has a JSON-schema description (sent to the model), an async
handler that returns a string, and a permission group used to decide
whether a human has to approve the call first.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from ephileo.exceptions import ToolExecutionError, ToolNotFoundError, UserAbortError
from ephileo.logging import get_logger

log = get_logger(__name__)

DENIAL_MESSAGE = (
    "User declined to execute this tool. Adjust your approach or ask the user for guidance."
)


class PermissionGroup(str, Enum):
    """Which confirmation bucket a tool belongs to."""

    READ = "read"
    WRITE = "write"
    NONE = "none"


class PermissionLevel(str, Enum):
    """Which permission groups need confirmation."""

    WRITE_ONLY = "write-only"
    READ_AND_WRITE = "read-and-write"
    AUTO_ACCEPT = "auto-accept"


# (tool_name, arguments) -> approved; may be sync or async.
ConfirmationCallback = Callable[[str, dict[str, Any]], Union[bool, Awaitable[bool]]]
ToolHandler = Callable[..., Awaitable[str]]


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    permission_group: PermissionGroup = PermissionGroup.NONE

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments, as sent by the model

        Returns:
            Result text fed back to the model. Raising is fine; the
            registry turns the exception into an error string.
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for the LLM."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class FunctionTool(Tool):
    """Tool backed by a plain async handler."""

    def __init__(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        handler: ToolHandler,
        permission_group: PermissionGroup | str = PermissionGroup.NONE,
    ):
        self.name = name
        self.description = description
        self.parameters = parameters
        self.handler = handler
        self.permission_group = PermissionGroup(permission_group)

    async def execute(self, **kwargs: Any) -> str:
        return await self.handler(**kwargs)


class ToolRegistry:
    """Registry for managing available tools.

    The permission level and confirmation callback are plain instance state,
    read at execution time, so a change applies from the next call on.
    """

    def __init__(
        self,
        permission_level: PermissionLevel | str = PermissionLevel.WRITE_ONLY,
        confirmation_callback: ConfirmationCallback | None = None,
    ):
        self._tools: dict[str, Tool] = {}
        self._permission_level = PermissionLevel(permission_level)
        self._confirmation_callback = confirmation_callback

    @property
    def permission_level(self) -> PermissionLevel:
        return self._permission_level

    def set_permission_level(self, level: PermissionLevel | str) -> None:
        """Change which tool groups require confirmation."""
        self._permission_level = PermissionLevel(level)
        log.debug("Permission level changed", level=self._permission_level.value)

    def set_confirmation_callback(self, callback: ConfirmationCallback | None) -> None:
        """Set the callback that approves gated tool calls."""
        self._confirmation_callback = callback

    def register(self, tool: Tool) -> None:
        """Register a tool, replacing any tool with the same name.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name, group=tool.permission_group.value)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_names(self) -> list[str]:
        """List registered tool names in registration order."""
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        """Get all tool definitions for the LLM, in registration order."""
        return [tool.get_definition() for tool in self._tools.values()]

    def requires_confirmation(self, tool: Tool) -> bool:
        """Whether ``tool`` needs approval under the current permission level."""
        if self._permission_level is PermissionLevel.AUTO_ACCEPT:
            return False
        if tool.permission_group is PermissionGroup.NONE:
            return False
        if tool.permission_group is PermissionGroup.WRITE:
            return True
        return self._permission_level is PermissionLevel.READ_AND_WRITE

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            log.debug("Cancelled tool task raised", exc_info=True)

    async def _confirm(self, name: str, arguments: dict[str, Any]) -> bool:
        callback = self._confirmation_callback
        approved = callback(name, arguments)
        if inspect.isawaitable(approved):
            approved = await approved
        return bool(approved)

    async def _run_handler(
        self,
        tool: Tool,
        arguments: dict[str, Any],
        abort_event: asyncio.Event | None,
    ) -> str:
        execute_task = asyncio.create_task(tool.execute(**arguments))
        abort_wait_task: asyncio.Task[bool] | None = None
        try:
            if abort_event is None:
                result = await execute_task
            else:
                abort_wait_task = asyncio.create_task(abort_event.wait())
                done, _ = await asyncio.wait(
                    {execute_task, abort_wait_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if execute_task not in done:
                    await self._cancel_task(execute_task)
                    raise UserAbortError()
                result = await execute_task
        except asyncio.CancelledError:
            await self._cancel_task(execute_task)
            raise
        finally:
            await self._cancel_task(abort_wait_task)

        if not isinstance(result, str):
            raise ToolExecutionError(tool.name, "Tool returned invalid result payload")
        return result

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        abort_event: asyncio.Event | None = None,
    ) -> str:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool arguments
            abort_event: Optional cancellation signal; setting it stops the
                running handler

        Returns:
            The tool's result, or a string describing why it did not run or
            how it failed. Only cancellation escapes as an exception.

        Raises:
            UserAbortError if the user cancelled during confirmation or
            execution
        """
        try:
            tool = self.get(name)
        except ToolNotFoundError:
            log.warning("Unknown tool requested", tool=name)
            return f"Error: unknown tool '{name}'"

        if self.requires_confirmation(tool) and self._confirmation_callback is not None:
            try:
                approved = await self._confirm(name, arguments)
            except UserAbortError:
                raise
            except Exception as e:
                log.error("Tool confirmation failed", tool=name, error=str(e))
                return f"Error during confirmation for {name}: {e}"
            if not approved:
                log.info("Tool declined by user", tool=name)
                return DENIAL_MESSAGE

        try:
            log.info("Executing tool", tool=name, args=arguments)
            result = await self._run_handler(tool, arguments, abort_event)
            log.info("Tool executed", tool=name, chars=len(result))
            return result
        except UserAbortError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            return f"Error executing {name}: {e}"
