"""Tools package for Ephileo."""

from pathlib import Path

from ephileo.memory import LearningJournal
from ephileo.tools.edit import EditFileTool, EditResult, apply_edit
from ephileo.tools.learning import SaveLearningTool
from ephileo.tools.list_directory import ListDirectoryTool
from ephileo.tools.read import ReadFileTool
from ephileo.tools.registry import (
    DENIAL_MESSAGE,
    ConfirmationCallback,
    FunctionTool,
    PermissionGroup,
    PermissionLevel,
    Tool,
    ToolRegistry,
)
from ephileo.tools.shell import DEFAULT_SHELL_TIMEOUT, ShellTool
from ephileo.tools.write import WriteFileTool


def register_basic_tools(
    registry: ToolRegistry,
    memory_dir: Path | str,
    shell_timeout: float = DEFAULT_SHELL_TIMEOUT,
) -> None:
    """Register the built-in file, shell and memory tools."""
    registry.register(ReadFileTool())
    registry.register(WriteFileTool())
    registry.register(ListDirectoryTool())
    registry.register(ShellTool(timeout=shell_timeout))
    registry.register(SaveLearningTool(LearningJournal(memory_dir)))
    registry.register(EditFileTool())


__all__ = [
    "DENIAL_MESSAGE",
    "ConfirmationCallback",
    "EditFileTool",
    "EditResult",
    "FunctionTool",
    "ListDirectoryTool",
    "PermissionGroup",
    "PermissionLevel",
    "ReadFileTool",
    "SaveLearningTool",
    "ShellTool",
    "Tool",
    "ToolRegistry",
    "WriteFileTool",
    "apply_edit",
    "register_basic_tools",
]
