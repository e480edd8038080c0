"""Directory listing tool."""

import asyncio
from pathlib import Path
from typing import Any

from ephileo.tools.registry import PermissionGroup, Tool

MAX_DIR_ENTRIES = 100


def _list_entries(directory: Path) -> list[str]:
    names = sorted(entry.name for entry in directory.iterdir())[:MAX_DIR_ENTRIES]
    lines = []
    for name in names:
        kind = "dir" if (directory / name).is_dir() else "file"
        lines.append(f"  [{kind}] {name}")
    return lines


class ListDirectoryTool(Tool):
    """List files and directories."""

    name = "list_directory"
    description = "List files and directories at a given path."
    permission_group = PermissionGroup.READ
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Directory path. Defaults to current directory.",
            },
        },
        "required": [],
    }

    async def execute(self, path: str | None = None, **kwargs: Any) -> str:
        directory = Path(str(path or ".")).expanduser().resolve()
        lines = await asyncio.to_thread(_list_entries, directory)
        return f"{directory}/\n" + "\n".join(lines)
