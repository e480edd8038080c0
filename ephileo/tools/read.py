"""Read tool for reading file contents."""

from pathlib import Path
from typing import Any

from ephileo.tools.registry import PermissionGroup, Tool

MAX_FILE_READ_CHARS = 10_000


class ReadFileTool(Tool):
    """Read file contents."""

    name = "read_file"
    description = "Read the contents of a file at the given path."
    permission_group = PermissionGroup.READ
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "File path to read",
            },
        },
        "required": ["path"],
    }

    async def execute(self, path: str = "", **kwargs: Any) -> str:
        """Read a file, capped at ``MAX_FILE_READ_CHARS`` characters."""
        file_path = Path(str(path)).expanduser().resolve()
        content = file_path.read_text(encoding="utf-8")
        return content[:MAX_FILE_READ_CHARS]
