"""Write tool for creating files."""

from pathlib import Path
from typing import Any

from ephileo.logging import get_logger
from ephileo.tools.registry import PermissionGroup, Tool

log = get_logger(__name__)


class WriteFileTool(Tool):
    """Write content to files."""

    name = "write_file"
    description = (
        "Create a NEW file with the given content. OVERWRITES the entire file if it exists. "
        "For editing existing files, use edit_file instead. Creates parent directories if needed."
    )
    permission_group = PermissionGroup.WRITE
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "File path to write to",
            },
            "content": {
                "type": "string",
                "description": "Content to write",
            },
        },
        "required": ["path", "content"],
    }

    async def execute(self, path: str = "", content: str = "", **kwargs: Any) -> str:
        """Write content to a file.

        Args:
            path: Path to file
            content: Content to write

        Returns:
            Confirmation with the resolved path
        """
        file_path = Path(str(path)).expanduser().resolve()
        text = str(content)

        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(text, encoding="utf-8")

        log.info("Wrote file", path=str(file_path), chars=len(text))
        return f"Written {len(text)} chars to {file_path}"
