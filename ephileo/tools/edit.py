"""edit_file tool: targeted string replacement in files.

:func:`apply_edit` is pure, so the replacement rules are testable without a
filesystem. Matching is literal (``str.split``), never regex, so ``$``,
``.``, ``(`` and friends need no escaping.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ephileo.tools.registry import PermissionGroup, Tool


@dataclass(frozen=True)
class EditResult:
    ok: bool
    content: str = ""
    replacements: int = 0
    error: str = ""


def apply_edit(content: str, old_string: str, new_string: str, replace_all: bool = False) -> EditResult:
    """Replace ``old_string`` with ``new_string`` in ``content``."""
    if old_string == "":
        return EditResult(ok=False, error="old_string must not be empty")

    if old_string == new_string:
        return EditResult(ok=False, error="old_string and new_string are identical")

    parts = content.split(old_string)
    occurrences = len(parts) - 1

    if occurrences == 0:
        return EditResult(ok=False, error="old_string not found in file")

    if occurrences > 1 and not replace_all:
        return EditResult(
            ok=False,
            error=(
                f"old_string matches {occurrences} times. "
                "Use replace_all: true or provide more context to make it unique."
            ),
        )

    return EditResult(ok=True, content=new_string.join(parts), replacements=occurrences)


class EditFileTool(Tool):
    """Targeted replacement inside an existing file."""

    name = "edit_file"
    description = (
        "Perform a targeted string replacement in a file. "
        "Fails if old_string is not found, or if it appears multiple times and replace_all is not set. "
        "Use read_file first to confirm the exact text to replace."
    )
    permission_group = PermissionGroup.WRITE
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Absolute or home-relative (~) path to the file to edit.",
            },
            "old_string": {
                "type": "string",
                "description": (
                    "The exact text to find and replace. Must appear exactly once unless replace_all is true."
                ),
            },
            "new_string": {
                "type": "string",
                "description": "The text to replace old_string with.",
            },
            "replace_all": {
                "type": "boolean",
                "description": "If true, replace every occurrence of old_string. Defaults to false.",
            },
        },
        "required": ["path", "old_string", "new_string"],
    }

    async def execute(
        self,
        path: str = "",
        old_string: str = "",
        new_string: str = "",
        replace_all: bool = False,
        **kwargs: Any,
    ) -> str:
        file_path = Path(str(path)).expanduser().resolve()

        try:
            existing = file_path.read_text(encoding="utf-8")
        except OSError as e:
            return f"Error reading file: {e}"

        result = apply_edit(existing, str(old_string), str(new_string), replace_all is True)
        if not result.ok:
            return f"Error: {result.error}"

        try:
            file_path.write_text(result.content, encoding="utf-8")
        except OSError as e:
            return f"Error writing file: {e}"

        plural = "" if result.replacements == 1 else "s"
        return f"Replaced {result.replacements} occurrence{plural} in {file_path}"
