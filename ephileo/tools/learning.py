"""save_learning tool: record discoveries in the learning journal."""

from typing import Any

from ephileo.memory import LearningJournal
from ephileo.tools.registry import PermissionGroup, Tool


class SaveLearningTool(Tool):
    """Append an entry to the learning journal."""

    name = "save_learning"
    description = (
        "Save something Ephileo learned to the memory journal. "
        "Use this to record discoveries, summaries, and insights from tasks."
    )
    permission_group = PermissionGroup.NONE
    parameters = {
        "type": "object",
        "properties": {
            "topic": {"type": "string", "description": "Short topic title"},
            "content": {"type": "string", "description": "What was learned, markdown formatted"},
        },
        "required": ["topic", "content"],
    }

    def __init__(self, journal: LearningJournal):
        self.journal = journal

    async def execute(self, topic: str = "", content: str = "", **kwargs: Any) -> str:
        path = self.journal.append(str(topic), str(content))
        return f"Saved learning about '{topic}' to {path}"
