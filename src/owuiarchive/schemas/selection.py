"""
Resource categories and the selection of categories an operation works on.
"""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel

from owuiarchive.core.errors import SelectionError


class Category(str, Enum):
    """Resource categories known to the archive format.

    The value is the tag written into a manifest's ``contained_types``.
    """
    KNOWLEDGE = "knowledge"
    MODEL = "model"
    TOOL = "tool"
    PROMPT = "prompt"
    FILE = "file"
    CHAT = "chat"
    USER = "user"
    GROUP = "group"
    FEEDBACK = "feedback"

    @property
    def selection_field(self) -> str:
        return SELECTION_FIELDS[self]


SELECTION_FIELDS: Dict[Category, str] = {
    Category.KNOWLEDGE: "knowledge",
    Category.MODEL: "models",
    Category.TOOL: "tools",
    Category.PROMPT: "prompts",
    Category.FILE: "files",
    Category.CHAT: "chats",
    Category.USER: "users",
    Category.GROUP: "groups",
    Category.FEEDBACK: "feedbacks",
}

# Dependencies first: users before groups, files and collections before the
# models that reference them, feedback last.
UNIFIED_RESTORE_ORDER: List[Category] = [
    Category.USER,
    Category.GROUP,
    Category.FILE,
    Category.KNOWLEDGE,
    Category.MODEL,
    Category.TOOL,
    Category.PROMPT,
    Category.CHAT,
    Category.FEEDBACK,
]

# Legacy directories replay models first so their embedded collections and
# files exist before the standalone containers are matched against them.
LEGACY_RESTORE_ORDER: List[Category] = [
    Category.MODEL,
    Category.KNOWLEDGE,
    Category.TOOL,
    Category.PROMPT,
    Category.FILE,
    Category.USER,
    Category.GROUP,
    Category.CHAT,
    Category.FEEDBACK,
]

WRITE_ORDER: List[Category] = [
    Category.KNOWLEDGE,
    Category.MODEL,
    Category.TOOL,
    Category.PROMPT,
    Category.FILE,
    Category.CHAT,
    Category.USER,
    Category.GROUP,
    Category.FEEDBACK,
]


class Selection(BaseModel):
    """Which categories a backup or restore covers."""
    knowledge: bool = False
    models: bool = False
    tools: bool = False
    prompts: bool = False
    files: bool = False
    chats: bool = False
    users: bool = False
    groups: bool = False
    feedbacks: bool = False

    @classmethod
    def all(cls) -> "Selection":
        return cls(**{field: True for field in SELECTION_FIELDS.values()})

    @classmethod
    def of(cls, *categories: Category) -> "Selection":
        return cls(**{category.selection_field: True for category in categories})

    @classmethod
    def from_flags(cls, **flags: bool) -> "Selection":
        """Build a selection at a user-facing boundary.

        No flag set means every category, which is what the CLI and HTTP API
        offer. The engine itself never applies this default.
        """
        selection = cls(**flags)
        if selection.is_empty():
            return cls.all()
        return selection

    def is_enabled(self, category: Category) -> bool:
        return bool(getattr(self, category.selection_field))

    def enabled_categories(self) -> List[Category]:
        return [category for category in Category if self.is_enabled(category)]

    def is_empty(self) -> bool:
        return not self.enabled_categories()

    def require_any(self) -> List[Category]:
        """Return the enabled categories or raise SelectionError."""
        enabled = self.enabled_categories()
        if not enabled:
            raise SelectionError()
        return enabled
