"""
Path conventions of the container formats.

Unified container::

    owui.json
    knowledge-bases/<kb-id>/knowledge_base.json
    knowledge-bases/<kb-id>/documents/<filename>
    models/<model-id>/model.json
    models/<model-id>/model-files/<file-id>/metadata.json
    models/<model-id>/model-files/<file-id>/<filename>
    models/<model-id>/knowledge-bases/<kb-id>/knowledge_base.json
    tools/<tool-id>/tool.json
    prompts/<prompt-dir>/prompt.json
    files/<file-id>/file.json
    files/<file-id>/content/<filename>
    chats/<chat-id>/chat.json
    users/<user-id>/user.json
    groups/<group-id>/group.json
    feedbacks/<feedback-id>/feedback.json

A legacy container holds a single entity with its primary JSON at the root
and is named ``<timestamp>_<marker>_<name>.zip``.
"""

import re
from datetime import datetime, timezone
from typing import Dict, Optional

from owuiarchive.schemas.selection import Category

MANIFEST_NAME = "owui.json"
DOCUMENTS_DIR = "documents"
MODEL_FILES_DIR = "model-files"
MODEL_FILE_METADATA = "metadata.json"
FILE_CONTENT_DIR = "content"
KNOWLEDGE_DIR = "knowledge-bases"

CATEGORY_DIRS: Dict[Category, str] = {
    Category.KNOWLEDGE: KNOWLEDGE_DIR,
    Category.MODEL: "models",
    Category.TOOL: "tools",
    Category.PROMPT: "prompts",
    Category.FILE: "files",
    Category.CHAT: "chats",
    Category.USER: "users",
    Category.GROUP: "groups",
    Category.FEEDBACK: "feedbacks",
}

PRIMARY_FILES: Dict[Category, str] = {
    Category.KNOWLEDGE: "knowledge_base.json",
    Category.MODEL: "model.json",
    Category.TOOL: "tool.json",
    Category.PROMPT: "prompt.json",
    Category.FILE: "file.json",
    Category.CHAT: "chat.json",
    Category.USER: "user.json",
    Category.GROUP: "group.json",
    Category.FEEDBACK: "feedback.json",
}

LEGACY_MARKERS: Dict[Category, str] = {
    Category.KNOWLEDGE: "knowledge_base",
    Category.MODEL: "model",
    Category.TOOL: "tool",
    Category.PROMPT: "prompt",
    Category.FILE: "file",
    Category.CHAT: "chat",
    Category.USER: "user",
    Category.GROUP: "group",
    Category.FEEDBACK: "feedback",
}

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_UNSAFE = re.compile(r"[^a-z0-9_-]+")
_SEPARATORS = re.compile(r"[\\/]+")


def sanitize_filename(name: str) -> str:
    """Lowercase, underscore-separated, at most 50 characters, never empty."""
    name = (name or "").lower().replace(" ", "_")
    name = _UNSAFE.sub("", name)[:50].rstrip("_-")
    return name or "unnamed"


def path_segment(value: str) -> str:
    """Make an identifier or file name usable as a single archive path segment."""
    value = _SEPARATORS.sub("_", value or "").strip()
    if value in ("", ".", ".."):
        return "unnamed"
    return value


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def entity_dir(category: Category, entity_id: str) -> str:
    return f"{CATEGORY_DIRS[category]}/{path_segment(entity_id)}/"


def primary_path(category: Category, entity_id: str) -> str:
    return entity_dir(category, entity_id) + PRIMARY_FILES[category]


def unified_filename(timestamp: Optional[str] = None) -> str:
    return f"{timestamp or utc_timestamp()}_owui_full_backup.zip"


def legacy_filename(category: Category, name: str, timestamp: Optional[str] = None) -> str:
    marker = LEGACY_MARKERS[category]
    return f"{timestamp or utc_timestamp()}_{marker}_{sanitize_filename(name)}.zip"


def category_from_filename(filename: str) -> Optional[Category]:
    """Infer a legacy container's category from the marker in its file name.

    The earliest ``_<marker>_`` wins, so a knowledge base named "my file"
    (``..._knowledge_base_my_file_...``) is not mistaken for a file container.
    """
    lowered = filename.lower()
    best = None
    best_index = None
    for category, marker in LEGACY_MARKERS.items():
        index = lowered.find(f"_{marker}_")
        if index < 0:
            continue
        if best_index is None or index < best_index:
            best, best_index = category, index
    return best
