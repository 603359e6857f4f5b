"""
Pydantic schemas for Open WebUI resources as they travel through an archive.

The API hands back loosely structured JSON. Every schema here allows extra
fields so that whatever the source instance returned is written to the
archive unchanged, while the fields the migration logic depends on are typed
and validated when a container is read.

Knowledge references inside a model are a discriminated union on ``type``:
``{"type": "file", "id": ...}`` or ``{"type": "collection", "id": ...}``.
Items with an unknown or missing discriminator are dropped with a warning
instead of failing the whole model.
"""

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from owuiarchive.schemas.selection import Category

logger = logging.getLogger(__name__)


class ResourceBase(BaseModel):
    """Base schema for all archived resources."""
    model_config = ConfigDict(extra="allow")

    def natural_key(self) -> str:
        """Key used to match this resource against a live instance."""
        raise NotImplementedError

    def label(self) -> str:
        """Human readable name for log messages."""
        return self.natural_key()

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class FileMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None
    collection_name: Optional[str] = None


class FileResource(ResourceBase):
    """A stored file. Matched by its archived id."""
    id: str
    user_id: Optional[str] = None
    filename: Optional[str] = None
    meta: FileMeta = Field(default_factory=FileMeta)
    data: Optional[Dict[str, Any]] = None
    access_control: Optional[Dict[str, Any]] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @field_validator("meta", mode="before")
    @classmethod
    def _none_meta(cls, value):
        return {} if value is None else value

    @property
    def display_name(self) -> str:
        return self.meta.name or self.filename or f"file_{self.id}"

    @property
    def size(self) -> int:
        return self.meta.size or 0

    def natural_key(self) -> str:
        return self.id

    def label(self) -> str:
        return f"{self.display_name} ({self.id})"


class KnowledgeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    file_ids: List[str] = Field(default_factory=list)


class KnowledgeCollection(ResourceBase):
    """A knowledge base. Matched by case-insensitive name."""
    id: str
    name: str
    user_id: Optional[str] = None
    description: str = ""
    data: Optional[KnowledgeData] = None
    meta: Optional[Dict[str, Any]] = None
    access_control: Optional[Dict[str, Any]] = None
    files: Optional[List[FileResource]] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value):
        return value or ""

    @property
    def file_ids(self) -> List[str]:
        """Referenced file ids, in order."""
        if self.data and self.data.file_ids:
            return list(self.data.file_ids)
        return [f.id for f in self.files or []]

    def file_names(self) -> Dict[str, str]:
        """Map of file id to display name for the files the API listed."""
        return {f.id: f.display_name for f in self.files or []}

    def natural_key(self) -> str:
        return self.name.lower()

    def label(self) -> str:
        return self.name


class FileReference(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["file"]
    id: str
    name: Optional[str] = None


class CollectionReference(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["collection"]
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    data: Optional[KnowledgeData] = None
    access_control: Optional[Dict[str, Any]] = None

    def to_collection(self) -> KnowledgeCollection:
        """The collection as it was embedded into the model at backup time."""
        payload = self.model_dump(mode="json")
        payload.pop("type", None)
        payload["name"] = self.name or self.id
        return KnowledgeCollection.model_validate(payload)


KnowledgeReference = Annotated[
    Union[FileReference, CollectionReference],
    Field(discriminator="type"),
]

KNOWLEDGE_REFERENCE_TYPES = {"file", "collection"}


class ModelMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    profile_image_url: Optional[str] = None
    description: Optional[str] = None
    knowledge: List[KnowledgeReference] = Field(default_factory=list)

    @field_validator("knowledge", mode="before")
    @classmethod
    def _drop_unknown_references(cls, value):
        if value is None:
            return []
        kept = []
        for item in value:
            if not isinstance(item, dict) or item.get("type") not in KNOWLEDGE_REFERENCE_TYPES:
                logger.warning(f"Dropping knowledge reference with unknown type: {item!r:.80}")
                continue
            if not item.get("id"):
                logger.warning(f"Dropping {item.get('type')} knowledge reference without an id")
                continue
            kept.append(item)
        return kept


class ModelResource(ResourceBase):
    """A custom model definition. Matched by case-insensitive name."""
    id: str
    name: str
    user_id: Optional[str] = None
    base_model_id: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    meta: ModelMeta = Field(default_factory=ModelMeta)
    access_control: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None

    @field_validator("params", "meta", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return {} if value is None else value

    @property
    def knowledge(self) -> List[Union[FileReference, CollectionReference]]:
        return self.meta.knowledge

    def natural_key(self) -> str:
        return self.name.lower()

    def label(self) -> str:
        return self.name


class ToolResource(ResourceBase):
    """A tool. Matched by its archived id."""
    id: str
    name: str = ""
    content: str = ""
    meta: Optional[Dict[str, Any]] = None
    access_control: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None

    def natural_key(self) -> str:
        return self.id

    def label(self) -> str:
        return self.name or self.id


class PromptResource(ResourceBase):
    """A prompt, keyed by its slash command."""
    command: str
    title: str = ""
    content: str = ""
    access_control: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None

    def natural_key(self) -> str:
        return self.command


class UserResource(ResourceBase):
    id: str
    name: str = ""
    email: str
    role: str = "user"
    profile_image_url: Optional[str] = None

    def natural_key(self) -> str:
        return self.email.lower()


class GroupResource(ResourceBase):
    id: str
    name: str
    description: str = ""
    permissions: Optional[Dict[str, Any]] = None
    user_ids: List[str] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value):
        return value or ""

    @field_validator("user_ids", mode="before")
    @classmethod
    def _none_user_ids(cls, value):
        return value or []

    def natural_key(self) -> str:
        return self.name.lower()

    def label(self) -> str:
        return self.name


class ChatResource(ResourceBase):
    id: str
    title: str = ""
    chat: Dict[str, Any] = Field(default_factory=dict)
    meta: Optional[Dict[str, Any]] = None
    pinned: Optional[bool] = None
    folder_id: Optional[str] = None
    user_id: Optional[str] = None

    def natural_key(self) -> str:
        return self.id

    def label(self) -> str:
        return f"{self.title or 'Untitled'} ({self.id})"


class FeedbackResource(ResourceBase):
    id: str
    type: str = "rating"
    data: Optional[Dict[str, Any]] = None
    meta: Optional[Dict[str, Any]] = None
    snapshot: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None

    def natural_key(self) -> str:
        return self.id


RESOURCE_TYPES = {
    Category.KNOWLEDGE: KnowledgeCollection,
    Category.MODEL: ModelResource,
    Category.TOOL: ToolResource,
    Category.PROMPT: PromptResource,
    Category.FILE: FileResource,
    Category.CHAT: ChatResource,
    Category.USER: UserResource,
    Category.GROUP: GroupResource,
    Category.FEEDBACK: FeedbackResource,
}


def parse_resource(category: Category, payload: Any) -> Optional[ResourceBase]:
    """Validate raw JSON into the category's schema, or None if it does not fit."""
    try:
        return RESOURCE_TYPES[category].model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Invalid {category.value} payload: {e.error_count()} validation error(s)")
        return None


class Manifest(BaseModel):
    """Root metadata record of a container (``owui.json``)."""
    model_config = ConfigDict(extra="allow")

    open_webui_url: str = ""
    open_webui_version: str = ""
    backup_tool_version: str = ""
    backup_timestamp: str = ""
    backup_type: str = ""
    item_count: int = 0
    unified_backup: bool = False
    contained_types: List[str] = Field(default_factory=list)

    @field_validator("contained_types", mode="before")
    @classmethod
    def _normalize_types(cls, value):
        if value is None:
            return []
        return sorted(set(value))

    @property
    def categories(self) -> List[Category]:
        """Declared categories this tool understands."""
        known = {c.value: c for c in Category}
        return [known[t] for t in self.contained_types if t in known]
