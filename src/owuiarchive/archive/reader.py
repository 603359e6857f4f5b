"""
Archive reader: turn unified and legacy containers into typed entities.

Both container formats are normalized into one ``ArchiveBundle`` (category to
entity list) right after format detection, so the migration engine has a
single code path. Parsing is tolerant: members are correlated by their
parent directory, an entity without a usable primary JSON is dropped with a
warning, and missing payloads never abort the read.
"""

import json
import logging
import os
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from owuiarchive.archive.detector import ContainerFormat, classify, load_manifest, read_manifest, split_legacy
from owuiarchive.archive.layout import (
    CATEGORY_DIRS,
    DOCUMENTS_DIR,
    FILE_CONTENT_DIR,
    KNOWLEDGE_DIR,
    MODEL_FILE_METADATA,
    MODEL_FILES_DIR,
    PRIMARY_FILES,
    path_segment,
)
from owuiarchive.core.errors import StructuralError
from owuiarchive.schemas.resources import (
    KnowledgeCollection,
    Manifest,
    ModelResource,
    ResourceBase,
    parse_resource,
)
from owuiarchive.schemas.selection import (
    LEGACY_RESTORE_ORDER,
    UNIFIED_RESTORE_ORDER,
    Category,
    Selection,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class ArchivedFile:
    """A file payload correlated with the id it had on the source instance."""

    def __init__(self, file_id: Optional[str], filename: str, content: Optional[bytes],
                 metadata: Optional[Dict] = None):
        self.file_id = file_id
        self.filename = filename
        self.content = content
        self.metadata = metadata or {}

    @property
    def has_content(self) -> bool:
        # A zero-byte document is still a document.
        return self.content is not None

    @property
    def size(self) -> int:
        return len(self.content or b"")

    def __repr__(self) -> str:
        return f"ArchivedFile(id={self.file_id!r}, filename={self.filename!r}, size={self.size})"


class ArchivedEntity:
    """One top-level entity read from a container."""

    def __init__(self, category: Category, resource: ResourceBase, source: str = ""):
        self.category = category
        self.resource = resource
        self.source = source

    @property
    def key(self) -> str:
        return self.resource.natural_key()

    @property
    def label(self) -> str:
        return self.resource.label()

    @property
    def payload_size(self) -> int:
        return 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.category.value}, {self.label!r})"


class ArchivedResource(ArchivedEntity):
    """A tool, prompt, file or flat resource. Files carry their content."""

    def __init__(self, category: Category, resource: ResourceBase, source: str = "",
                 content: Optional[ArchivedFile] = None):
        super().__init__(category, resource, source)
        self.content = content

    @property
    def payload_size(self) -> int:
        return self.content.size if self.content else 0


class ArchivedKnowledge(ArchivedEntity):
    """A knowledge collection with the documents found beside it."""

    def __init__(self, collection: KnowledgeCollection, documents: Dict[str, bytes], source: str = ""):
        super().__init__(Category.KNOWLEDGE, collection, source)
        self.collection = collection
        self.documents = documents
        self.children, self.missing = self._correlate()

    def _correlate(self) -> Tuple[List[ArchivedFile], List[str]]:
        """Pair referenced file ids with document payloads by display name.

        Returns the restorable children and the ids referenced without
        content. Documents no file id claims are still restored, just
        without an id to remap. Each of them may stand in for one id the
        collection lists without a name; the ids beyond that count are
        missing.
        """
        names = {fid: path_segment(name) for fid, name in self.collection.file_names().items()}
        children: List[ArchivedFile] = []
        claimed: Set[str] = set()
        unnamed: List[str] = []
        missing: List[str] = []

        for file_id in self.collection.file_ids:
            name = names.get(file_id)
            if name is None:
                unnamed.append(file_id)
            elif name in self.documents and name not in claimed:
                claimed.add(name)
                children.append(ArchivedFile(file_id, name, self.documents[name]))
            else:
                # No document, or another id already took the only one.
                missing.append(file_id)

        leftovers = [name for name in self.documents if name not in claimed]
        for name in leftovers:
            children.append(ArchivedFile(None, name, self.documents[name]))
        missing.extend(unnamed[len(leftovers):])
        return children, missing

    @property
    def payload_size(self) -> int:
        return sum(len(content) for content in self.documents.values())


class ArchivedModel(ArchivedEntity):
    """A model with the files and collections embedded for its knowledge list."""

    def __init__(self, model: ModelResource, files: Dict[str, ArchivedFile],
                 collections: Dict[str, ArchivedKnowledge], source: str = ""):
        super().__init__(Category.MODEL, model, source)
        self.model = model
        self.files = files
        self.collections = collections

    @property
    def payload_size(self) -> int:
        return (sum(f.size for f in self.files.values())
                + sum(kb.payload_size for kb in self.collections.values()))


class ArchiveBundle:
    """Every entity of a container, grouped by category."""

    def __init__(self, source: PathLike, container_format: ContainerFormat,
                 manifest: Optional[Manifest] = None):
        self.source = Path(source)
        self.container_format = container_format
        self.manifest = manifest
        self.entities: Dict[Category, List[ArchivedEntity]] = {}
        self.dropped: List[str] = []

    def add(self, entity: ArchivedEntity) -> None:
        self.entities.setdefault(entity.category, []).append(entity)

    def drop(self, description: str) -> None:
        logger.warning(f"Skipping {description}")
        self.dropped.append(description)

    def get(self, category: Category) -> List[ArchivedEntity]:
        return self.entities.get(category, [])

    @property
    def restore_order(self) -> List[Category]:
        if self.container_format == ContainerFormat.UNIFIED:
            return UNIFIED_RESTORE_ORDER
        return LEGACY_RESTORE_ORDER

    def categories(self) -> List[Category]:
        """Categories with at least one entity, in restore order."""
        return [c for c in self.restore_order if self.entities.get(c)]

    def find_knowledge(self, knowledge_id: str) -> Optional[ArchivedKnowledge]:
        for entity in self.get(Category.KNOWLEDGE):
            if entity.collection.id == knowledge_id:
                return entity
        return None

    def find_file(self, file_id: str) -> Optional[ArchivedFile]:
        for entity in self.get(Category.FILE):
            if entity.resource.id == file_id and entity.content is not None:
                return entity.content
        return None


# Member helpers

def _member_names(zipf: zipfile.ZipFile) -> List[str]:
    return [name for name in zipf.namelist() if not name.endswith("/")]


def _read_json(zipf: zipfile.ZipFile, name: str) -> Optional[dict]:
    """Decode a JSON object member, or None if it is missing, invalid or not an object."""
    try:
        data = json.loads(zipf.read(name))
    except (KeyError, ValueError, zipfile.BadZipFile) as e:
        logger.warning(f"Cannot decode {name}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {name}: expected a JSON object, got {type(data).__name__}")
        return None
    return data


def _children(names: Iterable[str], prefix: str) -> Dict[str, str]:
    """Members below prefix, keyed by their path relative to it."""
    return {name[len(prefix):]: name for name in names if name.startswith(prefix) and len(name) > len(prefix)}


def _read_documents(zipf: zipfile.ZipFile, names: List[str], prefix: str) -> Dict[str, bytes]:
    documents = {}
    for relative, name in sorted(_children(names, f"{prefix}{DOCUMENTS_DIR}/").items()):
        documents[relative] = zipf.read(name)
    return documents


def _read_knowledge(zipf: zipfile.ZipFile, names: List[str], prefix: str,
                    source: str) -> Optional[ArchivedKnowledge]:
    raw = _read_json(zipf, prefix + PRIMARY_FILES[Category.KNOWLEDGE])
    collection = parse_resource(Category.KNOWLEDGE, raw) if raw is not None else None
    if collection is None:
        return None
    knowledge = ArchivedKnowledge(collection, _read_documents(zipf, names, prefix), source)
    for file_id in knowledge.missing:
        logger.warning(f"Knowledge base '{collection.name}' references file {file_id} without content")
    return knowledge


def _read_model_files(zipf: zipfile.ZipFile, names: List[str], prefix: str) -> Dict[str, ArchivedFile]:
    """Read ``<prefix>model-files/<file-id>/`` directories."""
    grouped: Dict[str, Dict[str, str]] = {}
    for relative, name in _children(names, f"{prefix}{MODEL_FILES_DIR}/").items():
        file_id, _, member = relative.partition("/")
        if member:
            grouped.setdefault(file_id, {})[member] = name

    files: Dict[str, ArchivedFile] = {}
    for file_id, members in grouped.items():
        metadata = {}
        if MODEL_FILE_METADATA in members:
            metadata = _read_json(zipf, members.pop(MODEL_FILE_METADATA)) or {}
        if not members:
            logger.warning(f"Model file {file_id} has no content")
            continue
        filename = sorted(members)[0]
        files[file_id] = ArchivedFile(metadata.get("id") or file_id, filename, zipf.read(members[filename]), metadata)
    return files


def _read_model(zipf: zipfile.ZipFile, names: List[str], prefix: str, source: str,
                shared_files: Optional[Dict[str, ArchivedFile]] = None) -> Optional[ArchivedModel]:
    raw = _read_json(zipf, prefix + PRIMARY_FILES[Category.MODEL])
    model = parse_resource(Category.MODEL, raw) if raw is not None else None
    if model is None:
        return None

    files = _read_model_files(zipf, names, prefix)
    for file_id, archived in (shared_files or {}).items():
        files.setdefault(file_id, archived)

    collections: Dict[str, ArchivedKnowledge] = {}
    kb_root = f"{prefix}{KNOWLEDGE_DIR}/"
    kb_ids = {rel.split("/", 1)[0] for rel in _children(names, kb_root)}
    for kb_id in sorted(kb_ids):
        knowledge = _read_knowledge(zipf, names, f"{kb_root}{kb_id}/", source)
        if knowledge is None:
            logger.warning(f"Model '{model.name}': embedded collection {kb_id} has no usable {PRIMARY_FILES[Category.KNOWLEDGE]}")
            continue
        collections[knowledge.collection.id] = knowledge

    return ArchivedModel(model, files, collections, source)


def _read_resource(zipf: zipfile.ZipFile, names: List[str], prefix: str, category: Category,
                   source: str) -> Optional[ArchivedResource]:
    raw = _read_json(zipf, prefix + PRIMARY_FILES[category])
    resource = parse_resource(category, raw) if raw is not None else None
    if resource is None:
        return None

    content = None
    if category == Category.FILE:
        payloads = _children(names, f"{prefix}{FILE_CONTENT_DIR}/")
        if payloads:
            filename = sorted(payloads)[0]
            content = ArchivedFile(resource.id, filename, zipf.read(payloads[filename]), raw)
        else:
            logger.warning(f"File '{resource.label()}' has no content")
    return ArchivedResource(category, resource, source, content)


def read_entity(zipf: zipfile.ZipFile, names: List[str], prefix: str, category: Category,
                source: str = "", shared_files: Optional[Dict[str, ArchivedFile]] = None
                ) -> Optional[ArchivedEntity]:
    """Read the entity whose primary JSON sits directly below prefix.

    Returns None when the primary JSON is missing or does not validate.
    """
    if prefix + PRIMARY_FILES[category] not in names:
        return None
    if category == Category.KNOWLEDGE:
        return _read_knowledge(zipf, names, prefix, source)
    if category == Category.MODEL:
        return _read_model(zipf, names, prefix, source, shared_files)
    return _read_resource(zipf, names, prefix, category, source)


# Unified containers

def _unified_prefixes(names: List[str], category: Category) -> List[str]:
    root = f"{CATEGORY_DIRS[category]}/"
    return sorted({f"{root}{rel.split('/', 1)[0]}/" for rel in _children(names, root) if "/" in rel})


def _read_unified_category(zipf: zipfile.ZipFile, names: List[str], category: Category,
                           bundle: ArchiveBundle) -> List[ArchivedEntity]:
    source = bundle.source.name
    shared = _read_model_files(zipf, names, "") if category == Category.MODEL else None
    entities = []
    for prefix in _unified_prefixes(names, category):
        entity = read_entity(zipf, names, prefix, category, source, shared)
        if entity is None:
            bundle.drop(f"{prefix}: no usable {PRIMARY_FILES[category]}")
            continue
        entities.append(entity)
    return entities


def _load_unified(path: Path, manifest: Manifest, categories: List[Category]) -> ArchiveBundle:
    bundle = ArchiveBundle(path, ContainerFormat.UNIFIED, manifest)
    try:
        with zipfile.ZipFile(path, "r") as zipf:
            names = _member_names(zipf)
            for category in categories:
                for entity in _read_unified_category(zipf, names, category, bundle):
                    bundle.add(entity)
    except (OSError, zipfile.BadZipFile) as e:
        raise StructuralError(f"cannot read container {path}: {e}") from e
    return bundle


# Legacy containers

def _read_legacy_zip(path: Path, category: Category) -> Optional[ArchivedEntity]:
    with zipfile.ZipFile(path, "r") as zipf:
        names = _member_names(zipf)
        return read_entity(zipf, names, "", category, path.name)


def _load_legacy(path: Path, categories: List[Category]) -> ArchiveBundle:
    if not path.exists():
        raise StructuralError(f"container not found: {path}")
    single = path.is_file()
    manifest = read_manifest(path) if single else None
    bundle = ArchiveBundle(path, ContainerFormat.LEGACY, manifest)

    groups = split_legacy(path)
    if single and not groups:
        raise StructuralError(f"cannot determine the category of {path.name}")

    for category in LEGACY_RESTORE_ORDER:
        if category not in categories:
            continue
        for zip_path in groups.get(category, []):
            try:
                entity = _read_legacy_zip(zip_path, category)
            except (OSError, zipfile.BadZipFile) as e:
                if single:
                    raise StructuralError(f"cannot read container {zip_path}: {e}") from e
                bundle.drop(f"{zip_path.name}: {e}")
                continue
            if entity is None:
                bundle.drop(f"{zip_path.name}: no usable {PRIMARY_FILES[category]}")
                continue
            bundle.add(entity)
    return bundle


def _with_dependencies(categories: List[Category]) -> List[Category]:
    # Models may fall back to standalone collections and files by id.
    needed = list(categories)
    if Category.MODEL in needed:
        for dependency in (Category.KNOWLEDGE, Category.FILE):
            if dependency not in needed:
                needed.append(dependency)
    return needed


def load_bundle(path: PathLike, selection: Optional[Selection] = None,
                expect_unified: bool = False) -> ArchiveBundle:
    """Detect a container's format and read it into an ArchiveBundle.

    Args:
        path: Unified ZIP, legacy ZIP, or directory of legacy ZIPs
        selection: Categories to read; None reads everything
        expect_unified: Fail unless the container is a valid unified backup

    Returns:
        The normalized bundle

    Raises:
        StructuralError: If the container cannot be read at all, or if a
            unified container was expected and none was found
    """
    path = Path(path)
    categories = selection.enabled_categories() if selection else list(Category)
    categories = _with_dependencies(categories)

    container_format = classify(path)
    if container_format == ContainerFormat.UNIFIED:
        manifest = load_manifest(path)
        logger.info(f"Reading unified backup {path.name} ({manifest.item_count} items, "
                    f"types: {', '.join(manifest.contained_types) or 'none'})")
        return _load_unified(path, manifest, categories)

    if expect_unified:
        if path.is_dir():
            raise StructuralError(f"{path} is a directory, not a unified backup")
        # Surfaces the decode error when the manifest is missing or invalid.
        load_manifest(path)
        raise StructuralError(f"{path.name} is not a unified backup (unified_backup is false)")

    logger.info(f"Reading legacy backup {path}")
    return _load_legacy(path, categories)


def read(path: PathLike, category: Category) -> List[ArchivedEntity]:
    """Entities of one category in a container of either format."""
    return load_bundle(path, Selection.of(category)).get(category)


# Inspection

class ContainerSummary:
    """What a container holds, as reported by ``info`` and ``verify``."""

    def __init__(self, path: Path, container_format: ContainerFormat, manifest: Optional[Manifest]):
        self.path = path
        self.container_format = container_format
        self.manifest = manifest
        self.counts: Dict[Category, int] = {}
        self.payload_bytes: Dict[Category, int] = {}
        self.dropped: List[str] = []
        self.problems: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.problems and not self.dropped

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> Dict:
        return {
            "path": str(self.path),
            "format": self.container_format.value,
            "manifest": self.manifest.model_dump() if self.manifest else None,
            "counts": {c.value: n for c, n in self.counts.items()},
            "payload_bytes": {c.value: n for c, n in self.payload_bytes.items()},
            "dropped": self.dropped,
            "problems": self.problems,
            "ok": self.ok,
        }


def _corrupt_members(paths: Iterable[Path]) -> List[str]:
    problems = []
    for zip_path in paths:
        try:
            with zipfile.ZipFile(zip_path, "r") as zipf:
                bad = zipf.testzip()
        except (OSError, zipfile.BadZipFile) as e:
            problems.append(f"{zip_path.name}: {e}")
            continue
        if bad:
            problems.append(f"{zip_path.name}: corrupt member {bad}")
    return problems


def inspect_container(path: PathLike) -> ContainerSummary:
    """Read a whole container and summarize it.

    Raises:
        StructuralError: If the container cannot be read at all
    """
    path = Path(path)
    bundle = load_bundle(path)
    summary = ContainerSummary(path, bundle.container_format, bundle.manifest)

    for category in Category:
        entities = bundle.get(category)
        if entities:
            summary.counts[category] = len(entities)
            summary.payload_bytes[category] = sum(e.payload_size for e in entities)
    summary.dropped = list(bundle.dropped)

    if path.is_dir():
        summary.problems.extend(_corrupt_members(sorted(path.glob("*.zip"))))
    else:
        summary.problems.extend(_corrupt_members([path]))

    if bundle.container_format == ContainerFormat.UNIFIED:
        declared = set(bundle.manifest.categories)
        for category in summary.counts:
            if category not in declared:
                summary.problems.append(f"{category.value} entries present but not declared in contained_types")
        if bundle.manifest.item_count != summary.total:
            logger.info(f"Manifest declares {bundle.manifest.item_count} items, found {summary.total}")
    return summary
