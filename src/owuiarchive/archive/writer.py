"""
Archive writer: fetch resources from an Open WebUI instance and lay them out
in a container.
"""

import json
import logging
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from tqdm import tqdm

from owuiarchive.archive.layout import (
    DOCUMENTS_DIR,
    FILE_CONTENT_DIR,
    KNOWLEDGE_DIR,
    MANIFEST_NAME,
    MODEL_FILE_METADATA,
    MODEL_FILES_DIR,
    PRIMARY_FILES,
    entity_dir,
    legacy_filename,
    path_segment,
    sanitize_filename,
    utc_timestamp,
)
from owuiarchive.client.openwebui import OpenWebUIClient
from owuiarchive.core.config import BACKUP_TOOL_VERSION
from owuiarchive.core.errors import APIError, ContainerExistsError
from owuiarchive.schemas.resources import (
    CollectionReference,
    FileReference,
    KnowledgeCollection,
    Manifest,
    ModelResource,
    ResourceBase,
    parse_resource,
)
from owuiarchive.schemas.selection import WRITE_ORDER, Category, Selection

logger = logging.getLogger(__name__)


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def rfc3339_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ArchiveWriter:
    """Writes the resources of a live instance into a container.

    Nothing on the source instance is modified. A referenced file that cannot
    be downloaded is logged and left out; the resource referencing it is
    still written.
    """

    def __init__(self, client: OpenWebUIClient, show_progress: bool = False):
        self.client = client
        self.show_progress = show_progress
        self._used_dirs: Set[str] = set()

    def write(self, selection: Selection, output_path) -> Manifest:
        """Write a unified container.

        Args:
            selection: Categories to include; must not be empty
            output_path: Path of the ZIP to create

        Returns:
            The manifest written at the container root

        Raises:
            SelectionError: If no category is enabled
            ContainerExistsError: If output_path already exists
        """
        categories = selection.require_any()
        output_path = Path(output_path)
        if output_path.exists():
            raise ContainerExistsError(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self._used_dirs = set()

        contained: List[str] = []
        total = 0
        try:
            with zipfile.ZipFile(output_path, "w", zipfile.ZIP_DEFLATED) as zipf:
                for index, category in enumerate(c for c in WRITE_ORDER if c in categories):
                    logger.info(f"Step {index + 1}/{len(categories)}: backing up {category.value} resources...")
                    resources = self._fetch(category)
                    if resources is None:
                        continue
                    count = 0
                    for raw in tqdm(resources, desc=f"Backing up {category.value}", disable=not self.show_progress):
                        resource = parse_resource(category, raw)
                        if resource is None:
                            continue
                        prefix = self._unified_prefix(category, resource)
                        if self._emit(zipf, prefix, category, raw, resource):
                            count += 1
                    contained.append(category.value)
                    total += count
                    logger.info(f"  Backed up {count} {category.value} resource(s)")

                backup_type = "all" if len(categories) == len(Category) else "selective"
                manifest = self._manifest(backup_type, total, True, contained)
                zipf.writestr(MANIFEST_NAME, manifest.model_dump_json(indent=2))
        except BaseException:
            output_path.unlink(missing_ok=True)
            raise

        logger.info(f"Created unified backup: {output_path.name} ({total} total items)")
        return manifest

    def write_legacy(self, selection: Selection, output_dir) -> List[Path]:
        """Write one legacy container per entity into output_dir."""
        categories = selection.require_any()
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = utc_timestamp()
        written: List[Path] = []

        for category in WRITE_ORDER:
            if category not in categories:
                continue
            resources = self._fetch(category) or []
            for raw in tqdm(resources, desc=f"Backing up {category.value}", disable=not self.show_progress):
                resource = parse_resource(category, raw)
                if resource is None:
                    continue
                path = self._unique_path(output_dir / legacy_filename(category, resource.label(), timestamp))
                with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zipf:
                    ok = self._emit(zipf, "", category, raw, resource)
                    if ok:
                        manifest = self._manifest(category.value, 1, False, [category.value])
                        zipf.writestr(MANIFEST_NAME, manifest.model_dump_json(indent=2))
                if ok:
                    logger.info(f"  Created: {path.name}")
                    written.append(path)
                else:
                    path.unlink(missing_ok=True)
        return written

    @staticmethod
    def _unique_path(path: Path) -> Path:
        candidate = path
        counter = 2
        while candidate.exists():
            candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
            counter += 1
        return candidate

    def _fetch(self, category: Category) -> Optional[List[Dict[str, Any]]]:
        try:
            resources = self.client.list_resources(category)
        except APIError as e:
            logger.warning(f"Failed to list {category.value} resources: {e}")
            return None
        logger.info(f"Found {len(resources)} {category.value} resource(s)")
        return resources

    def _unified_prefix(self, category: Category, resource: ResourceBase) -> str:
        if category != Category.PROMPT:
            return entity_dir(category, resource.id)
        # Prompt commands are chosen by people; keep directory names distinct.
        base = sanitize_filename(resource.natural_key())
        name = base
        counter = 2
        while f"prompts/{name}" in self._used_dirs:
            name = f"{base}-{counter}"
            counter += 1
        self._used_dirs.add(f"prompts/{name}")
        return f"prompts/{name}/"

    def _manifest(self, backup_type: str, item_count: int, unified: bool, contained: List[str]) -> Manifest:
        return Manifest(
            open_webui_url=self.client.base_url,
            open_webui_version=self.client.get_version(),
            backup_tool_version=BACKUP_TOOL_VERSION,
            backup_timestamp=rfc3339_now(),
            backup_type=backup_type,
            item_count=item_count,
            unified_backup=unified,
            contained_types=contained,
        )

    def _emit(self, zipf: zipfile.ZipFile, prefix: str, category: Category,
              raw: Dict[str, Any], resource: ResourceBase) -> bool:
        """Write one entity below prefix. Returns False if it was left out."""
        if category == Category.KNOWLEDGE:
            self._emit_knowledge(zipf, prefix, raw, resource)
        elif category == Category.MODEL:
            self._emit_model(zipf, prefix, raw, resource)
        elif category == Category.FILE:
            return self._emit_file(zipf, prefix, raw, resource)
        else:
            zipf.writestr(prefix + PRIMARY_FILES[category], _dump(raw))
        return True

    def _download_documents(self, zipf: zipfile.ZipFile, docs_prefix: str,
                            file_ids: List[str]) -> List[Dict[str, Any]]:
        """Download referenced files into docs_prefix; return their metadata."""
        written: List[Dict[str, Any]] = []
        names: Set[str] = set()
        for file_id in file_ids:
            try:
                metadata, content = self.client.download_file(file_id)
            except APIError as e:
                logger.warning(f"    Failed to download file {file_id}: {e}")
                continue
            file_resource = parse_resource(Category.FILE, metadata)
            filename = path_segment(file_resource.display_name if file_resource else f"file_{file_id}")
            if filename in names:
                logger.warning(f"    Duplicate document name {filename}, keeping the first copy")
                continue
            names.add(filename)
            zipf.writestr(docs_prefix + filename, content)
            written.append(metadata)
            logger.debug(f"    Downloaded: {filename} ({len(content)} bytes)")
        return written

    def _emit_knowledge(self, zipf: zipfile.ZipFile, prefix: str,
                        raw: Dict[str, Any], kb: KnowledgeCollection) -> None:
        file_ids = kb.file_ids
        logger.info(f"  Downloading {len(file_ids)} file(s) for {kb.name}...")
        downloaded = self._download_documents(zipf, f"{prefix}{DOCUMENTS_DIR}/", file_ids)
        payload = dict(raw)
        if not payload.get("files"):
            # Lets a restore map archived file ids to document names.
            payload["files"] = downloaded
        zipf.writestr(prefix + PRIMARY_FILES[Category.KNOWLEDGE], _dump(payload))

    def _emit_model(self, zipf: zipfile.ZipFile, prefix: str,
                    raw: Dict[str, Any], model: ModelResource) -> None:
        zipf.writestr(prefix + PRIMARY_FILES[Category.MODEL], _dump(raw))
        if model.knowledge:
            logger.info(f"  Backing up {len(model.knowledge)} knowledge item(s) for {model.name}...")
        for ref in model.knowledge:
            if isinstance(ref, FileReference):
                self._emit_model_file(zipf, prefix, ref)
            elif isinstance(ref, CollectionReference):
                self._emit_model_collection(zipf, prefix, ref)

    def _emit_model_file(self, zipf: zipfile.ZipFile, prefix: str, ref: FileReference) -> None:
        file_dir = f"{prefix}{MODEL_FILES_DIR}/{path_segment(ref.id)}/"
        try:
            metadata, content = self.client.download_file(ref.id)
        except APIError as e:
            logger.warning(f"    Failed to backup file item {ref.id}: {e}")
            return
        file_resource = parse_resource(Category.FILE, metadata)
        filename = path_segment(file_resource.display_name if file_resource else ref.name or f"file_{ref.id}")
        if filename == MODEL_FILE_METADATA:
            filename = f"_{filename}"
        payload = ref.model_dump(mode="json")
        payload.setdefault("meta", (metadata or {}).get("meta"))
        zipf.writestr(file_dir + MODEL_FILE_METADATA, _dump(payload))
        zipf.writestr(file_dir + filename, content)
        logger.info(f"    Saved file: {filename} ({len(content)} bytes)")

    def _emit_model_collection(self, zipf: zipfile.ZipFile, prefix: str, ref: CollectionReference) -> None:
        kb_prefix = f"{prefix}{KNOWLEDGE_DIR}/{path_segment(ref.id)}/"
        payload = ref.model_dump(mode="json")
        file_ids = ref.data.file_ids if ref.data else []
        if not file_ids:
            try:
                current = self.client.get_resource(Category.KNOWLEDGE, ref.id)
            except APIError as e:
                logger.warning(f"    Failed to look up collection {ref.id}: {e}")
                current = None
            if current:
                kb = parse_resource(Category.KNOWLEDGE, current)
                file_ids = kb.file_ids if kb else []
        logger.info(f"    Backing up collection: {ref.name} (ID: {ref.id})")
        downloaded = self._download_documents(zipf, f"{kb_prefix}{DOCUMENTS_DIR}/", file_ids)
        if not payload.get("files"):
            payload["files"] = downloaded
        zipf.writestr(kb_prefix + PRIMARY_FILES[Category.KNOWLEDGE], _dump(payload))

    def _emit_file(self, zipf: zipfile.ZipFile, prefix: str,
                   raw: Dict[str, Any], resource: ResourceBase) -> bool:
        try:
            metadata, content = self.client.download_file(resource.natural_key())
        except APIError as e:
            logger.warning(f"  Failed to backup file '{resource.label()}': {e}")
            return False
        payload = dict(raw)
        payload.update(metadata or {})
        merged = parse_resource(Category.FILE, payload) or resource
        filename = path_segment(merged.display_name)
        zipf.writestr(prefix + PRIMARY_FILES[Category.FILE], _dump(payload))
        zipf.writestr(f"{prefix}{FILE_CONTENT_DIR}/{filename}", content)
        logger.debug(f"  Saved file: {filename} ({len(content)} bytes)")
        return True
