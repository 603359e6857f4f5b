"""
Migration engine: reconcile archived entities against a live Open WebUI
instance.

Every entity is matched against the target by its natural key and then
created, skipped, updated or overwritten. Dependencies (users, files and
knowledge collections) are restored ahead of the entities that reference
them, and the ids the target assigns are recorded in an ``IdRemapper`` so
references can be rewritten before the referencing entity is persisted.

A failing remote call only fails the entity it belongs to; it is recorded in
the report and the run continues.
"""

import logging
import secrets
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from owuiarchive.archive.layout import path_segment
from owuiarchive.archive.reader import (
    ArchiveBundle,
    ArchivedEntity,
    ArchivedFile,
    ArchivedKnowledge,
    ArchivedModel,
    load_bundle,
)
from owuiarchive.client.openwebui import OpenWebUIClient
from owuiarchive.core.errors import APIError
from owuiarchive.migration.remapper import IdRemapper
from owuiarchive.schemas.resources import (
    CollectionReference,
    FileReference,
    KnowledgeCollection,
    parse_resource,
)
from owuiarchive.schemas.results import (
    CategoryReport,
    ItemResult,
    Outcome,
    RestoreReport,
    SyncStats,
)
from owuiarchive.schemas.selection import Category, Selection

logger = logging.getLogger(__name__)


class RestoreContext:
    """State owned by a single restore invocation."""

    def __init__(self, bundle: ArchiveBundle, overwrite: bool):
        self.bundle = bundle
        self.overwrite = overwrite
        self.remapper = IdRemapper()
        # Archived collection id -> result, so a collection embedded in a
        # model and also stored standalone is only synced once.
        self.knowledge_results: Dict[str, ItemResult] = {}


class MigrationEngine:
    """Restores containers into an Open WebUI instance."""

    def __init__(self, client: OpenWebUIClient, show_progress: bool = False):
        self.client = client
        self.show_progress = show_progress
        self._handlers: Dict[Category, Callable[[RestoreContext, Any, CategoryReport], ItemResult]] = {
            Category.USER: self._restore_user,
            Category.GROUP: self._restore_group,
            Category.FILE: self._restore_file,
            Category.KNOWLEDGE: self._restore_knowledge,
            Category.MODEL: self._restore_model,
            Category.TOOL: self._restore_tool,
            Category.PROMPT: self._restore_prompt,
            Category.CHAT: self._restore_chat,
            Category.FEEDBACK: self._restore_feedback,
        }

    def restore(self, container, selection: Selection, overwrite: bool = False,
                expect_unified: bool = False) -> RestoreReport:
        """Restore a container.

        Args:
            container: Unified ZIP, legacy ZIP, or directory of legacy ZIPs
            selection: Categories to restore; must not be empty
            overwrite: Replace entities that already exist on the target
            expect_unified: Fail unless the container is a unified backup

        Returns:
            Per-category outcome report

        Raises:
            SelectionError: If no category is enabled (before any I/O)
            StructuralError: If the container cannot be read
        """
        selection.require_any()
        bundle = load_bundle(Path(container), selection, expect_unified=expect_unified)
        return self.restore_bundle(bundle, selection, overwrite)

    def restore_bundle(self, bundle: ArchiveBundle, selection: Selection,
                       overwrite: bool = False) -> RestoreReport:
        selection.require_any()
        ctx = RestoreContext(bundle, overwrite)
        report = RestoreReport(
            container=str(bundle.source),
            container_format=bundle.container_format.value,
            overwrite=overwrite,
        )

        for category in bundle.restore_order:
            if not selection.is_enabled(category):
                continue
            entities = bundle.get(category)
            if not entities:
                continue
            logger.info(f"Restoring {len(entities)} {category.value} resource(s)...")
            category_report = CategoryReport(category=category)
            report.categories.append(category_report)

            handler = self._handlers[category]
            for entity in tqdm(entities, desc=f"Restoring {category.value}", disable=not self.show_progress):
                try:
                    result = handler(ctx, entity, category_report)
                except APIError as e:
                    logger.warning(f"Failed to restore {category.value} '{entity.label}': {e}")
                    result = ItemResult.failed(category, entity.key, str(e))
                category_report.add(result)

            counts = category_report.counts()
            logger.info(
                f"{category.value}: {counts['created']} created, {counts['updated']} updated, "
                f"{counts['overwritten']} overwritten, {counts['skipped']} skipped, {counts['failed']} failed"
            )
        return report

    # Lookups

    def _find_by_key(self, category: Category, key: str) -> Optional[Dict[str, Any]]:
        """Find a live resource by natural key by scanning the category listing."""
        for raw in self.client.list_resources(category):
            resource = parse_resource(category, raw)
            if resource is not None and resource.natural_key() == key:
                return raw
        return None

    def _upsert(self, ctx: RestoreContext, category: Category, entity: ArchivedEntity,
                existing: Optional[Dict[str, Any]], form: Dict[str, Any],
                target_field: str = "id", update_form: Optional[Dict[str, Any]] = None) -> ItemResult:
        """Create, skip or overwrite one entity that has no children."""
        old_id = getattr(entity.resource, target_field, None)
        if existing is not None:
            target_id = existing.get(target_field)
            ctx.remapper.record(old_id, target_id)
            if not ctx.overwrite:
                logger.info(f"  {category.value} '{entity.label}' already exists, skipping")
                return ItemResult(category=category, key=entity.key, outcome=Outcome.SKIPPED, target_id=target_id)
            self.client.update_resource(category, target_id, update_form or form)
            logger.info(f"  Overwrote {category.value} '{entity.label}'")
            return ItemResult(category=category, key=entity.key, outcome=Outcome.OVERWRITTEN, target_id=target_id)

        new_id = self.client.create_resource(category, form)
        ctx.remapper.record(old_id, new_id)
        logger.info(f"  Created {category.value} '{entity.label}'")
        return ItemResult(category=category, key=entity.key, outcome=Outcome.CREATED, target_id=new_id)

    # Files

    def _upload(self, ctx: RestoreContext, archived: ArchivedFile) -> str:
        new_id = self.client.upload_file(archived.filename, archived.content)
        if archived.file_id:
            ctx.remapper.record(archived.file_id, new_id)
        return new_id

    def _find_file(self, file_id: str, archived: Optional[ArchivedFile]) -> Optional[Dict[str, Any]]:
        """Match a file by archived id, then by display name and size.

        Uploads get fresh ids on the target, so a file restored by an
        earlier run is only recognizable by name and size.
        """
        existing = self.client.get_resource(Category.FILE, file_id)
        if existing is not None or archived is None:
            return existing
        for raw in self.client.list_resources(Category.FILE):
            candidate = parse_resource(Category.FILE, raw)
            if (candidate is not None and path_segment(candidate.display_name) == archived.filename
                    and candidate.size == archived.size):
                return raw
        return None

    def _restore_file(self, ctx: RestoreContext, entity: ArchivedEntity,
                      category_report: CategoryReport) -> ItemResult:
        resource = entity.resource
        existing = self._find_file(resource.id, entity.content)
        if existing is not None:
            ctx.remapper.record(resource.id, existing["id"])
            if not ctx.overwrite:
                logger.info(f"  File '{entity.label}' already exists, skipping")
                return ItemResult(category=Category.FILE, key=entity.key, outcome=Outcome.SKIPPED,
                                  target_id=existing["id"])
        if entity.content is None:
            logger.warning(f"  File '{entity.label}' has no content in the container")
            return ItemResult.failed(Category.FILE, entity.key, "no content in container")

        # Files cannot be replaced in place; overwriting uploads a new copy.
        new_id = self._upload(ctx, entity.content)
        outcome = Outcome.OVERWRITTEN if existing is not None else Outcome.CREATED
        logger.info(f"  Uploaded file '{entity.label}' as {new_id}")
        return ItemResult(category=Category.FILE, key=entity.key, outcome=outcome, target_id=new_id)

    # Knowledge collections

    def _upload_and_link(self, ctx: RestoreContext, knowledge_id: str, child: ArchivedFile) -> str:
        new_id = self._upload(ctx, child)
        self.client.link_file(knowledge_id, new_id)
        logger.debug(f"    Linked {child.filename} ({child.size} bytes) as {new_id}")
        return new_id

    def _sync_children(self, ctx: RestoreContext, knowledge: ArchivedKnowledge, target_id: str,
                       existing_files: Dict[str, str], stats: SyncStats) -> None:
        for child in knowledge.children:
            current = existing_files.get(child.filename)
            try:
                if current is None:
                    self._upload_and_link(ctx, target_id, child)
                    stats.new += 1
                elif ctx.overwrite:
                    try:
                        self.client.unlink_file(target_id, current)
                    except APIError as e:
                        logger.warning(f"    Failed to unlink old {child.filename}: {e}")
                    self._upload_and_link(ctx, target_id, child)
                    stats.overwritten += 1
                else:
                    if child.file_id:
                        ctx.remapper.record(child.file_id, current)
                    stats.skipped += 1
            except APIError as e:
                logger.warning(f"    Failed to restore document '{child.filename}' "
                               f"of '{knowledge.collection.name}': {e}")
                stats.failed += 1

    def sync_knowledge(self, ctx: RestoreContext, knowledge: ArchivedKnowledge) -> ItemResult:
        """Restore one collection and its documents.

        Metadata (description and access control) is always brought in line
        with the archive; documents already on the target are only replaced
        when overwriting.
        """
        kb = knowledge.collection
        if kb.id in ctx.knowledge_results:
            return ctx.knowledge_results[kb.id]

        stats = SyncStats(dropped=len(knowledge.missing))
        for file_id in knowledge.missing:
            logger.warning(f"  Dropping file {file_id} of '{kb.name}': no content in container")

        existing = self._find_by_key(Category.KNOWLEDGE, kb.natural_key())
        if existing is None:
            form = {
                "name": kb.name,
                "description": kb.description,
                "data": {},
                "access_control": kb.access_control,
            }
            target_id = self.client.create_resource(Category.KNOWLEDGE, form)
            ctx.remapper.record(kb.id, target_id)
            logger.info(f"  Created knowledge base '{kb.name}' ({len(knowledge.children)} file(s))")
            self._sync_children(ctx, knowledge, target_id, {}, stats)
            outcome = Outcome.CREATED
        else:
            target_id = existing["id"]
            ctx.remapper.record(kb.id, target_id)
            current = self.client.get_resource(Category.KNOWLEDGE, target_id) or existing
            target = parse_resource(Category.KNOWLEDGE, current) or KnowledgeCollection.model_validate(existing)

            metadata_changed = (target.description != kb.description
                                or target.access_control != kb.access_control)
            if metadata_changed:
                self.client.update_resource(Category.KNOWLEDGE, target_id, {
                    "name": target.name,
                    "description": kb.description,
                    "access_control": kb.access_control,
                })
                logger.info(f"  Updated metadata of knowledge base '{kb.name}'")

            existing_files = {path_segment(name): fid for fid, name in target.file_names().items()}
            self._sync_children(ctx, knowledge, target_id, existing_files, stats)
            if stats.overwritten:
                outcome = Outcome.OVERWRITTEN
            elif metadata_changed or stats.new:
                outcome = Outcome.UPDATED
            else:
                outcome = Outcome.SKIPPED
            logger.info(f"  Knowledge base '{kb.name}': {stats.new} new, "
                        f"{stats.overwritten} overwritten, {stats.skipped} skipped")

        result = ItemResult(category=Category.KNOWLEDGE, key=knowledge.key, outcome=outcome,
                            target_id=target_id, files=stats)
        ctx.knowledge_results[kb.id] = result
        return result

    def _restore_knowledge(self, ctx: RestoreContext, entity: ArchivedKnowledge,
                           category_report: CategoryReport) -> ItemResult:
        return self.sync_knowledge(ctx, entity)

    # Models

    def _restore_model_file(self, ctx: RestoreContext, model: ArchivedModel, ref: FileReference) -> None:
        archived = model.files.get(ref.id) or ctx.bundle.find_file(ref.id)
        existing = self._find_file(ref.id, archived)
        if existing is not None and (not ctx.overwrite or archived is None):
            ctx.remapper.record(ref.id, existing["id"])
            return
        if archived is None:
            logger.warning(f"  Model '{model.label}': file {ref.id} has no content in container")
            return
        new_id = self._upload(ctx, archived)
        ctx.remapper.record(ref.id, new_id)
        logger.info(f"  Uploaded file {archived.filename} for model '{model.label}'")

    def _restore_model_collection(self, ctx: RestoreContext, model: ArchivedModel,
                                  ref: CollectionReference) -> None:
        knowledge = model.collections.get(ref.id) or ctx.bundle.find_knowledge(ref.id)
        if knowledge is not None:
            self.sync_knowledge(ctx, knowledge)
            return
        if ref.name:
            existing = self._find_by_key(Category.KNOWLEDGE, ref.name.lower())
            if existing is not None:
                ctx.remapper.record(ref.id, existing["id"])

    def _rewrite_references(self, ctx: RestoreContext, model: ArchivedModel,
                            category_report: CategoryReport) -> List[Dict[str, Any]]:
        rewritten = []
        for ref in model.model.knowledge:
            item = ref.model_dump(mode="json")
            new_id = ctx.remapper.resolve(ref.id)
            if new_id is None:
                logger.warning(f"  Model '{model.label}': unresolved {ref.type} reference {ref.id}, keeping it as is")
                category_report.unresolved_references.append(f"{model.label}: {ref.type} {ref.id}")
            else:
                item["id"] = new_id
            if isinstance(ref, CollectionReference) and ref.data is not None:
                item["data"]["file_ids"] = [ctx.remapper.resolve(fid) or fid for fid in ref.data.file_ids]
            rewritten.append(item)
        return rewritten

    def _restore_model(self, ctx: RestoreContext, entity: ArchivedModel,
                       category_report: CategoryReport) -> ItemResult:
        model = entity.model
        existing = self._find_by_key(Category.MODEL, model.natural_key())
        if existing is not None and not ctx.overwrite:
            ctx.remapper.record(model.id, existing.get("id"))
            logger.info(f"  Model '{model.name}' already exists, skipping")
            return ItemResult(category=Category.MODEL, key=entity.key, outcome=Outcome.SKIPPED,
                              target_id=existing.get("id"))

        for ref in model.knowledge:
            if ref.id in ctx.remapper:
                continue
            try:
                if isinstance(ref, FileReference):
                    self._restore_model_file(ctx, entity, ref)
                else:
                    self._restore_model_collection(ctx, entity, ref)
            except APIError as e:
                logger.warning(f"  Model '{model.name}': failed to restore {ref.type} {ref.id}: {e}")

        form = model.to_json()
        form["meta"]["knowledge"] = self._rewrite_references(ctx, entity, category_report)

        if existing is None:
            new_id = self.client.create_resource(Category.MODEL, form)
            ctx.remapper.record(model.id, new_id)
            logger.info(f"  Created model '{model.name}'")
            return ItemResult(category=Category.MODEL, key=entity.key, outcome=Outcome.CREATED, target_id=new_id)

        target_id = existing["id"]
        form["id"] = target_id
        self.client.update_resource(Category.MODEL, target_id, form)
        ctx.remapper.record(model.id, target_id)
        logger.info(f"  Overwrote model '{model.name}'")
        return ItemResult(category=Category.MODEL, key=entity.key, outcome=Outcome.OVERWRITTEN, target_id=target_id)

    # Tools and prompts

    def _restore_tool(self, ctx: RestoreContext, entity: ArchivedEntity,
                      category_report: CategoryReport) -> ItemResult:
        existing = self.client.get_resource(Category.TOOL, entity.resource.id)
        return self._upsert(ctx, Category.TOOL, entity, existing, entity.resource.to_json())

    def _restore_prompt(self, ctx: RestoreContext, entity: ArchivedEntity,
                        category_report: CategoryReport) -> ItemResult:
        prompt = entity.resource
        existing = self.client.get_resource(Category.PROMPT, prompt.command)
        return self._upsert(ctx, Category.PROMPT, entity, existing, prompt.to_json(), target_field="command")

    # Flat categories

    def _restore_user(self, ctx: RestoreContext, entity: ArchivedEntity,
                      category_report: CategoryReport) -> ItemResult:
        user = entity.resource
        existing = self._find_by_key(Category.USER, user.natural_key())
        profile = {
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "profile_image_url": user.profile_image_url,
        }
        # Password hashes cannot be migrated; new accounts get a random one.
        form = dict(profile, password=secrets.token_urlsafe(16))
        return self._upsert(ctx, Category.USER, entity, existing, form, update_form=profile)

    def _restore_group(self, ctx: RestoreContext, entity: ArchivedEntity,
                       category_report: CategoryReport) -> ItemResult:
        group = entity.resource
        existing = self._find_by_key(Category.GROUP, group.natural_key())
        form = {
            "name": group.name,
            "description": group.description,
            "permissions": group.permissions,
            "user_ids": [ctx.remapper.resolve(uid) or uid for uid in group.user_ids],
        }
        return self._upsert(ctx, Category.GROUP, entity, existing, form)

    def _restore_chat(self, ctx: RestoreContext, entity: ArchivedEntity,
                      category_report: CategoryReport) -> ItemResult:
        chat = entity.resource
        existing = self.client.get_resource(Category.CHAT, chat.id)
        form = {
            "id": chat.id,
            "chat": chat.chat,
            "meta": chat.meta or {},
            "pinned": bool(chat.pinned),
            "folder_id": chat.folder_id,
        }
        return self._upsert(ctx, Category.CHAT, entity, existing, form, update_form={"chat": chat.chat})

    def _restore_feedback(self, ctx: RestoreContext, entity: ArchivedEntity,
                          category_report: CategoryReport) -> ItemResult:
        feedback = entity.resource
        existing = self.client.get_resource(Category.FEEDBACK, feedback.id)
        form = {
            "id": feedback.id,
            "type": feedback.type,
            "data": feedback.data,
            "meta": feedback.meta,
            "snapshot": feedback.snapshot,
        }
        return self._upsert(ctx, Category.FEEDBACK, entity, existing, form)
