"""End-to-end restore tests against the in-memory instance."""

import json

import pytest

from conftest import write_zip
from owuiarchive.archive.writer import ArchiveWriter
from owuiarchive.core.errors import SelectionError, StructuralError
from owuiarchive.migration.engine import MigrationEngine
from owuiarchive.schemas.results import Outcome
from owuiarchive.schemas.selection import Category, Selection

MANIFEST = json.dumps({"unified_backup": True, "contained_types": ["knowledge", "model"], "item_count": 1})


def outcomes(report, category):
    return [item.outcome for item in report.category(category).items]


def test_full_restore_into_empty_instance(unified_backup, target):
    report = MigrationEngine(target).restore(unified_backup, Selection.all())

    assert report.succeeded
    assert report.container_format == "unified"
    for category_report in report.categories:
        assert {item.outcome for item in category_report.items} == {Outcome.CREATED}

    [user] = target.items(Category.USER)
    assert "password" not in user
    [group] = target.items(Category.GROUP)
    assert group["user_ids"] == [user["id"]]

    [kb] = target.items(Category.KNOWLEDGE)
    assert target.knowledge_file_names(kb["id"]) == ["alpha.txt", "beta.md"]

    [model] = target.items(Category.MODEL)
    collection, file_ref = model["meta"]["knowledge"]
    assert collection["id"] == kb["id"]
    assert collection["data"]["file_ids"] == kb["data"]["file_ids"]
    assert target.store[Category.FILE][file_ref["id"]]["filename"] == "gamma.pdf"
    assert target.contents[file_ref["id"]] == b"%PDF-1.4 gamma"

    assert target.find(Category.PROMPT, command="/summarize")
    assert target.find(Category.CHAT, id="c1")
    assert target.find(Category.FEEDBACK, id="fb1")


def test_second_restore_changes_nothing(unified_backup, target):
    MigrationEngine(target).restore(unified_backup, Selection.all())
    before = target.snapshot()
    mutations = len(target.mutations)

    report = MigrationEngine(target).restore(unified_backup, Selection.all())

    assert len(target.mutations) == mutations
    assert target.snapshot() == before
    for category_report in report.categories:
        assert {item.outcome for item in category_report.items} == {Outcome.SKIPPED}


def test_repeated_overwrite_does_not_duplicate(unified_backup, target):
    selection = Selection.of(Category.KNOWLEDGE, Category.MODEL, Category.TOOL, Category.PROMPT)
    engine = MigrationEngine(target)
    engine.restore(unified_backup, selection, overwrite=True)
    report = engine.restore(unified_backup, selection, overwrite=True)

    [kb] = target.items(Category.KNOWLEDGE)
    assert target.knowledge_file_names(kb["id"]) == ["alpha.txt", "beta.md"]
    assert len(target.items(Category.MODEL)) == 1
    assert len(target.items(Category.TOOL)) == 1
    assert len(target.items(Category.PROMPT)) == 1

    assert outcomes(report, Category.KNOWLEDGE) == [Outcome.OVERWRITTEN]
    assert report.category(Category.KNOWLEDGE).file_stats.overwritten == 2
    assert outcomes(report, Category.MODEL) == [Outcome.OVERWRITTEN]
    assert outcomes(report, Category.TOOL) == [Outcome.OVERWRITTEN]
    assert outcomes(report, Category.PROMPT) == [Outcome.OVERWRITTEN]


def test_selective_restore_touches_only_selected(unified_backup, target):
    report = MigrationEngine(target).restore(unified_backup, Selection.of(Category.KNOWLEDGE))

    assert [r.category for r in report.categories] == [Category.KNOWLEDGE]
    assert {(op, category) for op, category, _ in target.mutations} == {
        ("create", Category.KNOWLEDGE),
        ("upload", Category.FILE),
        ("link", Category.KNOWLEDGE),
    }
    assert target.items(Category.MODEL) == []


def test_referenced_file_without_content_is_dropped(tmp_path, target):
    path = write_zip(tmp_path / "backup.zip", {
        "owui.json": MANIFEST,
        "knowledge-bases/kb1/knowledge_base.json": json.dumps({
            "id": "kb1",
            "name": "Docs",
            "data": {"file_ids": ["a", "b"]},
            "files": [{"id": "a", "meta": {"name": "a.txt"}}, {"id": "b", "meta": {"name": "b.txt"}}],
        }),
        "knowledge-bases/kb1/documents/a.txt": "A",
    })

    report = MigrationEngine(target).restore(path, Selection.of(Category.KNOWLEDGE))

    [result] = report.category(Category.KNOWLEDGE).items
    assert result.outcome == Outcome.CREATED
    assert result.files.new == 1
    assert result.files.dropped == 1
    assert target.knowledge_file_names(result.target_id) == ["a.txt"]


def test_nameless_reference_without_content_is_dropped(tmp_path, target):
    path = write_zip(tmp_path / "backup.zip", {
        "owui.json": MANIFEST,
        "knowledge-bases/kb1/knowledge_base.json": json.dumps({
            "id": "kb1", "name": "Docs", "data": {"file_ids": ["a", "b"]}, "files": None,
        }),
        "knowledge-bases/kb1/documents/a.txt": "A",
    })

    report = MigrationEngine(target).restore(path, Selection.of(Category.KNOWLEDGE))

    [result] = report.category(Category.KNOWLEDGE).items
    assert (result.files.new, result.files.dropped) == (1, 1)
    assert target.knowledge_file_names(result.target_id) == ["a.txt"]


def test_differing_resources_are_kept_unless_overwriting(unified_backup, target):
    target.add(Category.TOOL, {"id": "weather", "name": "Weather", "content": "def old(): pass"})
    target.add(Category.PROMPT, {"command": "/summarize", "title": "Old", "content": "old text"})
    selection = Selection.of(Category.TOOL, Category.PROMPT)

    report = MigrationEngine(target).restore(unified_backup, selection)

    assert outcomes(report, Category.TOOL) == [Outcome.SKIPPED]
    assert outcomes(report, Category.PROMPT) == [Outcome.SKIPPED]
    assert target.mutations == []
    assert target.store[Category.TOOL]["weather"]["content"] == "def old(): pass"

    report = MigrationEngine(target).restore(unified_backup, selection, overwrite=True)

    assert outcomes(report, Category.TOOL) == [Outcome.OVERWRITTEN]
    assert outcomes(report, Category.PROMPT) == [Outcome.OVERWRITTEN]
    assert {op for op, _, _ in target.mutations} == {"update"}
    assert target.store[Category.TOOL]["weather"]["content"] == "def run(): pass"
    assert target.store[Category.PROMPT]["/summarize"]["content"] == "Summarize {{text}}"


def test_unresolved_model_reference_is_reported(tmp_path, target):
    path = write_zip(tmp_path / "backup.zip", {
        "owui.json": MANIFEST,
        "models/lonely/model.json": json.dumps({
            "id": "lonely", "name": "Lonely", "meta": {"knowledge": [{"type": "file", "id": "ghost"}]},
        }),
    })

    report = MigrationEngine(target).restore(path, Selection.of(Category.MODEL))

    model_report = report.category(Category.MODEL)
    assert outcomes(report, Category.MODEL) == [Outcome.CREATED]
    assert model_report.unresolved_references == ["Lonely: file ghost"]
    [model] = target.items(Category.MODEL)
    assert model["meta"]["knowledge"][0]["id"] == "ghost"


def test_model_collection_falls_back_to_target_by_name(tmp_path, target):
    target.add_knowledge("existing-kb", "Shared", [])
    path = write_zip(tmp_path / "backup.zip", {
        "owui.json": MANIFEST,
        "models/m/model.json": json.dumps({
            "id": "m", "name": "M",
            "meta": {"knowledge": [{"type": "collection", "id": "old-kb", "name": "shared"}]},
        }),
    })

    report = MigrationEngine(target).restore(path, Selection.of(Category.MODEL))

    assert report.category(Category.MODEL).unresolved_references == []
    [model] = target.items(Category.MODEL)
    assert model["meta"]["knowledge"][0]["id"] == "existing-kb"


def test_existing_collection_is_merged(unified_backup, target):
    target.add_file("t1", "alpha.txt", b"alpha")
    target.add_knowledge("tkb", "docs", ["t1"], description="old")

    report = MigrationEngine(target).restore(unified_backup, Selection.of(Category.KNOWLEDGE))

    [result] = report.category(Category.KNOWLEDGE).items
    assert result.outcome == Outcome.UPDATED
    assert result.target_id == "tkb"
    assert (result.files.new, result.files.skipped) == (1, 1)
    assert target.store[Category.KNOWLEDGE]["tkb"]["description"] == "Team docs"
    assert target.knowledge_file_names("tkb") == ["alpha.txt", "beta.md"]


def test_failed_call_only_fails_its_entity(unified_backup, target):
    target.fail.add(("create", Category.TOOL))

    report = MigrationEngine(target).restore(unified_backup, Selection.of(Category.TOOL, Category.PROMPT))

    assert outcomes(report, Category.TOOL) == [Outcome.FAILED]
    assert outcomes(report, Category.PROMPT) == [Outcome.CREATED]
    assert not report.succeeded
    assert [f.key for f in report.failures()] == ["weather"]


def test_failed_document_upload_is_counted(unified_backup, target):
    target.fail.add(("upload", Category.FILE, "beta.md"))

    report = MigrationEngine(target).restore(unified_backup, Selection.of(Category.KNOWLEDGE))

    [result] = report.category(Category.KNOWLEDGE).items
    assert result.outcome == Outcome.CREATED
    assert (result.files.new, result.files.failed) == (1, 1)
    assert report.succeeded


def test_legacy_directory_restore(source, target, tmp_path):
    out = tmp_path / "legacy"
    ArchiveWriter(source).write_legacy(Selection.all(), out)

    report = MigrationEngine(target).restore(out, Selection.all())

    assert report.container_format == "legacy"
    assert report.succeeded
    assert len(target.find(Category.KNOWLEDGE, name="Docs")) == 1
    assert outcomes(report, Category.MODEL) == [Outcome.CREATED]
    # Files were already uploaded for the model and its collection.
    assert set(outcomes(report, Category.FILE)) == {Outcome.SKIPPED}
    [user] = target.items(Category.USER)
    [group] = target.items(Category.GROUP)
    assert group["user_ids"] == [user["id"]]


def test_empty_selection_fails_before_reading(target, tmp_path):
    with pytest.raises(SelectionError):
        MigrationEngine(target).restore(tmp_path / "does-not-exist.zip", Selection())
    assert target.mutations == []


def test_expect_unified_rejects_legacy_directory(source, target, tmp_path):
    out = tmp_path / "legacy"
    ArchiveWriter(source).write_legacy(Selection.of(Category.TOOL), out)
    with pytest.raises(StructuralError):
        MigrationEngine(target).restore(out, Selection.all(), expect_unified=True)
    assert target.mutations == []
