"""Tests for the command line interface."""

import json
from unittest import mock

from typer.testing import CliRunner

from conftest import write_zip
from owuiarchive.cli.main_cli import main_app
from owuiarchive.schemas.selection import Category

runner = CliRunner()


def test_keygen(tmp_path):
    key = tmp_path / "owner.key"
    result = runner.invoke(main_app, ["keygen", str(key)])
    assert result.exit_code == 0
    assert key.exists()

    result = runner.invoke(main_app, ["keygen", str(key)])
    assert result.exit_code == 1


def test_backup_and_restore(source, target, tmp_path):
    output = tmp_path / "backup.zip"
    with mock.patch("owuiarchive.cli.backup_cli.build_client", return_value=source):
        result = runner.invoke(main_app, [
            "backup", "-o", str(output), "--prompts", "--tools", "--no-progress", "--log-level", "WARNING",
        ])
    assert result.exit_code == 0, result.output
    assert output.is_file()

    with mock.patch("owuiarchive.cli.restore_cli.build_client", return_value=target):
        result = runner.invoke(main_app, ["restore", str(output), "--no-progress", "--log-level", "WARNING"])
    assert result.exit_code == 0, result.output
    assert target.find(Category.TOOL, id="weather")
    assert target.find(Category.PROMPT, command="/summarize")


def test_backup_refuses_existing_output(source, unified_backup):
    with mock.patch("owuiarchive.cli.backup_cli.build_client", return_value=source):
        result = runner.invoke(main_app, ["backup", "-o", str(unified_backup), "--no-progress"])
    assert result.exit_code == 1


def test_restore_exit_code_reflects_failures(target, unified_backup):
    target.fail.add(("create", Category.TOOL))
    with mock.patch("owuiarchive.cli.restore_cli.build_client", return_value=target):
        result = runner.invoke(main_app, ["restore", str(unified_backup), "--tools", "--no-progress"])
    assert result.exit_code == 1


def test_restore_missing_path(target, tmp_path):
    with mock.patch("owuiarchive.cli.restore_cli.build_client", return_value=target):
        result = runner.invoke(main_app, ["restore", str(tmp_path / "nope.zip")])
    assert result.exit_code == 1
    assert target.mutations == []


def test_info_json(unified_backup):
    result = runner.invoke(main_app, ["info", str(unified_backup), "--json"])
    assert result.exit_code == 0
    summary = json.loads(result.stdout)
    assert summary["format"] == "unified"
    assert summary["counts"]["knowledge"] == 1
    assert summary["manifest"]["item_count"] == 11


def test_verify(unified_backup, tmp_path):
    assert runner.invoke(main_app, ["verify", str(unified_backup)]).exit_code == 0

    broken = write_zip(tmp_path / "broken.zip", {
        "owui.json": json.dumps({"unified_backup": True, "contained_types": ["tool"]}),
        "tools/t1/readme.txt": "no tool.json here",
    })
    assert runner.invoke(main_app, ["verify", str(broken)]).exit_code == 1


def test_encrypted_backup_can_be_inspected(source, tmp_path):
    key = tmp_path / "owner.key"
    runner.invoke(main_app, ["keygen", str(key)])
    output = tmp_path / "secret.zip"
    with mock.patch("owuiarchive.cli.backup_cli.build_client", return_value=source):
        result = runner.invoke(main_app, [
            "backup", "-o", str(output), "--tools", "--encrypt-key", str(key), "--no-progress",
        ])
    assert result.exit_code == 0, result.output
    encrypted = tmp_path / "secret.zip.enc"
    assert encrypted.is_file() and not output.exists()

    assert runner.invoke(main_app, ["info", str(encrypted)]).exit_code == 1
    result = runner.invoke(main_app, ["info", str(encrypted), "--decrypt-key", str(key), "--json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["counts"] == {"tool": 1}
