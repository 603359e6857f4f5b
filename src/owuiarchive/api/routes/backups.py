"""
API endpoints for creating, listing and restoring backups.

Operations run synchronously; the response carries the manifest or the
restore report once the work is done.
"""

import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from flask import Blueprint, jsonify

from owuiarchive.api.routes.utils import (
    backup_path,
    build_client,
    error_response,
    get_app_settings,
    key_path,
    parse_selection,
    request_json,
)
from owuiarchive.archive.layout import unified_filename
from owuiarchive.archive.reader import inspect_container
from owuiarchive.archive.writer import ArchiveWriter
from owuiarchive.core.errors import APIError, ContainerExistsError, EncryptionError, StructuralError
from owuiarchive.encryption.fernet_service import ENCRYPTED_SUFFIX, FernetEncryptionService
from owuiarchive.migration.engine import MigrationEngine

logger = logging.getLogger(__name__)

bp = Blueprint('backups', __name__, url_prefix='/api')

BACKUP_SUFFIXES = ('.zip', ENCRYPTED_SUFFIX)


@bp.route('/config', methods=['GET'])
def get_config():
    """Current configuration, without secrets."""
    settings = get_app_settings()
    return jsonify({
        'openWebUIURL': settings.open_webui_url,
        'backupsDir': settings.backups_dir,
        'keysDir': settings.keys_dir,
        'serverPort': settings.server_port,
        'hasApiKey': bool(settings.api_key),
    })


@bp.route('/backups', methods=['GET'])
def list_backups():
    """List backup files in the backups directory, newest first."""
    backups_dir = Path(get_app_settings().backups_dir)
    if not backups_dir.is_dir():
        return jsonify({'backups': []})

    service = FernetEncryptionService()
    entries = []
    for path in backups_dir.iterdir():
        if not path.is_file() or not path.name.endswith(BACKUP_SUFFIXES):
            continue
        stat = path.stat()
        entries.append({
            'filename': path.name,
            'size': stat.st_size,
            'modified': datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
            'encrypted': service.is_encrypted(path),
        })
    entries.sort(key=lambda e: e['modified'], reverse=True)
    return jsonify({'backups': entries})


@bp.route('/backups/<filename>', methods=['GET'])
def get_backup(filename: str):
    """Summarize one backup file."""
    try:
        path = backup_path(filename)
    except ValueError as e:
        return error_response(400, str(e))
    if not path.is_file():
        return error_response(404, f"backup not found: {filename}")
    if FernetEncryptionService().is_encrypted(path):
        return error_response(400, "backup is encrypted")
    try:
        summary = inspect_container(path)
    except StructuralError as e:
        return error_response(400, str(e))
    return jsonify(summary.to_dict())


@bp.route('/backup', methods=['POST'])
def create_backup():
    """Create a unified backup.

    Body: ``{outputFilename, dataTypes, encryptRecipients}``; all optional.
    Recipients are key file names inside the keys directory.
    """
    data = request_json()
    filename = data.get('outputFilename') or unified_filename()
    if not filename.endswith('.zip'):
        filename += '.zip'
    try:
        output = backup_path(filename)
    except ValueError as e:
        return error_response(400, str(e))

    names = data.get('encryptRecipients') or []
    if isinstance(names, str):
        names = [names]
    try:
        recipients = [key_path(name) for name in names]
    except ValueError as e:
        return error_response(400, str(e))

    selection = parse_selection(data.get('dataTypes'))
    writer = ArchiveWriter(build_client())
    try:
        manifest = writer.write(selection, output)
    except ContainerExistsError as e:
        return error_response(409, str(e))
    except APIError as e:
        logger.error(f"Backup failed: {e}")
        return error_response(502, str(e))

    if recipients:
        try:
            output = FernetEncryptionService().encrypt(output, recipients, remove_plain=True)
        except EncryptionError as e:
            return error_response(400, str(e))

    return jsonify({
        'status': 'completed',
        'outputFile': output.name,
        'manifest': manifest.model_dump(),
    })


@bp.route('/restore', methods=['POST'])
def restore_backup():
    """Restore a backup from the backups directory.

    Body: ``{inputFilename, dataTypes, overwrite, decryptIdentity}``. The
    identity is a key file name inside the keys directory and defaults to
    the configured encryption key.
    """
    data = request_json()
    try:
        source = backup_path(data.get('inputFilename'))
    except ValueError as e:
        return error_response(400, str(e))
    if not source.exists():
        return error_response(404, f"backup not found: {source.name}")

    selection = parse_selection(data.get('dataTypes'))
    overwrite = bool(data.get('overwrite', False))
    engine = MigrationEngine(build_client())
    service = FernetEncryptionService()

    with tempfile.TemporaryDirectory() as tmpdir:
        container = source
        if source.is_file() and service.is_encrypted(source):
            name = data.get('decryptIdentity')
            try:
                identity = key_path(name) if name else get_app_settings().encryption_key_file
            except ValueError as e:
                return error_response(400, str(e))
            if not identity:
                return error_response(400, "backup is encrypted; decryptIdentity is required")
            plain_name = source.name[:-len(ENCRYPTED_SUFFIX)] if source.name.endswith(ENCRYPTED_SUFFIX) else source.name
            try:
                container = service.decrypt(source, [identity], output=Path(tmpdir) / plain_name)
            except EncryptionError as e:
                return error_response(400, str(e))
        try:
            report = engine.restore(container, selection, overwrite=overwrite)
        except StructuralError as e:
            return error_response(400, str(e))

    result = report.model_dump(mode='json')
    result['succeeded'] = report.succeeded
    return jsonify(result)
