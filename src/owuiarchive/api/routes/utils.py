"""
Utility functions for API routes.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from flask import Response, current_app, jsonify, request

from owuiarchive.client.openwebui import OpenWebUIClient
from owuiarchive.core.config import Settings
from owuiarchive.schemas.selection import SELECTION_FIELDS, Selection


def error_response(status_code: int, message: str, details: Optional[Dict[str, Any]] = None) -> Response:
    """Create a standardized error response."""
    response = {
        'error': message,
        'code': status_code
    }
    if details:
        response['details'] = details

    return jsonify(response), status_code


def get_app_settings() -> Settings:
    return current_app.config['OWUI_SETTINGS']


def build_client() -> OpenWebUIClient:
    return current_app.config['OWUI_CLIENT_FACTORY'](get_app_settings())


def request_json() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def parse_selection(data_types: Optional[Dict[str, Any]]) -> Selection:
    """Selection from a ``dataTypes`` object; nothing selected means everything."""
    flags = {field: bool(value) for field, value in (data_types or {}).items()
             if field in SELECTION_FIELDS.values()}
    return Selection.from_flags(**flags)


def backup_path(filename: str) -> Path:
    """Resolve a client supplied file name inside the backups directory.

    Raises:
        ValueError: If the name is empty or points outside the directory
    """
    return Path(get_app_settings().backups_dir) / _bare_name(filename, 'backup')


def key_path(filename: str) -> Path:
    """Resolve a client supplied key file name inside the keys directory.

    Raises:
        ValueError: If the name is empty or points outside the directory
    """
    return Path(get_app_settings().keys_dir) / _bare_name(filename, 'key')


def _bare_name(filename: Any, kind: str) -> str:
    name = (filename or '').strip() if isinstance(filename, str) else ''
    if not name or name != Path(name).name or name in ('.', '..'):
        raise ValueError(f"invalid {kind} file name: {filename!r}")
    return name
