"""Classify containers as unified or legacy."""

import json
import logging
import os
import zipfile
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import ValidationError

from owuiarchive.archive.layout import MANIFEST_NAME, PRIMARY_FILES, category_from_filename
from owuiarchive.core.errors import StructuralError
from owuiarchive.schemas.resources import Manifest
from owuiarchive.schemas.selection import Category

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class ContainerFormat(str, Enum):
    UNIFIED = "unified"
    LEGACY = "legacy"


def load_manifest(path: PathLike) -> Manifest:
    """Read and validate a container's manifest.

    Raises:
        StructuralError: If the container or its manifest cannot be decoded
    """
    try:
        with zipfile.ZipFile(path, "r") as zipf:
            raw = zipf.read(MANIFEST_NAME)
    except KeyError:
        raise StructuralError(f"{MANIFEST_NAME} not found in {path}")
    except (OSError, zipfile.BadZipFile) as e:
        raise StructuralError(f"cannot read container {path}: {e}") from e

    try:
        return Manifest.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as e:
        raise StructuralError(f"invalid {MANIFEST_NAME} in {path}: {e}") from e


def read_manifest(path: PathLike) -> Optional[Manifest]:
    """Like load_manifest, but returns None instead of raising."""
    try:
        return load_manifest(path)
    except StructuralError as e:
        logger.debug(f"No usable manifest: {e}")
        return None


def classify(path: PathLike) -> ContainerFormat:
    """Classify a container.

    A container is unified only when it carries a decodable manifest with
    ``unified_backup`` set. Everything else, including unreadable files and
    directories, is treated as legacy.
    """
    if os.path.isdir(path):
        return ContainerFormat.LEGACY
    manifest = read_manifest(path)
    if manifest is not None and manifest.unified_backup:
        return ContainerFormat.UNIFIED
    return ContainerFormat.LEGACY


def sniff_category(path: PathLike) -> Optional[Category]:
    """Category of a single legacy ZIP, judged by the primary JSON at its root."""
    try:
        with zipfile.ZipFile(path, "r") as zipf:
            names = set(zipf.namelist())
    except (OSError, zipfile.BadZipFile):
        return None
    for category, primary in PRIMARY_FILES.items():
        if primary in names:
            return category
    return None


def legacy_category(path: PathLike, sniff: bool = False) -> Optional[Category]:
    category = category_from_filename(Path(path).name)
    if category is None and sniff:
        category = sniff_category(path)
    return category


def split_legacy(path: PathLike) -> Dict[Category, List[Path]]:
    """Group the per-entity ZIPs of a legacy container by category.

    ``path`` may be a directory of ZIPs or a single ZIP. Files whose names
    carry no known marker are skipped.
    """
    groups: Dict[Category, List[Path]] = {}
    root = Path(path)
    if root.is_dir():
        candidates = sorted(p for p in root.iterdir() if p.is_file() and p.suffix.lower() == ".zip")
        single = False
    else:
        candidates = [root]
        single = True

    for candidate in candidates:
        category = legacy_category(candidate, sniff=single)
        if category is None:
            logger.info(f"Skipping {candidate.name}: no category marker in file name")
            continue
        groups.setdefault(category, []).append(candidate)
    return groups
