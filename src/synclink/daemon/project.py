"""Project directory discovery and creation.

A project directory holds a ``package.json`` carrying the project's short
hash, the persisted sync state, and the synced ``files/`` directory.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from synclink.core.config import FILES_DIR_NAME
from synclink.core.hashing import short_project_hash
from synclink.daemon.sync.types import WorkspaceError

logger = logging.getLogger(__name__)

PACKAGE_JSON = "package.json"


def to_package_name(name: str) -> str:
    """Lowercase npm-style package name, e.g. ``"My Project"`` -> ``"my-project"``."""
    result = re.sub(r"[^a-z0-9-]", "-", name.lower())
    result = result.strip("-")
    return re.sub(r"-+", "-", result)


def to_dir_name(name: str) -> str:
    """Directory name keeping case and spaces, e.g. ``"Hello World!"`` -> ``"Hello World"``."""
    result = re.sub(r"[^a-zA-Z0-9\- ]", "-", name)
    result = re.sub(r"^[-\s]+|[-\s]+$", "", result)
    return re.sub(r"-+", "-", result)


def _read_package_json(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def get_project_hash_from_dir(directory: Path) -> str | None:
    """Short project hash recorded in ``directory/package.json``, if any."""
    pkg = _read_package_json(Path(directory) / PACKAGE_JSON)
    if pkg is None:
        return None
    value = pkg.get("shortProjectHash")
    return str(value) if value else None


def get_project_hash_from_cwd() -> str | None:
    return get_project_hash_from_dir(Path.cwd())


def _matches_project(directory: Path, project_hash: str) -> bool:
    return get_project_hash_from_dir(directory) == short_project_hash(project_hash)


def _find_existing_project_dir(base_dir: Path, project_hash: str) -> Path | None:
    if _matches_project(base_dir, project_hash):
        return base_dir
    for entry in sorted(base_dir.iterdir()):
        if entry.is_dir() and _matches_project(entry, project_hash):
            return entry
    return None


def find_or_create_project_dir(
    project_hash: str,
    project_name: str | None = None,
    explicit_dir: Path | None = None,
    base_dir: Path | None = None,
) -> tuple[Path, bool]:
    """Locate the project directory, creating it on first use.

    Args:
        project_hash: Full or short project hash.
        project_name: Human-readable project name, used for new directories.
        explicit_dir: Directory chosen by the user; used as is.
        base_dir: Where to look for and create projects (default: cwd).

    Returns:
        ``(directory, created)``.

    Raises:
        WorkspaceError: If a new directory is needed but no name is known,
            or the directory cannot be created.
    """
    short_id = short_project_hash(project_hash)

    try:
        if explicit_dir is not None:
            directory = Path(explicit_dir).expanduser().resolve()
            created = not directory.exists()
            (directory / FILES_DIR_NAME).mkdir(parents=True, exist_ok=True)
            return directory, created

        base = Path(base_dir) if base_dir is not None else Path.cwd()
        existing = _find_existing_project_dir(base, project_hash)
        if existing is not None:
            return existing, False

        if not project_name:
            raise WorkspaceError("Failed to get project name. Pass --name <project name>.")

        dir_name = to_dir_name(project_name) or short_id
        directory = base / dir_name
        if directory.exists():
            directory = base / f"{dir_name}-{short_id}"

        (directory / FILES_DIR_NAME).mkdir(parents=True, exist_ok=True)
        pkg = {
            "name": to_package_name(project_name) or short_id,
            "version": "1.0.0",
            "private": True,
            "shortProjectHash": short_id,
            "projectName": project_name,
        }
        (directory / PACKAGE_JSON).write_text(json.dumps(pkg, indent=2), encoding="utf-8")
    except OSError as e:
        raise WorkspaceError(f"Failed to prepare project directory: {e}") from e

    logger.debug("Created project directory %s", directory)
    return directory, True
