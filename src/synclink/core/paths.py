"""Path normalization for synced code files.

This module provides:
- normalize_path / normalize_code_file_path: POSIX-style relative paths
- ensure_extension / is_supported_extension: code file extension handling
- sanitize_file_path: identifier-safe file names
- file_key_for_lookup: case-insensitive key used to match the two sides
- pluralize: small helper for log lines

Remote file names always carry their extension. A name sent without one
is treated as a ``.tsx`` component.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

SUPPORTED_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".json")
DEFAULT_EXTENSION = ".tsx"

_SUPPORTED_RE = re.compile(r"\.(tsx?|jsx?|json)$", re.IGNORECASE)
_FIRST_CHAR_RE = re.compile(r"^[a-zA-Z$_]")
_INVALID_CHARS_RE = re.compile(r"[^a-zA-Z0-9$_]")
_ONLY_DOTS_RE = re.compile(r"^\.+$")
_SPLIT_EXT_RE = re.compile(r"^(.+?)(\.[^.]+)?$")


@dataclass(frozen=True)
class SanitizedPath:
    """Result of sanitizing a relative file path.

    Attributes:
        path: Full sanitized relative path, extension included.
        dir_name: Sanitized directory part ("" at the root).
        name: Sanitized base name without extension.
        extension: Extension without the leading dot ("" if none).
    """

    path: str
    dir_name: str
    name: str
    extension: str


def normalize_path(file_path: str) -> str:
    """Collapse separators, ``.`` and ``..`` segments into a POSIX path.

    A leading slash is preserved; ``..`` never climbs above the root.
    """
    if not file_path:
        return ""

    is_absolute = file_path.startswith("/")
    stack: list[str] = []
    for segment in file_path.replace("\\", "/").split("/"):
        if not segment or segment == ".":
            continue
        if segment == "..":
            if stack:
                stack.pop()
            continue
        stack.append(segment)

    normalized = "/".join(stack)
    return f"/{normalized}" if is_absolute else normalized


def normalize_code_file_path(file_path: str) -> str:
    """Normalize a path and strip any leading slash."""
    return normalize_path(file_path).lstrip("/")


def is_supported_extension(file_path: str) -> bool:
    """Check whether a path ends with one of the synced extensions."""
    return bool(_SUPPORTED_RE.search(file_path))


def ensure_extension(file_path: str, extension: str = DEFAULT_EXTENSION) -> str:
    """Normalize a path and append ``extension`` when it has no code extension."""
    normalized = normalize_code_file_path(file_path)
    if is_supported_extension(normalized):
        return normalized
    return f"{normalized}{extension}"


def sanitize_relative_path(name: str) -> str:
    """Turn a remote file name into the relative path used on disk.

    Casing is preserved exactly as sent by the peer.
    """
    candidate = ensure_extension(name.strip())
    return normalize_path(sanitize_file_path(candidate, capitalize=False).path)


def file_key_for_lookup(file_path: str) -> str:
    """Key used to compare names across sides and in persisted state."""
    return normalize_code_file_path(file_path).lower()


def _sanitize_name(name: str | None, directory: bool = False) -> str | None:
    if not name:
        return None

    valid = name.strip()
    if not valid:
        return None

    if directory:
        if _ONLY_DOTS_RE.match(valid):
            return None
    elif not _FIRST_CHAR_RE.match(valid):
        valid = "$" + valid

    valid = _INVALID_CHARS_RE.sub("_", valid)
    valid = re.sub(r"_+", "_", valid)
    if valid.startswith("$_"):
        valid = "$" + valid[2:]
    return valid


def sanitize_file_path(file_path: str, capitalize: bool = True) -> SanitizedPath:
    """Turn an arbitrary relative path into one made of identifier-safe parts.

    Args:
        file_path: Relative path, possibly with unsafe characters.
        capitalize: Capitalize the base name of component files
            (``.tsx``/``.jsx`` or no extension).

    Returns:
        The sanitized path and its parts.
    """
    trimmed = file_path.strip()
    dir_part, _, file_part = trimmed.rpartition("/")

    match = _SPLIT_EXT_RE.match(file_part)
    if match:
        base, ext = match.group(1), (match.group(2) or "")[1:]
    else:
        base, ext = file_part, ""

    dir_name = "/".join(
        part
        for part in (_sanitize_name(p, directory=True) for p in dir_part.split("/"))
        if part
    )

    name = _sanitize_name(base) or "MyComponent"
    if capitalize and ext.lower() in ("", "tsx", "jsx"):
        name = name[:1].upper() + name[1:]

    file_name = f"{name}.{ext}" if ext else name
    path = f"{dir_name}/{file_name}" if dir_name else file_name
    return SanitizedPath(path=path, dir_name=dir_name, name=name, extension=ext)


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """Format ``count`` with the right noun form, e.g. ``"3 files"``."""
    word = singular if count == 1 else (plural or f"{singular}s")
    return f"{count} {word}"
