"""Core module - Shared paths, hashing, and configuration."""

from synclink.core.config import DaemonConfig, port_for_project
from synclink.core.hashing import hash_file_content, short_project_hash
from synclink.core.paths import (
    DEFAULT_EXTENSION,
    SUPPORTED_EXTENSIONS,
    SanitizedPath,
    ensure_extension,
    file_key_for_lookup,
    is_supported_extension,
    normalize_code_file_path,
    normalize_path,
    pluralize,
    sanitize_file_path,
    sanitize_relative_path,
)

__all__ = [
    # Config
    "DaemonConfig",
    "port_for_project",
    # Hashing
    "hash_file_content",
    "short_project_hash",
    # Paths
    "DEFAULT_EXTENSION",
    "SUPPORTED_EXTENSIONS",
    "SanitizedPath",
    "ensure_extension",
    "file_key_for_lookup",
    "is_supported_extension",
    "normalize_code_file_path",
    "normalize_path",
    "pluralize",
    "sanitize_file_path",
    "sanitize_relative_path",
]
