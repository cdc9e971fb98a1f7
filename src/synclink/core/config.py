"""Daemon configuration.

This module defines the runtime configuration shared by the CLI, the
controller and the effect executor.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from synclink.core.hashing import short_project_hash

BASE_PORT = 3847
PORT_RANGE = 250
STATE_FILE_NAME = ".synclink-state.json"
FILES_DIR_NAME = "files"


def port_for_project(project_hash: str) -> int:
    """Derive a stable listening port for a project.

    The plugin computes the same port from the project hash, so both
    sides meet without further configuration.

    Args:
        project_hash: Full or short project hash.

    Returns:
        Port in ``[BASE_PORT, BASE_PORT + PORT_RANGE)``.
    """
    short_id = short_project_hash(project_hash)
    digest = hashlib.sha256(short_id.encode("utf-8")).hexdigest()
    return BASE_PORT + int(digest[:8], 16) % PORT_RANGE


@dataclass
class DaemonConfig:
    """Configuration for one sync daemon process.

    Attributes:
        project_hash: Project id the daemon serves.
        port: WebSocket port to listen on.
        host: Interface to bind.
        project_dir: Project directory, resolved on first handshake.
        files_dir: Synced directory, always ``project_dir / "files"``.
        dangerously_auto_delete: Delete locally removed files on the
            remote side without asking the user.
        explicit_dir: Directory given on the command line.
        explicit_name: Project name given on the command line.
        project_dir_created: Whether the project directory was created
            by this run.
    """

    project_hash: str
    port: int | None = None
    host: str = "localhost"
    project_dir: Path | None = None
    files_dir: Path | None = None
    dangerously_auto_delete: bool = False
    explicit_dir: Path | None = None
    explicit_name: str | None = None
    project_dir_created: bool = False

    def __post_init__(self) -> None:
        """Fill in the derived port."""
        if self.port is None:
            self.port = port_for_project(self.project_hash)
        if self.explicit_dir is not None:
            self.explicit_dir = Path(self.explicit_dir).expanduser().resolve()

    @property
    def state_file(self) -> Path | None:
        """Path of the persisted sync state, once the project is known."""
        if self.project_dir is None:
            return None
        return self.project_dir / STATE_FILE_NAME

    def use_project_dir(self, project_dir: Path, created: bool = False) -> None:
        """Bind the config to a project directory."""
        self.project_dir = project_dir
        self.files_dir = project_dir / FILES_DIR_NAME
        self.project_dir_created = created
