"""Group folder validation and path construction."""

from __future__ import annotations

import re
from pathlib import Path

from groupcron.infrastructure import config

GROUP_FOLDER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
RESERVED_FOLDERS = frozenset({"global"})


class InvalidGroupFolderError(ValueError):
    """A group folder reference that cannot be mapped to a directory."""


def is_valid_group_folder(folder: str) -> bool:
    if not folder or folder != folder.strip():
        return False
    if not GROUP_FOLDER_PATTERN.match(folder):
        return False
    return folder.lower() not in RESERVED_FOLDERS


def _resolve_within(base_dir: Path, folder: str) -> Path:
    if not is_valid_group_folder(folder):
        raise InvalidGroupFolderError(f'Invalid group folder "{folder}"')
    base = base_dir.resolve()
    resolved = (base / folder).resolve()
    if not resolved.is_relative_to(base):
        raise InvalidGroupFolderError(f"Path escapes base directory: {resolved}")
    return resolved


def resolve_group_folder_path(folder: str) -> Path:
    """groups/{folder}, or InvalidGroupFolderError."""
    return _resolve_within(config.GROUPS_DIR, folder)


def resolve_group_ipc_path(folder: str) -> Path:
    """data/ipc/{folder}, or InvalidGroupFolderError."""
    return _resolve_within(config.DATA_DIR / "ipc", folder)


class GroupPaths:
    """Centralized path construction for group-related directories."""

    @staticmethod
    def group_dir(folder: str) -> Path:
        """Root directory for a group: groups/{folder}"""
        return config.GROUPS_DIR / folder

    @staticmethod
    def ipc_dir(folder: str) -> Path:
        """IPC root directory: data/ipc/{folder}"""
        return config.DATA_DIR / "ipc" / folder

    @staticmethod
    def ipc_input_dir(folder: str) -> Path:
        """IPC input directory: data/ipc/{folder}/input"""
        return config.DATA_DIR / "ipc" / folder / "input"

    @staticmethod
    def sessions_dir(folder: str) -> Path:
        """Agent session state: data/sessions/{folder}/.claude"""
        return config.DATA_DIR / "sessions" / folder / ".claude"
