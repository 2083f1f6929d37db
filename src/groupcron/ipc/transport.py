"""File-based IPC signals to running containers."""

from __future__ import annotations

from groupcron.groups.paths import GroupPaths
from groupcron.infrastructure.logger import logger

CLOSE_SENTINEL = "_close"


class IpcTransport:
    """Writes control files into a container's mounted input directory."""

    def close_stdin(self, group_folder: str) -> bool:
        """Write the close sentinel so the agent stops waiting for more input."""
        input_dir = GroupPaths.ipc_input_dir(group_folder)
        try:
            input_dir.mkdir(parents=True, exist_ok=True)
            (input_dir / CLOSE_SENTINEL).write_text("")
            return True
        except OSError as err:
            logger.warning("Failed to write close sentinel", error=str(err), group_folder=group_folder)
            return False

    def clear_close(self, group_folder: str) -> None:
        """Remove a stale sentinel before a new container starts."""
        (GroupPaths.ipc_input_dir(group_folder) / CLOSE_SENTINEL).unlink(missing_ok=True)
