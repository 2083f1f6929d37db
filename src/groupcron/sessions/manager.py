"""Agent session ids per group folder, cached in memory and kept in sqlite."""

from __future__ import annotations

import sqlite3

from groupcron.infrastructure.logger import logger


class SessionManager:
    """Tracks the live agent session id per group folder.

    Only mutated from inside a group's queue slot, so no locking.
    """

    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db
        self._sessions: dict[str, str] = {}

    def load_from_db(self) -> None:
        rows = self._db.execute("SELECT group_folder, session_id FROM sessions").fetchall()
        self._sessions = {row["group_folder"]: row["session_id"] for row in rows}
        logger.debug("Loaded sessions", count=len(self._sessions))

    def get(self, group_folder: str) -> str | None:
        return self._sessions.get(group_folder)

    def set(self, group_folder: str, session_id: str) -> None:
        if self._sessions.get(group_folder) == session_id:
            return
        self._sessions[group_folder] = session_id
        with self._db:
            self._db.execute(
                "INSERT INTO sessions (group_folder, session_id) VALUES (?, ?) "
                "ON CONFLICT(group_folder) DO UPDATE SET session_id = excluded.session_id",
                (group_folder, session_id),
            )

    def delete(self, group_folder: str) -> None:
        self._sessions.pop(group_folder, None)
        with self._db:
            self._db.execute("DELETE FROM sessions WHERE group_folder = ?", (group_folder,))

    def get_all(self) -> dict[str, str]:
        return dict(self._sessions)
