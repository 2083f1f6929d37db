"""Registered chat groups and their sqlite persistence."""

from __future__ import annotations

import sqlite3

from pydantic import BaseModel, ValidationError

from groupcron.infrastructure.logger import logger


class ContainerConfig(BaseModel):
    # Milliseconds; None uses CONTAINER_TIMEOUT
    timeout: int | None = None


class RegisteredGroup(BaseModel):
    name: str
    folder: str
    trigger: str
    added_at: str
    container_config: ContainerConfig | None = None


class GroupRepository:
    """Groups keyed by chat JID. A folder belongs to at most one JID."""

    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    def set_registered_group(self, jid: str, group: RegisteredGroup) -> None:
        config = group.container_config.model_dump_json() if group.container_config else None
        self._db.execute(
            """INSERT OR REPLACE INTO registered_groups
               (jid, name, folder, trigger_pattern, added_at, container_config)
               VALUES (:jid, :name, :folder, :trigger, :added_at, :config)""",
            {**group.model_dump(exclude={"container_config"}), "jid": jid, "config": config},
        )
        self._db.commit()

    def get_registered_group(self, jid: str) -> RegisteredGroup | None:
        row = self._db.execute("SELECT * FROM registered_groups WHERE jid = ?", (jid,)).fetchone()
        return self._to_group(row) if row else None

    def get_all_registered_groups(self) -> dict[str, RegisteredGroup]:
        return {row["jid"]: self._to_group(row) for row in self._db.execute("SELECT * FROM registered_groups")}

    @staticmethod
    def _to_group(row: sqlite3.Row) -> RegisteredGroup:
        config = None
        if row["container_config"]:
            try:
                config = ContainerConfig.model_validate_json(row["container_config"])
            except ValidationError:
                logger.warning("Ignoring unreadable container config", folder=row["folder"])
        return RegisteredGroup(
            name=row["name"],
            folder=row["folder"],
            trigger=row["trigger_pattern"],
            added_at=row["added_at"],
            container_config=config,
        )
