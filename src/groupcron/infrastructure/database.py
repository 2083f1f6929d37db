"""The groupcron sqlite store: table layout, upgrades of older files, and the shared connection."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from groupcron.groups.repository import GroupRepository
from groupcron.infrastructure.config import STORE_DIR
from groupcron.infrastructure.logger import logger
from groupcron.scheduling.repository import TaskRepository


def create_schema(db: sqlite3.Connection) -> None:
    """Create missing tables and indexes, then migrate. Safe to run on every start."""
    db.executescript("""
        CREATE TABLE IF NOT EXISTS scheduled_tasks (
            id TEXT PRIMARY KEY,
            group_folder TEXT NOT NULL,
            chat_jid TEXT NOT NULL,
            prompt TEXT NOT NULL,
            schedule_type TEXT NOT NULL,
            schedule_value TEXT NOT NULL,
            context_mode TEXT DEFAULT 'isolated',
            next_run TEXT,
            last_run TEXT,
            last_result TEXT,
            status TEXT DEFAULT 'active',
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_next_run ON scheduled_tasks(next_run);
        CREATE INDEX IF NOT EXISTS idx_status ON scheduled_tasks(status);

        CREATE TABLE IF NOT EXISTS task_run_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id TEXT NOT NULL,
            run_at TEXT NOT NULL,
            duration_ms INTEGER NOT NULL,
            status TEXT NOT NULL,
            result TEXT,
            error TEXT,
            FOREIGN KEY (task_id) REFERENCES scheduled_tasks(id)
        );
        CREATE INDEX IF NOT EXISTS idx_task_run_logs ON task_run_logs(task_id, run_at);

        CREATE TABLE IF NOT EXISTS sessions (
            group_folder TEXT PRIMARY KEY,
            session_id TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS registered_groups (
            jid TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            folder TEXT NOT NULL UNIQUE,
            trigger_pattern TEXT NOT NULL,
            added_at TEXT NOT NULL,
            container_config TEXT
        );
    """)

    _migrate(db)


# Columns added after the first release: (table, column, definition)
_ADDED_COLUMNS = (
    ("scheduled_tasks", "context_mode", "TEXT DEFAULT 'isolated'"),
)


def _migrate(db: sqlite3.Connection) -> None:
    """Upgrade a database written by an earlier release in place."""
    for table, column, definition in _ADDED_COLUMNS:
        existing = {row[1] for row in db.execute(f"PRAGMA table_info({table})")}
        if column not in existing:
            db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            logger.info("Added column", table=table, column=column)

    # Exhausted once-tasks were once stored as 'completed'; now they are active with no next run
    with db:
        retired = db.execute(
            "UPDATE scheduled_tasks SET status = 'active', next_run = NULL WHERE status = 'completed'"
        ).rowcount
    if retired:
        logger.info("Migrated completed tasks", count=retired)


class AppDatabase:
    """The sqlite connection plus the repositories that share it."""

    def __init__(self) -> None:
        self._conn: sqlite3.Connection | None = None
        self.task_repo: TaskRepository | None = None
        self.group_repo: GroupRepository | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not open")
        return self._conn

    def init(self, db_path: Path | None = None) -> None:
        """Open store/groupcron.db (or ``db_path``), creating it if needed."""
        path = db_path or STORE_DIR / "groupcron.db"
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._attach(sqlite3.connect(path))
        # The scheduler and admin CLI may hold the file at the same time
        conn.execute("PRAGMA journal_mode=WAL")
        logger.debug("Database opened", path=str(path))

    def init_memory(self) -> None:
        """Use a fresh in-memory database."""
        self._attach(sqlite3.connect(":memory:"))

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        self.task_repo = self.group_repo = None

    def _attach(self, conn: sqlite3.Connection) -> sqlite3.Connection:
        self.close()
        conn.row_factory = sqlite3.Row
        create_schema(conn)
        self._conn = conn
        self.task_repo = TaskRepository(conn)
        self.group_repo = GroupRepository(conn)
        return conn


# Shared by the CLI and the orchestrator
database = AppDatabase()
