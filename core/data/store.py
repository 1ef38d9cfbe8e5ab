"""SQLite storage for task definitions.

One `tasks` table keyed by id. Task names are UNIQUE, so creating or renaming
a task is a single conditional write: two concurrent creates with the same
name cannot both succeed.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from core.errors import ConflictError, NotFoundError, StorageError
from core.models.tasks import Task, TaskInput, TaskPatch, new_task_id

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id", "name", "repo", "workflow", "ref", "cron",
    "description", "enabled", "created_at", "updated_at",
)


class TaskStore:
    """Persistent CRUD over task definitions.

    Usage:
        store = TaskStore(Path("~/.actionscron/tasks.sqlite"))
        task_id = store.create(TaskInput(name="nightly", ...))
        store.list()
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db: sqlite3.Connection | None = None
        self._init_sqlite()

    # ------------------------------------------------------------------
    # SQLite
    # ------------------------------------------------------------------

    def _init_sqlite(self) -> None:
        """Open the database and create the tasks table if needed."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(self._db_path))
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")

        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                repo TEXT NOT NULL,
                workflow TEXT NOT NULL,
                ref TEXT NOT NULL DEFAULT 'main',
                cron TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                enabled INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_created
                ON tasks(created_at);
        """)
        self._db.commit()
        logger.info("TaskStore ready at %s (%d task(s))", self._db_path, self.count())

    @property
    def db(self) -> sqlite3.Connection:
        if self._db is None:
            raise RuntimeError("TaskStore not initialized")
        return self._db

    def close(self) -> None:
        """Close the SQLite connection."""
        if self._db:
            self._db.close()
            self._db = None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            name=row["name"],
            repo=row["repo"],
            workflow=row["workflow"],
            ref=row["ref"] or "main",
            cron=row["cron"],
            description=row["description"] or "",
            enabled=bool(row["enabled"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    @staticmethod
    def _task_params(task: Task) -> tuple:
        return (
            task.id,
            task.name,
            task.repo,
            task.workflow,
            task.ref,
            task.cron,
            task.description,
            1 if task.enabled else 0,
            task.created_at.isoformat(),
            task.updated_at.isoformat() if task.updated_at else None,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self, strict: bool = False) -> list[Task]:
        """Every stored task, oldest first.

        Best-effort by default: a storage failure is logged and yields [].
        With strict=True it raises StorageError instead, for callers that must
        tell "no tasks" apart from "could not read tasks".
        """
        try:
            rows = self.db.execute(
                "SELECT * FROM tasks ORDER BY created_at ASC, id ASC"
            ).fetchall()
        except (sqlite3.Error, RuntimeError) as exc:
            if strict:
                raise StorageError(f"Failed to list tasks: {exc}") from exc
            logger.exception("Failed to list tasks")
            return []

        tasks = []
        for row in rows:
            try:
                tasks.append(self._row_to_task(row))
            except (ValueError, TypeError):
                logger.exception("Skipping unreadable task row %s", row["id"])
        return tasks

    def get(self, task_id: str) -> Task:
        """Fetch one task. Raises NotFoundError if absent."""
        try:
            row = self.db.execute(
                "SELECT * FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read task {task_id}: {exc}") from exc

        if row is None:
            raise NotFoundError("task", task_id)
        return self._row_to_task(row)

    def count(self) -> int:
        (n,) = self.db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(n)

    def check_name_exists(self, name: str, exclude_id: str | None = None) -> bool:
        """True if another task already has this (trimmed, case-sensitive) name."""
        wanted = name.strip()
        return any(
            t.name.strip() == wanted and t.id != exclude_id
            for t in self.list()
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, data: TaskInput) -> str:
        """Insert a new task and return its id.

        The caller validates the payload first. The store assigns id and
        created_at; a duplicate name raises ConflictError and nothing is written.
        """
        task = Task(
            id=new_task_id(),
            created_at=datetime.now(timezone.utc),
            **data.model_dump(),
        )
        placeholders = ", ".join("?" for _ in _COLUMNS)

        try:
            with self.db:
                self.db.execute(
                    f"INSERT INTO tasks ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    self._task_params(task),
                )
        except sqlite3.IntegrityError as exc:
            if "tasks.name" in str(exc):
                raise ConflictError(task.name) from exc
            raise StorageError(f"Failed to create task: {exc}") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to create task: {exc}") from exc

        logger.debug("Task created id=%s name=%s cron=%s", task.id, task.name, task.cron)
        return task.id

    def update(self, task_id: str, data: TaskPatch) -> Task:
        """Merge the supplied fields over the existing task and stamp updated_at."""
        existing = self.get(task_id)
        merged = existing.model_copy(
            update={**data.changes(), "updated_at": datetime.now(timezone.utc)}
        )
        assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])

        try:
            with self.db:
                cur = self.db.execute(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    (*self._task_params(merged)[1:], task_id),
                )
        except sqlite3.IntegrityError as exc:
            if "tasks.name" in str(exc):
                raise ConflictError(merged.name) from exc
            raise StorageError(f"Failed to update task {task_id}: {exc}") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to update task {task_id}: {exc}") from exc

        if cur.rowcount == 0:
            # Deleted between the read and the write.
            raise NotFoundError("task", task_id)

        logger.debug("Task updated id=%s fields=%s", task_id, sorted(data.changes()))
        return merged

    def delete(self, task_id: str) -> bool:
        """Delete a task. Idempotent; returns True if it existed."""
        try:
            with self.db:
                cur = self.db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete task {task_id}: {exc}") from exc

        deleted = cur.rowcount > 0
        if deleted:
            logger.debug("Task deleted id=%s", task_id)
        return deleted
