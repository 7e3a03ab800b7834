"""SQLite persistence for pending rollback jobs."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Iterable, List

from .models import Cell, RollbackJob

logger = logging.getLogger(__name__)

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS rollback_jobs (
    id TEXT PRIMARY KEY,
    region TEXT NOT NULL,
    due_tick INTEGER NOT NULL,
    cells TEXT NOT NULL
);
"""


class SQLiteRollbackStore:
    """Whole-table store for rollback jobs.

    ``write_all`` replaces the table contents in one transaction. The job
    table stays small because reverted jobs are pruned immediately, so the
    rewrite is cheap.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def _ensure_schema(self) -> None:
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.executescript(_DB_SCHEMA)
            conn.commit()

    def write_all(self, jobs: Iterable[RollbackJob]) -> None:
        rows = [
            (job.id, job.region, job.due_tick, json.dumps([cell.to_dict() for cell in job.cells]))
            for job in jobs
        ]
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute("DELETE FROM rollback_jobs")
            conn.executemany(
                "INSERT INTO rollback_jobs (id, region, due_tick, cells) VALUES (?, ?, ?, ?)",
                rows,
            )
            conn.commit()

    def read_all(self) -> List[RollbackJob]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(
                "SELECT id, region, due_tick, cells FROM rollback_jobs ORDER BY due_tick, id"
            ).fetchall()
        jobs: List[RollbackJob] = []
        for job_id, region, due_tick, cells_json in rows:
            try:
                cells = [Cell.from_dict(item) for item in json.loads(cells_json)]
            except (ValueError, KeyError, TypeError):
                logger.warning("Skipping unreadable rollback job %s", job_id)
                continue
            jobs.append(RollbackJob(id=job_id, region=region, cells=cells, due_tick=int(due_tick)))
        return jobs

    def delete(self, job_id: str) -> None:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute("DELETE FROM rollback_jobs WHERE id = ?", (job_id,))
            conn.commit()


__all__ = ["SQLiteRollbackStore"]
