"""Rollback journal: durable undo records for destructive world edits."""
from __future__ import annotations

import logging
import sqlite3
import uuid
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import Cell, Coord, OperationKind, PendingOperation, RollbackJob
from .pending import PendingQueue
from .world import RollbackStore, WorldSurface

logger = logging.getLogger(__name__)

DEFAULT_RESTART_DELAY = 40


class RollbackJournal:
    """Tracks every pending reversion and keeps the durable copy in step.

    Memory is authoritative. Store failures are logged and the journal keeps
    working, accepting that a crash could then lose the record.
    """

    def __init__(
        self,
        world: WorldSurface,
        store: Optional[RollbackStore],
        pending: PendingQueue,
        clock: Callable[[], int],
        restart_delay: int = DEFAULT_RESTART_DELAY,
    ) -> None:
        self._world = world
        self._store = store
        self._pending = pending
        self._clock = clock
        self._restart_delay = max(1, restart_delay)
        self._jobs: Dict[str, RollbackJob] = {}
        self._claims: Dict[Tuple[str, Coord], str] = {}
        self._loaded = False
        self._retried: set[str] = set()
        self.reverted = 0

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def jobs(self) -> List[RollbackJob]:
        return sorted(self._jobs.values(), key=lambda job: (job.due_tick, job.id))

    def get(self, job_id: str) -> Optional[RollbackJob]:
        return self._jobs.get(job_id)

    def schedule(self, region: str, cells: Sequence[Cell], delay_ticks: int) -> Optional[str]:
        """Register ``cells`` for reversion ``delay_ticks`` from now.

        A cell already owned by a pending job moves to the new job, which
        inherits the older job's prior type. Each cell therefore has exactly
        one owner, and that owner restores the type the world had before
        any event touched it.

        Returns the job id, or ``None`` when there is nothing to revert.
        """

        if not cells:
            return None
        job = RollbackJob(
            id=uuid.uuid4().hex,
            region=region,
            cells=[self._take_over(region, cell) for cell in cells],
            due_tick=self._clock() + max(1, delay_ticks),
        )
        self._jobs[job.id] = job
        self._claim(job)
        self._persist()
        self._pending.enqueue(PendingOperation(OperationKind.ROLLBACK, job.id, job.due_tick), reserved=True)
        logger.debug("Scheduled rollback %s of %s cells at tick %s", job.id, len(job.cells), job.due_tick)
        return job.id

    def owner_of(self, region: str, coord: Coord) -> Optional[str]:
        return self._claims.get((region, coord))

    def _take_over(self, region: str, cell: Cell) -> Cell:
        owner_id = self._claims.get((region, cell.coord))
        owner = self._jobs.get(owner_id) if owner_id else None
        if owner is None:
            return cell
        for index, held in enumerate(owner.cells):
            if held.coord == cell.coord:
                del owner.cells[index]
                break
        else:
            return cell
        if not owner.cells:
            self._jobs.pop(owner.id, None)
            self._retried.discard(owner.id)
            logger.debug("Rollback %s handed all its cells to a newer job", owner.id)
        return Cell(cell.x, cell.y, cell.z, held.prior)

    def _claim(self, job: RollbackJob) -> None:
        for cell in job.cells:
            self._claims[(job.region, cell.coord)] = job.id

    def _release(self, job: RollbackJob) -> None:
        for cell in job.cells:
            key = (job.region, cell.coord)
            if self._claims.get(key) == job.id:
                del self._claims[key]

    def revert(self, job_id: str) -> bool:
        """Restore the recorded prior types in list order.

        Writes go straight to the world, outside the tick budget, so a
        reversion is never partial. Returns ``False`` for unknown jobs.
        """

        job = self._jobs.get(job_id)
        if job is None:
            return False
        try:
            for cell in job.cells:
                self._world.write_cell(job.region, cell.coord, cell.prior)
        except Exception:
            if job_id in self._retried:
                logger.exception("Rollback %s failed twice; dropping it", job_id)
                self._discard(job_id)
                return False
            self._retried.add(job_id)
            job.due_tick = self._clock() + self._restart_delay
            logger.exception("Rollback %s failed; retrying at tick %s", job_id, job.due_tick)
            self._persist()
            self._pending.enqueue(PendingOperation(OperationKind.ROLLBACK, job_id, job.due_tick), reserved=True)
            return False
        self._discard(job_id)
        self.reverted += 1
        logger.info("Rolled back %s cells in %s (job %s)", len(job.cells), job.region, job_id)
        return True

    def _discard(self, job_id: str) -> None:
        job = self._jobs.pop(job_id, None)
        if job is not None:
            self._release(job)
        self._retried.discard(job_id)
        self._persist()

    def load(self) -> int:
        """Reload persisted jobs once per process.

        Jobs already past due are pushed ``restart_delay`` ticks into the
        future so a restart does not fire them all in one burst.
        """

        if self._loaded:
            return 0
        self._loaded = True
        if self._store is None:
            return 0
        try:
            stored = self._store.read_all()
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Could not load rollback jobs: %s", exc)
            return 0

        now = self._clock()
        rescheduled = 0
        for job in stored:
            if job.id in self._jobs:
                continue
            if job.due_tick <= now:
                job.due_tick = now + self._restart_delay
                rescheduled += 1
            self._jobs[job.id] = job
            self._claim(job)
            self._pending.enqueue(PendingOperation(OperationKind.ROLLBACK, job.id, job.due_tick), reserved=True)
        if rescheduled:
            self._persist()
        if stored:
            logger.info("Loaded %s rollback jobs (%s rescheduled)", len(stored), rescheduled)
        return len(stored)

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.write_all(self.jobs())
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Could not persist rollback jobs: %s", exc)


__all__ = ["DEFAULT_RESTART_DELAY", "RollbackJournal"]
