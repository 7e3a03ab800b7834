"""Dual-path planning: external planner with heuristic fallback and backoff."""
from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Mapping, Optional

from .config import Settings
from .events import parse_candidates
from .heuristic import HeuristicPlanner
from .models import CycleSnapshot, Plan
from .world import PlanTransport

logger = logging.getLogger(__name__)

MAX_FAILURES = 8
MAX_BACKOFF_SECONDS = 60


class PipelineState(str, Enum):
    IDLE = "idle"
    HEURISTIC = "heuristic"
    REQUESTING = "requesting"
    BACKOFF = "backoff"


class PlanningPipeline:
    """Produces at most one plan per cycle.

    The external request runs on a worker pool; its future is only ever
    inspected from :meth:`harvest`, which the director calls on the tick
    thread. Any failure (transport error, timeout, unusable reply) bumps a
    saturating failure counter and opens a backoff window of
    ``min(60, 2 ** failures)`` seconds during which no cycle, automatic or
    forced, may start. The failing cycle is still served by the heuristic.
    """

    def __init__(
        self,
        settings: Settings,
        heuristic: HeuristicPlanner,
        transport: Optional[PlanTransport] = None,
        pool: Optional[Executor] = None,
        telemetry=None,
    ) -> None:
        self._settings = settings
        self._heuristic = heuristic
        self._transport = transport
        self._pool = pool
        self._owns_pool = pool is None
        self._telemetry = telemetry

        self.state = PipelineState.IDLE
        self.fail_count = 0
        self.last_backoff_seconds = 0
        self.backoff_until = 0
        self._future: Optional[Future] = None
        self._snapshot: Optional[CycleSnapshot] = None
        self._requested_at = 0
        self._started = 0.0
        self._preview_pending = False
        self._preview_in_flight = False

    def configure(self, settings: Settings) -> None:
        self._settings = settings
        self._heuristic.configure(settings)

    # ------------------------------------------------------------------
    @property
    def external_ready(self) -> bool:
        return self._settings.planner_enabled and self._transport is not None

    @property
    def in_flight(self) -> bool:
        return self._future is not None

    @property
    def timeout_ticks(self) -> int:
        return max(1, int(self._settings.planner_timeout_seconds * self._settings.ticks_per_second))

    def in_backoff(self, now: int) -> bool:
        if now < self.backoff_until:
            return True
        if self.state is PipelineState.BACKOFF:
            self.state = PipelineState.IDLE
        return False

    def request_preview(self) -> None:
        """Mark the next produced plan as a preview (logged, never applied)."""

        self._preview_pending = True

    @property
    def preview_pending(self) -> bool:
        return self._preview_pending or self._preview_in_flight

    # ------------------------------------------------------------------
    def begin_cycle(self, snapshot: CycleSnapshot, now: int) -> Optional[Plan]:
        """Start a cycle; returns a plan immediately only on the heuristic path."""

        if self.in_flight:
            logger.debug("Planner request still outstanding; skipping cycle at tick %s", now)
            return None
        if self.in_backoff(now):
            logger.debug("Planner in backoff until tick %s", self.backoff_until)
            return None

        preview = self._preview_pending
        self._preview_pending = False

        if not self.external_ready:
            self.state = PipelineState.HEURISTIC
            plan = self._heuristic.plan(snapshot)
            plan.preview = preview
            self._track("heuristic", True, 0.0, None)
            self.state = PipelineState.IDLE
            return plan

        self._snapshot = snapshot
        self._requested_at = now
        self._started = time.perf_counter()
        self._preview_in_flight = preview
        self._future = self._executor().submit(
            self._transport.request_plan, snapshot.to_payload(), self._settings.candidate_limit
        )
        self.state = PipelineState.REQUESTING
        logger.debug("Planner request submitted at tick %s", now)
        return None

    def harvest(self, now: int) -> Optional[Plan]:
        """Collect the outstanding request if it finished or timed out."""

        future = self._future
        if future is None:
            return None
        if not future.done():
            if now - self._requested_at < self.timeout_ticks:
                return None
            future.cancel()
            return self._fail(now, f"timed out after {self.timeout_ticks} ticks")

        try:
            body = future.result()
        except Exception as exc:  # transport failures of any kind fall back
            return self._fail(now, str(exc) or exc.__class__.__name__)

        plan = self._build_plan(body)
        if plan is None:
            return self._fail(now, "unusable planner reply")

        self.fail_count = 0
        self.last_backoff_seconds = 0
        self.backoff_until = 0
        self.state = PipelineState.IDLE
        self._track("planner", True, self._elapsed_ms(), None)
        self._clear()
        return plan

    def shutdown(self) -> None:
        if self._future is not None:
            self._future.cancel()
        self._clear()
        if self._owns_pool and self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None

    # ------------------------------------------------------------------
    def _build_plan(self, body: Any) -> Optional[Plan]:
        if not isinstance(body, Mapping):
            return None
        actions = body.get("actions") or []
        commands = body.get("commands") or []
        if not isinstance(actions, list) or not isinstance(commands, list):
            return None
        candidates = parse_candidates(actions)
        if not candidates and not commands:
            return None
        snapshot = self._snapshot
        limit = self._settings.candidate_limit
        if len(candidates) > limit:
            logger.info("Planner returned %s candidates; keeping %s", len(candidates), limit)
        return Plan(
            source="planner",
            candidates=candidates[:limit],
            commands=list(commands),
            force=snapshot.force if snapshot else False,
            preview=self._preview_in_flight,
        )

    def _fail(self, now: int, error: str) -> Plan:
        self.fail_count = min(self._settings.max_failures or MAX_FAILURES, self.fail_count + 1)
        cap = self._settings.max_backoff_seconds or MAX_BACKOFF_SECONDS
        self.last_backoff_seconds = min(cap, 2 ** self.fail_count)
        self.backoff_until = now + self.last_backoff_seconds * self._settings.ticks_per_second
        self.state = PipelineState.BACKOFF
        logger.warning(
            "Planner failed (%s); failures=%s, backing off %ss",
            error,
            self.fail_count,
            self.last_backoff_seconds,
        )
        self._track("planner", False, self._elapsed_ms(), error)

        snapshot = self._snapshot
        preview = self._preview_in_flight
        self._clear()
        plan = self._heuristic.plan(snapshot)
        plan.preview = preview
        return plan

    def _clear(self) -> None:
        self._future = None
        self._snapshot = None
        self._preview_in_flight = False

    def _elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000.0

    def _executor(self) -> Executor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chaos-planner")
            self._owns_pool = True
        return self._pool

    def _track(self, source: str, ok: bool, duration_ms: float, error: Optional[str]) -> None:
        if self._telemetry is not None:
            self._telemetry.track_planner(source, ok, duration_ms, error)


__all__ = ["MAX_BACKOFF_SECONDS", "MAX_FAILURES", "PipelineState", "PlanningPipeline"]
