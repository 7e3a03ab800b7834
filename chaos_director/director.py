"""Tick-driven orchestrator tying the planning and execution pieces together."""
from __future__ import annotations

import logging
import time
from collections import Counter
from concurrent.futures import Executor
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .commands import CommandGate
from .config import Settings, get_settings
from .difficulty import DifficultyCurve
from .effects import DeferredCall, EffectContext, run_effect
from .events import clamp_params, roll_params, unsafe_types
from .executor import MutationExecutor
from .governor import DiversityGovernor
from .heuristic import HeuristicPlanner
from .journal import RollbackJournal
from .models import (
    Coord,
    CycleSnapshot,
    DifficultyMode,
    EventDescriptor,
    EventType,
    OperationKind,
    PendingOperation,
    Plan,
    PlayerMode,
    PlayerProfile,
    PlayerSnapshot,
)
from .pending import PendingQueue
from .pipeline import PlanningPipeline
from .planner_client import PlannerClient, PlannerConfig
from .rng import DeterministicRNG
from .store import SQLiteRollbackStore
from .targeting import FairTargetSelector, eligible_pool, find_player
from .telemetry import TelemetryCollector
from .world import PlanTransport, RollbackStore, Roster, WorldSurface

logger = logging.getLogger(__name__)


class Director:
    """Runs one planning and execution loop against a world surface.

    Every method is meant to be called from the simulation's tick thread.
    The only work that leaves it is the external planner request, whose
    result is collected by :meth:`tick` once it is ready.
    """

    class TriggerRefusedError(RuntimeError):
        """Raised when a manual trigger cannot start a cycle right now."""

    def __init__(
        self,
        world: WorldSurface,
        roster: Roster | None = None,
        settings: Settings | None = None,
        store: RollbackStore | None = None,
        rng: DeterministicRNG | None = None,
        planner: PlanTransport | None = None,
        pool: Executor | None = None,
        telemetry: TelemetryCollector | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.world = world
        self.roster = roster if roster is not None else world  # type: ignore[assignment]
        self.rng = rng or DeterministicRNG.from_entropy()
        self.telemetry = telemetry

        self.current_tick = 0
        self.enabled = self.settings.enabled
        self.next_plan_tick = 0
        self.events_served = 0
        self.served_by_type: Counter = Counter()
        self.served_by_player: Counter = Counter()
        self.last_plan: Optional[Plan] = None
        self._profiles: Dict[str, PlayerProfile] = {}
        self._started = False

        self.pending = PendingQueue(self.settings.queue_capacity)
        self.executor = MutationExecutor(world, self.settings.block_budget_per_tick)
        self.journal = RollbackJournal(
            world,
            store,
            self.pending,
            clock=lambda: self.current_tick,
            restart_delay=self.settings.restart_delay_ticks,
        )
        self.difficulty = DifficultyCurve(self.settings)
        self.governor = DiversityGovernor(self.settings, self.rng, self.profile)
        self.selector = FairTargetSelector(self.rng)
        self.heuristic = HeuristicPlanner(self.settings, self.rng)
        self.pipeline = PlanningPipeline(self.settings, self.heuristic, planner, pool=pool, telemetry=telemetry)
        self.gate = CommandGate(self.rng, self.settings.max_commands_per_cycle)

    # ------------------------------------------------------------------
    # Player state

    def profile(self, player_id: str) -> PlayerProfile:
        return self._profiles.setdefault(player_id, PlayerProfile())

    def mode_of(self, player_id: str) -> PlayerMode:
        return self.profile(player_id).mode

    def find_online(self, key: str) -> Optional[PlayerSnapshot]:
        return find_player(self.roster.online_players(), key)

    def build_snapshot(self, force: bool = False, target: Optional[str] = None) -> CycleSnapshot:
        """Copy everything a planner needs for this cycle."""

        now = self.current_tick
        players = list(self.roster.online_players())
        eligible = eligible_pool(
            players,
            self.mode_of,
            lambda player_id: self.governor.on_cooldown(player_id, now),
            force,
        )
        if target:
            requested = find_player(eligible, target)
            if requested is not None:
                eligible = [requested]
        return CycleSnapshot(
            tick=now,
            players=players,
            eligible=eligible,
            modes={player.player_id: self.mode_of(player.player_id) for player in players},
            last_served=dict(self.governor.last_served),
            recent={player.player_id: tuple(self.profile(player.player_id).recent) for player in players},
            reading=self.difficulty.reading(),
            difficulty_mode=self.difficulty.mode,
            force=force,
        )

    # ------------------------------------------------------------------
    # Tick loop

    def tick(self) -> None:
        """Advance the clock by one tick and run whatever is due."""

        if not self._started:
            self._started = True
            self.journal.load()
        self.current_tick += 1
        now = self.current_tick
        self.executor.begin_tick()
        self.difficulty.advance(now)

        plan = self.pipeline.harvest(now)
        if plan is not None:
            self._apply_plan(plan, now)

        self._flush_pending(now)

        if not self.enabled or now < self.next_plan_tick:
            return
        if self.pipeline.in_backoff(now) or self.pipeline.in_flight:
            return
        self._start_cycle(now, force=False)
        self.next_plan_tick = (
            now + self.settings.planning_period_ticks + self.settings.cooldown_ticks + self._jitter()
        )

    def run(self, ticks: int) -> None:
        for _ in range(max(0, ticks)):
            self.tick()

    def shutdown(self) -> None:
        self.pipeline.shutdown()
        if self.telemetry is not None:
            self.telemetry.flush()

    def _jitter(self) -> int:
        jitter = self.settings.jitter
        return self.rng.randint(0, jitter) if jitter > 0 else 0

    def _start_cycle(self, now: int, force: bool, target: Optional[str] = None) -> None:
        snapshot = self.build_snapshot(force, target)
        if not snapshot.players:
            logger.debug("No players online at tick %s", now)
            return
        plan = self.pipeline.begin_cycle(snapshot, now)
        if plan is not None:
            self._apply_plan(plan, now)

    def _apply_plan(self, plan: Plan, now: int) -> None:
        self.last_plan = plan
        if plan.empty:
            logger.info("Empty %s plan at tick %s", plan.source, now)
            return
        if not self.enabled:
            logger.info("Director disabled; discarding %s plan", plan.source)
            return
        if plan.preview:
            logger.info("Preview plan (%s): %s", plan.source, plan.describe())
            return
        if self.settings.dry_run:
            logger.info("Dry-run plan (%s, cap=%s): %s", plan.source, self.settings.candidate_limit, plan.describe())
            return
        if plan.candidates:
            self._run_candidates(plan, now)
        else:
            self._run_commands(plan.commands)

    def _run_candidates(self, plan: Plan, now: int) -> None:
        players = self.roster.online_players()
        pool = eligible_pool(
            players,
            self.mode_of,
            lambda player_id: self.governor.on_cooldown(player_id, now),
            plan.force,
        )
        if not pool:
            logger.info("No eligible players for %s plan", plan.source)
            return

        max_severity = self.difficulty.max_severity
        used: Set[EventType] = set()
        served: Set[str] = set()
        limit = min(self.settings.candidate_limit, max(1, self.settings.max_actions_per_cycle))
        for descriptor in plan.candidates[:limit]:
            chosen = self.selector.select(pool, self.governor.last_served, descriptor.target)
            targets = list(pool) if self.settings.fanout_all else [chosen]
            ran: Set[EventType] = set()
            for player in targets:
                if player is None:
                    continue
                player_id = player.player_id
                if not plan.force and player_id not in served and self.governor.on_cooldown(player_id, now):
                    logger.debug("%s on cooldown", player.name)
                    continue
                admission = self.governor.admit(
                    player_id,
                    descriptor.type,
                    now,
                    max_severity,
                    self.mode_of(player_id),
                    unsafe=unsafe_types(player.environment),
                    exclude=used,
                )
                if not admission.accepted or admission.type is None:
                    continue
                kind = admission.type
                params = descriptor.params if kind is descriptor.type else roll_params(kind, self.rng)
                ran.add(kind)
                if self._execute(player, kind, params, now):
                    served.add(player_id)
            used.update(ran)

    def _execute(self, player: PlayerSnapshot, kind: EventType, params: Dict[str, Any], now: int) -> bool:
        context = EffectContext(
            world=self.world,
            executor=self.executor,
            journal=self.journal,
            rng=self.rng,
            player=player,
            lookup=self.find_online,
            defer=self._defer,
        )
        started = time.perf_counter()
        try:
            ok = bool(run_effect(kind, context, params))
        except Exception as exc:
            logger.exception("Event %s for %s failed", kind.value, player.name)
            ok = False
            if self.telemetry is not None:
                self.telemetry.track_error("event_failed", now, player.player_id, f"{kind.value}: {exc}")
        if ok:
            self.governor.commit(player.player_id, kind, now)
            self.events_served += 1
            self.served_by_type[kind.value] += 1
            self.served_by_player[player.player_id] += 1
            logger.info("Ran %s for %s", kind.value, player.name)
        if self.telemetry is not None:
            duration_ms = (time.perf_counter() - started) * 1000.0
            self.telemetry.track_event(now, kind.value, player.player_id, ok, duration_ms, params)
        return ok

    def _run_commands(self, entries: List[Any]) -> None:
        for command in self.gate.filter(entries, self.roster.online_players()):
            if command.delay_ticks > 0:
                self._defer(OperationKind.COMMAND, command.text, command.delay_ticks)
            else:
                self._run_command(command.text)

    def _run_command(self, text: str) -> None:
        try:
            result = self.world.execute_command(text)
        except Exception:
            logger.warning("Command failed: %s", text, exc_info=True)
            return
        logger.info("Command %s: %s", result.value, text)

    def _defer(self, kind: OperationKind, payload: Any, delay_ticks: int) -> bool:
        return self.pending.enqueue(PendingOperation(kind, payload, self.current_tick + max(1, int(delay_ticks))))

    def _flush_pending(self, now: int) -> None:
        for operation in self.pending.pop_due(now):
            if operation.kind is OperationKind.ROLLBACK:
                job = self.journal.get(operation.payload)
                ok = self.journal.revert(operation.payload)
                if job is not None and self.telemetry is not None:
                    self.telemetry.track_rollback(now, job.region, len(job.cells), ok)
            elif operation.kind is OperationKind.COMMAND:
                self._run_command(operation.payload)
            elif operation.kind is OperationKind.SET_CELL:
                region, coord, cell_type = operation.payload
                if not self.executor.write(region, coord, cell_type):
                    logger.warning("Write budget exhausted; dropped delayed write at %s", coord)
            elif operation.kind is OperationKind.CALLBACK:
                call: DeferredCall = operation.payload
                try:
                    call.run()
                except Exception:
                    logger.exception("Deferred %s failed", call.label)

    # ------------------------------------------------------------------
    # Operator controls

    def trigger(self, force: bool = True, target: Optional[str] = None) -> None:
        """Start a cycle now and push the next automatic one out a period."""

        now = self.current_tick
        if not self.enabled:
            raise Director.TriggerRefusedError("Director is disabled")
        if self.pipeline.in_backoff(now):
            raise Director.TriggerRefusedError(
                f"Planner backing off for {self.pipeline.backoff_until - now} more ticks"
            )
        if self.pipeline.in_flight:
            raise Director.TriggerRefusedError("A planner request is already outstanding")
        if self.pipeline.preview_pending:
            raise Director.TriggerRefusedError("A preview plan is still pending")
        self._start_cycle(now, force=force, target=target)
        self.next_plan_tick = now + self.settings.planning_period_ticks + self._jitter()

    def request_preview(self) -> None:
        """Plan one cycle for logging only.

        The preview starts at once when the pipeline is free; otherwise it
        rides on the next cycle. Triggers are refused until it has been served.
        """

        self.pipeline.request_preview()
        now = self.current_tick
        if self.enabled and not self.pipeline.in_flight and not self.pipeline.in_backoff(now):
            self._start_cycle(now, force=False)

    def configure(self, **changes: Any) -> Settings:
        """Replace settings at runtime and hand them to every component."""

        self.settings = replace(self.settings, **changes)
        self.governor.configure(self.settings)
        self.difficulty.configure(self.settings)
        self.pipeline.configure(self.settings)
        self.pending.resize(self.settings.queue_capacity)
        self.executor.budget = self.settings.block_budget_per_tick
        self.gate.limit = max(0, self.settings.max_commands_per_cycle)
        if "planning_period_seconds" in changes:
            self.next_plan_tick = self.current_tick + self.settings.planning_period_ticks
        if "enabled" in changes:
            self.enabled = self.settings.enabled
        return self.settings

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = bool(enabled)
        logger.info("Director %s", "enabled" if self.enabled else "disabled")

    def set_dry_run(self, dry_run: bool) -> None:
        self.configure(dry_run=bool(dry_run))

    def set_difficulty(self, mode: DifficultyMode | str) -> None:
        if not isinstance(mode, DifficultyMode):
            mode = DifficultyMode.parse(mode)
        self.configure(difficulty_mode=mode)
        self.difficulty.reset(mode, self.current_tick)

    def set_player_mode(self, key: str, mode: PlayerMode | str) -> PlayerMode:
        if not isinstance(mode, PlayerMode):
            mode = PlayerMode.parse(mode)
        player = self.find_online(key)
        player_id = player.player_id if player is not None else key
        self.profile(player_id).mode = mode
        return mode

    def ban(self, event_type: EventType | str) -> None:
        kind = self._event_type(event_type)
        self.configure(banned_types=self.settings.banned_types | {kind})

    def allow(self, event_type: EventType | str) -> None:
        kind = self._event_type(event_type)
        self.configure(banned_types=self.settings.banned_types - {kind})

    @staticmethod
    def _event_type(value: EventType | str) -> EventType:
        kind = EventType.lookup(value)
        if kind is None:
            raise ValueError(f"Unknown event type: {value}")
        return kind

    def schedule_cell(self, region: str, coord: Coord, cell_type: str, delay_ticks: int) -> bool:
        """Queue a budgeted cell write ``delay_ticks`` from now."""

        return self._defer(OperationKind.SET_CELL, (region, tuple(coord), cell_type), delay_ticks)

    def run_event(self, player_key: str, event_type: EventType | str, params: Optional[Dict[str, Any]] = None) -> bool:
        """Run one event immediately, through the governor, for testing on a live world."""

        player = self.find_online(player_key)
        if player is None:
            raise ValueError(f"Player {player_key} is not online")
        kind = self._event_type(event_type)
        if self.mode_of(player.player_id) is PlayerMode.OFF:
            logger.info("%s has opted out; not running %s", player.name, kind.value)
            return False
        descriptor = EventDescriptor(kind, clamp_params(kind, params or {}), player.player_id, "manual")
        before = self.events_served
        self._run_candidates(Plan(source="manual", candidates=[descriptor], force=True), self.current_tick)
        return self.events_served > before

    def status(self) -> Dict[str, Any]:
        now = self.current_tick
        reading = self.difficulty.reading()
        tps = self.settings.ticks_per_second
        return {
            "tick": now,
            "enabled": self.enabled,
            "dry_run": self.settings.dry_run,
            "planner": "external" if self.pipeline.external_ready else "heuristic",
            "pipeline_state": self.pipeline.state.value,
            "planner_failures": self.pipeline.fail_count,
            "backoff_seconds_left": max(0, self.pipeline.backoff_until - now) // tps,
            "next_plan_in_seconds": max(0, self.next_plan_tick - now) // tps,
            "difficulty": {
                "mode": self.difficulty.mode.value,
                "stage": reading.stage,
                "window": "nasty" if reading.intense_window else "safe",
                "max_severity": reading.max_severity,
            },
            "pending_operations": len(self.pending),
            "dropped_operations": self.pending.dropped,
            "rollback_jobs": len(self.journal),
            "rollbacks_applied": self.journal.reverted,
            "events_served": self.events_served,
            "type_share": self.governor.share_of(),
        }


def build_planner(settings: Settings) -> Optional[PlannerClient]:
    """Return a ready planner client, or ``None`` to plan heuristically."""

    client = PlannerClient(PlannerConfig.from_env(settings))
    if not client.available:
        logger.info("External planner unavailable (%s); using heuristic planner", client.unavailable_reason())
        return None
    return client


def create_director(
    world: WorldSurface,
    roster: Roster | None = None,
    settings: Settings | None = None,
    data_dir: Path | None = None,
    rng: DeterministicRNG | None = None,
) -> Director:
    """Wire a director with the SQLite stores and planner from settings."""

    settings = settings or get_settings()
    base = Path(data_dir) if data_dir else Path.cwd()
    telemetry = TelemetryCollector(base / settings.telemetry_db_path) if settings.telemetry_enabled else None
    return Director(
        world,
        roster,
        settings,
        store=SQLiteRollbackStore(base / settings.rollback_db_path),
        rng=rng,
        planner=build_planner(settings),
        telemetry=telemetry,
    )


__all__ = ["Director", "build_planner", "create_director"]
