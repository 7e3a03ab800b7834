"""Closed-form fallback planner."""
from __future__ import annotations

import logging
from typing import Collection, List

from .config import Settings
from .events import roll_params, unsafe_types
from .models import CycleSnapshot, EventDescriptor, EventType, Plan, PlayerMode, PlayerSnapshot
from .rng import DeterministicRNG
from .targeting import FairTargetSelector

logger = logging.getLogger(__name__)

HEURISTIC_REASON = "heuristic planner"


class HeuristicPlanner:
    """Plans a cycle without the external planner.

    Picks a stale target, then at most one headline event (severity 2+) and,
    with probability ``flourish_chance`` or always when no headline was
    available, one distinct flourish (severity 1).
    """

    def __init__(self, settings: Settings, rng: DeterministicRNG) -> None:
        self._settings = settings
        self._rng = rng
        self._selector = FairTargetSelector(rng)

    def configure(self, settings: Settings) -> None:
        self._settings = settings

    def legal_types(
        self,
        player: PlayerSnapshot,
        mode: PlayerMode,
        max_severity: int,
        recent: Collection[EventType],
    ) -> List[EventType]:
        """Event kinds the heuristic may pick for ``player`` right now.

        Unlike the governor, every recent type is excluded here, including
        the repeatable headline kinds, and environment-unsafe kinds are
        dropped instead of substituted.
        """

        ceiling = min(max_severity, self._settings.ceiling_for(mode))
        unsafe = unsafe_types(player.environment)
        return [
            kind
            for kind in EventType
            if kind.severity <= ceiling
            and kind not in self._settings.banned_types
            and kind not in recent
            and kind not in unsafe
        ]

    def plan(self, snapshot: CycleSnapshot) -> Plan:
        plan = Plan(source="heuristic", force=snapshot.force)
        target = self._selector.select(snapshot.eligible, snapshot.last_served)
        if target is None:
            logger.info("Heuristic planner found no eligible player")
            return plan

        legal = self.legal_types(
            target,
            snapshot.mode_of(target.player_id),
            snapshot.reading.max_severity,
            snapshot.recent.get(target.player_id, ()),
        )
        headlines = [kind for kind in legal if kind.is_headline]
        flourishes = [kind for kind in legal if not kind.is_headline]

        chosen: List[EventType] = []
        if headlines:
            chosen.append(self._rng.choice(headlines))
        if flourishes and (not chosen or self._rng.chance(self._settings.flourish_chance)):
            chosen.append(self._rng.choice(flourishes))

        plan.candidates = [
            EventDescriptor(
                type=kind,
                params=roll_params(kind, self._rng),
                target=target.player_id,
                reason=HEURISTIC_REASON,
            )
            for kind in chosen[: self._settings.candidate_limit]
        ]
        logger.debug("Heuristic plan for %s: %s", target.name, [kind.value for kind in chosen])
        return plan


__all__ = ["HEURISTIC_REASON", "HeuristicPlanner"]
