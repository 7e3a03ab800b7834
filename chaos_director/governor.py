"""Diversity and cooldown governor."""
from __future__ import annotations

import logging
from collections import Counter, deque
from typing import Callable, Collection, Deque, Dict, List, Mapping, Optional

from .config import Settings
from .models import Admission, EventType, PlayerMode, PlayerProfile, Verdict
from .rng import DeterministicRNG

logger = logging.getLogger(__name__)

# floor on the share denominator while the window is still filling
MIN_SHARE_SAMPLE = 10


class DiversityGovernor:
    """Decides whether an event may run for a player right now.

    The governor owns every cooldown map and the global diversity window. None
    of it changes during :meth:`admit`; state moves forward only through
    :meth:`commit`, which the director calls after a confirmed successful
    mutation.
    """

    def __init__(
        self,
        settings: Settings,
        rng: DeterministicRNG,
        profile_of: Callable[[str], PlayerProfile],
    ) -> None:
        self._settings = settings
        self._rng = rng
        self._profile_of = profile_of
        self._next_global: Dict[str, int] = {}
        self._next_by_type: Dict[str, Dict[EventType, int]] = {}
        self._last_served: Dict[str, int] = {}
        self._recent_global: Deque[EventType] = deque(maxlen=settings.window_size)

    def configure(self, settings: Settings) -> None:
        self._settings = settings
        if self._recent_global.maxlen != settings.window_size:
            self._recent_global = deque(self._recent_global, maxlen=settings.window_size)

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def last_served(self) -> Mapping[str, int]:
        return self._last_served

    @property
    def recent_global(self) -> List[EventType]:
        return list(self._recent_global)

    def on_cooldown(self, player_id: str, now: int) -> bool:
        return now < self._next_global.get(player_id, 0)

    def type_on_cooldown(self, player_id: str, event_type: EventType, now: int) -> bool:
        return now < self._next_by_type.get(player_id, {}).get(event_type, 0)

    def is_overused(self, event_type: EventType) -> bool:
        if not self._recent_global:
            return False
        count = sum(1 for item in self._recent_global if item is event_type)
        return count / max(len(self._recent_global), MIN_SHARE_SAMPLE) > self._settings.share_cap

    def is_repeat(self, player_id: str, event_type: EventType) -> bool:
        """True when ``event_type`` would be suppressed as a short-term repeat."""

        if event_type in self._settings.repeatable_types:
            return False
        return self._profile_of(player_id).has_recent(event_type)

    def share_of(self) -> Dict[str, float]:
        counts = Counter(item.value for item in self._recent_global)
        total = len(self._recent_global) or 1
        return {name: count / total for name, count in counts.items()}

    def ceiling(self, max_severity: int, mode: PlayerMode) -> int:
        return min(max_severity, self._settings.ceiling_for(mode))

    # ------------------------------------------------------------------
    # Admission

    def admit(
        self,
        player_id: str,
        event_type: EventType,
        now: int,
        max_severity: int,
        mode: PlayerMode = PlayerMode.AUTO,
        unsafe: Collection[EventType] = (),
        exclude: Collection[EventType] = (),
    ) -> Admission:
        """Return ACCEPT, SUBSTITUTE with an alternative type, or REJECT.

        ``unsafe`` holds kinds that cannot run in the player's current
        environment; ``exclude`` holds kinds already picked this cycle.
        """

        if mode is PlayerMode.OFF:
            return Admission(Verdict.REJECT, reason="player opted out")
        if event_type in self._settings.banned_types:
            return self._reject(player_id, event_type, "banned")

        ceiling = self.ceiling(max_severity, mode)

        def alternative(same_class: bool) -> Optional[EventType]:
            return self._alternative(
                player_id,
                event_type,
                now,
                ceiling,
                unsafe=unsafe,
                exclude=exclude,
                same_class=same_class,
            )

        if event_type in unsafe:
            return self._substitute(player_id, event_type, alternative(False), "unsafe in environment")
        if event_type in exclude:
            return self._substitute(player_id, event_type, alternative(False), "duplicate in cycle")
        if event_type.severity > ceiling:
            return self._substitute(player_id, event_type, alternative(False), "above severity ceiling")
        if self.type_on_cooldown(player_id, event_type, now):
            return self._substitute(player_id, event_type, alternative(True), "type on cooldown")
        if self.is_overused(event_type):
            return self._substitute(player_id, event_type, alternative(True), "overused")
        if self.is_repeat(player_id, event_type):
            return self._reject(player_id, event_type, "recent repeat")
        return Admission(Verdict.ACCEPT, event_type)

    def _alternative(
        self,
        player_id: str,
        original: EventType,
        now: int,
        ceiling: int,
        unsafe: Collection[EventType],
        exclude: Collection[EventType],
        same_class: bool,
    ) -> Optional[EventType]:
        ceiling = min(ceiling, original.severity)
        pool = [
            kind
            for kind in EventType
            if kind is not original
            and kind.severity <= ceiling
            and kind not in self._settings.banned_types
            and kind not in unsafe
            and kind not in exclude
            and not self.type_on_cooldown(player_id, kind, now)
            and not self.is_overused(kind)
            and not self.is_repeat(player_id, kind)
            and (not same_class or kind.is_headline == original.is_headline)
        ]
        if not pool:
            return None
        profile = self._profile_of(player_id)
        fresh = [kind for kind in pool if not profile.has_recent(kind)]
        return self._rng.choice(fresh or pool)

    def _substitute(
        self, player_id: str, original: EventType, alternative: Optional[EventType], reason: str
    ) -> Admission:
        if alternative is None:
            return self._reject(player_id, original, f"{reason}, no substitute")
        logger.debug("Substituting %s -> %s for %s (%s)", original.value, alternative.value, player_id, reason)
        return Admission(Verdict.SUBSTITUTE, alternative, reason)

    @staticmethod
    def _reject(player_id: str, event_type: EventType, reason: str) -> Admission:
        logger.debug("Rejecting %s for %s (%s)", event_type.value, player_id, reason)
        return Admission(Verdict.REJECT, event_type, reason)

    # ------------------------------------------------------------------
    # State updates

    def commit(self, player_id: str, event_type: EventType, now: int) -> None:
        """Record a successfully executed event."""

        self._profile_of(player_id).remember(event_type)
        self._recent_global.append(event_type)
        self._next_by_type.setdefault(player_id, {})[event_type] = now + self._settings.per_type_cooldown_ticks
        self._next_global[player_id] = now + self._settings.cooldown_ticks
        self._last_served[player_id] = now


__all__ = ["DiversityGovernor"]
