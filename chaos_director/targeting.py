"""Staleness-biased target selection."""
from __future__ import annotations

from typing import Callable, Iterable, List, Mapping, Optional, Sequence

from .models import PlayerMode, PlayerSnapshot
from .rng import DeterministicRNG


class FairTargetSelector:
    """Pick the next player to disrupt, favouring those served longest ago.

    Candidates are ordered by their last-served tick (never served counts as
    tick 0) and one is drawn uniformly from the older half. Randomising inside
    the stale band keeps the choice unpredictable while bounding how long any
    player can be starved.
    """

    def __init__(self, rng: DeterministicRNG) -> None:
        self._rng = rng

    @staticmethod
    def band(candidates: Sequence[PlayerSnapshot], last_served: Mapping[str, int]) -> List[PlayerSnapshot]:
        ordered = sorted(candidates, key=lambda player: last_served.get(player.player_id, 0))
        return ordered[: max(1, len(ordered) // 2)]

    def select(
        self,
        candidates: Sequence[PlayerSnapshot],
        last_served: Mapping[str, int],
        preferred: Optional[str] = None,
    ) -> Optional[PlayerSnapshot]:
        if not candidates:
            return None
        if preferred:
            match = find_player(candidates, preferred)
            if match is not None:
                return match
        return self._rng.choice(self.band(candidates, last_served))


def find_player(players: Iterable[PlayerSnapshot], key: str) -> Optional[PlayerSnapshot]:
    """Resolve a player by id or (case-insensitive) name."""

    lowered = key.strip().lower()
    for player in players:
        if player.player_id == key or player.name.lower() == lowered:
            return player
    return None


def eligible_pool(
    players: Iterable[PlayerSnapshot],
    mode_of: Callable[[str], PlayerMode],
    on_cooldown: Callable[[str], bool],
    force: bool = False,
) -> List[PlayerSnapshot]:
    """Players that may receive an event this cycle.

    OFF players are never eligible. Unless ``force`` is set, players still on
    their global cooldown are skipped; if that leaves nobody, every non-OFF
    player is returned instead.
    """

    active = [player for player in players if mode_of(player.player_id) is not PlayerMode.OFF]
    if force:
        return active
    ready = [player for player in active if not on_cooldown(player.player_id)]
    return ready or active


__all__ = ["FairTargetSelector", "eligible_pool", "find_player"]
