"""In-memory world, roster and store used by tests and the offline simulator."""
from __future__ import annotations

import itertools
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .models import CommandResult, Coord, PlayerSnapshot, RollbackJob
from .world import Vector


class SandboxFailure(RuntimeError):
    """Raised by the sandbox when a failure was injected for a method."""


class InMemoryWorld:
    """Dictionary-backed world that also acts as the player roster.

    Cells default to ``stone`` at or below ``ground_level`` and ``air`` above
    it. Every primitive is recorded so tests can assert on what happened.
    """

    def __init__(self, ground_level: int = 63) -> None:
        self.ground_level = ground_level
        self.cells: Dict[Tuple[str, Coord], str] = {}
        self.players: Dict[str, PlayerSnapshot] = {}
        self.actors: Dict[str, Tuple[str, str, Vector]] = {}
        self.statuses: List[Tuple[str, str, int, int]] = []
        self.item_actions: List[Tuple[str, str, Dict[str, Any]]] = []
        self.impulses: List[Tuple[str, Vector]] = []
        self.moves: List[Tuple[str, Vector]] = []
        self.commands: List[str] = []
        self.writes = 0
        self._actor_ids = itertools.count(1)
        self._failing: Set[str] = set()

    # Roster -------------------------------------------------------------
    def add_player(self, snapshot: PlayerSnapshot) -> PlayerSnapshot:
        self.players[snapshot.player_id] = snapshot
        return snapshot

    def remove_player(self, player_id: str) -> None:
        self.players.pop(player_id, None)

    def online_players(self) -> List[PlayerSnapshot]:
        return list(self.players.values())

    # Failure injection --------------------------------------------------
    def fail(self, *methods: str) -> None:
        """Make the named primitives raise until :meth:`heal` is called."""

        self._failing.update(methods)

    def heal(self) -> None:
        self._failing.clear()

    def _check(self, method: str) -> None:
        if method in self._failing:
            raise SandboxFailure(f"injected failure in {method}")

    # WorldSurface -------------------------------------------------------
    def read_cell(self, region: str, coord: Coord) -> str:
        self._check("read_cell")
        default = "stone" if coord[1] <= self.ground_level else "air"
        return self.cells.get((region, coord), default)

    def write_cell(self, region: str, coord: Coord, cell_type: str) -> None:
        self._check("write_cell")
        self.cells[(region, coord)] = cell_type
        self.writes += 1

    def spawn_actor(self, region: str, kind: str, position: Vector, **options: Any) -> str:
        self._check("spawn_actor")
        actor_id = f"actor-{next(self._actor_ids)}"
        self.actors[actor_id] = (region, kind, position)
        return actor_id

    def remove_actor(self, actor_id: str) -> bool:
        self._check("remove_actor")
        return self.actors.pop(actor_id, None) is not None

    def apply_status(self, player_id: str, status: str, seconds: int, amplifier: int = 0) -> None:
        self._check("apply_status")
        self.statuses.append((player_id, status, seconds, amplifier))

    def adjust_items(self, player_id: str, action: str, **details: Any) -> int:
        self._check("adjust_items")
        self.item_actions.append((player_id, action, details))
        return 1

    def apply_impulse(self, player_id: str, impulse: Vector) -> None:
        self._check("apply_impulse")
        self.impulses.append((player_id, impulse))

    def move_player(
        self,
        player_id: str,
        position: Vector,
        yaw: Optional[float] = None,
        pitch: Optional[float] = None,
    ) -> None:
        self._check("move_player")
        self.moves.append((player_id, position))
        player = self.players.get(player_id)
        if player is not None:
            self.players[player_id] = replace(
                player,
                position=position,
                yaw=player.yaw if yaw is None else yaw,
                pitch=player.pitch if pitch is None else pitch,
            )

    def execute_command(self, command: str) -> CommandResult:
        self._check("execute_command")
        self.commands.append(command)
        return CommandResult.SUCCESS

    def spawn_point(self, region: str) -> Vector:
        return (0.5, float(self.ground_level + 1), 0.5)

    # Helpers ------------------------------------------------------------
    def cell(self, region: str, coord: Coord) -> str:
        default = "stone" if coord[1] <= self.ground_level else "air"
        return self.cells.get((region, coord), default)

    def statuses_for(self, player_id: str) -> List[str]:
        return [status for pid, status, _, _ in self.statuses if pid == player_id]


class MemoryRollbackStore:
    """Rollback store kept in a dict; survives only as long as the object."""

    def __init__(self, jobs: Iterable[RollbackJob] = ()) -> None:
        self._rows: Dict[str, Dict[str, Any]] = {job.id: job.to_dict() for job in jobs}
        self.writes = 0

    def write_all(self, jobs: Iterable[RollbackJob]) -> None:
        self._rows = {job.id: job.to_dict() for job in jobs}
        self.writes += 1

    def read_all(self) -> List[RollbackJob]:
        return [RollbackJob.from_dict(row) for row in self._rows.values()]

    def delete(self, job_id: str) -> None:
        self._rows.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._rows)


def demo_players(count: int) -> List[PlayerSnapshot]:
    """Evenly spaced overworld players for simulations."""

    return [
        PlayerSnapshot(
            player_id=f"player-{index + 1}",
            name=f"Player{index + 1}",
            position=(index * 64.0 + 0.5, 64.0, 0.5),
        )
        for index in range(count)
    ]


__all__ = ["InMemoryWorld", "MemoryRollbackStore", "SandboxFailure", "demo_players"]
