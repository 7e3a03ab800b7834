"""Collaborator protocols the director drives.

The host simulation supplies concrete implementations. ``sandbox`` ships
in-memory versions used by the test suite and the offline simulator.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from .models import CommandResult, Coord, PlayerSnapshot, RollbackJob

Vector = Tuple[float, float, float]


@runtime_checkable
class Roster(Protocol):
    """Read-only source of connected players."""

    def online_players(self) -> List[PlayerSnapshot]:
        ...


@runtime_checkable
class WorldSurface(Protocol):
    """Primitive world operations.

    Reads used for rollback snapshots are always taken before the matching
    write. Any method may raise; the director catches failures per event.
    """

    def read_cell(self, region: str, coord: Coord) -> str:
        ...

    def write_cell(self, region: str, coord: Coord, cell_type: str) -> None:
        ...

    def spawn_actor(self, region: str, kind: str, position: Vector, **options: Any) -> str:
        ...

    def remove_actor(self, actor_id: str) -> bool:
        ...

    def apply_status(self, player_id: str, status: str, seconds: int, amplifier: int = 0) -> None:
        ...

    def adjust_items(self, player_id: str, action: str, **details: Any) -> int:
        ...

    def apply_impulse(self, player_id: str, impulse: Vector) -> None:
        ...

    def move_player(
        self,
        player_id: str,
        position: Vector,
        yaw: Optional[float] = None,
        pitch: Optional[float] = None,
    ) -> None:
        ...

    def execute_command(self, command: str) -> CommandResult:
        ...

    def spawn_point(self, region: str) -> Vector:
        ...


@runtime_checkable
class RollbackStore(Protocol):
    """Durable record set of pending rollback jobs."""

    def write_all(self, jobs: Iterable[RollbackJob]) -> None:
        ...

    def read_all(self) -> List[RollbackJob]:
        ...

    def delete(self, job_id: str) -> None:
        ...


@runtime_checkable
class PlanTransport(Protocol):
    """Blocking request/response exchange with the external planner."""

    def request_plan(self, snapshot: Dict[str, Any], max_items: int) -> Dict[str, Any]:
        ...


__all__ = ["PlanTransport", "RollbackStore", "Roster", "Vector", "WorldSurface"]
