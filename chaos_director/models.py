"""Core data models for the Chaos Director."""
from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

Coord = Tuple[int, int, int]

HISTORY_SIZE = 4


class PlayerMode(str, Enum):
    """Per-player severity ceiling policy."""

    AUTO = "AUTO"
    MILD = "MILD"
    SPICY = "SPICY"
    OFF = "OFF"

    @classmethod
    def parse(cls, value: str) -> "PlayerMode":
        return cls(str(value).strip().upper())


class DifficultyMode(str, Enum):
    LINEAR = "linear"
    PROGRESSIVE = "progressive"
    BALANCED = "balanced"

    @classmethod
    def parse(cls, value: str) -> "DifficultyMode":
        return cls(str(value).strip().lower())


class EventType(str, Enum):
    """Every disruption the director knows how to run."""

    SLOW = "SLOW"
    FATIGUE = "FATIGUE"
    NAUSEA = "NAUSEA"
    BLIND = "BLIND"
    LEVITATE = "LEVITATE"
    LEVITATE_LONG = "LEVITATE_LONG"
    HOTBAR_SHUFFLE = "HOTBAR_SHUFFLE"
    SWITCH_WHILE_MINING = "SWITCH_WHILE_MINING"
    ICE_RING = "ICE_RING"
    BOUNCY_FLOOR = "BOUNCY_FLOOR"
    HONEY_TRAP = "HONEY_TRAP"
    SAND_DRIZZLE = "SAND_DRIZZLE"
    FIRE_UNDER = "FIRE_UNDER"
    UNEQUIP_ARMOR = "UNEQUIP_ARMOR"
    RUBBERBAND = "RUBBERBAND"
    CAGE = "CAGE"
    SPAWN = "SPAWN"
    PISTON_SHOVE = "PISTON_SHOVE"
    DROP_INVENTORY = "DROP_INVENTORY"
    WITHER_MAYBE = "WITHER_MAYBE"
    LAVA_TRAP = "LAVA_TRAP"
    YEET_EXPLOSION = "YEET_EXPLOSION"
    HYPER_SPEED = "HYPER_SPEED"
    ITEM_MAGNET = "ITEM_MAGNET"
    FLOOR_PULL = "FLOOR_PULL"
    WITHER_TEMPORARY = "WITHER_TEMPORARY"
    BERSERK = "BERSERK"
    FLIP_VIEW = "FLIP_VIEW"
    INVENTORY_SPAM = "INVENTORY_SPAM"
    FORCE_RIDE = "FORCE_RIDE"

    @classmethod
    def lookup(cls, value: Any) -> Optional["EventType"]:
        """Resolve a loose type tag, returning None for unknown kinds."""

        if isinstance(value, EventType):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def is_headline(self) -> bool:
        return self.severity >= 2


_SEVERITY: Dict[EventType, int] = {
    # flourishes
    EventType.SLOW: 1,
    EventType.FATIGUE: 1,
    EventType.NAUSEA: 1,
    EventType.BLIND: 1,
    EventType.LEVITATE: 1,
    EventType.HOTBAR_SHUFFLE: 1,
    EventType.SWITCH_WHILE_MINING: 1,
    EventType.ITEM_MAGNET: 1,
    EventType.RUBBERBAND: 1,
    EventType.INVENTORY_SPAM: 1,
    # visible but modest
    EventType.ICE_RING: 2,
    EventType.BOUNCY_FLOOR: 2,
    EventType.HONEY_TRAP: 2,
    EventType.SAND_DRIZZLE: 2,
    EventType.FIRE_UNDER: 2,
    EventType.UNEQUIP_ARMOR: 2,
    EventType.LEVITATE_LONG: 2,
    EventType.YEET_EXPLOSION: 2,
    EventType.HYPER_SPEED: 2,
    EventType.FORCE_RIDE: 2,
    EventType.FLIP_VIEW: 2,
    # spicy
    EventType.CAGE: 3,
    EventType.SPAWN: 3,
    EventType.PISTON_SHOVE: 3,
    EventType.DROP_INVENTORY: 3,
    EventType.FLOOR_PULL: 3,
    EventType.BERSERK: 3,
    # hot
    EventType.WITHER_MAYBE: 4,
    EventType.WITHER_TEMPORARY: 4,
    # legendary
    EventType.LAVA_TRAP: 5,
}


class Verdict(str, Enum):
    ACCEPT = "accept"
    SUBSTITUTE = "substitute"
    REJECT = "reject"


class OperationKind(str, Enum):
    COMMAND = "command"
    ROLLBACK = "rollback"
    SET_CELL = "set_cell"
    CALLBACK = "callback"


class CommandResult(str, Enum):
    SUCCESS = "success"
    NOOP = "noop"
    FAILURE = "failure"


@dataclass
class PlayerProfile:
    mode: PlayerMode = PlayerMode.AUTO
    recent: Deque[EventType] = field(default_factory=lambda: deque(maxlen=HISTORY_SIZE))
    deaths: int = 0

    def remember(self, event_type: EventType) -> None:
        self.recent.append(event_type)

    def has_recent(self, event_type: EventType) -> bool:
        return event_type in self.recent


@dataclass
class PlayerSnapshot:
    """Read-only view of a connected player for one planning cycle."""

    player_id: str
    name: str
    region: str = "overworld"
    environment: str = "overworld"
    position: Tuple[float, float, float] = (0.0, 64.0, 0.0)
    yaw: float = 0.0
    pitch: float = 0.0
    health: float = 20.0
    food: int = 20
    armor_tier: int = 0
    has_elytra: bool = False
    held_item: str = "air"
    is_cave: bool = False
    light: int = 15
    hostiles: int = 0
    passives: int = 0
    fall_distance: float = 0.0
    is_creative: bool = False
    is_spectator: bool = False
    biome: str = "plains"

    @property
    def block_position(self) -> Coord:
        x, y, z = self.position
        return (math.floor(x), math.floor(y), math.floor(z))

    def danger_score(self) -> int:
        score = max(0, 10 - math.ceil(self.health))
        if self.is_cave:
            score += 3
        if self.light < 7:
            score += 5
        score += min(10, self.hostiles * 2)
        if not self.is_creative and not self.is_spectator and self.fall_distance > 2.5:
            score += 2
        return min(20, score)

    def to_dict(self) -> Dict[str, Any]:
        x, y, z = self.position
        return {
            "uuid": self.player_id,
            "name": self.name,
            "region": self.region,
            "environment": self.environment,
            "biome": self.biome,
            "position": {"x": x, "y": y, "z": z, "yaw": self.yaw, "pitch": self.pitch},
            "health": math.ceil(self.health),
            "food": self.food,
            "armorTier": self.armor_tier,
            "hasElytra": self.has_elytra,
            "heldItem": self.held_item,
            "isCave": self.is_cave,
            "light": self.light,
            "nearby": {"hostiles": self.hostiles, "passives": self.passives},
            "isCreative": self.is_creative,
            "isSpectator": self.is_spectator,
            "dangerScore": self.danger_score(),
        }


@dataclass
class EventDescriptor:
    type: EventType
    params: Dict[str, Any] = field(default_factory=dict)
    target: Optional[str] = None
    reason: str = ""

    @property
    def severity(self) -> int:
        return self.type.severity

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type.value, **self.params}
        if self.target:
            payload["target"] = self.target
        if self.reason:
            payload["reason"] = self.reason
        return payload


@dataclass(frozen=True)
class Cell:
    x: int
    y: int
    z: int
    prior: str

    @property
    def coord(self) -> Coord:
        return (self.x, self.y, self.z)

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "z": self.z, "prior": self.prior}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Cell":
        return Cell(int(data["x"]), int(data["y"]), int(data["z"]), str(data["prior"]))


@dataclass
class RollbackJob:
    id: str
    region: str
    cells: List[Cell]
    due_tick: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "region": self.region,
            "cells": [cell.to_dict() for cell in self.cells],
            "due_tick": self.due_tick,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RollbackJob":
        return RollbackJob(
            id=str(data["id"]),
            region=str(data["region"]),
            cells=[Cell.from_dict(item) for item in data["cells"]],
            due_tick=int(data["due_tick"]),
        )


@dataclass(frozen=True)
class PendingOperation:
    kind: OperationKind
    payload: Any
    due_tick: int


@dataclass(frozen=True)
class Admission:
    verdict: Verdict
    type: Optional[EventType] = None
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.verdict is not Verdict.REJECT


@dataclass(frozen=True)
class DifficultyReading:
    stage: int
    intense_window: bool
    max_severity: int


@dataclass
class CycleSnapshot:
    """Frozen copy of everything a planner needs for one cycle.

    Built on the tick thread and handed to the worker, so nothing in it
    aliases live director state.
    """

    tick: int
    players: List[PlayerSnapshot]
    eligible: List[PlayerSnapshot]
    modes: Dict[str, PlayerMode]
    last_served: Dict[str, int]
    recent: Dict[str, Tuple[EventType, ...]]
    reading: DifficultyReading
    difficulty_mode: DifficultyMode
    force: bool = False

    def mode_of(self, player_id: str) -> PlayerMode:
        return self.modes.get(player_id, PlayerMode.AUTO)

    def to_payload(self) -> Dict[str, Any]:
        players = []
        for player in self.players:
            entry = player.to_dict()
            entry["mode"] = self.mode_of(player.player_id).value
            entry["recent"] = [kind.value for kind in self.recent.get(player.player_id, ())]
            players.append(entry)
        return {
            "tick": self.tick,
            "difficulty": {
                "mode": self.difficulty_mode.value,
                "stage": self.reading.stage,
                "window": "nasty" if self.reading.intense_window else "safe",
                "maxSeverityNow": self.reading.max_severity,
            },
            "players": players,
        }


@dataclass
class Plan:
    """Output of one planning cycle, ready for the executor."""

    source: str
    candidates: List[EventDescriptor] = field(default_factory=list)
    commands: List[Dict[str, Any]] = field(default_factory=list)
    force: bool = False
    preview: bool = False

    @property
    def empty(self) -> bool:
        return not self.candidates and not self.commands

    def describe(self) -> List[Dict[str, Any]]:
        if self.candidates:
            return [candidate.to_dict() for candidate in self.candidates]
        return list(self.commands)


__all__ = [
    "Admission",
    "Cell",
    "CommandResult",
    "Coord",
    "CycleSnapshot",
    "DifficultyMode",
    "DifficultyReading",
    "EventDescriptor",
    "EventType",
    "HISTORY_SIZE",
    "OperationKind",
    "PendingOperation",
    "Plan",
    "PlayerMode",
    "PlayerProfile",
    "PlayerSnapshot",
    "RollbackJob",
    "Verdict",
]
