"""Event catalogue: parameter ranges, defaults and candidate parsing."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .models import EventDescriptor, EventType
from .rng import DeterministicRNG

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParamSpec:
    """Safe range for one numeric event parameter."""

    name: str
    default: float
    low: float
    high: float
    integer: bool = True

    def clamp(self, value: Any) -> float | int:
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = float(self.default)
        if math.isnan(number) or math.isinf(number):
            number = float(self.default)
        number = max(self.low, min(self.high, number))
        return int(round(number)) if self.integer else number


def _p(name: str, default: float, low: float, high: float) -> ParamSpec:
    return ParamSpec(name, default, low, high, integer=True)


def _f(name: str, default: float, low: float, high: float) -> ParamSpec:
    return ParamSpec(name, default, low, high, integer=False)


MAX_MOBS_PER_EVENT = 8
MAX_LAVA_TICKS = 200

PARAM_SPECS: Dict[EventType, Tuple[ParamSpec, ...]] = {
    EventType.SLOW: (_p("seconds", 8, 2, 30), _p("amplifier", 0, 0, 2)),
    EventType.FATIGUE: (_p("seconds", 10, 3, 40), _p("amplifier", 0, 0, 2)),
    EventType.NAUSEA: (_p("seconds", 10, 2, 25),),
    EventType.BLIND: (_p("seconds", 6, 1, 15),),
    EventType.LEVITATE: (_p("seconds", 3, 1, 10),),
    EventType.LEVITATE_LONG: (_p("seconds", 10, 5, 20),),
    EventType.HOTBAR_SHUFFLE: (),
    EventType.SWITCH_WHILE_MINING: (_p("watch_seconds", 6, 2, 10),),
    EventType.ICE_RING: (_p("radius", 5, 2, 8), _p("duration_ticks", 400, 100, 600)),
    EventType.BOUNCY_FLOOR: (_p("duration_ticks", 120, 40, 200),),
    EventType.HONEY_TRAP: (_p("duration_ticks", 120, 40, 200),),
    EventType.SAND_DRIZZLE: (_p("duration_ticks", 100, 40, 200),),
    EventType.FIRE_UNDER: (_p("duration_ticks", 100, 20, 200),),
    EventType.UNEQUIP_ARMOR: (),
    EventType.RUBBERBAND: (_p("delay_ticks", 40, 10, 80),),
    EventType.CAGE: (
        _p("radius", 2, 1, 3),
        _p("height", 8, 5, 10),
        _p("duration_ticks", 200, 20, 600),
    ),
    EventType.SPAWN: (_p("count", 1, 1, MAX_MOBS_PER_EVENT), _p("radius", 2, 0, 8)),
    EventType.PISTON_SHOVE: (_p("dx", 4, -8, 8), _p("dz", 0, -8, 8), _f("up", 1.0, 0.2, 1.5)),
    EventType.DROP_INVENTORY: (),
    EventType.WITHER_MAYBE: (_f("chance", 0.02, 0.0, 0.05),),
    EventType.LAVA_TRAP: (_p("duration_ticks", 100, 20, MAX_LAVA_TICKS),),
    EventType.YEET_EXPLOSION: (_f("power", 2.0, 1.0, 4.0),),
    EventType.HYPER_SPEED: (_p("seconds", 8, 4, 15), _p("amplifier", 25, 20, 40)),
    EventType.ITEM_MAGNET: (_p("radius", 15, 5, 25),),
    EventType.FLOOR_PULL: (_p("depth", 5, 2, 8), _p("duration_ticks", 100, 20, 200)),
    EventType.WITHER_TEMPORARY: (),
    EventType.BERSERK: (_p("seconds", 10, 5, 20),),
    EventType.FLIP_VIEW: (_p("seconds", 8, 4, 15),),
    EventType.INVENTORY_SPAM: (),
    EventType.FORCE_RIDE: (),
}

CAGE_MATERIALS: FrozenSet[str] = frozenset({"glass", "tinted_glass", "cobweb", "oak_leaves", "obsidian"})
SPAWNABLE_ENTITIES: FrozenSet[str] = frozenset(
    {"random", "zombie", "skeleton", "spider", "creeper", "zombified_piglin", "piglin", "magma_cube", "blaze", "silverfish"}
)

# Environment-dependent kinds that must never run in the listed environments.
UNSAFE_ENVIRONMENTS: Dict[EventType, FrozenSet[str]] = {
    EventType.SPAWN: frozenset({"nether"}),
}

_ROLLS: Dict[EventType, Callable[[DeterministicRNG], Dict[str, Any]]] = {
    EventType.CAGE: lambda r: {"material": "glass", "radius": 2, "height": 8, "duration_ticks": 200},
    EventType.SPAWN: lambda r: {"entity": "random", "count": 2 + r.randrange(2), "radius": 3},
    EventType.LAVA_TRAP: lambda r: {"duration_ticks": 80},
    EventType.SLOW: lambda r: {"seconds": 10 + r.randrange(10), "amplifier": 1},
    EventType.FATIGUE: lambda r: {"seconds": 12 + r.randrange(10), "amplifier": 1},
    EventType.NAUSEA: lambda r: {"seconds": 8 + r.randrange(8)},
    EventType.SWITCH_WHILE_MINING: lambda r: {"watch_seconds": 6},
    EventType.BLIND: lambda r: {"seconds": 5 + r.randrange(5)},
    EventType.WITHER_MAYBE: lambda r: {"chance": 0.02},
    EventType.LEVITATE: lambda r: {"seconds": 3 + r.randrange(3)},
    EventType.LEVITATE_LONG: lambda r: {"seconds": 10 + r.randrange(5)},
    EventType.BOUNCY_FLOOR: lambda r: {"duration_ticks": 120},
    EventType.HONEY_TRAP: lambda r: {"duration_ticks": 120},
    EventType.SAND_DRIZZLE: lambda r: {"duration_ticks": 120},
    EventType.FIRE_UNDER: lambda r: {"duration_ticks": 120},
    EventType.ICE_RING: lambda r: {"radius": 5, "duration_ticks": 400},
    EventType.PISTON_SHOVE: lambda r: {
        "dx": r.randrange(13) - 6,
        "dz": r.randrange(13) - 6,
        "up": 0.8 + r.random(),
    },
    EventType.RUBBERBAND: lambda r: {"delay_ticks": 20 + r.randrange(40)},
    EventType.YEET_EXPLOSION: lambda r: {"power": 1.5 + r.random() * 1.5},
    EventType.HYPER_SPEED: lambda r: {"seconds": 6 + r.randrange(5), "amplifier": 20 + r.randrange(15)},
    EventType.ITEM_MAGNET: lambda r: {"radius": 10 + r.randrange(10)},
    EventType.FLOOR_PULL: lambda r: {"depth": 5, "duration_ticks": 100},
    EventType.BERSERK: lambda r: {"seconds": 10},
    EventType.FLIP_VIEW: lambda r: {"seconds": 8},
}


def clamp_params(event_type: EventType, raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the parameters of ``event_type`` clamped to their safe ranges."""

    params: Dict[str, Any] = {}
    for spec in PARAM_SPECS[event_type]:
        params[spec.name] = spec.clamp(raw.get(spec.name, spec.default))
    if event_type is EventType.CAGE:
        material = str(raw.get("material", "glass")).removeprefix("minecraft:").lower()
        params["material"] = material if material in CAGE_MATERIALS else "glass"
    elif event_type is EventType.SPAWN:
        entity = str(raw.get("entity", "random")).removeprefix("minecraft:").lower()
        params["entity"] = entity if entity in SPAWNABLE_ENTITIES else "random"
    return params


def roll_params(event_type: EventType, rng: DeterministicRNG) -> Dict[str, Any]:
    """Fresh randomized parameters for a heuristic or substituted event."""

    roll = _ROLLS.get(event_type)
    raw = roll(rng) if roll else {}
    return clamp_params(event_type, raw)


def unsafe_types(environment: str) -> FrozenSet[EventType]:
    """Event kinds that must not run in ``environment``."""

    env = (environment or "").lower()
    return frozenset(kind for kind, envs in UNSAFE_ENVIRONMENTS.items() if env in envs)


def parse_candidate(raw: Any) -> Optional[EventDescriptor]:
    """Turn one planner-provided action object into a descriptor.

    Unknown kinds and non-object entries yield ``None``; the caller drops
    them without aborting the rest of the cycle.
    """

    if not isinstance(raw, Mapping):
        logger.info("Skipping non-object planner action: %r", raw)
        return None
    event_type = EventType.lookup(raw.get("type"))
    if event_type is None:
        logger.info("Skipping unknown event type: %r", raw.get("type"))
        return None
    target = raw.get("target")
    target = str(target).strip() if target else None
    return EventDescriptor(
        type=event_type,
        params=clamp_params(event_type, raw),
        target=target or None,
        reason=str(raw.get("reason", "") or "")[:200],
    )


def parse_candidates(raw_items: Iterable[Any]) -> List[EventDescriptor]:
    parsed = (parse_candidate(item) for item in raw_items)
    return [item for item in parsed if item is not None]


__all__ = [
    "CAGE_MATERIALS",
    "MAX_LAVA_TICKS",
    "MAX_MOBS_PER_EVENT",
    "PARAM_SPECS",
    "ParamSpec",
    "SPAWNABLE_ENTITIES",
    "UNSAFE_ENVIRONMENTS",
    "clamp_params",
    "parse_candidate",
    "parse_candidates",
    "roll_params",
    "unsafe_types",
]
