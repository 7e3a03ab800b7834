"""World mutations for every event type.

Each handler takes an :class:`EffectContext` plus the clamped parameters and
returns ``True`` when the disruption actually landed. Returning ``False``
means nothing happened (no safe spot, nothing to change) and the director
treats the event as not served. Exceptions propagate to the caller.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence

from .events import MAX_LAVA_TICKS
from .executor import MutationExecutor
from .journal import RollbackJournal
from .models import Cell, CommandResult, Coord, EventType, OperationKind, PlayerSnapshot
from .rng import DeterministicRNG
from .world import Vector, WorldSurface

logger = logging.getLogger(__name__)

RANDOM_HOSTILES = ("zombie", "skeleton", "spider", "creeper")
RANDOM_NETHER_HOSTILES = ("zombified_piglin", "piglin", "magma_cube", "blaze")
TRASH_ITEMS = ("wheat_seeds", "poppy", "dandelion", "dirt", "cobblestone", "rotten_flesh", "string", "bone", "gunpowder")
PASSABLE = frozenset({"air", "cave_air", "void_air", "grass", "short_grass", "tall_grass", "snow", "fern"})
NOT_SOLID = PASSABLE | {"water", "lava", "fire", "nether_portal", "cobweb"}

WITHER_MIN_DISTANCE = 128.0
TEMPORARY_WITHER_TICKS = 300
SHOVE_SCALE = 2.5
WATCH_INTERVAL = 10
FLIP_INTERVAL = 5


@dataclass(frozen=True)
class DeferredCall:
    """Internal instruction run on the tick thread once due."""

    label: str
    run: Callable[[], None]


@dataclass
class EffectContext:
    """Everything a handler may touch for one target player."""

    world: WorldSurface
    executor: MutationExecutor
    journal: RollbackJournal
    rng: DeterministicRNG
    player: PlayerSnapshot
    lookup: Callable[[str], Optional[PlayerSnapshot]]
    defer: Callable[[OperationKind, Any, int], bool]

    @property
    def region(self) -> str:
        return self.player.region

    @property
    def player_id(self) -> str:
        return self.player.player_id

    @property
    def feet(self) -> Coord:
        return self.player.block_position

    def later(self, label: str, delay_ticks: int, run: Callable[[], None]) -> bool:
        return self.defer(OperationKind.CALLBACK, DeferredCall(label, run), delay_ticks)


Handler = Callable[[EffectContext, Mapping[str, Any]], bool]
HANDLERS: Dict[EventType, Handler] = {}


def handles(*event_types: EventType) -> Callable[[Handler], Handler]:
    def register(func: Handler) -> Handler:
        for event_type in event_types:
            HANDLERS[event_type] = func
        return func

    return register


def run_effect(event_type: EventType, context: EffectContext, params: Mapping[str, Any]) -> bool:
    return HANDLERS[event_type](context, params)


def _offset(coord: Coord, dx: int = 0, dy: int = 0, dz: int = 0) -> Coord:
    return (coord[0] + dx, coord[1] + dy, coord[2] + dz)


def _ticks_to_seconds(ticks: int) -> int:
    return max(1, math.ceil(ticks / 20))


def _rollback(context: EffectContext, cells: Sequence[Cell], duration_ticks: int, label: str) -> bool:
    if not cells:
        logger.info("%s changed nothing around %s", label, context.player.name)
        return False
    context.journal.schedule(context.region, cells, duration_ticks)
    logger.info("%s: %s cells for %s, reverting in %st", label, len(cells), context.player.name, duration_ticks)
    return True


def _find_standing_spot(world: WorldSurface, region: str, base: Coord) -> Optional[Coord]:
    for dy in range(5, -6, -1):
        spot = _offset(base, dy=dy)
        if world.read_cell(region, _offset(spot, dy=-1)) in NOT_SOLID:
            continue
        if world.read_cell(region, spot) in PASSABLE and world.read_cell(region, _offset(spot, dy=1)) in PASSABLE:
            return spot
    return None


def _find_wither_spot(world: WorldSurface, region: str, base: Coord) -> Optional[Coord]:
    for dy in range(5, -6, -1):
        spot = _offset(base, dy=dy)
        footprint = [(dx, dz) for dx in (-1, 0, 1) for dz in (-1, 0, 1)]
        if any(world.read_cell(region, _offset(spot, dx, -1, dz)) in NOT_SOLID for dx, dz in footprint):
            continue
        if all(
            world.read_cell(region, _offset(spot, dx, height, dz)) in PASSABLE
            for dx, dz in footprint
            for height in range(4)
        ):
            return spot
    return None


def _centre(coord: Coord) -> Vector:
    return (coord[0] + 0.5, float(coord[1]), coord[2] + 0.5)


# Status effects -----------------------------------------------------------


def _status(status: str, amplifier_key: Optional[str] = None, fixed_amplifier: int = 0) -> Handler:
    def apply(context: EffectContext, params: Mapping[str, Any]) -> bool:
        amplifier = int(params[amplifier_key]) if amplifier_key else fixed_amplifier
        context.world.apply_status(context.player_id, status, int(params["seconds"]), amplifier)
        logger.info("%s %ss amp%s for %s", status, params["seconds"], amplifier, context.player.name)
        return True

    return apply


HANDLERS[EventType.SLOW] = _status("slowness", "amplifier")
HANDLERS[EventType.FATIGUE] = _status("mining_fatigue", "amplifier")
HANDLERS[EventType.NAUSEA] = _status("nausea")
HANDLERS[EventType.BLIND] = _status("blindness")
HANDLERS[EventType.LEVITATE] = _status("levitation")
HANDLERS[EventType.LEVITATE_LONG] = _status("levitation")
HANDLERS[EventType.HYPER_SPEED] = _status("speed", "amplifier")


# Block effects (all rollback-backed) --------------------------------------


@handles(EventType.ICE_RING)
def ice_ring(context: EffectContext, params: Mapping[str, Any]) -> bool:
    radius = int(params["radius"])
    centre = _offset(context.feet, dy=-1)
    coords = [
        _offset(centre, dx, 0, dz)
        for dx in range(-radius, radius + 1)
        for dz in range(-radius, radius + 1)
        if math.hypot(dx, dz) <= radius
    ]
    cells = context.executor.replace_cells(context.region, coords, "ice")
    return _rollback(context, cells, int(params["duration_ticks"]), "ice ring")


@handles(EventType.BOUNCY_FLOOR)
def bouncy_floor(context: EffectContext, params: Mapping[str, Any]) -> bool:
    cells = context.executor.replace_cells(context.region, [_offset(context.feet, dy=-1)], "slime_block")
    return _rollback(context, cells, int(params["duration_ticks"]), "bouncy floor")


@handles(EventType.HONEY_TRAP)
def honey_trap(context: EffectContext, params: Mapping[str, Any]) -> bool:
    coords = [_offset(context.feet, dx, -1, dz) for dx in (-1, 0, 1) for dz in (-1, 0, 1)]
    cells = context.executor.replace_cells(context.region, coords, "honey_block")
    return _rollback(context, cells, int(params["duration_ticks"]), "honey trap")


@handles(EventType.SAND_DRIZZLE)
def sand_drizzle(context: EffectContext, params: Mapping[str, Any]) -> bool:
    coords = [
        _offset(context.feet, dx, dy, dz)
        for dy in (3, 4, 5)
        for dx in (-1, 0, 1)
        for dz in (-1, 0, 1)
    ]
    cells = context.executor.replace_cells(context.region, coords, "sand", only_if=lambda prior: prior == "air")
    return _rollback(context, cells, int(params["duration_ticks"]), "sand drizzle")


@handles(EventType.FIRE_UNDER)
def fire_under(context: EffectContext, params: Mapping[str, Any]) -> bool:
    feet = context.feet
    if context.world.read_cell(context.region, _offset(feet, dy=-1)) == "air":
        logger.info("fire under aborted for %s: nothing to burn on", context.player.name)
        return False
    cells = context.executor.replace_cells(context.region, [feet], "fire", only_if=lambda prior: prior == "air")
    return _rollback(context, cells, int(params["duration_ticks"]), "fire under")


@handles(EventType.LAVA_TRAP)
def lava_trap(context: EffectContext, params: Mapping[str, Any]) -> bool:
    duration = min(int(params["duration_ticks"]), MAX_LAVA_TICKS)
    cells = context.executor.replace_cells(context.region, [_offset(context.feet, dy=-1)], "lava")
    return _rollback(context, cells, duration, "lava trap")


@handles(EventType.CAGE)
def cage(context: EffectContext, params: Mapping[str, Any]) -> bool:
    radius = int(params["radius"])
    height = int(params["height"])

    def shell() -> Iterator[Coord]:
        for dy in range(-2, height + 1):
            for dx in range(-radius, radius + 1):
                for dz in range(-radius, radius + 1):
                    wall = -2 < dy < height and (abs(dx) == radius or abs(dz) == radius)
                    if wall or dy in (-2, height):
                        yield _offset(context.feet, dx, dy, dz)

    cells = context.executor.replace_cells(context.region, shell(), str(params["material"]))
    return _rollback(context, cells, int(params["duration_ticks"]), f"{params['material']} cage")


@handles(EventType.FLOOR_PULL)
def floor_pull(context: EffectContext, params: Mapping[str, Any]) -> bool:
    coords = [_offset(context.feet, dy=-depth) for depth in range(1, int(params["depth"]) + 1)]
    cells = context.executor.replace_cells(context.region, coords, "air")
    return _rollback(context, cells, int(params["duration_ticks"]), "floor pull")


# Actors ---------------------------------------------------------------------


def _spawn_mobs(context: EffectContext, entity: str, count: int, radius: int) -> int:
    spawned = 0
    for _ in range(count):
        for _attempt in range(15):
            dx = context.rng.randint(-radius, radius)
            dz = context.rng.randint(-radius, radius)
            spot = _find_standing_spot(context.world, context.region, _offset(context.feet, dx, 0, dz))
            if spot is not None:
                context.world.spawn_actor(context.region, entity, _centre(spot))
                spawned += 1
                break
    return spawned


@handles(EventType.SPAWN)
def spawn(context: EffectContext, params: Mapping[str, Any]) -> bool:
    entity = str(params["entity"])
    if entity == "random":
        pool = RANDOM_NETHER_HOSTILES if context.player.environment == "nether" else RANDOM_HOSTILES
        entity = context.rng.choice(pool)
    spawned = _spawn_mobs(context, entity, int(params["count"]), int(params["radius"]))
    if spawned:
        logger.info("spawned %s x %s around %s", spawned, entity, context.player.name)
    else:
        logger.info("no safe spawn spot for %s around %s", entity, context.player.name)
    return spawned > 0


@handles(EventType.BERSERK)
def berserk(context: EffectContext, params: Mapping[str, Any]) -> bool:
    context.world.apply_status(context.player_id, "strength", int(params["seconds"]), 1)
    _spawn_mobs(context, "silverfish", 3, 1)
    logger.info("berserk for %s", context.player.name)
    return True


@handles(EventType.WITHER_MAYBE)
def wither_maybe(context: EffectContext, params: Mapping[str, Any]) -> bool:
    if not context.rng.chance(float(params["chance"])):
        logger.info("wither roll missed for %s", context.player.name)
        return True
    sx, _, sz = context.world.spawn_point(context.region)
    px, _, pz = context.player.position
    if math.hypot(px - sx, pz - sz) < WITHER_MIN_DISTANCE:
        logger.info("wither blocked for %s: too close to spawn", context.player.name)
        return True
    spot = _find_wither_spot(context.world, context.region, _offset(context.feet, 4, 1, 4))
    if spot is None:
        logger.info("wither failed for %s: no safe spot", context.player.name)
        return False
    context.world.spawn_actor(context.region, "wither", _centre(spot))
    logger.warning("wither spawned near %s", context.player.name)
    return True


@handles(EventType.WITHER_TEMPORARY)
def wither_temporary(context: EffectContext, params: Mapping[str, Any]) -> bool:
    spot = _find_wither_spot(context.world, context.region, _offset(context.feet, 3, 1, 3))
    if spot is None:
        logger.info("temporary wither failed for %s: no safe spot", context.player.name)
        return False
    actor_id = context.world.spawn_actor(context.region, "wither", _centre(spot), invulnerable_ticks=100)
    world = context.world
    context.later("remove temporary wither", TEMPORARY_WITHER_TICKS, lambda: world.remove_actor(actor_id))
    logger.info("temporary wither %s near %s", actor_id, context.player.name)
    return True


# Inventory ------------------------------------------------------------------


@handles(EventType.HOTBAR_SHUFFLE)
def hotbar_shuffle(context: EffectContext, params: Mapping[str, Any]) -> bool:
    order = list(range(9))
    context.rng.shuffle(order)
    context.world.adjust_items(context.player_id, "shuffle_hotbar", order=order)
    return True


@handles(EventType.DROP_INVENTORY)
def drop_inventory(context: EffectContext, params: Mapping[str, Any]) -> bool:
    return context.world.adjust_items(context.player_id, "drop_all") > 0


@handles(EventType.UNEQUIP_ARMOR)
def unequip_armor(context: EffectContext, params: Mapping[str, Any]) -> bool:
    return context.world.adjust_items(context.player_id, "unequip_armor", drop_if_full=True) > 0


@handles(EventType.INVENTORY_SPAM)
def inventory_spam(context: EffectContext, params: Mapping[str, Any]) -> bool:
    items = [context.rng.choice(TRASH_ITEMS) for _ in range(36)]
    return context.world.adjust_items(context.player_id, "fill_empty", items=items) > 0


@handles(EventType.ITEM_MAGNET)
def item_magnet(context: EffectContext, params: Mapping[str, Any]) -> bool:
    pulled = context.world.adjust_items(context.player_id, "magnet", radius=int(params["radius"]))
    logger.info("item magnet pulled %s items to %s", pulled, context.player.name)
    return True


@handles(EventType.SWITCH_WHILE_MINING)
def switch_while_mining(context: EffectContext, params: Mapping[str, Any]) -> bool:
    remaining = max(20, min(200, int(params["watch_seconds"]) * 20))
    player_id = context.player_id

    def watch(left: int) -> None:
        current = context.lookup(player_id)
        if current is not None and looks_like_mining(current):
            context.world.adjust_items(player_id, "swap_hand", slot="first_non_tool")
            logger.info("switch while mining tripped for %s", current.name)
            return
        if left - WATCH_INTERVAL > 0:
            context.later("watch mining", WATCH_INTERVAL, lambda: watch(left - WATCH_INTERVAL))

    return context.later("watch mining", 1, lambda: watch(remaining))


def looks_like_mining(player: PlayerSnapshot) -> bool:
    if player.is_creative or player.is_spectator:
        return False
    return "pickaxe" in player.held_item


# Movement -------------------------------------------------------------------


@handles(EventType.PISTON_SHOVE)
def piston_shove(context: EffectContext, params: Mapping[str, Any]) -> bool:
    dx, dz, up = float(params["dx"]), float(params["dz"]), float(params["up"])
    magnitude = math.hypot(dx, dz)
    if magnitude < 0.1:
        return False
    impulse = (dx / magnitude * SHOVE_SCALE, up, dz / magnitude * SHOVE_SCALE)
    context.world.apply_impulse(context.player_id, impulse)
    logger.info("piston shove %s by (%.2f, %.2f, %.2f)", context.player.name, *impulse)
    return True


@handles(EventType.YEET_EXPLOSION)
def yeet_explosion(context: EffectContext, params: Mapping[str, Any]) -> bool:
    power = float(params["power"])
    x, y, z = context.player.position
    context.world.execute_command(f"particle minecraft:explosion_emitter {x:.2f} {y + 0.5:.2f} {z:.2f} 0 0 0 0.5 1 force")
    context.world.execute_command(
        f"playsound minecraft:entity.generic.explode master @a[distance=..32] {x:.2f} {y:.2f} {z:.2f} 2.0 1.0"
    )
    yaw = math.radians(context.player.yaw)
    pitch = math.radians(context.player.pitch)
    look = (-math.sin(yaw) * math.cos(pitch), math.cos(yaw) * math.cos(pitch))
    horizontal = power * 0.6
    context.world.apply_impulse(
        context.player_id,
        (look[0] * horizontal, 1.0 + (power - 1.0) * 0.4, look[1] * horizontal),
    )
    logger.info("yeet explosion for %s with power %.2f", context.player.name, power)
    return True


@handles(EventType.RUBBERBAND)
def rubberband(context: EffectContext, params: Mapping[str, Any]) -> bool:
    delay = int(params["delay_ticks"])
    anchor = context.player.position
    player_id = context.player_id
    world = context.world

    def snap_back() -> None:
        world.move_player(player_id, anchor)
        x, y, z = anchor
        world.execute_command(
            f"playsound minecraft:entity.enderman.teleport master @a[distance=..32] {x:.2f} {y:.2f} {z:.2f} 1.0 1.5"
        )

    if not context.later("rubberband", delay, snap_back):
        return False
    world.apply_status(player_id, "slowness", _ticks_to_seconds(delay + 10), 0)
    logger.info("rubberband armed for %s in %s ticks", context.player.name, delay)
    return True


@handles(EventType.FLIP_VIEW)
def flip_view(context: EffectContext, params: Mapping[str, Any]) -> bool:
    player_id = context.player_id

    def flip(left: int) -> None:
        current = context.lookup(player_id)
        if current is not None:
            context.world.move_player(player_id, current.position, yaw=current.yaw, pitch=-current.pitch)
        if left - FLIP_INTERVAL > 0:
            context.later("flip view", FLIP_INTERVAL, lambda: flip(left - FLIP_INTERVAL))

    return context.later("flip view", FLIP_INTERVAL, lambda: flip(int(params["seconds"]) * 20))


@handles(EventType.FORCE_RIDE)
def force_ride(context: EffectContext, params: Mapping[str, Any]) -> bool:
    if context.player.passives + context.player.hostiles == 0:
        logger.info("force ride for %s failed: nothing nearby", context.player.name)
        return False
    result = context.world.execute_command(
        f"ride {context.player.name} mount @e[type=!player,distance=..10,limit=1,sort=random]"
    )
    return result is CommandResult.SUCCESS


def _verify_handlers() -> None:
    missing = sorted(kind.value for kind in EventType if kind not in HANDLERS)
    if missing:
        raise RuntimeError(f"No effect handler registered for: {', '.join(missing)}")


_verify_handlers()


__all__ = [
    "DeferredCall",
    "EffectContext",
    "HANDLERS",
    "RANDOM_HOSTILES",
    "RANDOM_NETHER_HOSTILES",
    "looks_like_mining",
    "run_effect",
]
