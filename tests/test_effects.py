"""Tests for event effect handlers against the in-memory world."""
from __future__ import annotations

from unittest.mock import Mock

from chaos_director.effects import (
    HANDLERS,
    RANDOM_NETHER_HOSTILES,
    EffectContext,
    looks_like_mining,
    run_effect,
)
from chaos_director.events import clamp_params
from chaos_director.executor import MutationExecutor
from chaos_director.journal import RollbackJournal
from chaos_director.models import CommandResult, EventType, OperationKind, PendingOperation, PlayerSnapshot
from chaos_director.pending import PendingQueue
from chaos_director.rng import DeterministicRNG
from chaos_director.sandbox import InMemoryWorld
from chaos_director.targeting import find_player


class Harness:
    """One player on flat stone ground at y=63, feet at (0, 64, 0)."""

    def __init__(self, player: PlayerSnapshot | None = None, rng=None) -> None:
        self.world = InMemoryWorld()
        self.player = self.world.add_player(player or PlayerSnapshot("p1", "Alex", position=(0.5, 64.0, 0.5)))
        self.now = 0
        self.pending = PendingQueue(64)
        self.executor = MutationExecutor(self.world, 200)
        self.journal = RollbackJournal(self.world, None, self.pending, lambda: self.now)
        self.context = EffectContext(
            world=self.world,
            executor=self.executor,
            journal=self.journal,
            rng=rng or DeterministicRNG(3),
            player=self.player,
            lookup=lambda key: find_player(self.world.online_players(), key),
            defer=self.defer,
        )

    def defer(self, kind, payload, delay_ticks) -> bool:
        return self.pending.enqueue(PendingOperation(kind, payload, self.now + max(1, delay_ticks)))

    def run(self, kind: EventType, **raw) -> bool:
        return run_effect(kind, self.context, clamp_params(kind, raw))

    def advance(self, ticks: int) -> None:
        for _ in range(ticks):
            self.now += 1
            for operation in self.pending.pop_due(self.now):
                if operation.kind is OperationKind.CALLBACK:
                    operation.payload.run()
                elif operation.kind is OperationKind.ROLLBACK:
                    self.journal.revert(operation.payload)


def test_every_event_type_has_a_handler():
    assert set(HANDLERS) == set(EventType)


def test_status_effects_apply_to_target():
    harness = Harness()
    assert harness.run(EventType.SLOW, seconds=12, amplifier=1)
    assert harness.run(EventType.BLIND, seconds=4)
    assert harness.world.statuses == [("p1", "slowness", 12, 1), ("p1", "blindness", 4, 0)]


def test_ice_ring_is_rolled_back():
    harness = Harness()
    assert harness.run(EventType.ICE_RING, radius=2, duration_ticks=100)

    ring = [coord for (region, coord), value in harness.world.cells.items() if value == "ice"]
    assert len(ring) == 13
    assert all(coord[1] == 63 for coord in ring)
    assert len(harness.journal) == 1

    harness.advance(100)
    assert all(harness.world.cell("overworld", coord) == "stone" for coord in ring)
    assert len(harness.journal) == 0


def test_fire_under_needs_ground():
    harness = Harness()
    assert harness.run(EventType.FIRE_UNDER, duration_ticks=40)
    assert harness.world.cell("overworld", (0, 64, 0)) == "fire"

    floating = Harness()
    floating.world.write_cell("overworld", (0, 63, 0), "air")
    writes = floating.world.writes
    assert not floating.run(EventType.FIRE_UNDER, duration_ticks=40)
    assert floating.world.writes == writes
    assert len(floating.journal) == 0


def test_sand_drizzle_only_fills_air():
    harness = Harness()
    harness.world.write_cell("overworld", (0, 67, 0), "oak_leaves")
    assert harness.run(EventType.SAND_DRIZZLE, duration_ticks=60)
    assert harness.world.cell("overworld", (0, 67, 0)) == "oak_leaves"
    [job] = harness.journal.jobs()
    assert len(job.cells) == 26


def test_lava_trap_duration_is_capped():
    harness = Harness()
    assert harness.run(EventType.LAVA_TRAP, duration_ticks=5000)
    [job] = harness.journal.jobs()
    assert job.due_tick == 200
    assert harness.world.cell("overworld", (0, 63, 0)) == "lava"


def test_cage_and_floor_pull_revert_cleanly():
    harness = Harness()
    assert harness.run(EventType.CAGE, material="minecraft:obsidian", radius=1, height=5, duration_ticks=60)
    assert harness.run(EventType.FLOOR_PULL, depth=3, duration_ticks=40)
    assert harness.world.cell("overworld", (1, 64, 0)) == "obsidian"
    assert harness.world.cell("overworld", (0, 61, 0)) == "air"

    changed = {coord for (_, coord) in harness.world.cells}
    harness.advance(60)
    for coord in changed:
        expected = "stone" if coord[1] <= 63 else "air"
        assert harness.world.cell("overworld", coord) == expected


def test_spawn_uses_nether_pool_in_the_nether():
    player = PlayerSnapshot("p1", "Alex", region="the_nether", environment="nether", position=(0.5, 64.0, 0.5))
    harness = Harness(player)
    assert harness.run(EventType.SPAWN, entity="random", count=3, radius=2)
    kinds = [kind for (_, kind, _) in harness.world.actors.values()]
    assert len(kinds) == 3
    assert all(kind in RANDOM_NETHER_HOSTILES for kind in kinds)


def test_spawn_without_standing_room_fails():
    harness = Harness()
    for dy in range(-6, 12):
        for dx in range(-3, 4):
            for dz in range(-3, 4):
                harness.world.cells[("overworld", (dx, 64 + dy, dz))] = "water"
    assert not harness.run(EventType.SPAWN, entity="zombie", count=1, radius=1)
    assert harness.world.actors == {}


def test_wither_maybe_respects_spawn_distance():
    rng = Mock(wraps=DeterministicRNG(1))
    rng.chance.return_value = True

    near = Harness(rng=rng)
    assert near.run(EventType.WITHER_MAYBE, chance=0.05)
    assert near.world.actors == {}

    far = Harness(PlayerSnapshot("p1", "Alex", position=(500.5, 64.0, 0.5)), rng=rng)
    assert far.run(EventType.WITHER_MAYBE, chance=0.05)
    assert [kind for (_, kind, _) in far.world.actors.values()] == ["wither"]


def test_temporary_wither_is_removed():
    harness = Harness()
    assert harness.run(EventType.WITHER_TEMPORARY)
    assert len(harness.world.actors) == 1
    harness.advance(300)
    assert harness.world.actors == {}


def test_hotbar_shuffle_is_a_permutation():
    harness = Harness()
    assert harness.run(EventType.HOTBAR_SHUFFLE)
    [(player_id, action, details)] = harness.world.item_actions
    assert (player_id, action) == ("p1", "shuffle_hotbar")
    assert sorted(details["order"]) == list(range(9))


def test_switch_while_mining_waits_for_a_pickaxe():
    harness = Harness()
    assert harness.run(EventType.SWITCH_WHILE_MINING, watch_seconds=2)
    harness.advance(15)
    assert harness.world.item_actions == []

    harness.world.players["p1"].held_item = "minecraft:iron_pickaxe"
    harness.advance(15)
    assert [action for (_, action, _) in harness.world.item_actions] == ["swap_hand"]


def test_looks_like_mining_ignores_creative():
    player = PlayerSnapshot("p1", "Alex", held_item="diamond_pickaxe")
    assert looks_like_mining(player)
    player.is_creative = True
    assert not looks_like_mining(player)


def test_piston_shove_direction():
    harness = Harness()
    assert not harness.run(EventType.PISTON_SHOVE, dx=0, dz=0, up=1.0)
    assert harness.run(EventType.PISTON_SHOVE, dx=4, dz=0, up=1.0)
    assert harness.world.impulses == [("p1", (2.5, 1.0, 0.0))]


def test_rubberband_snaps_back():
    harness = Harness()
    assert harness.run(EventType.RUBBERBAND, delay_ticks=20)
    harness.world.move_player("p1", (10.5, 64.0, 10.5))
    harness.advance(20)
    assert harness.world.players["p1"].position == (0.5, 64.0, 0.5)
    assert harness.world.statuses_for("p1") == ["slowness"]


def test_flip_view_inverts_pitch():
    harness = Harness(PlayerSnapshot("p1", "Alex", pitch=30.0))
    assert harness.run(EventType.FLIP_VIEW, seconds=4)
    harness.advance(5)
    assert harness.world.players["p1"].pitch == -30.0
    harness.advance(5)
    assert harness.world.players["p1"].pitch == 30.0


def test_force_ride_needs_a_mount():
    harness = Harness()
    assert not harness.run(EventType.FORCE_RIDE)

    mounted = Harness(PlayerSnapshot("p1", "Alex", passives=2))
    assert mounted.run(EventType.FORCE_RIDE)
    assert mounted.world.commands[0].startswith("ride Alex mount")

    mounted.world.execute_command = Mock(return_value=CommandResult.FAILURE)
    assert not mounted.run(EventType.FORCE_RIDE)
