"""Tests for the event catalogue and candidate parsing."""
from __future__ import annotations

import math

from chaos_director.events import (
    MAX_LAVA_TICKS,
    MAX_MOBS_PER_EVENT,
    PARAM_SPECS,
    clamp_params,
    parse_candidate,
    parse_candidates,
    roll_params,
    unsafe_types,
)
from chaos_director.models import EventType
from chaos_director.rng import DeterministicRNG


def test_every_type_has_param_specs():
    assert set(PARAM_SPECS) == set(EventType)


def test_severity_classes():
    assert EventType.SLOW.severity == 1
    assert not EventType.SLOW.is_headline
    assert EventType.CAGE.severity == 3
    assert EventType.LAVA_TRAP.severity == 5
    assert all(1 <= kind.severity <= 5 for kind in EventType)


def test_clamp_params_bounds_numbers():
    params = clamp_params(EventType.SPAWN, {"count": 50, "radius": -3, "entity": "minecraft:Zombie"})
    assert params == {"count": MAX_MOBS_PER_EVENT, "radius": 0, "entity": "zombie"}

    lava = clamp_params(EventType.LAVA_TRAP, {"duration_ticks": 10_000})
    assert lava["duration_ticks"] == MAX_LAVA_TICKS


def test_clamp_params_rejects_garbage():
    """Non-numeric, NaN and infinite values fall back to the default."""
    assert clamp_params(EventType.SLOW, {"seconds": "soon"})["seconds"] == 8
    assert clamp_params(EventType.SLOW, {"seconds": math.nan})["seconds"] == 8
    assert clamp_params(EventType.SLOW, {"seconds": math.inf})["seconds"] == 8


def test_unknown_cage_material_becomes_glass():
    assert clamp_params(EventType.CAGE, {"material": "bedrock"})["material"] == "glass"
    assert clamp_params(EventType.CAGE, {"material": "OBSIDIAN"})["material"] == "obsidian"


def test_roll_params_stay_in_range():
    rng = DeterministicRNG(5)
    for kind in EventType:
        for _ in range(5):
            params = roll_params(kind, rng)
            for spec in PARAM_SPECS[kind]:
                assert spec.low <= params[spec.name] <= spec.high


def test_unsafe_types_by_environment():
    assert unsafe_types("nether") == {EventType.SPAWN}
    assert unsafe_types("NETHER") == {EventType.SPAWN}
    assert unsafe_types("overworld") == frozenset()


def test_parse_candidate_normalises_input():
    descriptor = parse_candidate({"type": "cage", "target": " Alex ", "radius": 9, "reason": "x" * 300})
    assert descriptor is not None
    assert descriptor.type is EventType.CAGE
    assert descriptor.target == "Alex"
    assert descriptor.params["radius"] == 3
    assert len(descriptor.reason) == 200


def test_parse_candidates_drops_invalid_entries():
    """Unknown kinds and non-objects are skipped without affecting the rest."""
    parsed = parse_candidates([
        "CAGE",
        {"type": "TELEPORT_TO_MOON"},
        {"type": "SLOW", "seconds": 12},
        None,
        {"type": "BLIND"},
    ])
    assert [item.type for item in parsed] == [EventType.SLOW, EventType.BLIND]
    assert parsed[0].params["seconds"] == 12
