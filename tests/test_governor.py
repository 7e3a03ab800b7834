"""Tests for the diversity and cooldown governor."""
from __future__ import annotations

from dataclasses import replace

from chaos_director.config import Settings
from chaos_director.governor import DiversityGovernor
from chaos_director.models import EventType, PlayerMode, PlayerProfile, Verdict
from chaos_director.rng import DeterministicRNG


def _governor(**overrides):
    settings = replace(Settings.from_dict({}), **overrides)
    profiles = {}
    governor = DiversityGovernor(settings, DeterministicRNG(11), lambda pid: profiles.setdefault(pid, PlayerProfile()))
    return governor, profiles


def test_accepts_fresh_event():
    governor, _ = _governor()
    admission = governor.admit("p1", EventType.ICE_RING, now=100, max_severity=3)
    assert admission.verdict is Verdict.ACCEPT
    assert admission.type is EventType.ICE_RING


def test_off_mode_and_banned_are_rejected():
    governor, _ = _governor(banned_types=frozenset({EventType.CAGE}))
    assert governor.admit("p1", EventType.SLOW, 0, 5, PlayerMode.OFF).verdict is Verdict.REJECT
    assert governor.admit("p1", EventType.CAGE, 0, 5).verdict is Verdict.REJECT


def test_above_ceiling_is_downshifted():
    """A severity-5 request under a ceiling of 2 becomes a severity <=2 kind."""
    governor, _ = _governor()
    for _ in range(20):
        admission = governor.admit("p1", EventType.LAVA_TRAP, 0, max_severity=2)
        assert admission.verdict is Verdict.SUBSTITUTE
        assert admission.type.severity <= 2


def test_mild_mode_caps_at_one():
    governor, _ = _governor()
    admission = governor.admit("p1", EventType.CAGE, 0, max_severity=5, mode=PlayerMode.MILD)
    assert admission.type.severity == 1


def test_unsafe_kind_is_substituted():
    governor, _ = _governor()
    admission = governor.admit("p1", EventType.SPAWN, 0, 5, unsafe={EventType.SPAWN})
    assert admission.verdict is Verdict.SUBSTITUTE
    assert admission.type is not EventType.SPAWN


def test_duplicate_in_cycle_is_substituted():
    governor, _ = _governor()
    admission = governor.admit("p1", EventType.SLOW, 0, 5, exclude={EventType.SLOW})
    assert admission.verdict is Verdict.SUBSTITUTE
    assert admission.type is not EventType.SLOW


def test_repeat_suppression():
    """Minor kinds in recent history are skipped; headline repeats are allowed."""
    governor, _ = _governor(per_type_cooldown_ticks=0)
    governor.commit("p1", EventType.SLOW, 0)
    governor.commit("p1", EventType.CAGE, 0)

    assert governor.admit("p1", EventType.SLOW, 10_000, 5).verdict is Verdict.REJECT
    assert governor.admit("p1", EventType.CAGE, 10_000, 5).verdict is Verdict.ACCEPT
    assert governor.admit("p2", EventType.SLOW, 10_000, 5).verdict is Verdict.ACCEPT


def test_history_holds_last_four():
    governor, profiles = _governor(per_type_cooldown_ticks=0)
    for kind in (EventType.SLOW, EventType.BLIND, EventType.NAUSEA, EventType.FATIGUE, EventType.LEVITATE):
        governor.commit("p1", kind, 0)
    assert list(profiles["p1"].recent) == [EventType.BLIND, EventType.NAUSEA, EventType.FATIGUE, EventType.LEVITATE]
    assert not governor.is_repeat("p1", EventType.SLOW)


def test_type_cooldown_substitutes_same_class():
    governor, _ = _governor(per_type_cooldown_ticks=1200)
    governor.commit("p1", EventType.CAGE, 100)
    admission = governor.admit("p1", EventType.CAGE, 200, 3)
    assert admission.verdict is Verdict.SUBSTITUTE
    assert admission.type.is_headline
    assert admission.type is not EventType.CAGE
    assert governor.admit("p1", EventType.CAGE, 1400, 3).verdict is Verdict.ACCEPT


def test_type_share_stays_bounded():
    """Accepted kinds never push any share past the cap inside the window."""
    governor, _ = _governor(diversity_window=20, max_type_share=0.20, per_type_cooldown_ticks=0)
    now = 0
    for index in range(200):
        now += 1000
        admission = governor.admit(f"p{index % 7}", EventType.CAGE, now, 5)
        if admission.accepted:
            governor.commit(f"p{index % 7}", admission.type, now)
        window = governor.recent_global
        count = sum(1 for kind in window if kind is EventType.CAGE)
        assert count <= int(0.20 * 20) + 1


def test_commit_updates_cooldowns_and_fairness():
    governor, _ = _governor()
    governor.commit("p1", EventType.ICE_RING, 500)
    assert governor.last_served["p1"] == 500
    assert governor.on_cooldown("p1", 600)
    assert not governor.on_cooldown("p1", 500 + 600)
    assert governor.type_on_cooldown("p1", EventType.ICE_RING, 1000)
    assert governor.recent_global == [EventType.ICE_RING]


def test_admit_does_not_mutate_state():
    governor, profiles = _governor()
    governor.admit("p1", EventType.ICE_RING, 0, 5)
    assert governor.last_served == {}
    assert governor.recent_global == []
    assert not governor.on_cooldown("p1", 1)
    assert "p1" not in profiles or not profiles["p1"].recent


def test_share_counts_events_seen_so_far():
    """A part-filled window measures shares over what it holds, floored at ten."""
    governor, _ = _governor(diversity_window=60, max_type_share=0.20, per_type_cooldown_ticks=0)
    governor.commit("p1", EventType.CAGE, 0)
    assert not governor.is_overused(EventType.CAGE)

    governor.commit("p2", EventType.CAGE, 0)
    governor.commit("p3", EventType.CAGE, 0)
    assert governor.is_overused(EventType.CAGE)

    for player, kind in enumerate((EventType.SLOW, EventType.BLIND, EventType.ICE_RING, EventType.SPAWN,
                                   EventType.NAUSEA, EventType.FATIGUE, EventType.HONEY_TRAP, EventType.LEVITATE,
                                   EventType.SAND_DRIZZLE, EventType.FLOOR_PULL, EventType.BERSERK, EventType.HYPER_SPEED)):
        governor.commit(f"q{player}", kind, 0)
    assert len(governor.recent_global) == 15
    assert not governor.is_overused(EventType.CAGE)
