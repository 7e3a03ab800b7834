"""Tests for staleness-biased target selection."""
from __future__ import annotations

from collections import Counter

from chaos_director.models import PlayerMode, PlayerSnapshot
from chaos_director.rng import DeterministicRNG
from chaos_director.targeting import FairTargetSelector, eligible_pool, find_player


def _players(count: int):
    return [PlayerSnapshot(player_id=f"p{index}", name=f"Player{index}") for index in range(count)]


def test_band_is_older_half():
    players = _players(4)
    last_served = {"p0": 400, "p1": 100, "p2": 300, "p3": 200}
    band = FairTargetSelector.band(players, last_served)
    assert [player.player_id for player in band] == ["p1", "p3"]


def test_band_never_empty():
    players = _players(1)
    assert FairTargetSelector.band(players, {}) == players


def test_selection_only_from_stale_half():
    """Over many draws, only the staler half is ever chosen, roughly evenly."""
    players = _players(4)
    last_served = {"p0": 10, "p1": 20, "p2": 900, "p3": 950}
    selector = FairTargetSelector(DeterministicRNG(3))

    counts = Counter(selector.select(players, last_served).player_id for _ in range(1000))

    assert set(counts) == {"p0", "p1"}
    assert 400 < counts["p0"] < 600


def test_never_served_counts_as_oldest():
    players = _players(2)
    selector = FairTargetSelector(DeterministicRNG(0))
    for _ in range(20):
        assert selector.select(players, {"p0": 50}).player_id == "p1"


def test_preferred_target_is_honoured_when_eligible():
    players = _players(3)
    selector = FairTargetSelector(DeterministicRNG(1))
    chosen = selector.select(players, {"p0": 0, "p1": 0, "p2": 999}, preferred="player2")
    assert chosen.player_id == "p2"

    fallback = selector.select(players[:2], {}, preferred="Nobody")
    assert fallback.player_id == "p0"


def test_select_without_candidates():
    assert FairTargetSelector(DeterministicRNG(1)).select([], {}) is None


def test_find_player_by_id_or_name():
    players = _players(2)
    assert find_player(players, "p1").name == "Player1"
    assert find_player(players, "PLAYER0").player_id == "p0"
    assert find_player(players, "ghost") is None


def test_eligible_pool_rules():
    players = _players(3)
    modes = {"p0": PlayerMode.OFF, "p1": PlayerMode.AUTO, "p2": PlayerMode.MILD}
    cooling = {"p1"}

    pool = eligible_pool(players, modes.__getitem__, cooling.__contains__)
    assert [player.player_id for player in pool] == ["p2"]

    forced = eligible_pool(players, modes.__getitem__, cooling.__contains__, force=True)
    assert [player.player_id for player in forced] == ["p1", "p2"]

    everyone_cooling = eligible_pool(players, modes.__getitem__, lambda _: True)
    assert [player.player_id for player in everyone_cooling] == ["p1", "p2"]


def _waits(player_count: int, cycles: int, seed: int):
    """Serve one player per cycle and record how long each one waited."""
    players = _players(player_count)
    selector = FairTargetSelector(DeterministicRNG(seed))
    last_served = {player.player_id: 0 for player in players}
    waits = []
    served = Counter()
    for cycle in range(1, cycles + 1):
        chosen = selector.select(players, last_served).player_id
        waits.append(cycle - last_served[chosen])
        last_served[chosen] = cycle
        served[chosen] += 1
    return waits, served, last_served


def test_no_player_is_starved():
    """Waits stay near the mean; a fixed seed keeps the run reproducible."""
    cycles = 1200
    for player_count in (4, 6, 8):
        waits, served, last_served = _waits(player_count, cycles, seed=2024)
        mean_wait = sum(waits) / len(waits)
        assert mean_wait < player_count + 1

        ordered = sorted(waits)
        assert ordered[int(len(ordered) * 0.9)] <= 2 * mean_wait

        expected = cycles / player_count
        assert all(0.8 * expected < served[f"p{index}"] < 1.2 * expected for index in range(player_count))
        assert max(cycles - tick for tick in last_served.values()) <= 4 * player_count
