"""Tests for the offline director simulation tool."""
from __future__ import annotations

import json

from chaos_director.tools.simulate_director import main, run_simulation

FIVE_MINUTES = 20 * 60 * 5


def test_linear_run_summary():
    summary = run_simulation(ticks=FIVE_MINUTES, players=3, seed=1, difficulty="linear")

    assert summary["ticks"] == FIVE_MINUTES
    assert summary["difficulty"] == "linear"
    assert len(summary["max_severity_per_second"]) == 300
    assert set(summary["max_severity_per_second"]) == {3}
    assert summary["events_served"] > 0
    assert sum(summary["events_by_type"].values()) == summary["events_served"]
    assert sum(summary["events_by_player"].values()) == summary["events_served"]
    assert set(summary["events_by_player"]) <= {"player-1", "player-2", "player-3"}


def test_same_seed_same_story():
    first = run_simulation(ticks=FIVE_MINUTES, players=2, seed=11)
    second = run_simulation(ticks=FIVE_MINUTES, players=2, seed=11)
    assert first == second


def test_dry_run_never_writes():
    summary = run_simulation(ticks=FIVE_MINUTES, players=2, seed=3, dry_run=True)
    assert summary["dry_run"] is True
    assert summary["events_served"] == 0
    assert summary["cells_written"] == 0
    assert summary["rollbacks_pending"] == 0


def test_balanced_curve_has_nasty_windows():
    summary = run_simulation(ticks=FIVE_MINUTES, players=1, seed=5, difficulty="balanced")
    trace = summary["max_severity_per_second"]
    # entry i is second i + 1; the nasty window opens at 240s
    assert trace[0] == 1
    assert trace[238] == 1
    assert trace[239] == 3
    assert trace[-1] == 1


def test_cli_prints_json(capsys):
    exit_code = main(["--ticks", "200", "--players", "2", "--seed", "4", "--dry-run"])
    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["ticks"] == 200
    assert summary["seed"] == 4
    assert summary["cells_written"] == 0
