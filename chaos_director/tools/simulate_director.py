"""Offline director simulation for tuning difficulty and diversity settings."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import Settings, SettingsLoader
from ..director import Director
from ..models import DifficultyMode
from ..rng import DeterministicRNG
from ..sandbox import InMemoryWorld, MemoryRollbackStore, demo_players
from ..telemetry import TelemetryCollector


def run_simulation(
    ticks: int,
    players: int = 3,
    seed: int = 42,
    difficulty: Optional[str] = None,
    dry_run: bool = False,
    settings: Settings | None = None,
    telemetry_db: Path | None = None,
) -> Dict[str, Any]:
    """Drive a director against an in-memory world using the heuristic planner."""

    settings = settings or SettingsLoader().load()
    changes: Dict[str, Any] = {"planner_enabled": False, "dry_run": dry_run, "enabled": True}
    if difficulty:
        changes["difficulty_mode"] = DifficultyMode.parse(difficulty)
    settings = replace(settings, **changes)

    world = InMemoryWorld()
    for player in demo_players(players):
        world.add_player(player)
    telemetry = TelemetryCollector(telemetry_db) if telemetry_db else None
    director = Director(
        world,
        settings=settings,
        store=MemoryRollbackStore(),
        rng=DeterministicRNG(seed),
        telemetry=telemetry,
    )

    severity_trace: List[int] = []
    for _ in range(max(0, ticks)):
        director.tick()
        if director.current_tick % settings.ticks_per_second == 0:
            severity_trace.append(director.difficulty.max_severity)
    director.shutdown()

    return {
        "ticks": director.current_tick,
        "seed": seed,
        "difficulty": director.difficulty.mode.value,
        "dry_run": settings.dry_run,
        "events_served": director.events_served,
        "events_by_type": dict(director.served_by_type.most_common()),
        "events_by_player": dict(sorted(director.served_by_player.items())),
        "max_severity_per_second": severity_trace,
        "cells_written": world.writes,
        "rollbacks_applied": director.journal.reverted,
        "rollbacks_pending": len(director.journal),
        "pending_dropped": director.pending.dropped,
    }


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Simulate the chaos director against an in-memory world."
    )
    parser.add_argument("--ticks", type=int, default=20 * 60 * 10, help="Ticks to simulate (default: 10 minutes).")
    parser.add_argument("--players", type=int, default=3, help="Number of demo players online.")
    parser.add_argument("--seed", type=int, default=42, help="RNG seed for a reproducible run.")
    parser.add_argument(
        "--difficulty",
        choices=[mode.value for mode in DifficultyMode],
        help="Override the difficulty mode from settings.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Plan and log only; never touch the world.")
    parser.add_argument("--settings", type=Path, help="Alternative settings YAML file.")
    parser.add_argument("--telemetry-db", type=Path, help="Record telemetry to this SQLite file.")
    parser.add_argument("--verbose", action="store_true", help="Log every planning decision.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = SettingsLoader(args.settings).load() if args.settings else None
    summary = run_simulation(
        ticks=args.ticks,
        players=args.players,
        seed=args.seed,
        difficulty=args.difficulty,
        dry_run=args.dry_run,
        settings=settings,
        telemetry_db=args.telemetry_db,
    )
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
