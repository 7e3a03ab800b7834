"""Configuration loading utilities for the Chaos Director."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable

import yaml

from .models import DifficultyMode, EventType, PlayerMode

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"

DEFAULT_REPEATABLE = frozenset({EventType.CAGE, EventType.SPAWN, EventType.LAVA_TRAP})
DEFAULT_CEILINGS = {PlayerMode.AUTO: 5, PlayerMode.MILD: 1, PlayerMode.SPICY: 4}


def _event_types(values: Iterable[Any]) -> FrozenSet[EventType]:
    resolved = set()
    for value in values or ():
        event_type = EventType.lookup(value)
        if event_type is None:
            logger.warning("Ignoring unknown event type in settings: %r", value)
            continue
        resolved.add(event_type)
    return frozenset(resolved)


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    ticks_per_second: int
    planning_period_seconds: float
    per_player_cooldown_ticks: int
    jitter_ticks: int
    block_budget_per_tick: int
    pending_queue_cap: int
    max_actions_per_cycle: int
    max_commands_per_cycle: int
    fanout_all: bool
    dry_run: bool
    enabled: bool
    per_type_cooldown_ticks: int
    diversity_window: int
    max_type_share: float
    repeatable_types: FrozenSet[EventType]
    banned_types: FrozenSet[EventType]
    mode_ceilings: Dict[PlayerMode, int]
    difficulty_mode: DifficultyMode
    stage_seconds: int
    max_stage: int
    safe_seconds: int
    nasty_seconds: int
    planner_enabled: bool
    planner_base_url: str
    planner_model: str
    planner_api_key_env: str
    planner_timeout_seconds: float
    planner_randomness: float
    flourish_chance: float
    max_backoff_seconds: int
    max_failures: int
    rollback_db_path: str
    restart_delay_ticks: int
    telemetry_enabled: bool
    telemetry_db_path: str

    @staticmethod
    def from_dict(data: Dict[str, Any] | None) -> "Settings":
        data = data or {}
        timing = data.get("timing", {}) or {}
        execution = data.get("execution", {}) or {}
        diversity = data.get("diversity", {}) or {}
        modes = data.get("modes", {}) or {}
        difficulty = data.get("difficulty", {}) or {}
        planner = data.get("planner", {}) or {}
        rollback = data.get("rollback", {}) or {}
        telemetry = data.get("telemetry", {}) or {}

        ceilings = dict(DEFAULT_CEILINGS)
        for key, value in (modes.get("ceilings", {}) or {}).items():
            mode = PlayerMode.parse(key)
            if mode is not PlayerMode.OFF:
                ceilings[mode] = max(1, min(5, int(value)))

        repeatable = diversity.get("repeatable_types")
        return Settings(
            ticks_per_second=max(1, int(timing.get("ticks_per_second", 20))),
            planning_period_seconds=float(timing.get("planning_period_seconds", 45)),
            per_player_cooldown_ticks=int(timing.get("per_player_cooldown_ticks", 600)),
            jitter_ticks=int(timing.get("jitter_ticks", 100)),
            block_budget_per_tick=int(execution.get("block_budget_per_tick", 200)),
            pending_queue_cap=int(execution.get("pending_queue_cap", 256)),
            max_actions_per_cycle=int(execution.get("max_actions_per_cycle", 2)),
            max_commands_per_cycle=int(execution.get("max_commands_per_cycle", 3)),
            fanout_all=bool(execution.get("fanout_all", False)),
            dry_run=bool(execution.get("dry_run", False)),
            enabled=bool(execution.get("enabled", True)),
            per_type_cooldown_ticks=int(diversity.get("per_type_cooldown_ticks", 1200)),
            diversity_window=int(diversity.get("window", 60)),
            max_type_share=float(diversity.get("max_type_share", 0.20)),
            repeatable_types=DEFAULT_REPEATABLE if repeatable is None else _event_types(repeatable),
            banned_types=_event_types(diversity.get("banned_types", [])),
            mode_ceilings=ceilings,
            difficulty_mode=DifficultyMode.parse(difficulty.get("mode", "balanced")),
            stage_seconds=int(difficulty.get("stage_seconds", 300)),
            max_stage=int(difficulty.get("max_stage", 4)),
            safe_seconds=int(difficulty.get("safe_seconds", 240)),
            nasty_seconds=int(difficulty.get("nasty_seconds", 60)),
            planner_enabled=bool(planner.get("enabled", True)),
            planner_base_url=str(planner.get("base_url", "https://api.openai.com/v1")),
            planner_model=str(planner.get("model", "gpt-4o-mini")),
            planner_api_key_env=str(planner.get("api_key_env", "OPENAI_API_KEY")),
            planner_timeout_seconds=float(planner.get("timeout_seconds", 20)),
            planner_randomness=float(planner.get("randomness", 0.8)),
            flourish_chance=float(planner.get("flourish_chance", 0.6)),
            max_backoff_seconds=int(planner.get("max_backoff_seconds", 60)),
            max_failures=int(planner.get("max_failures", 8)),
            rollback_db_path=str(rollback.get("db_path", "chaos_rollbacks.db")),
            restart_delay_ticks=int(rollback.get("restart_delay_ticks", 40)),
            telemetry_enabled=bool(telemetry.get("enabled", True)),
            telemetry_db_path=str(telemetry.get("db_path", "chaos_telemetry.db")),
        )

    # Safety clamps. Runtime reconfiguration goes through dataclasses.replace,
    # so the floors are applied on read rather than at load time.

    @property
    def planning_period_ticks(self) -> int:
        return max(40, int(max(1.0, self.planning_period_seconds) * self.ticks_per_second))

    @property
    def cooldown_ticks(self) -> int:
        return max(40, self.per_player_cooldown_ticks)

    @property
    def jitter(self) -> int:
        return max(0, self.jitter_ticks)

    @property
    def queue_capacity(self) -> int:
        return max(8, self.pending_queue_cap)

    @property
    def share_cap(self) -> float:
        return max(0.10, min(0.90, self.max_type_share))

    @property
    def window_size(self) -> int:
        return max(10, self.diversity_window)

    @property
    def candidate_limit(self) -> int:
        return min(2, max(1, self.max_actions_per_cycle))

    def ceiling_for(self, mode: PlayerMode) -> int:
        if mode is PlayerMode.OFF:
            return 0
        return self.mode_ceilings.get(mode, 5)


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_SETTINGS_PATH
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["DEFAULT_SETTINGS_PATH", "Settings", "SettingsLoader", "get_settings"]
