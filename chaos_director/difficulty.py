"""Difficulty curve: elapsed time to stage and severity ceiling."""
from __future__ import annotations

import logging

from .config import Settings
from .models import DifficultyMode, DifficultyReading

logger = logging.getLogger(__name__)

LINEAR_MAX_SEVERITY = 3
SEVERITY_CAP = 5


def curve_at(mode: DifficultyMode, elapsed_ticks: int, settings: Settings) -> DifficultyReading:
    """Evaluate the curve for ``mode`` after ``elapsed_ticks`` of the cycle.

    The function has no hidden state or randomness; the same inputs always
    yield the same reading.
    """

    elapsed_seconds = max(0, elapsed_ticks) // settings.ticks_per_second
    max_stage = max(1, settings.max_stage)
    stage_seconds = max(1, settings.stage_seconds)

    if mode is DifficultyMode.LINEAR:
        return DifficultyReading(stage=1, intense_window=True, max_severity=LINEAR_MAX_SEVERITY)

    if mode is DifficultyMode.PROGRESSIVE:
        stage = max(1, min(max_stage, elapsed_seconds // stage_seconds + 1))
        return DifficultyReading(stage=stage, intense_window=True, max_severity=min(SEVERITY_CAP, stage + 1))

    cycle = settings.safe_seconds + settings.nasty_seconds
    if cycle <= 0:
        return DifficultyReading(stage=2, intense_window=True, max_severity=min(SEVERITY_CAP, 3))

    intense = elapsed_seconds % cycle >= settings.safe_seconds
    base = min(max_stage, elapsed_seconds // (2 * stage_seconds) + 1)
    stage = min(max_stage, base + 1) if intense else base
    return DifficultyReading(
        stage=stage,
        intense_window=intense,
        max_severity=min(SEVERITY_CAP, stage + (1 if intense else 0)),
    )


class DifficultyCurve:
    """Tracks the current difficulty cycle for one director."""

    def __init__(self, settings: Settings, mode: DifficultyMode | None = None, start_tick: int = 0) -> None:
        self._settings = settings
        self.mode = mode or settings.difficulty_mode
        self.cycle_start = start_tick
        self.stage = 1
        self.intense_window = False
        self.max_severity = LINEAR_MAX_SEVERITY

    def configure(self, settings: Settings) -> None:
        self._settings = settings

    def advance(self, current_tick: int) -> DifficultyReading:
        reading = curve_at(self.mode, current_tick - self.cycle_start, self._settings)
        if reading.stage != self.stage or reading.intense_window != self.intense_window:
            logger.debug(
                "Difficulty now stage %s (intense=%s, max severity %s)",
                reading.stage,
                reading.intense_window,
                reading.max_severity,
            )
        self.stage = reading.stage
        self.intense_window = reading.intense_window
        self.max_severity = reading.max_severity
        return reading

    def reset(self, mode: DifficultyMode, current_tick: int) -> DifficultyReading:
        """Switch mode and restart the cycle at ``current_tick``."""

        logger.info("Difficulty mode set to %s at tick %s", mode.value, current_tick)
        self.mode = mode
        self.cycle_start = current_tick
        return self.advance(current_tick)

    def reading(self) -> DifficultyReading:
        return DifficultyReading(self.stage, self.intense_window, self.max_severity)


__all__ = ["DifficultyCurve", "curve_at"]
