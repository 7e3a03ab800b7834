"""Tests for the difficulty curve."""
from __future__ import annotations

from dataclasses import replace

from chaos_director.config import Settings
from chaos_director.difficulty import DifficultyCurve, curve_at
from chaos_director.models import DifficultyMode

TPS = 20


def _settings(**overrides) -> Settings:
    return replace(Settings.from_dict({}), **overrides)


def test_linear_is_constant():
    settings = _settings()
    for seconds in (0, 100, 10_000):
        reading = curve_at(DifficultyMode.LINEAR, seconds * TPS, settings)
        assert (reading.stage, reading.intense_window, reading.max_severity) == (1, True, 3)


def test_progressive_is_non_decreasing_and_saturates():
    settings = _settings(stage_seconds=300, max_stage=4)
    previous = 0
    values = []
    for seconds in range(0, 3000, 10):
        reading = curve_at(DifficultyMode.PROGRESSIVE, seconds * TPS, settings)
        assert reading.intense_window
        assert reading.max_severity >= previous
        previous = reading.max_severity
        values.append(reading.max_severity)
    assert values[0] == 2
    assert values[-1] == 5
    assert curve_at(DifficultyMode.PROGRESSIVE, 299 * TPS, settings).stage == 1
    assert curve_at(DifficultyMode.PROGRESSIVE, 300 * TPS, settings).stage == 2


def test_balanced_sawtooth():
    """Severity rises entering the nasty window and drops back each cycle."""
    settings = _settings(safe_seconds=240, nasty_seconds=60, stage_seconds=300, max_stage=4)

    safe = curve_at(DifficultyMode.BALANCED, 10 * TPS, settings)
    nasty = curve_at(DifficultyMode.BALANCED, 250 * TPS, settings)
    next_safe = curve_at(DifficultyMode.BALANCED, 310 * TPS, settings)

    assert not safe.intense_window and safe.stage == 1 and safe.max_severity == 1
    assert nasty.intense_window and nasty.stage == 2 and nasty.max_severity == 3
    assert not next_safe.intense_window
    assert next_safe.max_severity < nasty.max_severity


def test_balanced_stage_grows_over_long_runs():
    settings = _settings(safe_seconds=240, nasty_seconds=60, stage_seconds=300, max_stage=4)
    late = curve_at(DifficultyMode.BALANCED, 5000 * TPS, settings)
    assert late.stage == 4
    assert late.max_severity <= 5


def test_balanced_degenerate_cycle():
    settings = _settings(safe_seconds=0, nasty_seconds=0)
    reading = curve_at(DifficultyMode.BALANCED, 1234, settings)
    assert (reading.stage, reading.intense_window, reading.max_severity) == (2, True, 3)


def test_curve_reset_restarts_cycle():
    settings = _settings(stage_seconds=10, max_stage=4)
    curve = DifficultyCurve(settings, DifficultyMode.PROGRESSIVE)
    curve.advance(100 * TPS)
    assert curve.stage == 4

    reading = curve.reset(DifficultyMode.PROGRESSIVE, 100 * TPS)
    assert reading.stage == 1
    assert curve.reading() == reading
