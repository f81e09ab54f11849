"""Rolling average and sample validation."""

from __future__ import annotations

import logging
import math

import pytest

from custom_components.charge_trigger.const import CONF_AVG_WINDOW
from custom_components.charge_trigger.engine import Outcome, RelayState

from .helpers import T0, feed, make_engine


def test_average_covers_all_samples_below_window() -> None:
    engine = make_engine(**{CONF_AVG_WINDOW: 5})
    evs = feed(engine, [(T0, 26.0), (T0 + 1000, 27.0), (T0 + 2000, 28.0)])
    assert evs[-1].average_voltage == pytest.approx(27.0)
    assert engine.state.history == [26.0, 27.0, 28.0]


def test_history_keeps_only_last_window_samples() -> None:
    engine = make_engine(**{CONF_AVG_WINDOW: 3})
    evs = feed(
        engine,
        [(T0 + i * 1000, v) for i, v in enumerate((24.0, 25.0, 26.0, 27.0, 28.0))],
    )
    assert engine.state.history == [26.0, 27.0, 28.0]
    assert evs[-1].average_voltage == pytest.approx(27.0)


def test_window_of_one_tracks_latest_sample() -> None:
    engine = make_engine(**{CONF_AVG_WINDOW: 1})
    feed(engine, [(T0, 24.0), (T0 + 1000, 26.0)])
    assert engine.state.history == [26.0]


def test_numeric_string_is_accepted() -> None:
    engine = make_engine()
    ev = engine.process(" 26.6 ", T0)
    assert ev.voltage == pytest.approx(26.6)
    assert ev.state is RelayState.ON


@pytest.mark.parametrize(
    "raw", ["abc", "", "   ", None, True, math.nan, math.inf, "-inf", [26.0]]
)
def test_invalid_sample_is_rejected_without_side_effects(raw, caplog) -> None:
    engine = make_engine()
    engine.process(24.0, T0)
    before = engine.state.as_dict()

    with caplog.at_level(logging.WARNING):
        ev = engine.process(raw, T0 + 1000)

    assert ev.outcome is Outcome.INVALID_SAMPLE
    assert ev.decision is None
    assert ev.state is RelayState.OFF
    assert engine.state.as_dict() == before
    assert "invalid voltage payload" in caplog.text


def test_invalid_first_sample_leaves_state_unset() -> None:
    engine = make_engine()
    ev = engine.process("n/a", T0)
    assert ev.state is RelayState.UNSET
    assert engine.state.history == []
