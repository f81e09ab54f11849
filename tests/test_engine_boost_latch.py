"""Rise-triggered boost, hold tail and the post-boost latch."""

from __future__ import annotations

import pytest

from custom_components.charge_trigger.const import (
    CONF_AVG_WINDOW,
    CONF_BOOST_RISE_STEPS,
    CONF_COOLDOWN_AFTER_ON_MS,
    CONF_SWITCH_DELAY_ON_MS,
)
from custom_components.charge_trigger.engine import (
    REASON_FORCED_BOOST,
    REASON_LATCH_ON,
    REASON_STATE_CHANGE,
    ControllerState,
    Outcome,
    RelayState,
)
from custom_components.charge_trigger.status import build_status

from .helpers import T0, feed, make_engine

BOOST_OPTIONS = {CONF_AVG_WINDOW: 10, CONF_BOOST_RISE_STEPS: 2}


@pytest.fixture()
def boosted():
    """Engine that has just been forced ON by a rise at T0 + 2000."""
    engine = make_engine(**BOOST_OPTIONS)
    evs = feed(engine, [(T0, 24.0), (T0 + 1000, 28.5), (T0 + 2000, 28.6)])
    return engine, evs


def test_rise_needs_more_than_steps_samples(boosted) -> None:
    _, evs = boosted
    assert evs[0].state is RelayState.OFF
    assert not evs[1].boost_info.triggered_now
    assert evs[1].outcome is Outcome.STEADY


def test_rise_forces_on_with_boost_reason(boosted) -> None:
    engine, evs = boosted
    ev = evs[-1]
    assert ev.outcome is Outcome.FORCED_BOOST
    assert ev.decision.reason == REASON_FORCED_BOOST
    assert ev.decision.is_on
    assert ev.boost_info.triggered_now
    assert ev.boost_info.rise_delta == pytest.approx(4.6)
    assert engine.state.boost_until == T0 + 12_000
    assert build_status(ev).text == "Boost (rise Δ4.60V/2, v=28.60V)"


def test_retrigger_extends_boost_from_current_sample(boosted) -> None:
    engine, _ = boosted
    ev = engine.process(33.0, T0 + 3000)
    assert ev.boost_info.triggered_now
    assert ev.outcome is Outcome.STEADY
    assert engine.state.boost_until == T0 + 13_000


def test_boost_tail_keeps_relay_on(boosted) -> None:
    engine, _ = boosted
    ev = engine.process(28.6, T0 + 3000)
    assert not ev.boost_info.triggered_now
    assert ev.boost_info.active
    assert ev.state is RelayState.ON
    assert build_status(ev).text == "ON (boost tail 9s)"


def test_latch_arms_when_boost_ends_above_threshold(boosted) -> None:
    engine, _ = boosted
    engine.process(28.6, T0 + 3000)

    ev = engine.process(25.0, T0 + 12_000)
    assert not ev.boost_info.active
    assert engine.state.post_boost_latched
    assert ev.state is RelayState.ON
    assert build_status(ev).text == "ON (post-boost latch, off < 24.5V)"

    # Hysteresis alone would switch OFF at 25.0 V.
    ev = engine.process(25.0, T0 + 13_000)
    assert ev.state is RelayState.ON

    ev = engine.process(24.4, T0 + 14_000)
    assert not engine.state.post_boost_latched
    assert ev.decision.reason == REASON_STATE_CHANGE
    assert ev.state is RelayState.OFF


def test_latch_not_armed_when_boost_ends_low(boosted) -> None:
    engine, _ = boosted
    engine.process(28.6, T0 + 3000)

    ev = engine.process(24.0, T0 + 12_000)
    assert not engine.state.post_boost_latched
    assert ev.decision.reason == REASON_STATE_CHANGE
    assert ev.state is RelayState.OFF


def test_same_sample_retrigger_skips_the_boost_end_edge(boosted) -> None:
    engine, _ = boosted
    engine.process(28.6, T0 + 3000)

    ev = engine.process(33.0, T0 + 12_000)
    assert ev.boost_info.triggered_now
    assert engine.state.was_in_boost
    assert not engine.state.post_boost_latched
    assert engine.state.boost_until == T0 + 22_000


def test_boost_below_min_voltage_does_not_trigger() -> None:
    engine = make_engine(**BOOST_OPTIONS)
    evs = feed(engine, [(T0, 20.0), (T0 + 1000, 23.5), (T0 + 2000, 25.0)])
    assert evs[-1].boost_info.rise_delta == pytest.approx(5.0)
    assert not evs[-1].boost_info.triggered_now
    assert evs[-1].state is RelayState.OFF


def test_boost_bypasses_dwell_gates() -> None:
    state = ControllerState(
        history=[24.0, 24.0],
        last_state=RelayState.OFF,
        last_change_at=T0 - 100,
        last_on_at=T0 - 200,
    )
    engine = make_engine(
        state,
        **BOOST_OPTIONS,
        **{CONF_SWITCH_DELAY_ON_MS: 5000, CONF_COOLDOWN_AFTER_ON_MS: 180_000},
    )
    ev = engine.process(28.5, T0)
    assert ev.outcome is Outcome.FORCED_BOOST
    assert ev.state is RelayState.ON


def test_restored_latch_forces_on_past_gates() -> None:
    state = ControllerState(
        history=[25.0],
        last_state=RelayState.OFF,
        last_change_at=T0 - 1,
        last_on_at=T0 - 1,
        post_boost_latched=True,
    )
    engine = make_engine(
        state, **{CONF_SWITCH_DELAY_ON_MS: 5000, CONF_COOLDOWN_AFTER_ON_MS: 180_000}
    )
    ev = engine.process(25.0, T0)
    assert ev.outcome is Outcome.LATCH_ON
    assert ev.decision.reason == REASON_LATCH_ON
    assert build_status(ev).text == "Post-boost latch (≥24.5V)"
