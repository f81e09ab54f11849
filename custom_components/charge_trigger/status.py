"""Operator-facing status text for an evaluation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from .engine import Evaluation, Outcome, RelayState

FILL_RED = "red"
FILL_GREEN = "green"
FILL_GREY = "grey"
FILL_YELLOW = "yellow"
FILL_BLUE = "blue"

SHAPE_DOT = "dot"
SHAPE_RING = "ring"


@dataclass(frozen=True)
class StatusReport:
    """Status text plus a colour/shape category for display."""

    text: str
    fill: str
    shape: str

    def as_dict(self) -> dict[str, Any]:
        return {"text": self.text, "fill": self.fill, "shape": self.shape}


def _seconds(ms: float) -> int:
    return math.ceil(ms / 1000)


def _on_off(state: RelayState) -> str:
    return "ON" if state is RelayState.ON else "OFF"


def _state_fill(state: RelayState) -> str:
    return FILL_GREEN if state is RelayState.ON else FILL_GREY


def reset_status() -> StatusReport:
    return StatusReport("State reset", FILL_BLUE, SHAPE_RING)


def _boost_detail(ev: Evaluation) -> str:
    boost = ev.boost_info
    if boost.triggered_now:
        return (
            f"rise Δ{boost.rise_delta:.2f}V/{boost.rise_steps}, v={ev.voltage:.2f}V"
        )
    return f"tail {_seconds(boost.until - ev.now_ms)}s"


def _boost_text(ev: Evaluation) -> str:
    if ev.boost_info.triggered_now:
        return f"Boost ({_boost_detail(ev)})"
    return f"Boost {_boost_detail(ev)}"


def _steady_status(ev: Evaluation) -> StatusReport:
    if ev.break_info.active:
        remaining = _seconds(ev.break_info.until - ev.now_ms)
        return StatusReport(f"OFF (break {remaining}s)", FILL_RED, SHAPE_RING)
    if ev.boost_info.active:
        return StatusReport(f"ON (boost {_boost_detail(ev)})", FILL_GREEN, SHAPE_RING)
    if ev.latch_info.active:
        return StatusReport(
            f"ON (post-boost latch, off < {ev.latch_info.off_below:.1f}V)",
            FILL_GREEN,
            SHAPE_RING,
        )
    return StatusReport(
        f"v={ev.voltage:.2f}V Avg {ev.average_voltage:.2f} steady {_on_off(ev.state)}",
        _state_fill(ev.state),
        SHAPE_RING,
    )


def build_status(ev: Evaluation) -> StatusReport | None:
    """Project an evaluation onto a status report.

    Returns None for rejected samples, which leave the previous status in
    place.
    """
    outcome = ev.outcome
    if outcome is Outcome.INVALID_SAMPLE:
        return None
    if outcome is Outcome.RESET:
        return reset_status()
    if outcome is Outcome.FORCED_BREAK:
        remaining = _seconds(ev.break_info.until - ev.now_ms)
        return StatusReport(
            f"Break {remaining}s (v={ev.voltage:.2f}V)", FILL_RED, SHAPE_DOT
        )
    if outcome is Outcome.FORCED_BOOST:
        return StatusReport(_boost_text(ev), FILL_GREEN, SHAPE_DOT)
    if outcome is Outcome.LATCH_ON:
        return StatusReport(
            f"Post-boost latch (≥{ev.latch_info.off_below:.1f}V)",
            FILL_GREEN,
            SHAPE_DOT,
        )
    if outcome is Outcome.STATE_CHANGE:
        return StatusReport(
            f"Avg {ev.average_voltage:.2f} → {_on_off(ev.state)}",
            _state_fill(ev.state),
            SHAPE_DOT,
        )
    if outcome is Outcome.BLOCKED_SWITCH_DELAY:
        return StatusReport(
            f"Change blocked {_seconds(ev.wait_ms)}s", FILL_YELLOW, SHAPE_RING
        )
    if outcome is Outcome.BLOCKED_COOLDOWN:
        return StatusReport(
            f"ON cooldown {_seconds(ev.wait_ms)}s", FILL_YELLOW, SHAPE_RING
        )
    if outcome is Outcome.BLOCKED_MIN_ON:
        return StatusReport(f"Min ON {_seconds(ev.wait_ms)}s", FILL_YELLOW, SHAPE_RING)
    return _steady_status(ev)
