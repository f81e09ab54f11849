"""Relay decision engine for the Charge Trigger integration.

The engine turns one voltage sample into at most one ON/OFF decision. It
holds no Home Assistant runtime objects: the caller owns the clock and hands
``now_ms`` in, the engine owns nothing but the ``ControllerState`` it was
given.

Per sample the engine runs, in order:

* the rolling average over the last ``avg_window`` raw samples,
* the forced undervoltage break (extends on every deep dip),
* the rise-triggered boost and its hold tail,
* the post-boost latch (armed on the boost-end edge, cleared below
  ``post_boost_off_voltage``),
* the desired-state selection and, for non-forced transitions, the switch
  delay / cooldown / minimum-on gates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .const import (
    CONF_AVG_WINDOW,
    CONF_BOOST_DURATION_MS,
    CONF_BOOST_HOLD_MS,
    CONF_BOOST_MIN_VOLTAGE,
    CONF_BOOST_RISE_DELTA,
    CONF_BOOST_RISE_STEPS,
    CONF_BREAK_DURATION_MS,
    CONF_BREAK_UNDERVOLTAGE,
    CONF_COOLDOWN_AFTER_ON_MS,
    CONF_MIN_ON_TIME_MS,
    CONF_OFF_THRESHOLD,
    CONF_ON_THRESHOLD,
    CONF_POST_BOOST_OFF_VOLTAGE,
    CONF_SWITCH_DELAY_OFF_MS,
    CONF_SWITCH_DELAY_ON_MS,
    DEFAULT_AVG_WINDOW,
    DEFAULT_BOOST_HOLD_MS,
    DEFAULT_BOOST_MIN_VOLTAGE,
    DEFAULT_BOOST_RISE_DELTA,
    DEFAULT_BOOST_RISE_STEPS,
    DEFAULT_BREAK_DURATION_MS,
    DEFAULT_BREAK_UNDERVOLTAGE,
    DEFAULT_COOLDOWN_AFTER_ON_MS,
    DEFAULT_MIN_ON_TIME_MS,
    DEFAULT_OFF_THRESHOLD,
    DEFAULT_ON_THRESHOLD,
    DEFAULT_POST_BOOST_OFF_VOLTAGE,
    DEFAULT_SWITCH_DELAY_ON_MS,
)

_LOGGER = logging.getLogger(__name__)

REASON_FORCED_BREAK = "forced-break"
REASON_FORCED_BOOST = "forced-boost"
REASON_LATCH_ON = "post-boost-latch-on"
REASON_STATE_CHANGE = "state-change"


class RelayState(str, Enum):
    """Committed relay state; UNSET only before the first decision."""

    UNSET = "unset"
    OFF = "off"
    ON = "on"


class Outcome(str, Enum):
    """What a single invocation ended with."""

    INVALID_SAMPLE = "invalid_sample"
    RESET = "reset"
    FORCED_BREAK = "forced_break"
    FORCED_BOOST = "forced_boost"
    LATCH_ON = "latch_on"
    STATE_CHANGE = "state_change"
    BLOCKED_SWITCH_DELAY = "blocked_switch_delay"
    BLOCKED_COOLDOWN = "blocked_cooldown"
    BLOCKED_MIN_ON = "blocked_min_on"
    STEADY = "steady"


_FORCED_OUTCOMES: dict[str, Outcome] = {
    REASON_FORCED_BREAK: Outcome.FORCED_BREAK,
    REASON_FORCED_BOOST: Outcome.FORCED_BOOST,
    REASON_LATCH_ON: Outcome.LATCH_ON,
}


def _finite_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def parse_voltage(raw: Any) -> float | None:
    """Return the sample as a finite float, or None when it is unusable."""
    return _finite_float(raw)


def _lookup(scopes: tuple[Mapping[str, Any] | None, ...], key: str) -> float | None:
    """Return the first usable value for ``key`` walking the scopes in order."""
    for scope in scopes:
        if not scope or key not in scope:
            continue
        parsed = _finite_float(scope[key])
        if parsed is None:
            _LOGGER.debug("Ignoring unusable option %s=%r", key, scope[key])
            continue
        return parsed
    return None


@dataclass(frozen=True)
class ControllerConfig:
    """Tunables for one controller, fixed for the controller's lifetime."""

    on_threshold: float = DEFAULT_ON_THRESHOLD
    off_threshold: float = DEFAULT_OFF_THRESHOLD
    switch_delay_on_ms: float = DEFAULT_SWITCH_DELAY_ON_MS
    switch_delay_off_ms: float = DEFAULT_SWITCH_DELAY_ON_MS
    cooldown_after_on_ms: float = DEFAULT_COOLDOWN_AFTER_ON_MS
    avg_window: int = DEFAULT_AVG_WINDOW
    min_on_time_ms: int = DEFAULT_MIN_ON_TIME_MS
    break_undervoltage: float = DEFAULT_BREAK_UNDERVOLTAGE
    break_duration_ms: float = DEFAULT_BREAK_DURATION_MS
    boost_hold_ms: float = DEFAULT_BOOST_HOLD_MS
    boost_rise_steps: int = DEFAULT_BOOST_RISE_STEPS
    boost_rise_delta: float = DEFAULT_BOOST_RISE_DELTA
    boost_min_voltage: float = DEFAULT_BOOST_MIN_VOLTAGE
    post_boost_off_voltage: float = DEFAULT_POST_BOOST_OFF_VOLTAGE

    @classmethod
    def resolve(cls, *scopes: Mapping[str, Any] | None) -> ControllerConfig:
        """Resolve every tunable over ``scopes`` (most specific first).

        A key missing or unusable in one scope falls through to the next,
        then to the built-in default. Counts are floored and clamped
        (window and rise steps to at least 1, minimum on-time to at least
        0); durations never go negative.
        """

        def pick(key: str, default: float) -> float:
            value = _lookup(scopes, key)
            return default if value is None else value

        def duration(key: str, default: float) -> float:
            return max(0.0, pick(key, default))

        switch_delay_on = duration(CONF_SWITCH_DELAY_ON_MS, DEFAULT_SWITCH_DELAY_ON_MS)
        switch_delay_off = _lookup(scopes, CONF_SWITCH_DELAY_OFF_MS)
        boost_hold = _lookup(scopes, CONF_BOOST_DURATION_MS)
        if boost_hold is None:
            boost_hold = pick(CONF_BOOST_HOLD_MS, DEFAULT_BOOST_HOLD_MS)

        return cls(
            on_threshold=pick(CONF_ON_THRESHOLD, DEFAULT_ON_THRESHOLD),
            off_threshold=pick(CONF_OFF_THRESHOLD, DEFAULT_OFF_THRESHOLD),
            switch_delay_on_ms=switch_delay_on,
            switch_delay_off_ms=(
                switch_delay_on
                if switch_delay_off is None
                else max(0.0, switch_delay_off)
            ),
            cooldown_after_on_ms=duration(
                CONF_COOLDOWN_AFTER_ON_MS, DEFAULT_COOLDOWN_AFTER_ON_MS
            ),
            avg_window=max(1, math.floor(pick(CONF_AVG_WINDOW, DEFAULT_AVG_WINDOW))),
            min_on_time_ms=max(
                0, math.floor(pick(CONF_MIN_ON_TIME_MS, DEFAULT_MIN_ON_TIME_MS))
            ),
            break_undervoltage=pick(
                CONF_BREAK_UNDERVOLTAGE, DEFAULT_BREAK_UNDERVOLTAGE
            ),
            break_duration_ms=duration(
                CONF_BREAK_DURATION_MS, DEFAULT_BREAK_DURATION_MS
            ),
            boost_hold_ms=max(0.0, boost_hold),
            boost_rise_steps=max(
                1, math.floor(pick(CONF_BOOST_RISE_STEPS, DEFAULT_BOOST_RISE_STEPS))
            ),
            boost_rise_delta=pick(CONF_BOOST_RISE_DELTA, DEFAULT_BOOST_RISE_DELTA),
            boost_min_voltage=pick(CONF_BOOST_MIN_VOLTAGE, DEFAULT_BOOST_MIN_VOLTAGE),
            post_boost_off_voltage=pick(
                CONF_POST_BOOST_OFF_VOLTAGE, DEFAULT_POST_BOOST_OFF_VOLTAGE
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            CONF_ON_THRESHOLD: self.on_threshold,
            CONF_OFF_THRESHOLD: self.off_threshold,
            CONF_SWITCH_DELAY_ON_MS: self.switch_delay_on_ms,
            CONF_SWITCH_DELAY_OFF_MS: self.switch_delay_off_ms,
            CONF_COOLDOWN_AFTER_ON_MS: self.cooldown_after_on_ms,
            CONF_AVG_WINDOW: self.avg_window,
            CONF_MIN_ON_TIME_MS: self.min_on_time_ms,
            CONF_BREAK_UNDERVOLTAGE: self.break_undervoltage,
            CONF_BREAK_DURATION_MS: self.break_duration_ms,
            CONF_BOOST_HOLD_MS: self.boost_hold_ms,
            CONF_BOOST_RISE_STEPS: self.boost_rise_steps,
            CONF_BOOST_RISE_DELTA: self.boost_rise_delta,
            CONF_BOOST_MIN_VOLTAGE: self.boost_min_voltage,
            CONF_POST_BOOST_OFF_VOLTAGE: self.post_boost_off_voltage,
        }


@dataclass
class ControllerState:
    """Persistent per-controller state; timestamps are ms since the epoch."""

    history: list[float] = field(default_factory=list)
    last_change_at: float = 0
    last_on_at: float = 0
    last_state: RelayState = RelayState.UNSET
    break_until: float = 0
    boost_until: float = 0
    was_in_boost: bool = False
    post_boost_latched: bool = False

    def reset(self) -> None:
        fresh = ControllerState()
        self.history = fresh.history
        self.last_change_at = fresh.last_change_at
        self.last_on_at = fresh.last_on_at
        self.last_state = fresh.last_state
        self.break_until = fresh.break_until
        self.boost_until = fresh.boost_until
        self.was_in_boost = fresh.was_in_boost
        self.post_boost_latched = fresh.post_boost_latched

    def as_dict(self) -> dict[str, Any]:
        return {
            "history": list(self.history),
            "last_change_at": self.last_change_at,
            "last_on_at": self.last_on_at,
            "last_state": self.last_state.value,
            "break_until": self.break_until,
            "boost_until": self.boost_until,
            "was_in_boost": self.was_in_boost,
            "post_boost_latched": self.post_boost_latched,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> ControllerState:
        """Rebuild stored state; malformed fields fall back to their defaults."""
        if not isinstance(raw, Mapping):
            return cls()

        def stamp(key: str) -> float:
            value = _finite_float(raw.get(key))
            return value if value is not None else 0

        history: list[float] = []
        stored = raw.get("history")
        if isinstance(stored, (list, tuple)):
            for item in stored:
                value = _finite_float(item)
                if value is not None:
                    history.append(value)

        try:
            last_state = RelayState(raw.get("last_state", RelayState.UNSET.value))
        except ValueError:
            last_state = RelayState.UNSET

        return cls(
            history=history,
            last_change_at=stamp("last_change_at"),
            last_on_at=stamp("last_on_at"),
            last_state=last_state,
            break_until=stamp("break_until"),
            boost_until=stamp("boost_until"),
            was_in_boost=bool(raw.get("was_in_boost", False)),
            post_boost_latched=bool(raw.get("post_boost_latched", False)),
        )


@dataclass(frozen=True)
class BreakInfo:
    active: bool
    until: float

    def as_dict(self) -> dict[str, Any]:
        return {"active": self.active, "until": self.until}


@dataclass(frozen=True)
class BoostInfo:
    active: bool
    until: float
    triggered_now: bool
    rise_delta: float
    rise_steps: int
    rise_threshold: float
    min_voltage: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "until": self.until,
            "triggered_now": self.triggered_now,
            "rise": {
                "steps": self.rise_steps,
                "delta": round(self.rise_delta, 3),
                "threshold": self.rise_threshold,
            },
            "min_voltage": self.min_voltage,
        }


@dataclass(frozen=True)
class LatchInfo:
    active: bool
    off_below: float

    def as_dict(self) -> dict[str, Any]:
        return {"active": self.active, "off_below": self.off_below}


@dataclass(frozen=True)
class Decision:
    """A committed relay change for the external actuator to apply."""

    desired_state: RelayState
    voltage: float
    average_voltage: float
    reason: str
    break_info: BreakInfo
    boost_info: BoostInfo
    latch_info: LatchInfo

    @property
    def is_on(self) -> bool:
        return self.desired_state is RelayState.ON

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.desired_state.value,
            "payload": 1 if self.is_on else 0,
            "voltage": self.voltage,
            "average_voltage": round(self.average_voltage, 3),
            "reason": self.reason,
            "break": self.break_info.as_dict(),
            "boost": self.boost_info.as_dict(),
            "post_boost_latch": self.latch_info.as_dict(),
        }


@dataclass(frozen=True)
class Evaluation:
    """Everything one invocation produced, as plain data."""

    outcome: Outcome
    state: RelayState
    now_ms: float = 0
    voltage: float | None = None
    average_voltage: float | None = None
    decision: Decision | None = None
    break_info: BreakInfo | None = None
    boost_info: BoostInfo | None = None
    latch_info: LatchInfo | None = None
    wait_ms: float = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "state": self.state.value,
            "now_ms": self.now_ms,
            "voltage": self.voltage,
            "average_voltage": (
                round(self.average_voltage, 3)
                if self.average_voltage is not None
                else None
            ),
            "wait_ms": self.wait_ms,
            "decision": self.decision.as_dict() if self.decision else None,
            "break": self.break_info.as_dict() if self.break_info else None,
            "boost": self.boost_info.as_dict() if self.boost_info else None,
            "post_boost_latch": (
                self.latch_info.as_dict() if self.latch_info else None
            ),
        }


@dataclass(frozen=True)
class _Signals:
    voltage: float
    average: float
    now: float
    in_break: bool
    in_boost: bool
    triggered_now: bool
    rise_delta: float


class ChargeTriggerEngine:
    """Runs samples and reset commands against one ``ControllerState``."""

    def __init__(
        self, config: ControllerConfig, state: ControllerState | None = None
    ) -> None:
        self.config = config
        self.restore(state if state is not None else ControllerState())

    def restore(self, state: ControllerState) -> None:
        """Adopt ``state``, dropping samples older than the current window."""
        self.state = state
        self._trim_history()

    def reset(self, now_ms: float = 0) -> Evaluation:
        """Return every state field to its default; never yields a decision."""
        self.state.reset()
        return Evaluation(outcome=Outcome.RESET, state=RelayState.UNSET, now_ms=now_ms)

    def process(self, raw: Any, now_ms: float) -> Evaluation:
        voltage = parse_voltage(raw)
        if voltage is None:
            _LOGGER.warning("Charge control: invalid voltage payload: %s", raw)
            return Evaluation(
                outcome=Outcome.INVALID_SAMPLE,
                state=self.state.last_state,
                now_ms=now_ms,
            )

        average = self._track(voltage)
        in_break = self._evaluate_break(voltage, now_ms)
        triggered_now, rise_delta = self._detect_rise(voltage, now_ms)
        in_boost = triggered_now or now_ms < self.state.boost_until
        self._update_latch(voltage, in_boost)

        signals = _Signals(
            voltage=voltage,
            average=average,
            now=now_ms,
            in_break=in_break,
            in_boost=in_boost,
            triggered_now=triggered_now,
            rise_delta=rise_delta,
        )
        desired = self._desired_state(signals)

        if desired is self.state.last_state:
            return self._evaluation(signals, Outcome.STEADY)

        reason = self._forced_reason(signals, desired)
        if reason is None:
            blocked = self._blocking_gate(desired, now_ms)
            if blocked is not None:
                outcome, wait_ms = blocked
                return self._evaluation(signals, outcome, wait_ms=wait_ms)
            reason = REASON_STATE_CHANGE

        self._commit(desired, now_ms)
        _LOGGER.debug(
            "Charge control: %s -> %s (v=%.2f avg=%.3f)",
            reason,
            desired.value,
            voltage,
            average,
        )
        return self._evaluation(
            signals,
            _FORCED_OUTCOMES.get(reason, Outcome.STATE_CHANGE),
            reason=reason,
        )

    def _track(self, voltage: float) -> float:
        history = self.state.history
        history.append(voltage)
        self._trim_history()
        return sum(history) / len(history)

    def _trim_history(self) -> None:
        history = self.state.history
        overflow = len(history) - self.config.avg_window
        if overflow > 0:
            del history[:overflow]

    def _evaluate_break(self, voltage: float, now: float) -> bool:
        if voltage < self.config.break_undervoltage:
            self.state.break_until = now + self.config.break_duration_ms
        return now < self.state.break_until

    def _detect_rise(self, voltage: float, now: float) -> tuple[bool, float]:
        cfg = self.config
        history = self.state.history
        if len(history) <= cfg.boost_rise_steps:
            return False, 0.0
        rise_delta = voltage - history[-1 - cfg.boost_rise_steps]
        triggered = rise_delta > cfg.boost_rise_delta and voltage >= cfg.boost_min_voltage
        if triggered:
            self.state.boost_until = now + cfg.boost_hold_ms
        return triggered, rise_delta

    def _update_latch(self, voltage: float, in_boost: bool) -> None:
        # A same-sample re-trigger keeps in_boost True, so no edge is seen.
        st = self.state
        off_below = self.config.post_boost_off_voltage
        if st.was_in_boost and not in_boost:
            st.post_boost_latched = voltage >= off_below
        st.was_in_boost = in_boost
        if st.post_boost_latched and voltage < off_below:
            st.post_boost_latched = False

    def _desired_state(self, s: _Signals) -> RelayState:
        cfg = self.config
        st = self.state
        if st.last_state is RelayState.UNSET:
            if s.average >= cfg.on_threshold and not s.in_break:
                return RelayState.ON
            return RelayState.OFF
        if s.in_break:
            return RelayState.OFF
        if s.in_boost or st.post_boost_latched:
            return RelayState.ON
        if st.last_state is RelayState.ON:
            long_enough = (s.now - st.last_on_at) >= cfg.min_on_time_ms
            if s.voltage <= cfg.off_threshold and long_enough:
                return RelayState.OFF
            return RelayState.ON
        if s.average >= cfg.on_threshold:
            return RelayState.ON
        return RelayState.OFF

    def _forced_reason(self, s: _Signals, desired: RelayState) -> str | None:
        if s.in_break and desired is RelayState.OFF:
            return REASON_FORCED_BREAK
        if desired is RelayState.ON:
            if s.in_boost:
                return REASON_FORCED_BOOST
            if self.state.post_boost_latched:
                return REASON_LATCH_ON
        return None

    def _blocking_gate(
        self, desired: RelayState, now: float
    ) -> tuple[Outcome, float] | None:
        """Return the first failing dwell gate and its remaining wait."""
        cfg = self.config
        st = self.state
        since_change = now - st.last_change_at
        since_on = now - st.last_on_at
        turning_on = desired is RelayState.ON

        required = cfg.switch_delay_on_ms if turning_on else cfg.switch_delay_off_ms
        if required > 0 and since_change < required:
            return Outcome.BLOCKED_SWITCH_DELAY, required - since_change
        if turning_on and since_on < cfg.cooldown_after_on_ms:
            return Outcome.BLOCKED_COOLDOWN, cfg.cooldown_after_on_ms - since_on
        if (
            not turning_on
            and cfg.min_on_time_ms > 0
            and since_on < cfg.min_on_time_ms
        ):
            return Outcome.BLOCKED_MIN_ON, cfg.min_on_time_ms - since_on
        return None

    def _commit(self, desired: RelayState, now: float) -> None:
        self.state.last_change_at = now
        self.state.last_state = desired
        if desired is RelayState.ON:
            self.state.last_on_at = now

    def _evaluation(
        self,
        s: _Signals,
        outcome: Outcome,
        *,
        wait_ms: float = 0,
        reason: str | None = None,
    ) -> Evaluation:
        cfg = self.config
        st = self.state
        break_info = BreakInfo(active=s.in_break, until=st.break_until)
        boost_info = BoostInfo(
            active=s.in_boost,
            until=st.boost_until,
            triggered_now=s.triggered_now,
            rise_delta=s.rise_delta,
            rise_steps=cfg.boost_rise_steps,
            rise_threshold=cfg.boost_rise_delta,
            min_voltage=cfg.boost_min_voltage,
        )
        latch_info = LatchInfo(
            active=st.post_boost_latched, off_below=cfg.post_boost_off_voltage
        )
        decision = None
        if reason is not None:
            decision = Decision(
                desired_state=st.last_state,
                voltage=s.voltage,
                average_voltage=s.average,
                reason=reason,
                break_info=break_info,
                boost_info=boost_info,
                latch_info=latch_info,
            )
        return Evaluation(
            outcome=outcome,
            state=st.last_state,
            now_ms=s.now,
            voltage=s.voltage,
            average_voltage=s.average,
            decision=decision,
            break_info=break_info,
            boost_info=boost_info,
            latch_info=latch_info,
            wait_ms=wait_ms,
        )
