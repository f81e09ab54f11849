"""Small builders shared by the tests."""

from __future__ import annotations

from typing import Any, Iterable

from custom_components.charge_trigger.const import (
    CONF_COOLDOWN_AFTER_ON_MS,
    CONF_SWITCH_DELAY_ON_MS,
)
from custom_components.charge_trigger.engine import (
    ChargeTriggerEngine,
    ControllerConfig,
    ControllerState,
    Evaluation,
)

VOLTAGE_SENSOR = "sensor.battery_voltage"
RELAY_SWITCH = "switch.charger"

# Far enough from the epoch that zeroed timestamps never block a gate.
T0 = 10_000_000


def make_engine(
    state: ControllerState | None = None, **options: Any
) -> ChargeTriggerEngine:
    """Engine with immediate switching unless the test overrides it."""
    scope = {CONF_SWITCH_DELAY_ON_MS: 0, CONF_COOLDOWN_AFTER_ON_MS: 0, **options}
    return ChargeTriggerEngine(ControllerConfig.resolve(scope), state)


def feed(
    engine: ChargeTriggerEngine,
    samples: Iterable[tuple[float, Any]],
) -> list[Evaluation]:
    return [engine.process(value, now) for now, value in samples]
