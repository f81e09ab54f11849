from __future__ import annotations

import logging
from typing import Any, Dict

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorStateClass,
)
from homeassistant.const import STATE_UNKNOWN, UnitOfElectricPotential
from homeassistant.helpers.device_registry import DeviceInfo

from .const import DOMAIN
from .controller import ChargeTriggerController

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(hass, entry, async_add_entities):
    """Set up Charge Trigger sensors."""
    data = hass.data[DOMAIN]["entries"][entry.entry_id]
    controller: ChargeTriggerController = data["controller"]
    async_add_entities(
        [
            ChargeTriggerStatusSensor(controller),
            ChargeTriggerAverageSensor(controller),
        ]
    )


def device_info_for(controller: ChargeTriggerController) -> DeviceInfo:
    entry = controller.entry
    return DeviceInfo(
        identifiers={(DOMAIN, entry.entry_id)},
        name=entry.title or "Charge Trigger",
        manufacturer="Charge Trigger",
        model="Voltage relay controller",
    )


class _ControllerSensor(SensorEntity):
    _attr_should_poll = False
    _attr_has_entity_name = True

    def __init__(self, controller: ChargeTriggerController, key: str) -> None:
        self.controller = controller
        self._attr_unique_id = f"{controller.entry.entry_id}_{key}"
        self._attr_device_info = device_info_for(controller)

    async def async_added_to_hass(self) -> None:
        await super().async_added_to_hass()
        self.async_on_remove(
            self.controller.async_add_listener(self._handle_controller_update)
        )
        self._refresh_from_controller()

    def _handle_controller_update(self) -> None:
        # Each sensor class defines its own _refresh_from_controller.
        self._refresh_from_controller()
        self.async_write_ha_state()


class ChargeTriggerStatusSensor(_ControllerSensor):
    """Human-readable status of the relay controller."""

    _attr_icon = "mdi:car-battery"
    _attr_translation_key = "status"

    def __init__(self, controller: ChargeTriggerController) -> None:
        super().__init__(controller, "status")
        self._attr_native_value = STATE_UNKNOWN
        self._attr_extra_state_attributes: Dict[str, Any] = {}

    def _refresh_from_controller(self) -> None:
        status = self.controller.last_status
        evaluation = self.controller.last_evaluation
        state = self.controller.state
        if status is None or evaluation is None:
            self._attr_native_value = STATE_UNKNOWN
            self._attr_extra_state_attributes = {
                "relay_state": state.last_state.value,
                "samples": len(state.history),
            }
            return

        self._attr_native_value = status.text
        self._attr_icon = {
            "red": "mdi:battery-alert",
            "yellow": "mdi:timer-sand",
            "blue": "mdi:restart",
        }.get(status.fill, "mdi:car-battery")
        extra: Dict[str, Any] = {
            "fill": status.fill,
            "shape": status.shape,
            "outcome": evaluation.outcome.value,
            "relay_state": state.last_state.value,
            "voltage": evaluation.voltage,
            "average_voltage": (
                round(evaluation.average_voltage, 3)
                if evaluation.average_voltage is not None
                else None
            ),
            "samples": len(state.history),
        }
        for key, info in (
            ("break", evaluation.break_info),
            ("boost", evaluation.boost_info),
            ("post_boost_latch", evaluation.latch_info),
        ):
            if info is not None:
                extra[key] = info.as_dict()
        if self.controller.last_decision is not None:
            extra["last_reason"] = self.controller.last_decision.reason
        self._attr_extra_state_attributes = extra


class ChargeTriggerAverageSensor(_ControllerSensor):
    """Rolling average over the retained voltage samples."""

    _attr_device_class = SensorDeviceClass.VOLTAGE
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_native_unit_of_measurement = UnitOfElectricPotential.VOLT
    _attr_suggested_display_precision = 2
    _attr_translation_key = "average_voltage"

    def __init__(self, controller: ChargeTriggerController) -> None:
        super().__init__(controller, "average_voltage")
        self._attr_native_value = None

    def _refresh_from_controller(self) -> None:
        history = self.controller.state.history
        if not history:
            self._attr_native_value = None
            self._attr_extra_state_attributes = {"samples": 0}
            return
        self._attr_native_value = round(sum(history) / len(history), 3)
        self._attr_extra_state_attributes = {
            "samples": len(history),
            "window": self.controller.config.avg_window,
        }
