from __future__ import annotations

import logging

from homeassistant.components.binary_sensor import BinarySensorEntity

from .const import DOMAIN
from .controller import ChargeTriggerController
from .engine import RelayState
from .sensor import device_info_for

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(hass, entry, async_add_entities):
    """Set up the relay demand binary sensor."""
    data = hass.data[DOMAIN]["entries"][entry.entry_id]
    async_add_entities([ChargeTriggerRelayDemandSensor(data["controller"])])


class ChargeTriggerRelayDemandSensor(BinarySensorEntity):
    """ON while the controller's last committed decision is ON.

    Unknown until the first decision after setup or a reset.
    """

    _attr_should_poll = False
    _attr_has_entity_name = True
    _attr_icon = "mdi:electric-switch"
    _attr_translation_key = "relay_demand"

    def __init__(self, controller: ChargeTriggerController) -> None:
        self.controller = controller
        self._attr_unique_id = f"{controller.entry.entry_id}_relay_demand"
        self._attr_device_info = device_info_for(controller)

    async def async_added_to_hass(self) -> None:
        await super().async_added_to_hass()
        self.async_on_remove(
            self.controller.async_add_listener(self._handle_controller_update)
        )
        self._refresh_from_controller()

    def _handle_controller_update(self) -> None:
        self._refresh_from_controller()
        self.async_write_ha_state()

    def _refresh_from_controller(self) -> None:
        state = self.controller.state.last_state
        self._attr_is_on = None if state is RelayState.UNSET else state is RelayState.ON
        decision = self.controller.last_decision
        self._attr_extra_state_attributes = {
            "relay_state": state.value,
            "last_change_at": self.controller.state.last_change_at or None,
            "last_on_at": self.controller.state.last_on_at or None,
            "last_reason": decision.reason if decision else None,
        }
