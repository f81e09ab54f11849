"""Reset and process_sample services."""

from __future__ import annotations

import pytest
from homeassistant.exceptions import HomeAssistantError
from pytest_homeassistant_custom_component.common import (
    MockConfigEntry,
    async_capture_events,
    async_mock_service,
)

from custom_components.charge_trigger.const import (
    CONF_VOLTAGE_SENSOR,
    DOMAIN,
    EVENT_DECISION,
    SERVICE_PROCESS_SAMPLE,
    SERVICE_RESET,
)
from custom_components.charge_trigger.engine import RelayState

pytestmark = pytest.mark.asyncio


@pytest.fixture()
def registered(hass, entry, controller):
    from custom_components.charge_trigger import _register_services

    _register_services(hass)
    hass.data[DOMAIN]["entries"][entry.entry_id] = {
        "entry": entry,
        "controller": controller,
    }
    return controller


async def test_process_sample_service_feeds_single_entry(hass, registered):
    events = async_capture_events(hass, EVENT_DECISION)
    async_mock_service(hass, "switch", "turn_on")

    await hass.services.async_call(
        DOMAIN, SERVICE_PROCESS_SAMPLE, {"voltage": 26.8}, blocking=True
    )
    await hass.async_block_till_done()

    assert len(events) == 1
    assert registered.state.last_state is RelayState.ON


async def test_reset_service_by_entry_id(hass, entry, registered):
    async_mock_service(hass, "switch", "turn_on")
    await registered.async_handle_sample("26.8")

    await hass.services.async_call(
        DOMAIN, SERVICE_RESET, {"entry_id": entry.entry_id}, blocking=True
    )

    assert registered.state.last_state is RelayState.UNSET
    assert registered.last_status.text == "State reset"


async def test_unknown_entry_id_raises(hass, registered):
    with pytest.raises(HomeAssistantError):
        await hass.services.async_call(
            DOMAIN, SERVICE_RESET, {"entry_id": "missing"}, blocking=True
        )


async def test_entry_id_required_with_several_entries(hass, registered):
    other = MockConfigEntry(
        domain=DOMAIN, data={CONF_VOLTAGE_SENSOR: "sensor.other_voltage"}
    )
    other.add_to_hass(hass)
    hass.data[DOMAIN]["entries"][other.entry_id] = {
        "entry": other,
        "controller": registered,
    }

    with pytest.raises(HomeAssistantError):
        await hass.services.async_call(
            DOMAIN, SERVICE_PROCESS_SAMPLE, {"voltage": "26.8"}, blocking=True
        )
