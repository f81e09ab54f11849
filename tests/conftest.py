"""Shared pytest fixtures for Charge Trigger tests."""

from __future__ import annotations

import logging

import pytest
from pytest_homeassistant_custom_component.common import MockConfigEntry

from custom_components.charge_trigger.const import (
    CONF_AVG_WINDOW,
    CONF_COOLDOWN_AFTER_ON_MS,
    CONF_RELAY_SWITCH,
    CONF_SWITCH_DELAY_ON_MS,
    CONF_VOLTAGE_SENSOR,
    DOMAIN,
)
from custom_components.charge_trigger.controller import ChargeTriggerController

from .helpers import RELAY_SWITCH, VOLTAGE_SENSOR


# Keep integration logs at WARNING so CI output focuses on failures.
logging.getLogger("custom_components.charge_trigger").setLevel(logging.WARNING)


@pytest.fixture()
def entry(hass) -> MockConfigEntry:
    """A config entry with immediate switching and a short average window."""
    entry = MockConfigEntry(
        domain=DOMAIN,
        title="Garage",
        data={CONF_VOLTAGE_SENSOR: VOLTAGE_SENSOR, CONF_RELAY_SWITCH: RELAY_SWITCH},
        options={
            CONF_SWITCH_DELAY_ON_MS: 0,
            CONF_COOLDOWN_AFTER_ON_MS: 0,
            CONF_AVG_WINDOW: 3,
        },
    )
    entry.add_to_hass(hass)
    return entry


@pytest.fixture()
async def controller(hass, entry):
    """A loaded controller; shutdown flushes pending storage writes."""
    ctrl = ChargeTriggerController(hass, entry, {})
    await ctrl.async_load()
    yield ctrl
    await ctrl.async_shutdown()


@pytest.fixture(autouse=True)
def _allow_socket(socket_enabled):
    """Keep sockets enabled so Home Assistant's event loop can initialise."""
    yield
