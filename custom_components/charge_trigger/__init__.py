from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

import voluptuous as vol
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers import config_validation as cv
from homeassistant.helpers.typing import ConfigType

from .const import (
    CONF_AVG_WINDOW,
    CONF_BOOST_DURATION_MS,
    CONF_BOOST_RISE_STEPS,
    CONF_MIN_ON_TIME_MS,
    DOMAIN,
    PLATFORMS,
    SERVICE_PROCESS_SAMPLE,
    SERVICE_RESET,
    TUNABLE_KEYS,
)
from .controller import ChargeTriggerController, shared_scope
from .services import handle_process_sample, handle_reset

_LOGGER = logging.getLogger(__name__)

_INTEGER_KEYS = {CONF_AVG_WINDOW, CONF_BOOST_RISE_STEPS, CONF_MIN_ON_TIME_MS}

CONFIG_SCHEMA = vol.Schema(
    {
        DOMAIN: vol.Schema(
            {
                **{
                    vol.Optional(key): (
                        vol.Coerce(int) if key in _INTEGER_KEYS else vol.Coerce(float)
                    )
                    for key in TUNABLE_KEYS
                },
                vol.Optional(CONF_BOOST_DURATION_MS): vol.Coerce(float),
            }
        )
    },
    extra=vol.ALLOW_EXTRA,
)


def _get_domain_data(hass: HomeAssistant) -> dict[str, Any]:
    data = hass.data.setdefault(DOMAIN, {})
    data.setdefault("entries", {})
    data.setdefault("shared", {})
    data.setdefault("services_registered", False)
    return data


def _resolve_entry_context(
    hass: HomeAssistant, call: ServiceCall
) -> tuple[ConfigEntry, dict[str, Any]]:
    domain_data = _get_domain_data(hass)
    entries: dict[str, dict[str, Any]] = domain_data["entries"]
    entry_id = call.data.get("entry_id")

    if entry_id:
        entry_data = entries.get(entry_id)
        if not entry_data:
            raise HomeAssistantError(f"Charge Trigger entry_id '{entry_id}' not found")
        return entry_data["entry"], entry_data

    if len(entries) == 1:
        entry_data = next(iter(entries.values()))
        return entry_data["entry"], entry_data

    raise HomeAssistantError(
        "Specify 'entry_id' in service data when zero or multiple Charge Trigger "
        "entries are configured"
    )


async def _svc_reset(hass: HomeAssistant, call: ServiceCall) -> None:
    """Service: clear the controller state for an entry."""
    _, entry_data = _resolve_entry_context(hass, call)
    await handle_reset(hass, entry_data["controller"])


async def _svc_process_sample(hass: HomeAssistant, call: ServiceCall) -> None:
    """Service: feed one voltage sample to an entry's controller."""
    _, entry_data = _resolve_entry_context(hass, call)
    await handle_process_sample(hass, call, entry_data["controller"])


def _make_service_adapter(
    hass: HomeAssistant, func: Callable[..., Any]
) -> Callable[[ServiceCall], Any]:
    """Return an adapter that Home Assistant can call with a ServiceCall."""

    async def _adapter(call: ServiceCall) -> None:
        result = func(hass, call)
        if inspect.isawaitable(result):
            await result

    return _adapter


def _register_services(hass: HomeAssistant) -> None:
    domain_data = _get_domain_data(hass)

    base_schema = vol.Schema({vol.Optional("entry_id"): cv.string})
    sample_schema = base_schema.extend({vol.Required("voltage"): cv.string})

    for name, func, schema in (
        (SERVICE_RESET, _svc_reset, base_schema),
        (SERVICE_PROCESS_SAMPLE, _svc_process_sample, sample_schema),
    ):
        if not hass.services.has_service(DOMAIN, name):
            adapter = _make_service_adapter(hass, func)
            hass.services.async_register(DOMAIN, name, adapter, schema=schema)

    domain_data["services_registered"] = True


async def async_setup(hass: HomeAssistant, config: ConfigType) -> bool:
    """Keep the shared tunables from configuration.yaml for every entry."""
    domain_data = _get_domain_data(hass)
    domain_data["shared"] = dict(config.get(DOMAIN) or {})
    return True


async def _async_reload_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    await hass.config_entries.async_reload(entry.entry_id)


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up one Charge Trigger controller."""
    domain_data = _get_domain_data(hass)
    entries: dict[str, dict[str, Any]] = domain_data["entries"]

    if not domain_data["services_registered"]:
        _register_services(hass)

    controller = ChargeTriggerController(hass, entry, shared_scope(hass))
    await controller.async_load()
    entries[entry.entry_id] = {"entry": entry, "controller": controller}

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    controller.async_start()

    # A new controller picks up changed tunables; state survives via storage.
    entry.async_on_unload(entry.add_update_listener(_async_reload_entry))

    _LOGGER.debug(
        "Charge Trigger initialized with entry_id=%s config=%s",
        entry.entry_id,
        controller.config,
    )
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a Charge Trigger controller."""
    domain_data = _get_domain_data(hass)
    entries: dict[str, dict[str, Any]] = domain_data["entries"]
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        data = entries.pop(entry.entry_id, {})
        controller: ChargeTriggerController | None = data.get("controller")
        if controller is not None:
            await controller.async_shutdown()
        if not entries:
            for svc in (SERVICE_RESET, SERVICE_PROCESS_SAMPLE):
                hass.services.async_remove(DOMAIN, svc)
            domain_data["services_registered"] = False
        _LOGGER.info("Charge Trigger unloaded: %s", entry.entry_id)
    return unload_ok
