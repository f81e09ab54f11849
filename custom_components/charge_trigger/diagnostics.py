from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, State
from homeassistant.util import dt as dt_util

from .const import DOMAIN

_LOGGER = logging.getLogger(__name__)


def _entity_domain(entity_id: Any) -> str:
    """Extracts the domain part of an entity_id ('sensor.xxx' -> 'sensor')."""
    if not isinstance(entity_id, str) or "." not in entity_id:
        return "<unknown>"
    return entity_id.split(".", 1)[0]


def _extract_state(state_obj: Optional[State]) -> Dict[str, Any]:
    """Return sanitized state and key attributes."""
    if not state_obj:
        return {"state": None, "attributes": {}}
    return {
        "state": state_obj.state,
        "attributes": {
            k: v
            for k, v in state_obj.attributes.items()
            if k in ("unit_of_measurement", "device_class")
        },
    }


def _entity_summary(hass: HomeAssistant, entity_id: Optional[str]) -> Dict[str, Any]:
    return {
        "id": entity_id,
        "domain": _entity_domain(entity_id),
        "state": _extract_state(hass.states.get(entity_id)) if entity_id else {},
    }


def _capture_controller_state(controller) -> Dict[str, Any]:
    if not controller:
        return {}
    state = controller.state
    history = list(state.history)
    average = sum(history) / len(history) if history else None
    now_ms = dt_util.utcnow().timestamp() * 1000
    return {
        "state": state.as_dict(),
        "average_voltage": round(average, 3) if average is not None else None,
        "sample_count": len(history),
        "break_remaining_ms": max(0.0, state.break_until - now_ms),
        "boost_remaining_ms": max(0.0, state.boost_until - now_ms),
    }


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> Dict[str, Any]:
    """Return diagnostics for a Charge Trigger config entry."""
    domain_data = hass.data.get(DOMAIN, {})
    data = domain_data.get("entries", {}).get(entry.entry_id, {})
    controller = data.get("controller")

    status = getattr(controller, "last_status", None)
    evaluation = getattr(controller, "last_evaluation", None)
    decision = getattr(controller, "last_decision", None)

    return {
        "entry_data": dict(entry.data),
        "options": dict(getattr(entry, "options", {}) or {}),
        "shared_config": dict(domain_data.get("shared") or {}),
        "resolved_config": controller.config.as_dict() if controller else {},
        "voltage_sensor": _entity_summary(
            hass, getattr(controller, "voltage_entity", None)
        ),
        "relay_switch": _entity_summary(hass, getattr(controller, "relay_entity", None)),
        "controller": _capture_controller_state(controller),
        "status": status.as_dict() if status else None,
        "last_evaluation": evaluation.as_dict() if evaluation else None,
        "last_decision": decision.as_dict() if decision else None,
        "last_update": dt_util.now().isoformat(),
    }
