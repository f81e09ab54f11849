from __future__ import annotations

import logging

from homeassistant.core import HomeAssistant, ServiceCall

from .controller import ChargeTriggerController
from .engine import Outcome

_LOGGER = logging.getLogger(__name__)


async def handle_reset(hass: HomeAssistant, controller: ChargeTriggerController) -> None:
    """Reset the controller state; never produces a decision."""
    _LOGGER.debug("Manual reset requested via service.")
    await controller.async_handle_message({"reset": True})


async def handle_process_sample(
    hass: HomeAssistant, call: ServiceCall, controller: ChargeTriggerController
) -> None:
    """Feed a manual voltage sample through the controller."""
    raw = call.data.get("voltage")
    evaluation = await controller.async_handle_message({"payload": raw})
    if evaluation.outcome is Outcome.INVALID_SAMPLE:
        return
    _LOGGER.debug(
        "Manual sample %s processed: %s (decision=%s)",
        raw,
        evaluation.outcome.value,
        evaluation.decision.reason if evaluation.decision else None,
    )
