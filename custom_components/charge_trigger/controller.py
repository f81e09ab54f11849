from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import Event, HomeAssistant, callback
from homeassistant.helpers.event import EventStateChangedData, async_track_state_change_event
from homeassistant.helpers.storage import Store
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator
from homeassistant.util import dt as dt_util

from .const import (
    CONF_RELAY_SWITCH,
    CONF_VOLTAGE_SENSOR,
    DOMAIN,
    EVENT_DECISION,
    SAVE_DELAY_SECONDS,
    STORAGE_KEY_PREFIX,
    STORAGE_VERSION,
    UNKNOWN_STATES,
)
from .engine import (
    ChargeTriggerEngine,
    ControllerConfig,
    ControllerState,
    Decision,
    Evaluation,
    Outcome,
)
from .status import StatusReport, build_status

_LOGGER = logging.getLogger(__name__)


def instance_scope(entry: ConfigEntry) -> dict[str, Any]:
    """Entry data overlaid with its options (options win)."""
    options = getattr(entry, "options", {}) or {}
    return {**entry.data, **options}


def shared_scope(hass: HomeAssistant) -> dict[str, Any]:
    """Tunables from the ``charge_trigger:`` block of configuration.yaml."""
    return dict(hass.data.get(DOMAIN, {}).get("shared") or {})


def _now_ms() -> int:
    return int(dt_util.utcnow().timestamp() * 1000)


class ChargeTriggerController(DataUpdateCoordinator[dict[str, Any]]):
    """Feeds voltage samples for one relay through the decision engine.

    Push driven: there is no polling interval, listeners are notified with
    ``async_set_updated_data`` after every processed sample or reset.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        entry: ConfigEntry,
        shared: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            hass,
            _LOGGER,
            config_entry=entry,
            name=f"{DOMAIN}_{entry.entry_id}",
            update_interval=None,
        )
        self.entry = entry
        self.config = ControllerConfig.resolve(instance_scope(entry), shared)
        self.engine = ChargeTriggerEngine(self.config)
        self._store: Store[dict[str, Any]] = Store(
            hass, STORAGE_VERSION, f"{STORAGE_KEY_PREFIX}_{entry.entry_id}"
        )
        self.last_evaluation: Evaluation | None = None
        self.last_status: StatusReport | None = None
        self.last_decision: Decision | None = None
        self._unsub_voltage: Callable[[], None] | None = None

    @property
    def state(self) -> ControllerState:
        return self.engine.state

    @property
    def voltage_entity(self) -> str | None:
        return instance_scope(self.entry).get(CONF_VOLTAGE_SENSOR)

    @property
    def relay_entity(self) -> str | None:
        return instance_scope(self.entry).get(CONF_RELAY_SWITCH) or None

    async def async_load(self) -> None:
        """Restore persisted state; anything unreadable starts fresh."""
        try:
            data = await self._store.async_load()
        except Exception:
            _LOGGER.exception("Charge Trigger: state load failed, starting fresh")
            data = None
        self.engine.restore(ControllerState.from_dict(data))
        _LOGGER.debug(
            "Charge Trigger state loaded for %s (state=%s, samples=%d)",
            self.entry.entry_id,
            self.state.last_state.value,
            len(self.state.history),
        )

    def _data_to_save(self) -> dict[str, Any]:
        return self.state.as_dict()

    async def async_save(self) -> None:
        try:
            await self._store.async_save(self._data_to_save())
        except Exception:
            _LOGGER.exception("Charge Trigger: state save failed")

    @callback
    def async_start(self) -> None:
        """Start following the configured voltage sensor."""
        voltage_entity = self.voltage_entity
        if not voltage_entity or self._unsub_voltage is not None:
            return
        self._unsub_voltage = async_track_state_change_event(
            self.hass, voltage_entity, self._async_on_voltage_change
        )

    async def async_shutdown(self) -> None:
        if self._unsub_voltage is not None:
            self._unsub_voltage()
            self._unsub_voltage = None
        await self.async_save()
        await super().async_shutdown()

    async def _async_on_voltage_change(
        self, event: Event[EventStateChangedData]
    ) -> None:
        new_state = event.data.get("new_state")
        if new_state is None:
            return
        if new_state.state in UNKNOWN_STATES:
            # Not a sample; warn once when a reporting sensor drops out.
            old_state = event.data.get("old_state")
            if old_state is not None and old_state.state not in UNKNOWN_STATES:
                _LOGGER.warning(
                    "Voltage sensor %s became %s; no samples until it reports again",
                    new_state.entity_id,
                    new_state.state,
                )
            else:
                _LOGGER.debug(
                    "Skipping %s state of %s", new_state.state, new_state.entity_id
                )
            return
        await self.async_handle_sample(new_state.state)

    async def async_handle_message(self, message: Mapping[str, Any]) -> Evaluation:
        """Handle one message of the input stream: a reset or a sample."""
        if message.get("reset"):
            return await self.async_reset()
        return await self.async_handle_sample(message.get("payload"))

    async def async_handle_sample(
        self, raw: Any, now_ms: float | None = None
    ) -> Evaluation:
        now = _now_ms() if now_ms is None else now_ms
        evaluation = self.engine.process(raw, now)
        if evaluation.outcome is Outcome.INVALID_SAMPLE:
            return evaluation

        self._store.async_delay_save(self._data_to_save, SAVE_DELAY_SECONDS)
        self._publish(evaluation)
        if evaluation.decision is not None:
            await self._async_emit_decision(evaluation.decision)
        return evaluation

    async def async_reset(self) -> Evaluation:
        evaluation = self.engine.reset(_now_ms())
        self.last_decision = None
        await self.async_save()
        self._publish(evaluation)
        _LOGGER.info("Charge Trigger state reset for %s", self.entry.entry_id)
        return evaluation

    def _publish(self, evaluation: Evaluation) -> None:
        self.last_evaluation = evaluation
        self.last_status = build_status(evaluation)
        if evaluation.decision is not None:
            self.last_decision = evaluation.decision
        self.async_set_updated_data(self.snapshot())

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.as_dict(),
            "status": self.last_status.as_dict() if self.last_status else None,
            "evaluation": (
                self.last_evaluation.as_dict() if self.last_evaluation else None
            ),
            "decision": self.last_decision.as_dict() if self.last_decision else None,
        }

    async def _async_emit_decision(self, decision: Decision) -> None:
        self.hass.bus.async_fire(
            EVENT_DECISION, {"entry_id": self.entry.entry_id, **decision.as_dict()}
        )
        relay = self.relay_entity
        if not relay:
            return
        service = "turn_on" if decision.is_on else "turn_off"
        relay_domain = relay.split(".", 1)[0]
        try:
            await self.hass.services.async_call(
                relay_domain,
                service,
                {"entity_id": relay},
                blocking=True,
            )
        except Exception as err:
            _LOGGER.error(
                "Failed to apply %s decision to %s: %s", decision.reason, relay, err
            )
            return
        _LOGGER.info(
            "Relay %s -> %s (%s)", relay, decision.desired_state.value, decision.reason
        )
