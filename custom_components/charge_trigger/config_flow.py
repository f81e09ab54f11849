from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import voluptuous as vol
from homeassistant import config_entries
from homeassistant.core import callback
from homeassistant.helpers.selector import (
    EntitySelector,
    EntitySelectorConfig,
    NumberSelector,
    NumberSelectorConfig,
    NumberSelectorMode,
    TextSelector,
)

from .const import (
    CONF_AVG_WINDOW,
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
    CONF_RELAY_SWITCH,
    CONF_SWITCH_DELAY_OFF_MS,
    CONF_SWITCH_DELAY_ON_MS,
    CONF_VOLTAGE_SENSOR,
    DOMAIN,
    TUNABLE_KEYS,
)
from .engine import ControllerConfig

_LOGGER = logging.getLogger(__name__)

VOLTAGE_SELECTOR = EntitySelector(EntitySelectorConfig(domain=["sensor"]))
RELAY_SELECTOR = EntitySelector(
    EntitySelectorConfig(domain=["switch", "input_boolean"])
)

MISSING = object()


def _volts() -> NumberSelector:
    return NumberSelector(
        NumberSelectorConfig(
            min=0,
            max=100,
            step=0.1,
            unit_of_measurement="V",
            mode=NumberSelectorMode.BOX,
        )
    )


def _millis(maximum: int = 86_400_000) -> NumberSelector:
    return NumberSelector(
        NumberSelectorConfig(
            min=0,
            max=maximum,
            step=100,
            unit_of_measurement="ms",
            mode=NumberSelectorMode.BOX,
        )
    )


def _count(minimum: int, maximum: int) -> NumberSelector:
    return NumberSelector(
        NumberSelectorConfig(
            min=minimum, max=maximum, step=1, mode=NumberSelectorMode.BOX
        )
    )


@dataclass(frozen=True)
class SchemaField:
    """Definition for a single schema field."""

    key: str
    selector: Any
    required: bool = False
    existing_only: bool = False

    def build(self, defaults: Mapping[str, Any] | None) -> tuple[Any, Any]:
        value: Any = MISSING
        if defaults and self.key in defaults:
            candidate = defaults[self.key]
            if not (self.existing_only and candidate in (None, "")):
                value = candidate

        field_cls = vol.Required if self.required else vol.Optional
        if value is MISSING:
            return field_cls(self.key), self.selector
        if self.existing_only:
            # Suggested rather than default so the field can be cleared.
            return (
                field_cls(self.key, description={"suggested_value": value}),
                self.selector,
            )
        return field_cls(self.key, default=value), self.selector


CONTROLLER_FIELDS: tuple[SchemaField, ...] = (
    SchemaField("name", TextSelector(), required=True),
    SchemaField(CONF_VOLTAGE_SENSOR, VOLTAGE_SELECTOR, required=True),
    SchemaField(CONF_RELAY_SWITCH, RELAY_SELECTOR, existing_only=True),
)

TUNABLE_FIELDS: tuple[SchemaField, ...] = (
    SchemaField(CONF_ON_THRESHOLD, _volts(), existing_only=True),
    SchemaField(CONF_OFF_THRESHOLD, _volts(), existing_only=True),
    SchemaField(CONF_SWITCH_DELAY_ON_MS, _millis(3_600_000), existing_only=True),
    SchemaField(CONF_SWITCH_DELAY_OFF_MS, _millis(3_600_000), existing_only=True),
    SchemaField(CONF_COOLDOWN_AFTER_ON_MS, _millis(), existing_only=True),
    SchemaField(CONF_AVG_WINDOW, _count(1, 1000), existing_only=True),
    SchemaField(CONF_MIN_ON_TIME_MS, _millis(), existing_only=True),
    SchemaField(CONF_BREAK_UNDERVOLTAGE, _volts(), existing_only=True),
    SchemaField(CONF_BREAK_DURATION_MS, _millis(), existing_only=True),
    SchemaField(CONF_BOOST_HOLD_MS, _millis(), existing_only=True),
    SchemaField(CONF_BOOST_RISE_STEPS, _count(1, 500), existing_only=True),
    SchemaField(CONF_BOOST_RISE_DELTA, _volts(), existing_only=True),
    SchemaField(CONF_BOOST_MIN_VOLTAGE, _volts(), existing_only=True),
    SchemaField(CONF_POST_BOOST_OFF_VOLTAGE, _volts(), existing_only=True),
)

_INTEGER_FIELDS = {CONF_AVG_WINDOW, CONF_BOOST_RISE_STEPS, CONF_MIN_ON_TIME_MS}


class ChargeTriggerFlowMixin:
    """Shared helpers for config and options flows."""

    @staticmethod
    def _schema_from_fields(
        fields: Iterable[SchemaField],
        defaults: Mapping[str, Any] | None = None,
    ) -> vol.Schema:
        schema_fields: dict[Any, Any] = {}
        for field in fields:
            field_key, validator = field.build(defaults)
            schema_fields[field_key] = validator
        return vol.Schema(schema_fields)

    @staticmethod
    def _sanitize_optional_entities(data: dict[str, Any]) -> dict[str, Any]:
        for key in (CONF_RELAY_SWITCH, CONF_SWITCH_DELAY_OFF_MS):
            if data.get(key) in (None, ""):
                data.pop(key, None)
        return data

    @staticmethod
    def _threshold_errors(data: Mapping[str, Any]) -> dict[str, str]:
        errors: dict[str, str] = {}
        on_threshold = data.get(CONF_ON_THRESHOLD)
        off_threshold = data.get(CONF_OFF_THRESHOLD)
        if (
            on_threshold is not None
            and off_threshold is not None
            and float(off_threshold) > float(on_threshold)
        ):
            errors[CONF_OFF_THRESHOLD] = "off_above_on"
        break_v = data.get(CONF_BREAK_UNDERVOLTAGE)
        if (
            break_v is not None
            and off_threshold is not None
            and float(break_v) > float(off_threshold)
        ):
            errors[CONF_BREAK_UNDERVOLTAGE] = "break_above_off"
        return errors

    @staticmethod
    def _normalize_tunables(data: dict[str, Any]) -> dict[str, Any]:
        for key in _INTEGER_FIELDS:
            if key in data and data[key] is not None:
                data[key] = int(data[key])
        return data


class ChargeTriggerConfigFlow(
    ChargeTriggerFlowMixin, config_entries.ConfigFlow, domain=DOMAIN
):
    """Handle Charge Trigger config flow."""

    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> config_entries.ConfigFlowResult:
        errors: dict[str, str] = {}

        if user_input:
            name = str(user_input.get("name", "")).strip()
            if not name:
                errors["name"] = "name_empty"
            else:
                self._async_abort_entries_match(
                    {CONF_VOLTAGE_SENSOR: user_input[CONF_VOLTAGE_SENSOR]}
                )
                data = self._sanitize_optional_entities(dict(user_input))
                data.pop("name", None)
                return self.async_create_entry(title=name, data=data)

        return self.async_show_form(
            step_id="user",
            data_schema=self._schema_from_fields(CONTROLLER_FIELDS, user_input),
            errors=errors,
        )

    @staticmethod
    @callback
    def async_get_options_flow(
        config_entry: config_entries.ConfigEntry,
    ) -> config_entries.OptionsFlow:
        return ChargeTriggerOptionsFlowHandler()


class ChargeTriggerOptionsFlowHandler(
    ChargeTriggerFlowMixin, config_entries.OptionsFlow
):
    """Edit the tunables of an existing controller.

    Only values that differ from what the shared YAML block and the built-in
    defaults give are stored, so the entry keeps following the shared block
    for everything it does not override.
    """

    def _shared(self) -> dict[str, Any]:
        return dict(self.hass.data.get(DOMAIN, {}).get("shared") or {})

    def _current_values(self) -> dict[str, Any]:
        options = dict(self.config_entry.options or {})
        resolved = ControllerConfig.resolve(
            {**self.config_entry.data, **options}, self._shared()
        ).as_dict()
        if CONF_SWITCH_DELAY_OFF_MS not in options:
            resolved.pop(CONF_SWITCH_DELAY_OFF_MS, None)
        resolved[CONF_RELAY_SWITCH] = options.get(
            CONF_RELAY_SWITCH, self.config_entry.data.get(CONF_RELAY_SWITCH)
        )
        return resolved

    def _overrides(self, user_input: Mapping[str, Any]) -> dict[str, Any]:
        shared = self._shared()
        submitted = self._normalize_tunables(
            {
                key: user_input[key]
                for key in TUNABLE_KEYS
                if user_input.get(key) not in (None, "")
            }
        )
        fallback = ControllerConfig.resolve(self.config_entry.data, shared).as_dict()
        overrides = {
            key: value
            for key, value in submitted.items()
            if key != CONF_SWITCH_DELAY_OFF_MS and value != fallback[key]
        }
        if CONF_SWITCH_DELAY_OFF_MS in submitted:
            # Unset, the OFF delay follows whatever ON delay resolves.
            inherited = ControllerConfig.resolve(
                {**self.config_entry.data, **overrides}, shared
            ).switch_delay_off_ms
            if submitted[CONF_SWITCH_DELAY_OFF_MS] != inherited:
                overrides[CONF_SWITCH_DELAY_OFF_MS] = submitted[
                    CONF_SWITCH_DELAY_OFF_MS
                ]
        return overrides

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> config_entries.ConfigFlowResult:
        errors: dict[str, str] = {}
        if user_input is not None:
            data = self._overrides(user_input)
            effective = ControllerConfig.resolve(
                {**self.config_entry.data, **data}, self._shared()
            )
            errors = self._threshold_errors(effective.as_dict())
            if not errors:
                # Options overlay entry data, so a cleared relay is stored empty.
                data[CONF_RELAY_SWITCH] = user_input.get(CONF_RELAY_SWITCH) or ""
                _LOGGER.debug("Charge Trigger options updated: %s", data)
                return self.async_create_entry(title="", data=data)

        fields = (
            SchemaField(CONF_RELAY_SWITCH, RELAY_SELECTOR, existing_only=True),
            *TUNABLE_FIELDS,
        )
        defaults = user_input if user_input is not None else self._current_values()
        return self.async_show_form(
            step_id="init",
            data_schema=self._schema_from_fields(fields, defaults),
            errors=errors,
        )
