"""Basic defaults tests."""

from custom_components.charge_trigger.const import (
    DEFAULT_SWITCH_DELAY_ON_MS,
    EVENT_DECISION,
    STORAGE_KEY_PREFIX,
)


def test_default_switch_delay_is_five_seconds() -> None:
    """Protect against accidental changes to the default switch delay."""
    assert DEFAULT_SWITCH_DELAY_ON_MS == 5000


def test_public_names() -> None:
    assert EVENT_DECISION == "charge_trigger_decision"
    assert STORAGE_KEY_PREFIX == "charge_trigger_state"
