"""Constants and defaults for the Charge Trigger integration."""

from homeassistant.const import Platform

DOMAIN = "charge_trigger"
PLATFORMS = [Platform.SENSOR, Platform.BINARY_SENSOR]

# Entities wired up by the config flow.
CONF_VOLTAGE_SENSOR = "voltage_sensor"
CONF_RELAY_SWITCH = "relay_switch"

# Tunables. Every key may appear in the shared YAML block or in an entry.
CONF_ON_THRESHOLD = "on_threshold"
CONF_OFF_THRESHOLD = "off_threshold"
CONF_SWITCH_DELAY_ON_MS = "switch_delay_on_ms"
# Falls back to the ON delay when unset.
CONF_SWITCH_DELAY_OFF_MS = "switch_delay_off_ms"
CONF_COOLDOWN_AFTER_ON_MS = "cooldown_after_on_ms"
CONF_AVG_WINDOW = "avg_window"
CONF_MIN_ON_TIME_MS = "min_on_time_ms"

# Forced undervoltage break.
CONF_BREAK_UNDERVOLTAGE = "break_undervoltage"
CONF_BREAK_DURATION_MS = "break_duration_ms"

# Boost: rise-based trigger plus hold tail.
CONF_BOOST_HOLD_MS = "boost_hold_ms"
# Older installs configured the tail as a boost duration; it wins over the hold.
CONF_BOOST_DURATION_MS = "boost_duration_ms"
CONF_BOOST_RISE_STEPS = "boost_rise_steps"
CONF_BOOST_RISE_DELTA = "boost_rise_delta"
CONF_BOOST_MIN_VOLTAGE = "boost_min_voltage"

# Post-boost keep-ON latch.
CONF_POST_BOOST_OFF_VOLTAGE = "post_boost_off_voltage"

DEFAULT_ON_THRESHOLD = 26.5
DEFAULT_OFF_THRESHOLD = 25.7
DEFAULT_SWITCH_DELAY_ON_MS = 5 * 1000
DEFAULT_COOLDOWN_AFTER_ON_MS = 3 * 60 * 1000
DEFAULT_AVG_WINDOW = 30
DEFAULT_MIN_ON_TIME_MS = 0
DEFAULT_BREAK_UNDERVOLTAGE = 23.0
DEFAULT_BREAK_DURATION_MS = 10 * 60 * 1000
DEFAULT_BOOST_HOLD_MS = 10 * 1000
DEFAULT_BOOST_RISE_STEPS = 5
DEFAULT_BOOST_RISE_DELTA = 4.0
DEFAULT_BOOST_MIN_VOLTAGE = 26.0
DEFAULT_POST_BOOST_OFF_VOLTAGE = 24.5

# Tunables in the order they are shown in the options flow.
TUNABLE_KEYS: tuple[str, ...] = (
    CONF_ON_THRESHOLD,
    CONF_OFF_THRESHOLD,
    CONF_SWITCH_DELAY_ON_MS,
    CONF_SWITCH_DELAY_OFF_MS,
    CONF_COOLDOWN_AFTER_ON_MS,
    CONF_AVG_WINDOW,
    CONF_MIN_ON_TIME_MS,
    CONF_BREAK_UNDERVOLTAGE,
    CONF_BREAK_DURATION_MS,
    CONF_BOOST_HOLD_MS,
    CONF_BOOST_RISE_STEPS,
    CONF_BOOST_RISE_DELTA,
    CONF_BOOST_MIN_VOLTAGE,
    CONF_POST_BOOST_OFF_VOLTAGE,
)

# Persistence.
STORAGE_VERSION = 1
STORAGE_KEY_PREFIX = f"{DOMAIN}_state"
SAVE_DELAY_SECONDS = 10

# Decision event fired for the external actuator.
EVENT_DECISION = f"{DOMAIN}_decision"

# Sensor states that never carry a voltage reading.
UNKNOWN_STATES = {"unknown", "unavailable", None}

# Service names exposed by the integration.
SERVICE_RESET = "reset"
SERVICE_PROCESS_SAMPLE = "process_sample"
