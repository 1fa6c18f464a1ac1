import os

__all__ = [
    "DEFAULT_HTTP_PORT",
    "DEFAULT_MQTT_PORT",
    "DISCOVERY_TOPIC_FILTERS",
    "MAX_POWER_CHANNELS",
    "MAX_ROUTINE_STEPS",
    "MQTT_QOS",
    "NEO_COOLCAM_MODULE_ID",
    "TASMOTA_COMMAND_TIMEOUT",
    "TASMOTA_DEBUG",
    "TASMOTA_DISCOVERY_TIMEOUT",
    "TASMOTA_GROUP_TOPIC",
    "TASMOTA_HTTP_TIMEOUT",
    "TASMOTA_LOG_FORMAT",
    "TASMOTA_LOG_HUMAN_OUTPUT",
    "TASMOTA_LOG_JSON_FILE",
    "TASMOTA_METRICS_PORT",
    "TASMOTA_MQTT_HOST",
    "TASMOTA_MQTT_KEEPALIVE",
    "TASMOTA_MQTT_PASS",
    "TASMOTA_MQTT_PORT",
    "TASMOTA_MQTT_USER",
    "TASMOTA_RECONNECT_BASE_DELAY",
    "TASMOTA_RECONNECT_MAX_DELAY",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", "on", "o")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


MAX_ROUTINE_STEPS: int = 30
MAX_POWER_CHANNELS: int = 8
# Tasmota module id of the Neo Coolcam power-monitoring plug
NEO_COOLCAM_MODULE_ID: int = 49
DEFAULT_HTTP_PORT: int = 80
DEFAULT_MQTT_PORT: int = 1883
MQTT_QOS: int = 1

DISCOVERY_TOPIC_FILTERS: tuple[str, ...] = ("tele/+/LWT", "tele/+/STATE", "stat/+/+")

TASMOTA_COMMAND_TIMEOUT: float = _env_float("TASMOTA_COMMAND_TIMEOUT", 5.0)
TASMOTA_HTTP_TIMEOUT: float = _env_float("TASMOTA_HTTP_TIMEOUT", 10.0)
TASMOTA_DISCOVERY_TIMEOUT: float = _env_float("TASMOTA_DISCOVERY_TIMEOUT", 5.0)
TASMOTA_GROUP_TOPIC: str = os.environ.get("TASMOTA_GROUP_TOPIC", "tasmotas")

TASMOTA_MQTT_HOST: str = os.environ.get("TASMOTA_MQTT_HOST", "localhost")
TASMOTA_MQTT_PORT: int = _env_int("TASMOTA_MQTT_PORT", DEFAULT_MQTT_PORT)
_mqtt_user = os.environ.get("TASMOTA_MQTT_USER")
TASMOTA_MQTT_USER: str | None = _mqtt_user if _mqtt_user else None
_mqtt_pass = os.environ.get("TASMOTA_MQTT_PASS")
TASMOTA_MQTT_PASS: str | None = _mqtt_pass if _mqtt_pass else None
TASMOTA_MQTT_KEEPALIVE: int = _env_int("TASMOTA_MQTT_KEEPALIVE", 60)
TASMOTA_RECONNECT_BASE_DELAY: float = _env_float("TASMOTA_RECONNECT_BASE_DELAY", 1.0)
TASMOTA_RECONNECT_MAX_DELAY: float = _env_float("TASMOTA_RECONNECT_MAX_DELAY", 30.0)

TASMOTA_METRICS_PORT: int = _env_int("TASMOTA_METRICS_PORT", 9400)

TASMOTA_DEBUG = os.environ.get("TASMOTA_DEBUG", "0").casefold() in YES_ANSWER
TASMOTA_LOG_FORMAT: str = os.environ.get("TASMOTA_LOG_FORMAT", "human").casefold()
TASMOTA_LOG_JSON_FILE: str | None = os.environ.get("TASMOTA_LOG_JSON_FILE") or None
TASMOTA_LOG_HUMAN_OUTPUT: str = os.environ.get("TASMOTA_LOG_HUMAN_OUTPUT", "stderr")
