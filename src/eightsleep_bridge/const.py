import datetime
import os

from eightsleep_bridge import __version__

__all__ = [
    "AVAILABILITY_OFFLINE",
    "AVAILABILITY_ONLINE",
    "BRIDGE_TOPIC_ROOT",
    "COMMAND_TIMEOUT",
    "DEFAULT_CACHE_TTL",
    "EIGHTSLEEP_API_BASE",
    "EIGHTSLEEP_API_TIMEOUT",
    "EIGHTSLEEP_DEBUG",
    "EIGHTSLEEP_DEVICE_NAME",
    "EIGHTSLEEP_HASS_TOPIC",
    "EIGHTSLEEP_HUBITAT_HOST",
    "EIGHTSLEEP_HUBITAT_PORT",
    "EIGHTSLEEP_LOG_FORMAT",
    "EIGHTSLEEP_LOG_HUMAN_OUTPUT",
    "EIGHTSLEEP_LOG_JSON_FILE",
    "EIGHTSLEEP_MANUFACTURER",
    "EIGHTSLEEP_MODEL",
    "EIGHTSLEEP_MQTT_CLIENT_ID",
    "EIGHTSLEEP_MQTT_CONNECT_TIMEOUT",
    "EIGHTSLEEP_MQTT_HOST",
    "EIGHTSLEEP_MQTT_PASS",
    "EIGHTSLEEP_MQTT_PORT",
    "EIGHTSLEEP_MQTT_USER",
    "EIGHTSLEEP_OPTIONS_FILE",
    "EIGHTSLEEP_PERF_THRESHOLD_MS",
    "EIGHTSLEEP_PERF_TRACKING",
    "EIGHTSLEEP_POLL_INTERVAL",
    "EIGHTSLEEP_VERSION",
    "HTTP_SHUTDOWN_TIMEOUT",
    "HTTP_START_GRACE",
    "LEVEL_MAX",
    "LEVEL_MIN",
    "MQTT_DISCONNECT_TIMEOUT",
    "MQTT_QOS",
    "MQTT_RECONNECT_DELAY",
    "POLL_PUBLISH_TIMEOUT",
    "PRESENCE_TIMEOUT",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
EIGHTSLEEP_VERSION: str = __version__
EIGHTSLEEP_MANUFACTURER = "Eight Sleep"
EIGHTSLEEP_MODEL = "Pod"

# heart rate older than this means the side is empty
PRESENCE_TIMEOUT = datetime.timedelta(minutes=10)
DEFAULT_CACHE_TTL: float = 30.0
LEVEL_MIN: int = -100
LEVEL_MAX: int = 100

BRIDGE_TOPIC_ROOT = "eightsleep"
AVAILABILITY_ONLINE: bytes = b"online"
AVAILABILITY_OFFLINE: bytes = b"offline"
MQTT_QOS: int = 1

# seconds
MQTT_RECONNECT_DELAY: float = 5.0
MQTT_DISCONNECT_TIMEOUT: float = 1.0
COMMAND_TIMEOUT: float = 30.0
POLL_PUBLISH_TIMEOUT: float = 30.0
HTTP_SHUTDOWN_TIMEOUT: float = 5.0
HTTP_START_GRACE: float = 0.1


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


EIGHTSLEEP_API_BASE: str = os.environ.get("EIGHTSLEEP_API_BASE", "https://client-api.8slp.net/v1/")
EIGHTSLEEP_API_TIMEOUT: float = _env_float("EIGHTSLEEP_API_TIMEOUT", 10.0)
EIGHTSLEEP_DEVICE_NAME: str = os.environ.get("EIGHTSLEEP_DEVICE_NAME", "Eight Sleep Pod")
EIGHTSLEEP_POLL_INTERVAL: float = _env_float("EIGHTSLEEP_POLL_INTERVAL", 30.0)
EIGHTSLEEP_OPTIONS_FILE: str = os.environ.get("EIGHTSLEEP_OPTIONS_FILE", "/data/options.yaml")

EIGHTSLEEP_MQTT_HOST: str = os.environ.get("EIGHTSLEEP_MQTT_HOST", "localhost")
_mqtt_port = os.environ.get("EIGHTSLEEP_MQTT_PORT", "1883")
EIGHTSLEEP_MQTT_PORT: int = int(_mqtt_port) if _mqtt_port and _mqtt_port.isdigit() else 1883
EIGHTSLEEP_MQTT_USER: str | None = os.environ.get("EIGHTSLEEP_MQTT_USER") or None
EIGHTSLEEP_MQTT_PASS: str | None = os.environ.get("EIGHTSLEEP_MQTT_PASS") or None
EIGHTSLEEP_MQTT_CLIENT_ID: str = os.environ.get("EIGHTSLEEP_MQTT_CLIENT_ID", "eightctl")
EIGHTSLEEP_MQTT_CONNECT_TIMEOUT: float = _env_float("EIGHTSLEEP_MQTT_CONNECT_TIMEOUT", 30.0)
EIGHTSLEEP_HASS_TOPIC: str = os.environ.get("EIGHTSLEEP_HASS_TOPIC", "homeassistant")

EIGHTSLEEP_HUBITAT_HOST: str = os.environ.get("EIGHTSLEEP_HUBITAT_HOST", "0.0.0.0")
_hubitat_port = os.environ.get("EIGHTSLEEP_HUBITAT_PORT", "8080")
EIGHTSLEEP_HUBITAT_PORT: int = int(_hubitat_port) if _hubitat_port and _hubitat_port.isdigit() else 8080

EIGHTSLEEP_DEBUG = os.environ.get("EIGHTSLEEP_DEBUG", "0").casefold() in YES_ANSWER

# Logging Configuration
EIGHTSLEEP_LOG_FORMAT: str = os.environ.get("EIGHTSLEEP_LOG_FORMAT", "human")  # "json", "human", or "both"
EIGHTSLEEP_LOG_JSON_FILE: str = os.environ.get("EIGHTSLEEP_LOG_JSON_FILE", "/var/log/eightsleep_bridge.json")
EIGHTSLEEP_LOG_HUMAN_OUTPUT: str = os.environ.get("EIGHTSLEEP_LOG_HUMAN_OUTPUT", "stdout")

# Performance Instrumentation
EIGHTSLEEP_PERF_TRACKING: bool = os.environ.get("EIGHTSLEEP_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("EIGHTSLEEP_PERF_THRESHOLD_MS", "2000")
EIGHTSLEEP_PERF_THRESHOLD_MS: int = (
    int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 2000
)
