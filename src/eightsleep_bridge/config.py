"""Runtime configuration.

Values come from ``EIGHTSLEEP_*`` environment variables, optionally overlaid by
a YAML options file (the Home Assistant add-on ``options`` layout, one key per
field below).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from eightsleep_bridge.adapters.base import AdapterConfig
from eightsleep_bridge.const import (
    EIGHTSLEEP_API_BASE,
    EIGHTSLEEP_DEVICE_NAME,
    EIGHTSLEEP_HASS_TOPIC,
    EIGHTSLEEP_HUBITAT_HOST,
    EIGHTSLEEP_HUBITAT_PORT,
    EIGHTSLEEP_MQTT_CLIENT_ID,
    EIGHTSLEEP_MQTT_CONNECT_TIMEOUT,
    EIGHTSLEEP_MQTT_HOST,
    EIGHTSLEEP_MQTT_PORT,
    EIGHTSLEEP_POLL_INTERVAL,
)
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.mqtt.client import BrokerConfig

__all__ = ["BridgeConfig", "load_config"]

logger = get_logger(__name__)

_ENV_PREFIX = "EIGHTSLEEP_"
# field name -> env var suffix where they differ
_ENV_ALIASES = {
    "mqtt_password": "MQTT_PASS",
    "mqtt_username": "MQTT_USER",
}


class BridgeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str | None = None
    device_id: str | None = None
    device_name: str = EIGHTSLEEP_DEVICE_NAME
    api_base: str = EIGHTSLEEP_API_BASE
    poll_interval: float = Field(default=EIGHTSLEEP_POLL_INTERVAL, gt=0)
    cache_ttl: float = Field(default=EIGHTSLEEP_POLL_INTERVAL, gt=0)

    mqtt_enabled: bool = True
    mqtt_host: str = EIGHTSLEEP_MQTT_HOST
    mqtt_port: int = Field(default=EIGHTSLEEP_MQTT_PORT, ge=1, le=65535)
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str = EIGHTSLEEP_MQTT_CLIENT_ID
    mqtt_connect_timeout: float = Field(default=EIGHTSLEEP_MQTT_CONNECT_TIMEOUT, gt=0)
    hass_topic: str = EIGHTSLEEP_HASS_TOPIC

    hubitat_enabled: bool = False
    hubitat_host: str = EIGHTSLEEP_HUBITAT_HOST
    hubitat_port: int = Field(default=EIGHTSLEEP_HUBITAT_PORT, ge=1, le=65535)

    @model_validator(mode="before")
    @classmethod
    def _default_cache_ttl(cls, data: Any) -> Any:
        # the cache lives exactly one poll interval unless told otherwise
        if isinstance(data, dict) and data.get("cache_ttl") in (None, "") and "poll_interval" in data:
            data = {**data, "cache_ttl": data["poll_interval"]}
        return data

    @classmethod
    def env_values(cls, environ: Mapping[str, str] | None = None) -> dict[str, str]:
        """Raw ``EIGHTSLEEP_*`` values keyed by field name; unset and empty variables are skipped."""
        environ = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = environ.get(_ENV_PREFIX + _ENV_ALIASES.get(name, name.upper()))
            if raw:
                values[name] = raw
        return values

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        return cls.model_validate(cls.env_values(environ))

    def adapter_config(self) -> AdapterConfig:
        if not self.device_id:
            msg = "device_id is not configured (set EIGHTSLEEP_DEVICE_ID)"
            raise ValueError(msg)
        return AdapterConfig(
            device_id=self.device_id,
            device_name=self.device_name,
            poll_interval=self.poll_interval,
        )

    def broker_config(self) -> BrokerConfig:
        return BrokerConfig(
            host=self.mqtt_host,
            port=self.mqtt_port,
            username=self.mqtt_username,
            password=self.mqtt_password,
            client_id=self.mqtt_client_id,
            topic_prefix=self.hass_topic,
            connect_timeout=self.mqtt_connect_timeout,
        )


def load_config(options_file: str | Path | None = None, environ: Mapping[str, str] | None = None) -> BridgeConfig:
    """Build the configuration from the environment plus ``options_file`` if it exists.

    Raises:
        ValueError: the options file is not a YAML mapping
        pydantic.ValidationError: a value has the wrong type or range

    """
    lp = "config:load:"
    values: dict[str, Any] = BridgeConfig.env_values(environ)
    if options_file is not None:
        path = Path(options_file).expanduser()
        if path.exists():
            logger.debug("%s reading options from %s", lp, path)
            with path.open(encoding="utf-8") as f:
                options = yaml.safe_load(f) or {}
            if not isinstance(options, dict):
                msg = f"{path}: expected a mapping, got {type(options).__name__}"
                raise ValueError(msg)
            unknown = sorted(str(k) for k in options if k not in BridgeConfig.model_fields)
            if unknown:
                logger.warning("%s ignoring unknown options: %s", lp, ", ".join(unknown))
            values.update({k: v for k, v in options.items() if k in BridgeConfig.model_fields and v is not None})
    return BridgeConfig.model_validate(values)
