"""Home Assistant MQTT discovery for the pod's two climate entities.

Also the single place topic strings are built, so the discovery payload and
the state/command helpers can never disagree.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from eightsleep_bridge.const import (
    BRIDGE_TOPIC_ROOT,
    EIGHTSLEEP_MANUFACTURER,
    EIGHTSLEEP_MODEL,
    LEVEL_MAX,
    LEVEL_MIN,
)
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.models import Side

if TYPE_CHECKING:
    from eightsleep_bridge.mqtt.client import MQTTAdapter

logger = get_logger(__name__)


def side_topic(device_id: str, side: Side, leaf: str) -> str:
    """``eightsleep/<device>/<side>/<leaf>``"""
    return f"{BRIDGE_TOPIC_ROOT}/{device_id}/{side}/{leaf}"


def availability_topic(device_id: str) -> str:
    return f"{BRIDGE_TOPIC_ROOT}/{device_id}/availability"


def discovery_topic(prefix: str, device_id: str, side: Side) -> str:
    return f"{prefix}/climate/{device_id}_{side}/config"


def discovery_payload(device_id: str, device_name: str, side: Side) -> dict[str, object]:
    """Climate entity config for one side.

    The target level doubles as the "temperature" HA shows, so both the current
    and target temperature topics point at the level.
    """
    level_topic = side_topic(device_id, side, "temperature")
    return {
        "name": f"{device_name} {side}",
        "unique_id": f"eightsleep_{device_id}_{side}",
        "device": {
            "identifiers": [device_id],
            "name": device_name,
            "manufacturer": EIGHTSLEEP_MANUFACTURER,
            "model": EIGHTSLEEP_MODEL,
        },
        "current_temperature_topic": level_topic,
        "temperature_state_topic": level_topic,
        "mode_state_topic": side_topic(device_id, side, "mode"),
        "availability_topic": availability_topic(device_id),
        "temperature_command_topic": side_topic(device_id, side, "set_temperature"),
        "mode_command_topic": side_topic(device_id, side, "set_mode"),
        "min_temp": LEVEL_MIN,
        "max_temp": LEVEL_MAX,
        "temp_step": 1,
        "temperature_unit": "C",
        "modes": ["off", "heat", "cool"],
    }


class DiscoveryHelper:
    """Publishes retained discovery configs for both sides."""

    def __init__(self, mqtt_client: MQTTAdapter) -> None:
        self.client = mqtt_client

    async def publish_discovery(self) -> bool:
        lp = f"{self.client.lp}discovery:"
        device_id = self.client.config.device_id
        ok = True
        for side in Side:
            topic = discovery_topic(self.client.broker.topic_prefix, device_id, side)
            payload = discovery_payload(device_id, self.client.config.device_name, side)
            if not await self.client.publish(topic, json.dumps(payload).encode()):
                logger.warning("%s failed to publish discovery for %s side", lp, side)
                ok = False
        if ok:
            logger.debug("%s published discovery for %s", lp, device_id)
        return ok
