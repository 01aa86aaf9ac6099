"""Mirrors the pod's state into retained MQTT topics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from eightsleep_bridge.const import AVAILABILITY_OFFLINE, AVAILABILITY_ONLINE
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.models import DeviceState, PowerState, Side
from eightsleep_bridge.mqtt.discovery import availability_topic, side_topic

if TYPE_CHECKING:
    from eightsleep_bridge.mqtt.client import MQTTAdapter

logger = get_logger(__name__)


def power_state_to_mode(state: PowerState, level: int) -> str:
    """HA climate mode for a side: off, or heat/cool by the sign of the level (0 is heat)."""
    if state == PowerState.OFF:
        return "off"
    return "heat" if level >= 0 else "cool"


class StateUpdateHelper:
    def __init__(self, mqtt_client: MQTTAdapter) -> None:
        self.client = mqtt_client

    async def publish_state(self, state: DeviceState | None = None) -> bool:
        """Publish level, mode and bed temperature for every assigned side.

        Fetches through the state manager when ``state`` is not given. Backend
        failures are logged and reported as ``False``.
        """
        lp = f"{self.client.lp}publish_state:"
        if state is None:
            try:
                state = await self.client.manager.get_state()
            except Exception as e:
                logger.warning("%s could not get device state: %s", lp, e)
                return False

        device_id = self.client.config.device_id
        ok = True
        for side in Side:
            user = state.get_side(side)
            if user is None:
                continue
            values = {
                "temperature": str(user.target_level),
                "mode": power_state_to_mode(user.state, user.target_level),
                "current_temperature": f"{user.bed_temperature:.1f}",
            }
            for leaf, value in values.items():
                if not await self.client.publish(side_topic(device_id, side, leaf), value.encode()):
                    ok = False
        if not ok:
            logger.warning("%s some state topics were not published", lp)
        return ok

    async def publish_availability(self, online: bool) -> bool:
        payload = AVAILABILITY_ONLINE if online else AVAILABILITY_OFFLINE
        return await self.client.publish(availability_topic(self.client.config.device_id), payload)
