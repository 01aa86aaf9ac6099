"""MQTT command subscription and routing.

Command payloads arrive on ``eightsleep/<device>/<side>/set_temperature`` and
``.../set_mode``. Anything that does not parse is dropped without a reply, since
MQTT has no channel to report it on.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from eightsleep_bridge.adapters.base import Action, Command, parse_integer
from eightsleep_bridge.const import COMMAND_TIMEOUT, MQTT_QOS
from eightsleep_bridge.correlation import correlation_context
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.models import Side
from eightsleep_bridge.mqtt.discovery import side_topic

if TYPE_CHECKING:
    from eightsleep_bridge.mqtt.client import MQTTAdapter

logger = get_logger(__name__)

SET_TEMPERATURE = "set_temperature"
SET_MODE = "set_mode"

_MODE_ACTIONS: dict[str, Action] = {
    "off": Action.OFF,
    "heat": Action.ON,
    "cool": Action.ON,
}


def _payload_text(payload: object) -> str:
    if isinstance(payload, bytes | bytearray):
        return bytes(payload).decode("utf-8", errors="replace")
    if payload is None:
        return ""
    return str(payload)


def parse_command(kind: str, side: Side, payload: object) -> Command | None:
    """Build a :class:`Command` from a raw payload, or ``None`` when it is not understood."""
    text = _payload_text(payload).strip()
    if kind == SET_TEMPERATURE:
        level = parse_integer(text)
        if level is None:
            return None
        return Command(action=Action.SET_TEMPERATURE, side=side, temperature=level)
    if kind == SET_MODE:
        action = _MODE_ACTIONS.get(text.lower())
        if action is None:
            return None
        return Command(action=action, side=side)
    return None


class CommandRouter:
    """Subscribes to both sides' command topics and runs each command in its own task."""

    def __init__(self, mqtt_client: MQTTAdapter) -> None:
        self.client = mqtt_client
        device_id = mqtt_client.config.device_id
        # topic -> command kind; the side is read back from the topic itself
        self.routes: dict[str, str] = {
            side_topic(device_id, side, kind): kind for side in Side for kind in (SET_TEMPERATURE, SET_MODE)
        }
        self.tasks: set[asyncio.Task[None]] = set()

    @property
    def topics(self) -> list[str]:
        return list(self.routes)

    async def subscribe(self) -> None:
        """Raises ``aiomqtt.MqttError`` so the connection supervisor can reconnect."""
        assert self.client.client is not None, "client must be connected"
        for topic in self.routes:
            await self.client.client.subscribe(topic, qos=MQTT_QOS)
        logger.debug("%s subscribed to %s", f"{self.client.lp}subscribe:", self.topics)

    async def unsubscribe(self) -> None:
        assert self.client.client is not None, "client must be connected"
        for topic in self.routes:
            await self.client.client.unsubscribe(topic)

    async def start_receiver_task(self) -> None:
        """Consume messages until the connection drops (``aiomqtt.MqttError``)."""
        lp = f"{self.client.lp}rcv:"
        assert self.client.client is not None, "client must be connected"
        async for message in self.client.client.messages:
            topic = message.topic.value
            kind = self.routes.get(topic)
            if kind is None:
                logger.debug("%s ignoring message on %s", lp, topic)
                continue
            side = Side.parse(topic.rsplit("/", 2)[-2])
            cmd = parse_command(kind, side, message.payload)
            if cmd is None:
                logger.debug("%s dropping malformed %s payload: %r", lp, kind, message.payload)
                continue
            task = asyncio.create_task(self.execute(cmd), name=f"mqtt_command_{side}_{kind}")
            self.tasks.add(task)
            task.add_done_callback(self.tasks.discard)

    async def execute(self, cmd: Command) -> None:
        """Run one command and republish state; failures are logged, never raised."""
        lp = f"{self.client.lp}execute:"
        with correlation_context():
            logger.info(
                "%s %s %s side",
                lp,
                cmd.action,
                cmd.side,
                extra={"temperature": cmd.temperature} if cmd.temperature is not None else None,
            )
            try:
                async with asyncio.timeout(COMMAND_TIMEOUT):
                    await self.client.handle_command(cmd)
                    _ = await self.client.state_updates.publish_state()
            except TimeoutError:
                logger.warning("%s %s timed out after %ss", lp, cmd.action, COMMAND_TIMEOUT)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("%s %s on %s side failed: %s", lp, cmd.action, cmd.side, e)

    async def cancel_pending(self) -> None:
        for task in list(self.tasks):
            task.cancel()
        if self.tasks:
            _ = await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()
