"""MQTT bridge adapter.

Owns the broker connection and two background tasks: a connection supervisor
that reconnects forever and a poll loop that republishes state on a fixed
interval. Discovery, state publishing and command routing live in helper
classes that reach back into the adapter for the client and settings.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import aiomqtt

from eightsleep_bridge.adapters.base import Adapter, AdapterConfig
from eightsleep_bridge.const import (
    AVAILABILITY_OFFLINE,
    EIGHTSLEEP_HASS_TOPIC,
    EIGHTSLEEP_MQTT_CLIENT_ID,
    EIGHTSLEEP_MQTT_CONNECT_TIMEOUT,
    EIGHTSLEEP_MQTT_HOST,
    EIGHTSLEEP_MQTT_PASS,
    EIGHTSLEEP_MQTT_PORT,
    EIGHTSLEEP_MQTT_USER,
    MQTT_DISCONNECT_TIMEOUT,
    MQTT_QOS,
    MQTT_RECONNECT_DELAY,
    POLL_PUBLISH_TIMEOUT,
)
from eightsleep_bridge.correlation import correlation_context
from eightsleep_bridge.exceptions import AdapterStartError
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.mqtt.command_routing import CommandRouter
from eightsleep_bridge.mqtt.discovery import DiscoveryHelper, availability_topic
from eightsleep_bridge.mqtt.state_updates import StateUpdateHelper
from eightsleep_bridge.state.manager import StateManager

logger = get_logger(__name__)

MQTT_SUPERVISOR_TASK_NAME = "MQTTAdapter_SUPERVISOR"
MQTT_POLL_TASK_NAME = "MQTTAdapter_POLL"


@dataclass(frozen=True, slots=True)
class BrokerConfig:
    host: str = EIGHTSLEEP_MQTT_HOST
    port: int = EIGHTSLEEP_MQTT_PORT
    username: str | None = EIGHTSLEEP_MQTT_USER
    password: str | None = EIGHTSLEEP_MQTT_PASS
    client_id: str = EIGHTSLEEP_MQTT_CLIENT_ID
    topic_prefix: str = EIGHTSLEEP_HASS_TOPIC
    connect_timeout: float = EIGHTSLEEP_MQTT_CONNECT_TIMEOUT
    reconnect_delay: float = MQTT_RECONNECT_DELAY


class MQTTAdapter(Adapter):
    """Home Assistant bridge over MQTT discovery."""

    lp: str = "mqtt:"

    def __init__(self, manager: StateManager, config: AdapterConfig, broker: BrokerConfig | None = None) -> None:
        super().__init__(manager, config)
        self.broker = broker or BrokerConfig()
        self.client: aiomqtt.Client | None = None
        self._connected = False
        self._connected_event = asyncio.Event()
        self._stop_event = asyncio.Event()
        self.supervisor_task: asyncio.Task[None] | None = None
        self.poll_task: asyncio.Task[None] | None = None

        self.discovery = DiscoveryHelper(self)
        self.state_updates = StateUpdateHelper(self)
        self.command_router = CommandRouter(self)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _new_client(self) -> aiomqtt.Client:
        will = aiomqtt.Will(
            topic=availability_topic(self.config.device_id),
            payload=AVAILABILITY_OFFLINE,
            qos=MQTT_QOS,
            retain=True,
        )
        return aiomqtt.Client(
            hostname=self.broker.host,
            port=self.broker.port,
            username=self.broker.username,
            password=self.broker.password,
            identifier=self.broker.client_id,
            will=will,
        )

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        if self.supervisor_task is not None and not self.supervisor_task.done():
            logger.debug("%s already running", lp)
            return
        logger.info(
            "%s connecting to MQTT broker %s:%s",
            lp,
            self.broker.host,
            self.broker.port,
            extra={"client_id": self.broker.client_id, "device_id": self.config.device_id},
        )
        self._stop_event = asyncio.Event()
        self._connected_event = asyncio.Event()
        self.supervisor_task = asyncio.create_task(self._supervise(), name=MQTT_SUPERVISOR_TASK_NAME)

        try:
            async with asyncio.timeout(self.broker.connect_timeout):
                await self._connected_event.wait()
        except TimeoutError as e:
            await self.stop()
            msg = f"could not connect to MQTT broker {self.broker.host}:{self.broker.port}"
            raise AdapterStartError(msg) from e

        if not await self.state_updates.publish_state():
            await self.stop()
            msg = "failed to publish initial state"
            raise AdapterStartError(msg)

        self.poll_task = asyncio.create_task(self._poll_loop(), name=MQTT_POLL_TASK_NAME)
        logger.info("%s MQTT bridge running", lp, extra={"poll_interval": self.config.poll_interval})

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        self.client = self._new_client()
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as e:
            # -> [Errno 111] Connection refused / [code:134] Bad user name or password
            logger.warning("%s connection failed: %s", lp, e)
            self.client = None
            return False
        self._connected = True
        logger.info("%s connected to MQTT broker %s:%s", lp, self.broker.host, self.broker.port)
        return True

    async def _on_connect(self) -> None:
        """Runs after every (re)connection so a restarted broker is repopulated."""
        _ = await self.discovery.publish_discovery()
        await self.command_router.subscribe()
        _ = await self.state_updates.publish_availability(True)

    async def _supervise(self) -> None:
        lp = f"{self.lp}supervise:"
        while True:
            if await self.connect():
                try:
                    await self._on_connect()
                    self._connected_event.set()
                    await self.command_router.start_receiver_task()
                except aiomqtt.MqttError as e:
                    logger.warning("%s connection lost: %s", lp, e)
                self._connected = False
                await self._close_client()
            logger.info("%s reconnecting in %s seconds...", lp, self.broker.reconnect_delay)
            await asyncio.sleep(self.broker.reconnect_delay)

    async def _close_client(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            async with asyncio.timeout(MQTT_DISCONNECT_TIMEOUT):
                await client.__aexit__(None, None, None)
        except (aiomqtt.MqttError, TimeoutError) as e:
            logger.debug("%s disconnect did not complete cleanly: %s", f"{self.lp}close:", e)
        except Exception as e:
            logger.warning("%s disconnect failed: %s", f"{self.lp}close:", e, exc_info=True)

    async def _poll_loop(self) -> None:
        lp = f"{self.lp}poll:"
        while not self._stop_event.is_set():
            try:
                async with asyncio.timeout(self.config.poll_interval):
                    await self._stop_event.wait()
            except TimeoutError:
                pass
            else:
                break

            with correlation_context():
                self.manager.invalidate_cache()
                try:
                    async with asyncio.timeout(POLL_PUBLISH_TIMEOUT):
                        ok = await self.state_updates.publish_state()
                except TimeoutError:
                    logger.warning("%s state publish timed out after %ss", lp, POLL_PUBLISH_TIMEOUT)
                else:
                    if not ok:
                        logger.warning("%s state publish failed, will retry next interval", lp)
        logger.debug("%s poll loop exited", lp)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        self._stop_event.set()
        if self.poll_task is not None:
            poll_task, self.poll_task = self.poll_task, None
            try:
                await poll_task
            except asyncio.CancelledError:
                logger.debug("%s poll task was cancelled", lp)

        if self._connected and self.client is not None:
            _ = await self.state_updates.publish_availability(False)
            try:
                await self.command_router.unsubscribe()
            except aiomqtt.MqttError as e:
                logger.warning("%s unsubscribe failed: %s", lp, e)

        if self.supervisor_task is not None:
            supervisor, self.supervisor_task = self.supervisor_task, None
            if not supervisor.done():
                _ = supervisor.cancel()
            _ = await asyncio.gather(supervisor, return_exceptions=True)

        await self.command_router.cancel_pending()
        if self.client is not None:
            await self._close_client()
            logger.info("%s disconnected from MQTT broker", lp)
        self._connected = False

    async def publish(self, topic: str, payload: bytes) -> bool:
        """Retained QoS 1 publish; returns ``False`` instead of raising on broker errors."""
        lp = f"{self.lp}publish:"
        if not self._connected or self.client is None:
            return False
        try:
            await self.client.publish(topic, payload, qos=MQTT_QOS, retain=True)
        except aiomqtt.MqttError as e:
            logger.warning("%s [MqttError] %s -> %s", lp, topic, e)
            return False
        return True
