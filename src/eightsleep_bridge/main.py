from __future__ import annotations

import asyncio
import logging
import signal
import sys
from functools import partial

import uvloop
from pydantic import ValidationError

from eightsleep_bridge.adapters.base import Adapter
from eightsleep_bridge.cloud_api import EightSleepCloudAPI
from eightsleep_bridge.config import BridgeConfig, load_config
from eightsleep_bridge.const import EIGHTSLEEP_OPTIONS_FILE, EIGHTSLEEP_VERSION
from eightsleep_bridge.correlation import ensure_correlation_id
from eightsleep_bridge.exceptions import AdapterStartError
from eightsleep_bridge.hubitat.server import HubServer
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.mqtt.client import MQTTAdapter
from eightsleep_bridge.state.manager import StateManager
from eightsleep_bridge.state.observer import LoggingObserver

logger = get_logger(__name__)

# Configure third-party loggers (uvicorn, mqtt) to reduce noise
uv_handler = logging.StreamHandler(sys.stdout)
uv_handler.setLevel(logging.INFO)
uv_handler.setFormatter(
    logging.Formatter(
        "%(asctime)s.%(msecs)d %(levelname)s (%(name)s) > %(message)s",
        "%m/%d/%y %H:%M:%S",
    ),
)
for _ul in (logging.getLogger("uvicorn"), logging.getLogger("uvicorn.error"), logging.getLogger("uvicorn.access")):
    _ul.setLevel(logging.INFO)
    _ul.propagate = False
    _ul.addHandler(uv_handler)
mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False


class BridgeController:
    """Wires the cloud client, state manager and enabled bridges together."""

    lp: str = "BridgeController:"

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config
        self.cloud_api: EightSleepCloudAPI | None = None
        self.manager: StateManager | None = None
        self.adapters: list[Adapter] = []
        self.observer = LoggingObserver()
        self._stop_event: asyncio.Event | None = None

    def build(self) -> None:
        """Create the collaborators; raises ``ValueError`` on missing credentials."""
        if not self.config.access_token:
            msg = "access token is not configured (set EIGHTSLEEP_ACCESS_TOKEN)"
            raise ValueError(msg)
        adapter_config = self.config.adapter_config()
        self.cloud_api = EightSleepCloudAPI(self.config.access_token, api_base=self.config.api_base)
        self.manager = StateManager(self.cloud_api, adapter_config.device_id, cache_ttl=self.config.cache_ttl)
        self.manager.add_observer(self.observer)
        self.adapters = []
        if self.config.mqtt_enabled:
            self.adapters.append(MQTTAdapter(self.manager, adapter_config, self.config.broker_config()))
        if self.config.hubitat_enabled:
            self.adapters.append(
                HubServer(self.manager, adapter_config, self.config.hubitat_host, self.config.hubitat_port)
            )

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        _ = ensure_correlation_id()
        if self.manager is None:
            self.build()
        if not self.adapters:
            logger.warning("%s no bridges enabled, nothing to do", lp)
        for adapter in self.adapters:
            logger.info("%s starting %s", lp, type(adapter).__name__)
            try:
                await adapter.start()
            except AdapterStartError:
                await self.stop()
                raise
        logger.info(
            "%s bridge running",
            lp,
            extra={"device_id": self.config.device_id, "adapters": [type(a).__name__ for a in self.adapters]},
        )
        snapshot = self.manager.cached_state if self.manager is not None else None
        if snapshot is not None and not snapshot.has_both_sides():
            logger.warning(
                "%s not every side of the pod has a user assigned, empty sides will not be bridged",
                lp,
                extra={"left": snapshot.left_user is not None, "right": snapshot.right_user is not None},
            )

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        for adapter in reversed(self.adapters):
            try:
                await adapter.stop()
            except Exception:
                logger.exception("%s error stopping %s", lp, type(adapter).__name__)
        if self.manager is not None:
            self.manager.remove_observer(self.observer)
        if self.cloud_api is not None:
            await self.cloud_api.close()
        logger.info("%s stopped", lp)

    def signal_handler(self, signum: int) -> None:
        logger.info("%s caught %s, shutting down", self.lp, signal.Signals(signum).name)
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, partial(self.signal_handler, signal.SIGINT))
        loop.add_signal_handler(signal.SIGTERM, partial(self.signal_handler, signal.SIGTERM))
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")
        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            await self.stop()


def main() -> int:
    logger.info("Initializing Eight Sleep bridge", extra={"version": EIGHTSLEEP_VERSION})
    try:
        config = load_config(EIGHTSLEEP_OPTIONS_FILE)
        controller = BridgeController(config)
        controller.build()
    except (ValueError, ValidationError) as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    try:
        uvloop.run(controller.run())
    except AdapterStartError as e:
        logger.error("Failed to start bridge: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
