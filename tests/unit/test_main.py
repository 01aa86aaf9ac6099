"""Unit tests for main.py module.

Tests BridgeController wiring, startup/shutdown flows and the main() exit codes.
"""

from __future__ import annotations

import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from eightsleep_bridge.config import BridgeConfig
from eightsleep_bridge.exceptions import AdapterStartError
from eightsleep_bridge.hubitat.server import HubServer
from eightsleep_bridge.main import BridgeController, main
from eightsleep_bridge.models import DeviceState, Side, UserState
from eightsleep_bridge.mqtt.client import MQTTAdapter


def _config(**overrides) -> BridgeConfig:
    values = {"access_token": "tok", "device_id": "dev1", "poll_interval": 20}
    values.update(overrides)
    return BridgeConfig(**values)


def _fake_adapter(name: str, log: list[str], fail: bool = False) -> MagicMock:
    adapter = MagicMock()

    async def start():
        log.append(f"start {name}")
        if fail:
            raise AdapterStartError(f"{name} failed")

    async def stop():
        log.append(f"stop {name}")

    adapter.start = AsyncMock(side_effect=start)
    adapter.stop = AsyncMock(side_effect=stop)
    return adapter


class TestBuild:
    """Tests for BridgeController.build"""

    def test_requires_access_token(self):
        with pytest.raises(ValueError, match="access token"):
            BridgeController(_config(access_token=None)).build()

    def test_requires_device_id(self):
        with pytest.raises(ValueError, match="device_id"):
            BridgeController(_config(device_id=None)).build()

    def test_default_enables_mqtt_only(self):
        controller = BridgeController(_config())
        controller.build()

        assert [type(a) for a in controller.adapters] == [MQTTAdapter]
        assert controller.manager.cache_ttl == 20
        assert controller.observer in controller.manager._observers

    def test_both_bridges(self):
        controller = BridgeController(_config(hubitat_enabled=True, hubitat_port=9001))
        controller.build()

        assert [type(a) for a in controller.adapters] == [MQTTAdapter, HubServer]
        assert controller.adapters[1].port == 9001

    def test_adapters_share_one_manager(self):
        controller = BridgeController(_config(hubitat_enabled=True))
        controller.build()
        assert all(a.manager is controller.manager for a in controller.adapters)

    def test_no_bridges(self):
        controller = BridgeController(_config(mqtt_enabled=False))
        controller.build()
        assert controller.adapters == []


class TestStartStop:
    """Tests for BridgeController start/stop ordering"""

    @pytest.mark.asyncio
    async def test_start_in_order_stop_in_reverse(self):
        log: list[str] = []
        controller = BridgeController(_config())
        controller.build()
        controller.adapters = [_fake_adapter("mqtt", log), _fake_adapter("hubitat", log)]
        controller.cloud_api.close = AsyncMock()

        await controller.start()
        await controller.stop()

        assert log == ["start mqtt", "start hubitat", "stop hubitat", "stop mqtt"]
        controller.cloud_api.close.assert_awaited_once()
        assert controller.observer not in controller.manager._observers

    @pytest.mark.asyncio
    async def test_failed_start_stops_everything(self):
        log: list[str] = []
        controller = BridgeController(_config())
        controller.build()
        controller.adapters = [_fake_adapter("mqtt", log), _fake_adapter("hubitat", log, fail=True)]
        controller.cloud_api.close = AsyncMock()

        with pytest.raises(AdapterStartError, match="hubitat failed"):
            await controller.start()

        assert log == ["start mqtt", "start hubitat", "stop hubitat", "stop mqtt"]

    @pytest.mark.asyncio
    async def test_stop_continues_past_adapter_error(self):
        log: list[str] = []
        controller = BridgeController(_config())
        controller.build()
        broken = _fake_adapter("hubitat", log)
        broken.stop = AsyncMock(side_effect=RuntimeError("stuck"))
        controller.adapters = [_fake_adapter("mqtt", log), broken]
        controller.cloud_api.close = AsyncMock()

        await controller.stop()

        assert log == ["stop mqtt"]
        controller.cloud_api.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_warns_when_a_side_has_no_user(self):
        controller = BridgeController(_config())
        controller.build()
        controller.adapters = []
        controller.manager._state = DeviceState(id="dev1", left_user=UserState(id="L", side=Side.LEFT))

        with patch("eightsleep_bridge.main.logger.warning") as warning:
            await controller.start()

        messages = [c.args[0] for c in warning.call_args_list]
        assert any("not every side" in m for m in messages)
        side_call = next(c for c in warning.call_args_list if "not every side" in c.args[0])
        assert side_call.kwargs["extra"] == {"left": True, "right": False}

    @pytest.mark.asyncio
    async def test_no_side_warning_with_both_users(self):
        controller = BridgeController(_config())
        controller.build()
        controller.adapters = [_fake_adapter("mqtt", [])]
        controller.manager._state = DeviceState(
            id="dev1",
            left_user=UserState(id="L", side=Side.LEFT),
            right_user=UserState(id="R", side=Side.RIGHT),
        )

        with patch("eightsleep_bridge.main.logger.warning") as warning:
            await controller.start()

        warning.assert_not_called()

    def test_signal_handler_sets_stop_event(self):
        controller = BridgeController(_config())
        controller._stop_event = asyncio.Event()

        controller.signal_handler(signal.SIGTERM)

        assert controller._stop_event.is_set()


class TestMain:
    """Tests for main() exit codes"""

    def test_invalid_configuration_returns_2(self):
        with patch("eightsleep_bridge.main.load_config", return_value=_config(access_token=None)):
            assert main() == 2

    def test_clean_run_returns_0(self):
        with (
            patch("eightsleep_bridge.main.load_config", return_value=_config()),
            patch("eightsleep_bridge.main.uvloop.run", side_effect=lambda coro: coro.close()) as mock_run,
        ):
            assert main() == 0
        mock_run.assert_called_once()

    def test_start_failure_returns_1(self):
        def fail(coro):
            coro.close()
            raise AdapterStartError("broker unreachable")

        with (
            patch("eightsleep_bridge.main.load_config", return_value=_config()),
            patch("eightsleep_bridge.main.uvloop.run", side_effect=fail),
        ):
            assert main() == 1
