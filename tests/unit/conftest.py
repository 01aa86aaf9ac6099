"""
Shared fixtures for unit tests.

The backend is always an AsyncMock, so no test touches the network.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from eightsleep_bridge.adapters.base import AdapterConfig
from eightsleep_bridge.backend import DeviceWithUsers, TemperatureState, UserTemperature
from eightsleep_bridge.state.manager import StateManager

DEVICE_ID = "dev-123"


def make_device(left: str | None = "L", right: str | None = "R", **kwargs) -> DeviceWithUsers:
    """Device record as the backend would return it."""
    return DeviceWithUsers(
        id=kwargs.pop("id", DEVICE_ID),
        left_user_id=left,
        right_user_id=right,
        room_temperature=kwargs.pop("room_temperature", 21.5),
        water_level=kwargs.pop("water_level", 80),
        **kwargs,
    )


def make_temperature(level: int, state: str) -> UserTemperature:
    return UserTemperature(current_level=level, current_state=TemperatureState(type=state))


@pytest.fixture
def backend():
    """
    Fake backend with a two-sided pod.

    Left user "L" is on smart at -20, right user "R" is off at 10.
    """
    temps = {
        "L": make_temperature(-20, "smart"),
        "R": make_temperature(10, "off"),
    }
    fake = MagicMock()
    fake.fetch_device_with_users = AsyncMock(return_value=make_device())
    fake.fetch_user_temperature = AsyncMock(side_effect=lambda user_id: temps[user_id])
    fake.set_user_temperature = AsyncMock(return_value=None)
    fake.set_user_power = AsyncMock(return_value=None)
    return fake


@pytest.fixture
def manager(backend):
    """State manager with a long TTL so cache hits are deterministic."""
    return StateManager(backend, DEVICE_ID, cache_ttl=3600)


@pytest.fixture
def adapter_config():
    return AdapterConfig(device_id=DEVICE_ID, device_name="Bedroom Pod", poll_interval=30)


@pytest.fixture
def mock_mqtt_client():
    """
    Mock aiomqtt client.

    Returns an AsyncMock configured with the client methods the bridge uses.
    """
    client = AsyncMock()
    client.publish = AsyncMock()
    client.subscribe = AsyncMock()
    client.unsubscribe = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client


@pytest.fixture
def device_factory():
    """Build DeviceWithUsers records; see ``make_device``."""
    return make_device


@pytest.fixture
def temperature_factory():
    return make_temperature
