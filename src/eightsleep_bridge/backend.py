"""Contract for the Eight Sleep backend as seen by the state manager.

Any object with these four coroutines can drive a :class:`StateManager`; the
bundled :class:`~eightsleep_bridge.cloud_api.EightSleepCloudAPI` is one, test
fakes are another. The response models accept both the cloud's camelCase
payloads and snake_case keyword arguments.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, model_validator

__all__ = [
    "BackendAPI",
    "DeviceWithUsers",
    "TemperatureState",
    "UserTemperature",
]


class DeviceWithUsers(BaseModel):
    """Device record with the user ids assigned to each side."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="deviceId")
    left_user_id: str | None = Field(default=None, alias="leftUserId")
    right_user_id: str | None = Field(default=None, alias="rightUserId")
    room_temperature: float = Field(default=0.0, alias="roomTemperature")
    water_level: float = Field(default=0.0, alias="waterLevel")
    is_priming: bool = False
    needs_priming: bool = False

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # the cloud calls it "id" in one endpoint and "deviceId" in another
        if "id" in data and "deviceId" not in data:
            data["deviceId"] = data.pop("id")
        priming = data.pop("priming", None)
        if isinstance(priming, dict):
            status = priming.get("status")
            data.setdefault("is_priming", status == "priming")
            data.setdefault("needs_priming", status == "needed")
        # empty string means unassigned
        for key in ("leftUserId", "rightUserId", "left_user_id", "right_user_id"):
            if key in data and not data[key]:
                data[key] = None
        return data


class TemperatureState(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "off"


class UserTemperature(BaseModel):
    """Heating/cooling status of one user's side."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    current_level: int = Field(default=0, alias="currentLevel")
    current_state: TemperatureState = Field(default_factory=TemperatureState, alias="currentState")


@runtime_checkable
class BackendAPI(Protocol):
    async def fetch_device_with_users(self, device_id: str) -> DeviceWithUsers: ...

    async def fetch_user_temperature(self, user_id: str) -> UserTemperature: ...

    async def set_user_temperature(self, user_id: str, level: int) -> None: ...

    async def set_user_power(self, user_id: str, on: bool) -> None: ...
