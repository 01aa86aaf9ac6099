"""Immutable snapshots of a pod and the users on its two sides."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from eightsleep_bridge.const import LEVEL_MAX, LEVEL_MIN, PRESENCE_TIMEOUT

__all__ = [
    "DeviceState",
    "PowerState",
    "SleepStage",
    "Side",
    "UserState",
]


class Side(StrEnum):
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def parse(cls, text: str) -> Side:
        """Case-insensitive lookup; raises ``ValueError`` for anything but left/right."""
        try:
            return cls(text.strip().lower())
        except ValueError:
            msg = "invalid side: must be 'left' or 'right'"
            raise ValueError(msg) from None


class PowerState(StrEnum):
    OFF = "off"
    SMART = "smart"
    MANUAL = "manual"

    @classmethod
    def parse(cls, text: str | None) -> PowerState:
        """Unknown or empty values are treated as off."""
        try:
            return cls((text or "").strip().lower())
        except ValueError:
            return cls.OFF


class SleepStage(StrEnum):
    AWAKE = "awake"
    LIGHT = "light"
    DEEP = "deep"
    REM = "rem"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, text: str | None) -> SleepStage:
        try:
            return cls((text or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class UserState(BaseModel):
    """Thermal and biometric status of one side."""

    model_config = ConfigDict(frozen=True)

    id: str
    side: Side
    email: str = ""
    target_level: int = Field(default=0, ge=LEVEL_MIN, le=LEVEL_MAX)
    state: PowerState = PowerState.OFF
    bed_temperature: float = 0.0
    heart_rate: float = 0.0
    hrv: float = 0.0
    breath_rate: float = 0.0
    sleep_stage: SleepStage = SleepStage.UNKNOWN
    # None: never observed
    last_heart_rate_time: datetime.datetime | None = None

    def is_on(self) -> bool:
        return self.state in (PowerState.SMART, PowerState.MANUAL)

    def is_present(self, now: datetime.datetime | None = None) -> bool:
        """True when a heart rate was seen within the last ``PRESENCE_TIMEOUT``."""
        seen = self.last_heart_rate_time
        if seen is None:
            return False
        if now is None:
            now = datetime.datetime.now(seen.tzinfo)
        return now - seen < PRESENCE_TIMEOUT


class DeviceState(BaseModel):
    """One pod at one point in time.

    Built only by the state manager's refresh and replaced wholesale on the
    next one; nothing mutates it afterwards.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    room_temperature: float = 0.0
    has_water: bool = False
    is_priming: bool = False
    needs_priming: bool = False
    left_user: UserState | None = Field(default=None, serialization_alias="left")
    right_user: UserState | None = Field(default=None, serialization_alias="right")

    @model_validator(mode="after")
    def _check_slots(self) -> Self:
        for slot, user in ((Side.LEFT, self.left_user), (Side.RIGHT, self.right_user)):
            if user is not None and user.side != slot:
                msg = f"{user.side} user {user.id} placed in {slot} slot"
                raise ValueError(msg)
        return self

    def get_side(self, side: Side) -> UserState | None:
        if side == Side.LEFT:
            return self.left_user
        return self.right_user

    def has_both_sides(self) -> bool:
        return self.left_user is not None and self.right_user is not None

    def as_dict(self) -> dict[str, object]:
        """JSON-ready dict; empty sides are left out."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
