"""Lifecycle and command interface shared by every smart-home bridge."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum

from eightsleep_bridge.const import DEFAULT_CACHE_TTL, EIGHTSLEEP_DEVICE_NAME
from eightsleep_bridge.exceptions import MissingTemperatureError, UnknownActionError
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.models import Side
from eightsleep_bridge.state.manager import StateManager

__all__ = [
    "Action",
    "Adapter",
    "AdapterConfig",
    "Command",
    "parse_integer",
]

logger = get_logger(__name__)

_INTEGER = re.compile(r"[+-]?[0-9]+", re.ASCII)


def parse_integer(text: str) -> int | None:
    """Plain base-10 integer with an optional sign, or ``None``.

    Stricter than ``int()``: underscores, surrounding whitespace and non-ASCII
    digits are rejected.
    """
    if not _INTEGER.fullmatch(text):
        return None
    return int(text)


class Action(StrEnum):
    ON = "on"
    OFF = "off"
    SET_TEMPERATURE = "set_temperature"


@dataclass(frozen=True, slots=True)
class Command:
    """A platform-agnostic request to change one side of the pod."""

    action: Action | str
    side: Side
    temperature: int | None = None


@dataclass(frozen=True, slots=True)
class AdapterConfig:
    device_id: str
    device_name: str = EIGHTSLEEP_DEVICE_NAME
    poll_interval: float = DEFAULT_CACHE_TTL


class Adapter(ABC):
    """A bridge between one home-automation protocol and a :class:`StateManager`.

    ``start`` returns once background work is running or raises
    :class:`~eightsleep_bridge.exceptions.AdapterStartError`. ``stop`` is
    idempotent and safe to call without a successful ``start``.
    """

    lp: str = "adapter:"

    def __init__(self, manager: StateManager, config: AdapterConfig) -> None:
        self.manager = manager
        self.config = config

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def stop(self) -> None: ...

    async def handle_command(self, cmd: Command) -> None:
        """Dispatch ``cmd`` to the state manager.

        Raises:
            MissingTemperatureError: ``set_temperature`` without a temperature
            UnknownActionError: any other action

        Backend failures propagate unchanged.
        """
        logger.debug(
            "%s handling command",
            f"{self.lp}handle_command:",
            extra={"action": str(cmd.action), "side": str(cmd.side), "temperature": cmd.temperature},
        )
        match cmd.action:
            case Action.ON:
                await self.manager.turn_on(cmd.side)
            case Action.OFF:
                await self.manager.turn_off(cmd.side)
            case Action.SET_TEMPERATURE:
                if cmd.temperature is None:
                    raise MissingTemperatureError
                await self.manager.set_temperature(cmd.side, cmd.temperature)
            case _:
                raise UnknownActionError(cmd.action)
