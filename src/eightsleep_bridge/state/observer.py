"""Change notifications emitted by the state manager."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.models import DeviceState, Side, UserState

__all__ = [
    "LoggingObserver",
    "Observer",
    "PresenceChange",
    "StateChange",
]

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class StateChange:
    old: DeviceState
    new: DeviceState


@dataclass(frozen=True, slots=True)
class PresenceChange:
    side: Side
    present: bool
    user: UserState | None


@runtime_checkable
class Observer(Protocol):
    """Receives notifications synchronously on the refreshing task.

    Keep handlers fast: a slow observer delays whoever triggered the refresh.
    """

    def on_state_change(self, change: StateChange) -> None: ...

    def on_presence_change(self, change: PresenceChange) -> None: ...


class LoggingObserver:
    """Writes side-level transitions and presence changes to the log."""

    lp = "observer:"

    def on_state_change(self, change: StateChange) -> None:
        lp = f"{self.lp}state:"
        logger.debug("%s new snapshot", lp, extra={"snapshot": change.new.as_dict()})
        for side in Side:
            before = change.old.get_side(side)
            after = change.new.get_side(side)
            if before is None and after is None:
                continue
            if before is None or after is None:
                logger.info(
                    "%s %s side %s",
                    lp,
                    side,
                    "assigned" if after is not None else "unassigned",
                    extra={"device_id": change.new.id, "side": str(side)},
                )
                continue
            if before.state != after.state or before.target_level != after.target_level:
                logger.info(
                    "%s %s side %s/%d -> %s/%d",
                    lp,
                    side,
                    before.state,
                    before.target_level,
                    after.state,
                    after.target_level,
                    extra={"device_id": change.new.id, "side": str(side)},
                )

    def on_presence_change(self, change: PresenceChange) -> None:
        logger.info(
            "%s %s side %s",
            f"{self.lp}presence:",
            change.side,
            "occupied" if change.present else "vacated",
            extra={"side": str(change.side), "user_id": change.user.id if change.user else None},
        )
