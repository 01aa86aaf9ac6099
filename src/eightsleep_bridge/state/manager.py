"""TTL cache over the pod's :class:`DeviceState` with change notification."""

from __future__ import annotations

import asyncio
import threading
import time

from eightsleep_bridge.backend import BackendAPI, DeviceWithUsers
from eightsleep_bridge.const import DEFAULT_CACHE_TTL, LEVEL_MAX, LEVEL_MIN
from eightsleep_bridge.exceptions import LevelOutOfRangeError, NoUserAssignedError
from eightsleep_bridge.instrumentation import timed_async
from eightsleep_bridge.logging_abstraction import get_logger
from eightsleep_bridge.models import DeviceState, PowerState, Side, UserState
from eightsleep_bridge.state.observer import Observer, PresenceChange, StateChange

__all__ = ["StateManager"]

logger = get_logger(__name__)


class StateManager:
    """Single source of truth for what the pod looks like right now.

    ``get_state`` serves the cached snapshot until it is ``cache_ttl`` seconds
    old, then refreshes from the backend. Every refresh after the first compares
    the old and new snapshots and notifies registered observers once the cache
    lock has been released.

    Concurrent refreshes are not merged: two callers that both miss the cache
    both hit the backend and the last one to finish wins.
    """

    lp = "state:"

    def __init__(self, backend: BackendAPI, device_id: str, *, cache_ttl: float = DEFAULT_CACHE_TTL) -> None:
        self.backend = backend
        self.device_id = device_id
        self.cache_ttl = cache_ttl
        # guards _state, _expiry and _observers; never held across an await
        self._lock = threading.Lock()
        self._state: DeviceState | None = None
        self._expiry: float = 0.0
        self._observers: list[Observer] = []

    @property
    def cached_state(self) -> DeviceState | None:
        """Last snapshot, however stale, without touching the backend."""
        with self._lock:
            return self._state

    async def get_state(self) -> DeviceState:
        with self._lock:
            state, expiry = self._state, self._expiry
        if state is not None and time.monotonic() < expiry:
            return state
        return await self._refresh()

    def invalidate_cache(self) -> None:
        """Force the next ``get_state`` to refresh; the stale snapshot stays readable."""
        with self._lock:
            self._expiry = 0.0

    def add_observer(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        with self._lock:
            for idx, registered in enumerate(self._observers):
                if registered is observer:
                    del self._observers[idx]
                    return

    async def set_temperature(self, side: Side, level: int) -> None:
        if not LEVEL_MIN <= level <= LEVEL_MAX:
            raise LevelOutOfRangeError(level, LEVEL_MIN, LEVEL_MAX)
        user_id = await self._user_id_for(side)
        logger.info("%s setting %s side to level %d", f"{self.lp}set_temperature:", side, level)
        await self.backend.set_user_temperature(user_id, level)
        self.invalidate_cache()

    async def turn_on(self, side: Side) -> None:
        await self._set_power(side, True)

    async def turn_off(self, side: Side) -> None:
        await self._set_power(side, False)

    async def _set_power(self, side: Side, on: bool) -> None:
        user_id = await self._user_id_for(side)
        logger.info("%s turning %s side %s", f"{self.lp}set_power:", side, "on" if on else "off")
        await self.backend.set_user_power(user_id, on)
        self.invalidate_cache()

    async def _user_id_for(self, side: Side) -> str:
        state = await self.get_state()
        user = state.get_side(side)
        if user is None:
            raise NoUserAssignedError(side)
        return user.id

    @timed_async("state.refresh")
    async def _refresh(self) -> DeviceState:
        lp = f"{self.lp}refresh:"
        device = await self.backend.fetch_device_with_users(self.device_id)
        left_user, right_user = await asyncio.gather(
            self._fetch_side(device.left_user_id, Side.LEFT),
            self._fetch_side(device.right_user_id, Side.RIGHT),
        )
        new_state = self._build_state(device, left_user, right_user)

        with self._lock:
            old_state = self._state
            self._state = new_state
            self._expiry = time.monotonic() + self.cache_ttl
            observers = list(self._observers)

        logger.debug(
            "%s cached new snapshot",
            lp,
            extra={
                "device_id": new_state.id,
                "left": left_user is not None,
                "right": right_user is not None,
            },
        )
        if old_state is not None:
            self._notify(old_state, new_state, observers)
        return new_state

    async def _fetch_side(self, user_id: str | None, side: Side) -> UserState | None:
        if not user_id:
            return None
        # a bad reading for one side (fetch error or out-of-range level) only drops that side
        try:
            temp = await self.backend.fetch_user_temperature(user_id)
            return UserState(
                id=user_id,
                side=side,
                target_level=temp.current_level,
                state=PowerState.parse(temp.current_state.type),
            )
        except Exception as e:
            logger.warning(
                "%s dropping %s side from snapshot: %s",
                f"{self.lp}fetch_side:",
                side,
                e,
                extra={"user_id": user_id},
            )
            return None

    @staticmethod
    def _build_state(
        device: DeviceWithUsers,
        left_user: UserState | None,
        right_user: UserState | None,
    ) -> DeviceState:
        return DeviceState(
            id=device.id,
            room_temperature=device.room_temperature,
            has_water=device.water_level > 0,
            is_priming=device.is_priming,
            needs_priming=device.needs_priming,
            left_user=left_user,
            right_user=right_user,
        )

    def _notify(self, old: DeviceState, new: DeviceState, observers: list[Observer]) -> None:
        change = StateChange(old=old, new=new)
        for observer in observers:
            self._deliver(observer.on_state_change, change)

        for side in (Side.LEFT, Side.RIGHT):
            old_user = old.get_side(side)
            new_user = new.get_side(side)
            was_present = old_user is not None and old_user.is_present()
            is_present = new_user is not None and new_user.is_present()
            if was_present == is_present:
                continue
            presence = PresenceChange(side=side, present=is_present, user=new_user)
            for observer in observers:
                self._deliver(observer.on_presence_change, presence)

    def _deliver(self, handler, event: StateChange | PresenceChange) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception("%s observer %r failed on %s", f"{self.lp}notify:", handler, type(event).__name__)
