"""
Unit tests for StateManager caching, mutations and observer dispatch.
"""

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from eightsleep_bridge.exceptions import (
    BackendAPIError,
    CommandValidationError,
    LevelOutOfRangeError,
    NoUserAssignedError,
)
from eightsleep_bridge.models import DeviceState, PowerState, Side, UserState
from eightsleep_bridge.state.manager import StateManager
from eightsleep_bridge.state.observer import LoggingObserver, PresenceChange, StateChange


class RecordingObserver:
    def __init__(self, name: str = "", log: list | None = None):
        self.name = name
        self.log = log if log is not None else []

    def on_state_change(self, change):
        self.log.append((self.name, "state", change))

    def on_presence_change(self, change):
        self.log.append((self.name, "presence", change))

    @property
    def state_changes(self):
        return [entry[2] for entry in self.log if entry[1] == "state"]

    @property
    def presence_changes(self):
        return [entry[2] for entry in self.log if entry[1] == "presence"]


def _snapshot(left_seen=None, right_seen=None) -> DeviceState:
    return DeviceState(
        id="dev",
        left_user=UserState(id="L", side=Side.LEFT, last_heart_rate_time=left_seen),
        right_user=UserState(id="R", side=Side.RIGHT, last_heart_rate_time=right_seen),
    )


class TestGetState:
    """Tests for cache hits, misses and refresh contents"""

    @pytest.mark.asyncio
    async def test_two_sided_scenario(self, manager):
        """Left smart at -20 is on, right off at 10 is off"""
        state = await manager.get_state()

        assert state.left_user.is_on() is True
        assert state.left_user.target_level == -20
        assert state.left_user.state is PowerState.SMART
        assert state.right_user.is_on() is False
        assert state.right_user.target_level == 10
        assert state.room_temperature == 21.5
        assert state.has_water is True

    @pytest.mark.asyncio
    async def test_cache_hit_returns_same_snapshot(self, manager, backend):
        first = await manager.get_state()
        second = await manager.get_state()

        assert first is second
        assert backend.fetch_device_with_users.await_count == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_exactly_one_fetch(self, manager, backend):
        await manager.get_state()
        manager.invalidate_cache()

        await manager.get_state()
        await manager.get_state()

        assert backend.fetch_device_with_users.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_keeps_stale_snapshot_readable(self, manager):
        state = await manager.get_state()
        manager.invalidate_cache()
        assert manager.cached_state is state

    @pytest.mark.asyncio
    async def test_expired_cache_refreshes(self, backend):
        manager = StateManager(backend, "dev-123", cache_ttl=0)
        await manager.get_state()
        await manager.get_state()
        assert backend.fetch_device_with_users.await_count == 2

    @pytest.mark.asyncio
    async def test_side_fetch_failure_drops_only_that_side(self, manager, backend, temperature_factory):
        async def fetch(user_id):
            if user_id == "R":
                raise BackendAPIError("boom", status=503)
            return temperature_factory(5, "manual")

        backend.fetch_user_temperature.side_effect = fetch
        state = await manager.get_state()

        assert state.left_user is not None
        assert state.left_user.target_level == 5
        assert state.right_user is None

    @pytest.mark.asyncio
    async def test_out_of_range_side_reading_drops_only_that_side(self, manager, backend, temperature_factory):
        temps = {"L": temperature_factory(-20, "smart"), "R": temperature_factory(150, "manual")}
        backend.fetch_user_temperature.side_effect = lambda user_id: temps[user_id]

        state = await manager.get_state()

        assert state.left_user is not None
        assert state.left_user.target_level == -20
        assert state.right_user is None
        assert manager.cached_state is state

    @pytest.mark.asyncio
    async def test_unassigned_side_is_not_fetched(self, manager, backend, device_factory):
        backend.fetch_device_with_users.return_value = device_factory(right=None)
        state = await manager.get_state()

        assert state.right_user is None
        backend.fetch_user_temperature.assert_awaited_once_with("L")

    @pytest.mark.asyncio
    async def test_device_fetch_error_propagates_and_keeps_cache(self, manager, backend):
        cached = await manager.get_state()
        manager.invalidate_cache()
        err = BackendAPIError("unreachable")
        backend.fetch_device_with_users.side_effect = err

        with pytest.raises(BackendAPIError) as exc_info:
            await manager.get_state()

        assert exc_info.value is err
        assert manager.cached_state is cached

    @pytest.mark.asyncio
    async def test_water_level_zero_means_no_water(self, manager, backend, device_factory):
        backend.fetch_device_with_users.return_value = device_factory(water_level=0, is_priming=True)
        state = await manager.get_state()
        assert state.has_water is False
        assert state.is_priming is True


class TestMutations:
    """Tests for set_temperature, turn_on and turn_off"""

    @pytest.mark.asyncio
    async def test_set_temperature_calls_backend_and_invalidates(self, manager, backend):
        await manager.set_temperature(Side.LEFT, 42)

        backend.set_user_temperature.assert_awaited_once_with("L", 42)
        await manager.get_state()
        # one fetch to resolve the user, one after invalidation
        assert backend.fetch_device_with_users.await_count == 2

    @pytest.mark.asyncio
    async def test_turn_on_and_off(self, manager, backend):
        await manager.turn_on(Side.RIGHT)
        await manager.turn_off(Side.LEFT)

        assert backend.set_user_power.await_args_list[0].args == ("R", True)
        assert backend.set_user_power.await_args_list[1].args == ("L", False)

    @pytest.mark.asyncio
    async def test_unassigned_side_command(self, manager, backend, device_factory):
        """turn_on on an empty side is a validation error with no mutation call"""
        backend.fetch_device_with_users.return_value = device_factory(right=None)

        with pytest.raises(NoUserAssignedError, match="no user assigned to right side") as exc_info:
            await manager.turn_on(Side.RIGHT)

        assert isinstance(exc_info.value, CommandValidationError)
        backend.set_user_power.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", [-101, 101, 150])
    async def test_out_of_range_level_makes_no_network_call(self, manager, backend, level):
        with pytest.raises(LevelOutOfRangeError, match="must be between -100 and 100"):
            await manager.set_temperature(Side.LEFT, level)

        backend.fetch_device_with_users.assert_not_awaited()
        backend.set_user_temperature.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backend_mutation_error_propagates_unchanged(self, manager, backend):
        err = BackendAPIError("denied", status=403)
        backend.set_user_power.side_effect = err

        with pytest.raises(BackendAPIError) as exc_info:
            await manager.turn_on(Side.LEFT)

        assert exc_info.value is err


class TestObservers:
    """Tests for change detection and notification order"""

    @pytest.mark.asyncio
    async def test_first_refresh_does_not_notify(self, manager):
        observer = RecordingObserver()
        manager.add_observer(observer)

        await manager.get_state()

        assert observer.log == []

    @pytest.mark.asyncio
    async def test_second_refresh_notifies_state_change(self, manager):
        observer = RecordingObserver()
        manager.add_observer(observer)

        first = await manager.get_state()
        manager.invalidate_cache()
        second = await manager.get_state()

        assert observer.state_changes == [StateChange(old=first, new=second)]
        # nobody has a heart rate, so presence never changes
        assert observer.presence_changes == []

    def test_presence_arrival_fires_once(self, manager):
        now = datetime.datetime.now(datetime.UTC)
        observer = RecordingObserver()
        old = _snapshot(left_seen=now - datetime.timedelta(minutes=15))
        new = _snapshot(left_seen=now)

        manager._notify(old, new, [observer])

        assert observer.presence_changes == [PresenceChange(side=Side.LEFT, present=True, user=new.left_user)]

    def test_presence_departure_fires_once(self, manager):
        now = datetime.datetime.now(datetime.UTC)
        observer = RecordingObserver()
        old = _snapshot(right_seen=now)
        new = _snapshot(right_seen=now - datetime.timedelta(minutes=15))

        manager._notify(old, new, [observer])

        assert observer.presence_changes == [PresenceChange(side=Side.RIGHT, present=False, user=new.right_user)]

    def test_unchanged_presence_fires_nothing(self, manager):
        observer = RecordingObserver()
        manager._notify(_snapshot(), _snapshot(), [observer])
        assert observer.presence_changes == []
        assert len(observer.state_changes) == 1

    def test_removed_user_counts_as_absent(self, manager):
        now = datetime.datetime.now(datetime.UTC)
        observer = RecordingObserver()
        old = _snapshot(left_seen=now)
        new = DeviceState(id="dev", right_user=old.right_user)

        manager._notify(old, new, [observer])

        assert observer.presence_changes == [PresenceChange(side=Side.LEFT, present=False, user=None)]

    def test_order_state_then_left_then_right(self, manager):
        now = datetime.datetime.now(datetime.UTC)
        log: list = []
        first = RecordingObserver("a", log)
        second = RecordingObserver("b", log)
        old = _snapshot()
        new = _snapshot(left_seen=now, right_seen=now)

        manager._notify(old, new, [first, second])

        summary = [(name, kind, getattr(event, "side", None)) for name, kind, event in log]
        assert summary == [
            ("a", "state", None),
            ("b", "state", None),
            ("a", "presence", Side.LEFT),
            ("b", "presence", Side.LEFT),
            ("a", "presence", Side.RIGHT),
            ("b", "presence", Side.RIGHT),
        ]

    def test_failing_observer_does_not_block_others(self, manager):
        broken = MagicMock()
        broken.on_state_change.side_effect = RuntimeError("observer bug")
        observer = RecordingObserver()

        manager._notify(_snapshot(), _snapshot(), [broken, observer])

        assert len(observer.state_changes) == 1

    @pytest.mark.asyncio
    async def test_remove_observer(self, manager):
        observer = RecordingObserver()
        manager.add_observer(observer)
        manager.remove_observer(observer)

        await manager.get_state()
        manager.invalidate_cache()
        await manager.get_state()

        assert observer.log == []

    def test_remove_unknown_observer_is_noop(self, manager):
        manager.add_observer(RecordingObserver())
        manager.remove_observer(RecordingObserver())
        assert len(manager._observers) == 1

    @pytest.mark.asyncio
    async def test_observer_added_during_dispatch_waits_for_next_refresh(self, manager):
        late = RecordingObserver()

        class Registrar(RecordingObserver):
            def on_state_change(self, change):
                super().on_state_change(change)
                manager.add_observer(late)

        manager.add_observer(Registrar())
        await manager.get_state()
        manager.invalidate_cache()
        await manager.get_state()

        assert late.log == []


class TestLoggingObserver:
    """Tests for the bundled logging observer"""

    def test_logs_level_change(self):
        observer = LoggingObserver()
        old = DeviceState(id="d", left_user=UserState(id="L", side=Side.LEFT, target_level=0))
        new = DeviceState(id="d", left_user=UserState(id="L", side=Side.LEFT, target_level=30))
        with pytest.MonkeyPatch.context() as mp:
            info = MagicMock()
            mp.setattr("eightsleep_bridge.state.observer.logger.info", info)
            observer.on_state_change(StateChange(old=old, new=new))
        info.assert_called_once()
        assert info.call_args.args[-1] == 30

    def test_debug_logs_full_snapshot(self):
        observer = LoggingObserver()
        old = DeviceState(id="d")
        new = DeviceState(id="d", left_user=UserState(id="L", side=Side.LEFT, target_level=30))
        with pytest.MonkeyPatch.context() as mp:
            debug = MagicMock()
            mp.setattr("eightsleep_bridge.state.observer.logger.debug", debug)
            observer.on_state_change(StateChange(old=old, new=new))
        debug.assert_called_once()
        assert debug.call_args.kwargs["extra"] == {"snapshot": new.as_dict()}

    def test_logs_presence(self):
        observer = LoggingObserver()
        with pytest.MonkeyPatch.context() as mp:
            info = MagicMock()
            mp.setattr("eightsleep_bridge.state.observer.logger.info", info)
            observer.on_presence_change(PresenceChange(side=Side.RIGHT, present=True, user=None))
        assert "occupied" in info.call_args.args


class TestRefreshUsesBackendContract:
    """The manager only needs the four BackendAPI coroutines"""

    @pytest.mark.asyncio
    async def test_works_with_any_backend_object(self, device_factory, temperature_factory):
        class Backend:
            fetch_device_with_users = AsyncMock(return_value=device_factory(left="L", right=None))
            fetch_user_temperature = AsyncMock(return_value=temperature_factory(0, "manual"))
            set_user_temperature = AsyncMock()
            set_user_power = AsyncMock()

        manager = StateManager(Backend(), "dev-123")
        state = await manager.get_state()
        assert state.left_user.state is PowerState.MANUAL
