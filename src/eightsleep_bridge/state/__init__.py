from eightsleep_bridge.state.manager import StateManager
from eightsleep_bridge.state.observer import LoggingObserver, Observer, PresenceChange, StateChange

__all__ = [
    "LoggingObserver",
    "Observer",
    "PresenceChange",
    "StateChange",
    "StateManager",
]
