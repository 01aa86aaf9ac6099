from eightsleep_bridge.hubitat.server import DeviceStatus, HubServer, MutationResult, SideStatus, parse_level

__all__ = [
    "DeviceStatus",
    "HubServer",
    "MutationResult",
    "SideStatus",
    "parse_level",
]
