from eightsleep_bridge.adapters.base import Action, Adapter, AdapterConfig, Command, parse_integer

__all__ = [
    "Action",
    "Adapter",
    "AdapterConfig",
    "Command",
    "parse_integer",
]
