"""MQTT bridge for Home Assistant.

- client.py: MQTTAdapter with the connection supervisor and poll loop
- discovery.py: topic layout and climate discovery payloads
- state_updates.py: retained state and availability publishing
- command_routing.py: command subscription and dispatch
"""

from .client import BrokerConfig, MQTTAdapter
from .command_routing import CommandRouter, parse_command
from .discovery import DiscoveryHelper, discovery_payload
from .state_updates import StateUpdateHelper, power_state_to_mode

__all__ = [
    "BrokerConfig",
    "CommandRouter",
    "DiscoveryHelper",
    "MQTTAdapter",
    "StateUpdateHelper",
    "discovery_payload",
    "parse_command",
    "power_state_to_mode",
]
