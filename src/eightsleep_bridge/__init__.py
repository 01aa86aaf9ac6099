"""Eight Sleep state sync and smart-home bridge."""

__version__ = "0.1.0"
