"""Exception hierarchy for the Eight Sleep bridge.

Validation errors (:class:`CommandValidationError` and subclasses) are raised
before any network call and should never be retried. Backend failures keep
whatever type the backend client raised; :class:`BackendAPIError` is what the
bundled cloud client raises.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by this package."""


class CommandValidationError(BridgeError):
    """A command or argument was rejected before reaching the backend."""


class UnknownActionError(CommandValidationError):
    """Command action is not one of ``on``, ``off`` or ``set_temperature``.

    Attributes:
        action: The rejected action value

    """

    def __init__(self, action: object) -> None:
        self.action: object = action
        super().__init__(f"unknown action: {action}")


class MissingTemperatureError(CommandValidationError):
    """``set_temperature`` command without a temperature."""

    def __init__(self) -> None:
        super().__init__("temperature required for set_temperature action")


class LevelOutOfRangeError(CommandValidationError):
    """Target level outside the device's [-100, 100] range."""

    def __init__(self, level: int, minimum: int = -100, maximum: int = 100) -> None:
        self.level: int = level
        super().__init__(f"invalid level {level}: must be between {minimum} and {maximum}")


class NoUserAssignedError(CommandValidationError):
    """The requested side of the pod has no user assigned to it.

    Attributes:
        side: ``"left"`` or ``"right"``

    """

    def __init__(self, side: str) -> None:
        self.side: str = str(side)
        super().__init__(f"no user assigned to {self.side} side")


class BackendAPIError(BridgeError):
    """Eight Sleep cloud request failed.

    Attributes:
        status: HTTP status code, ``None`` for transport failures
        body: Response body text, if any

    """

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        self.status: int | None = status
        self.body: str = body
        if status is not None:
            message = f"{message} (status {status}): {body}" if body else f"{message} (status {status})"
        super().__init__(message)


class AdapterStartError(BridgeError):
    """A bridge adapter could not be started."""
