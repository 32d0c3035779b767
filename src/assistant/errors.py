"""Domain-specific exceptions for the call bridge.

These exceptions are safe to import from API layers without pulling in the
realtime transport or any capability client.
"""

from __future__ import annotations


class BridgeError(Exception):
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class InvalidArgumentsError(BridgeError):
    default_detail = "Tool arguments could not be parsed."


class UnknownCapabilityError(BridgeError):
    default_detail = "Unknown tool."

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class CapabilityError(BridgeError):
    """An executor raised; wraps the underlying message."""

    default_detail = "Tool execution failed."

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(str(cause) or cause.__class__.__name__)
        self.name = name
        self.cause = cause


class InvalidModeError(BridgeError):
    default_detail = "Invalid mode. Expected near_field or far_field."


class TransportClosedError(BridgeError):
    default_detail = "Realtime transport is closed."


class BridgeTimeoutError(BridgeError):
    default_detail = "Timed out waiting for the bridge."
