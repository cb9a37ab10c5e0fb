"""Domain-specific exceptions for the call bridge.

These exceptions are safe to import from API layers without pulling in the
websocket client.
"""

from __future__ import annotations


class BridgeError(Exception):
    status_code: int = 500
    default_detail: str = "Call bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedFrameError(BridgeError):
    status_code = 400
    default_detail = "Malformed websocket frame."


class AIConnectionError(BridgeError):
    status_code = 502
    default_detail = "Conversational AI connection failed."


class OutboundCallError(BridgeError):
    status_code = 500
    default_detail = "Failed to initiate call"


class MissingDestinationError(BridgeError):
    status_code = 400
    default_detail = "Destination phone number is required"


class TwilioNotConfiguredError(BridgeError):
    status_code = 503
    default_detail = "Twilio is not configured"


class UnauthorizedError(BridgeError):
    status_code = 401
    default_detail = "Unauthorized"
