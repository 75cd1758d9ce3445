"""
Bridge Errors
=============

Error taxonomy for the bridge core.

Every error raised across the control surface derives from BridgeError and
carries the session id it concerns (when there is one) plus the HTTP status
the control layer should answer with.

Hierarchy:
    BridgeError
        ConfigValidationError  - malformed create-session input (400)
        BridgeConnectionError  - initial handshake failed (502)
        TransportError         - post-handshake socket/stream failure
        ForwardError           - send attempted while the sink is down (503)
        SessionNotFoundError   - unknown session id (404)
        RegistryClosedError    - creation attempted during shutdown (503)
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""

    status_code: int = 500
    error_type: str = "bridge_error"

    def __init__(self, message: str, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    def to_dict(self) -> dict:
        return {
            "error": self.error_type,
            "detail": self.message,
            "connection_id": self.session_id,
        }


class ConfigValidationError(BridgeError):
    """Create-session input is missing fields or malformed."""

    status_code = 400
    error_type = "validation_error"

    def __init__(
        self,
        message: str,
        errors: Optional[list] = None,
        session_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, session_id)
        self.errors = errors or []

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class BridgeConnectionError(BridgeError):
    """Initial handshake of the source or sink transport failed."""

    status_code = 502
    error_type = "connection_error"


class TransportError(BridgeError):
    """A transport failed after its handshake completed."""

    error_type = "transport_error"


class ForwardError(BridgeError):
    """A payload could not be delivered to the sink."""

    status_code = 503
    error_type = "forward_error"


class SessionNotFoundError(BridgeError):
    """No session is registered under the given id."""

    status_code = 404
    error_type = "not_found"


class RegistryClosedError(BridgeError):
    """The registry is shutting down and refuses new sessions."""

    status_code = 503
    error_type = "shutting_down"
