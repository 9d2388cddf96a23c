"""Error taxonomy shared by adapters, transports and the HTTP layer."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors that map onto an OpenAI-style error response."""

    status_code = 502
    error_type = "upstream_error"


class InvalidRequestError(GatewayError):
    """Raised for malformed client requests."""

    status_code = 400
    error_type = "invalid_request_error"


class UnsupportedModelError(InvalidRequestError):
    """Raised when no backend adapter claims the requested model id."""


class NotImplementedCapability(GatewayError):
    """Raised for API surface the gateway does not implement."""

    status_code = 501
    error_type = "not_implemented"


class ConfigurationError(GatewayError):
    """Raised when a backend's authentication precondition is not met."""


class TransportError(GatewayError):
    """Raised when a backend subprocess cannot be spawned, written or read."""


class StreamEndedError(TransportError):
    """Raised when backend stdout closes before a pending call resolved."""

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class TurnTimeoutError(TransportError):
    """Raised when a backend turn does not complete within its deadline."""


class ProtocolError(GatewayError):
    """Raised for JSON-RPC error objects and malformed backend replies."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class UpstreamEmptyOutput(GatewayError):
    """Raised when a backend turn finished without usable assistant text."""


class CallbackError(GatewayError):
    """Raised when the delta/event consumer failed (e.g. client disconnected)."""


class AuthenticationError(GatewayError):
    """Raised when a request lacks the configured gateway bearer token."""

    status_code = 401
    error_type = "authentication_error"
