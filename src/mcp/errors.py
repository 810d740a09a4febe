"""JSON-RPC 2.0 error codes, error helpers and channel exception types."""

from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700  # Invalid JSON was received
INVALID_REQUEST = -32600  # The JSON sent is not a valid Request object
METHOD_NOT_FOUND = -32601  # The method does not exist / is not available
INVALID_PARAMS = -32602  # Invalid method parameter(s)
INTERNAL_ERROR = -32603  # Internal JSON-RPC error


def error_message(code: int) -> str:
    """Get the standard message for a JSON-RPC error code."""
    messages = {
        PARSE_ERROR: "Parse error",
        INVALID_REQUEST: "Invalid Request",
        METHOD_NOT_FOUND: "Method not found",
        INVALID_PARAMS: "Invalid params",
        INTERNAL_ERROR: "Internal error",
    }
    return messages.get(code, "Unknown error")


def make_error_data(code: int, message: str | None = None, data: Any = None) -> dict[str, Any]:
    """Create an error object for JSON-RPC response."""
    error: dict[str, Any] = {
        "code": code,
        "message": message or error_message(code),
    }
    if data is not None:
        error["data"] = data
    return error


class ChannelError(Exception):
    """Base exception for all push channel errors."""
    pass


# =============================================================================
# Frame-local errors
# =============================================================================


class MalformedFrame(ChannelError):
    """Raised when a push frame or side-channel body cannot be decoded."""

    def __init__(self, detail: str, raw: str | bytes | None = None):
        self.detail = detail
        self.raw = raw
        super().__init__(f"Malformed frame: {detail}")


# =============================================================================
# Request-local errors (surfaced to one caller)
# =============================================================================


class DuplicateId(ChannelError):
    """Raised when a request id is registered while already pending."""

    def __init__(self, request_id: str | int):
        self.request_id = request_id
        super().__init__(f"Request id already pending: {request_id!r}")


class RequestTimeout(ChannelError):
    """Raised when no correlated response arrives within the timeout."""

    def __init__(self, request_id: str | int, timeout: float):
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(f"Request timeout for message {request_id!r} after {timeout}s")


class ChannelClosed(ChannelError):
    """Raised for every outstanding request when the channel is torn down."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Channel closed: {reason}")


class RemoteError(ChannelError):
    """A JSON-RPC error object returned by the server for one request."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"[{code}] {message}")


class NotConnected(ChannelError):
    """Raised when sending while the channel is not open."""
    pass


# =============================================================================
# Channel-fatal errors (surfaced to whoever called open)
# =============================================================================


class ConnectTimeout(ChannelError):
    """Raised when the push channel does not open within the connect window."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Connection timeout after {timeout}s")


class ReconnectExhausted(ChannelError):
    """Raised when every reconnection attempt has failed."""

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Max reconnection attempts reached ({attempts}): {last_error}"
        )


class ChannelUnavailable(ChannelError):
    """Raised when the push endpoint answers but no channel can be opened."""
    pass


class InvalidTransition(ChannelError):
    """Raised on a connection state change the state machine does not allow."""
    pass


# =============================================================================
# Server-side dispatch faults (converted to JSON-RPC error objects)
# =============================================================================


class JsonRpcFault(Exception):
    """
    A dispatch failure that maps to a JSON-RPC error object.

    Handlers may raise this to answer with a specific error code. The router
    never lets it cross the transport boundary.
    """

    code: int = INTERNAL_ERROR

    def __init__(self, message: str | None = None, data: Any = None, code: int | None = None):
        if code is not None:
            self.code = code
        self.message = message or error_message(self.code)
        self.data = data
        super().__init__(self.message)

    def to_error_data(self) -> dict[str, Any]:
        return make_error_data(self.code, self.message, self.data)


class InvalidRequest(JsonRpcFault):
    code = INVALID_REQUEST


class MethodNotFound(JsonRpcFault):
    code = METHOD_NOT_FOUND


class InternalError(JsonRpcFault):
    code = INTERNAL_ERROR


class InvalidParams(JsonRpcFault):
    code = INVALID_PARAMS
