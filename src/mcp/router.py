"""Server-side JSON-RPC dispatch router."""

import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from src.mcp.errors import (
    InternalError,
    InvalidRequest,
    JsonRpcFault,
    MethodNotFound,
)
from src.mcp.models import (
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    is_response_shape,
)
from src.mcp.transport_sse import SessionManager

logger = logging.getLogger(__name__)

# A handler takes a request and returns either a plain result or a full response
MethodHandler = Callable[[JsonRpcRequest], Awaitable[Any]]


def success_response(request_id: Any, result: Any) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, result=result)


def error_response(request_id: Any, fault: JsonRpcFault) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=JsonRpcError(**fault.to_error_data()))


class ServerDispatchRouter:
    """Maps JSON-RPC method names to handlers and owns channel liveness GC."""

    def __init__(self, sessions: SessionManager | None = None):
        self._handlers: dict[str, MethodHandler] = {}
        self.sessions = sessions or SessionManager()

    def register(self, method: str, handler: MethodHandler) -> None:
        """Register a handler. The last registration for a method wins."""
        if method in self._handlers:
            logger.warning(f"Handler for '{method}' already registered, overwriting")
        self._handlers[method] = handler

    @property
    def methods(self) -> list[str]:
        return list(self._handlers)

    def _validate(self, message: Any) -> JsonRpcRequest:
        """Check the structural JSON-RPC request shape."""
        if not isinstance(message, dict):
            raise InvalidRequest("Invalid Request: message must be a JSON object")
        if message.get("jsonrpc") != "2.0":
            raise InvalidRequest("Invalid Request: missing or invalid jsonrpc field")
        if is_response_shape(message):
            raise InvalidRequest("Invalid Request: unexpected response message")
        if "method" not in message:
            raise InvalidRequest("Invalid Request: missing method")
        if "result" in message or "error" in message:
            raise InvalidRequest("Invalid Request: method cannot carry result or error")
        try:
            return JsonRpcRequest.model_validate(message)
        except ValidationError as e:
            raise InvalidRequest(f"Invalid Request: {e.error_count()} invalid field(s)") from e

    async def dispatch(self, message: dict[str, Any]) -> JsonRpcResponse | None:
        """
        Dispatch one raw JSON-RPC message.

        Returns the response, or None for notifications. Faults are always
        converted to JSON-RPC error responses.
        """
        request_id = message.get("id") if isinstance(message, dict) else None
        if not isinstance(request_id, (str, int)) or isinstance(request_id, bool):
            request_id = None

        try:
            request = self._validate(message)
        except InvalidRequest as fault:
            logger.warning(f"Rejected message: {fault.message}")
            return error_response(request_id, fault)

        try:
            handler = self._handlers.get(request.method)
            if handler is None:
                raise MethodNotFound(f"Method not found: {request.method}")
            outcome = await handler(request)
        except JsonRpcFault as fault:
            response = error_response(request.id, fault)
        except Exception as e:
            logger.exception(f"Error handling method {request.method}")
            response = error_response(request.id, InternalError("Internal error", data=str(e)))
        else:
            if isinstance(outcome, JsonRpcResponse):
                response = outcome
            else:
                response = success_response(request.id, outcome)

        if request.is_notification:
            if response.is_error:
                logger.info(f"Notification {request.method} failed: {response.error.message}")
            return None
        return response

    def sweep(self, max_age: float, now: float | None = None) -> list[str]:
        """Remove every channel session idle for longer than max_age seconds."""
        return self.sessions.sweep(max_age, now)
