from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "AcpConnectionError",
    "ProcessExitedError",
    "ProcessNotRunningError",
    "ProcessStartError",
    "RequestError",
    "StartupError",
    "UnknownPermissionRequestError",
]


# --- JSON-RPC 2.0 error helpers -------------------------------------------------

class RequestError(Exception):
    """JSON-RPC error, either raised by a local handler or received from the peer."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data

    @staticmethod
    def parse_error(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32700, "Parse error", data)

    @staticmethod
    def invalid_request(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32600, "Invalid request", data)

    @staticmethod
    def method_not_found(method: str) -> "RequestError":
        return RequestError(-32601, "Method not found", {"method": method})

    @staticmethod
    def invalid_params(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32602, "Invalid params", data)

    @staticmethod
    def internal_error(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32603, "Internal error", data)

    @staticmethod
    def auth_required(data: Optional[dict] = None) -> "RequestError":
        return RequestError(-32000, "Authentication required", data)

    def to_error_obj(self) -> dict:
        error = {"code": self.code, "message": str(self)}
        if self.data is not None:
            error["data"] = self.data
        return error


# --- Transport & process errors --------------------------------------------------

class AcpConnectionError(ConnectionError):
    """Base class for failures of the stdio transport to the agent process."""


class ProcessNotRunningError(AcpConnectionError):
    def __init__(self, message: str = "ACP process is not running") -> None:
        super().__init__(message)


class ProcessExitedError(AcpConnectionError):
    """Raised into every pending request when the agent process goes away."""

    def __init__(self, code: Optional[int], signal: Optional[str]) -> None:
        super().__init__(f"ACP process exited (code={code}, signal={signal})")
        self.code = code
        self.signal = signal


class UnknownPermissionRequestError(LookupError):
    def __init__(self, request_id: str) -> None:
        super().__init__(f"Unknown permission request id: {request_id}")
        self.request_id = request_id


class ProcessStartError(RuntimeError):
    """The agent command could not be spawned."""


class StartupError(RuntimeError):
    """The agent never completed the initialize handshake.

    Once raised by the supervisor's bounded retry loop, the supervisor stays in
    its terminal ``error`` state until an explicit start.
    """
