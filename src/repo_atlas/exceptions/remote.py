"""Remote hosting API exceptions: transient failures, timeouts, auth."""

from typing import Optional

from .base import RepoAtlasError


class RemoteError(RepoAtlasError):
    """Base class for failures talking to the remote hosting API."""

    pass


class TransientFetchError(RemoteError):
    """Raised for failures worth retrying (5xx, rate limiting, dropped connections)."""

    def __init__(self, operation: str, reason: str, status_code: Optional[int] = None):
        details = {"operation": operation, "reason": reason}
        if status_code is not None:
            details["status"] = str(status_code)
        super().__init__(f"Transient failure during {operation}", details=details)
        self.operation = operation
        self.reason = reason
        self.status_code = status_code


class FetchTimeoutError(RemoteError, TimeoutError):
    """Raised when a remote operation exceeds its time budget."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"Operation {operation} timed out after {timeout:g}s",
            details={"operation": operation, "timeout": f"{timeout:g}"},
        )
        self.operation = operation
        self.timeout = timeout


class AuthError(RemoteError):
    """Raised when the hosting API rejects our credentials. Never retried."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        details = {"reason": reason}
        if status_code is not None:
            details["status"] = str(status_code)
        super().__init__("Remote authentication failed", details=details)
        self.reason = reason
        self.status_code = status_code
