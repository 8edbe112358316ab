"""Error taxonomy for the print proxy core."""
import errno
import socket
from enum import Enum
from typing import Optional


class PrintProxyError(Exception):
    """Base class for all print proxy errors."""


class ValidationError(PrintProxyError):
    """Request content is missing or malformed."""


class PrinterNotFound(PrintProxyError):
    """No printer matches the requested identifier."""


class PrinterUnavailable(PrintProxyError):
    """The matched printer was offline at its last probe."""


class PrintTimeout(PrintProxyError):
    """A job could not acquire its printer or ran past its deadline."""


class DiscoverySourceFailure(PrintProxyError):
    """A single discovery source failed; the aggregation carries on without it."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class FailureKind(Enum):
    PERMISSION_DENIED = "permission_denied"
    CONNECTIVITY = "connectivity"
    DEVICE_BUSY = "device_busy"
    UNKNOWN = "unknown"


class TransportFailure(PrintProxyError):
    """Delivering bytes over a transport failed."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.UNKNOWN,
                 address: Optional[str] = None, attempts: int = 1):
        super().__init__(message)
        self.kind = kind
        self.address = address
        self.attempts = attempts

    def __repr__(self):
        return f"TransportFailure({self.kind.value}, {self.address!r}, attempts={self.attempts})"


_CONNECTIVITY_ERRNOS = {
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    errno.ETIMEDOUT,
    errno.EPIPE,
    errno.ENOENT,
    errno.ENODEV,
    errno.ENXIO,
}


def classify_os_error(exc: BaseException) -> FailureKind:
    """Map a low-level exception onto a transport failure kind."""
    if isinstance(exc, PermissionError):
        return FailureKind.PERMISSION_DENIED
    if isinstance(exc, (ConnectionError, socket.timeout, TimeoutError)):
        return FailureKind.CONNECTIVITY
    if isinstance(exc, OSError) and exc.errno is not None:
        if exc.errno in (errno.EACCES, errno.EPERM):
            return FailureKind.PERMISSION_DENIED
        if exc.errno == errno.EBUSY:
            return FailureKind.DEVICE_BUSY
        if exc.errno in _CONNECTIVITY_ERRNOS:
            return FailureKind.CONNECTIVITY
    if "busy" in str(exc).lower():
        return FailureKind.DEVICE_BUSY
    return FailureKind.UNKNOWN
