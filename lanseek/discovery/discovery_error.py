"""Error taxonomy for service discovery and resolution.

Structural misuse (`AlreadyActiveError`, `SessionNotActiveError`,
`UnknownServiceError`) is raised synchronously from the call that caused it.
Network-layer failures (`TransportError`, `ResolutionFailedError`,
`ResolutionTimeoutError`) and `DiscoveryCancelledError` are delivered
asynchronously, through the `on_error` callback or a `ResolutionHandle`.
Nothing in this package retries on its own.
"""

import errno
from enum import Enum
from typing import Optional

# DNS-SD daemon error codes that mean local network access was refused.
DNS_SERVICE_ERR_NO_AUTH = -65555
DNS_SERVICE_ERR_POLICY_DENIED = -65570

_PERMISSION_ERRNOS = frozenset([errno.EPERM, errno.EACCES])
_PERMISSION_DNS_CODES = frozenset(
    [DNS_SERVICE_ERR_NO_AUTH, DNS_SERVICE_ERR_POLICY_DENIED]
)


class DiscoveryErrorKind(Enum):
    """Identifies which failure a `DiscoveryError` represents."""

    ALREADY_ACTIVE = "already_active"
    SESSION_NOT_ACTIVE = "session_not_active"
    UNKNOWN_SERVICE = "unknown_service"
    RESOLUTION_TIMEOUT = "resolution_timeout"
    RESOLUTION_FAILED = "resolution_failed"
    CANCELLED = "cancelled"
    TRANSPORT_ERROR = "transport_error"


class DiscoveryError(Exception):
    """Base class for all errors raised or delivered by this package."""

    kind: DiscoveryErrorKind

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class AlreadyActiveError(DiscoveryError):
    """Raised when starting a browse session that is already active."""

    kind = DiscoveryErrorKind.ALREADY_ACTIVE


class SessionNotActiveError(DiscoveryError):
    """Raised when resolving while no browse session is active."""

    kind = DiscoveryErrorKind.SESSION_NOT_ACTIVE


class UnknownServiceError(DiscoveryError):
    """Raised when resolving a service that is not currently known."""

    kind = DiscoveryErrorKind.UNKNOWN_SERVICE


class ResolutionTimeoutError(DiscoveryError):
    """Delivered when a resolution does not complete in time."""

    kind = DiscoveryErrorKind.RESOLUTION_TIMEOUT


class ResolutionFailedError(DiscoveryError):
    """Delivered when the platform reports that a resolution failed."""

    kind = DiscoveryErrorKind.RESOLUTION_FAILED


class DiscoveryCancelledError(DiscoveryError):
    """Delivered to a resolution handle that was cancelled.

    Only the cancelled handle(s) receive this; it is never reported to other
    observers of the same underlying operation.
    """

    kind = DiscoveryErrorKind.CANCELLED


class TransportError(DiscoveryError):
    """Wraps a failure reported by the platform transport."""

    kind = DiscoveryErrorKind.TRANSPORT_ERROR

    @property
    def is_permission_error(self) -> bool:
        """Whether the wrapped cause is a local network permission denial."""
        return self.cause is not None and is_permission_error(self.cause)


def is_permission_error(cause: BaseException) -> bool:
    """Returns whether |cause| indicates local network access was denied.

    Recognizes `PermissionError`, EPERM/EACCES errno values and the DNS-SD
    NoAuth/PolicyDenied codes, which transports report as the first
    argument of the exception.
    """
    if isinstance(cause, TransportError):
        return cause.is_permission_error
    if isinstance(cause, PermissionError):
        return True
    if isinstance(cause, OSError) and cause.errno in _PERMISSION_ERRNOS:
        return True
    code = cause.args[0] if cause.args else None
    return isinstance(code, int) and code in _PERMISSION_DNS_CODES
