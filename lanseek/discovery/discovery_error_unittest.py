import errno

import pytest

from lanseek.discovery.discovery_error import (
    DNS_SERVICE_ERR_NO_AUTH,
    DNS_SERVICE_ERR_POLICY_DENIED,
    AlreadyActiveError,
    DiscoveryCancelledError,
    DiscoveryError,
    DiscoveryErrorKind,
    ResolutionFailedError,
    ResolutionTimeoutError,
    SessionNotActiveError,
    TransportError,
    UnknownServiceError,
    is_permission_error,
)


@pytest.mark.parametrize(
    "error_class,kind",
    [
        (AlreadyActiveError, DiscoveryErrorKind.ALREADY_ACTIVE),
        (SessionNotActiveError, DiscoveryErrorKind.SESSION_NOT_ACTIVE),
        (UnknownServiceError, DiscoveryErrorKind.UNKNOWN_SERVICE),
        (ResolutionTimeoutError, DiscoveryErrorKind.RESOLUTION_TIMEOUT),
        (ResolutionFailedError, DiscoveryErrorKind.RESOLUTION_FAILED),
        (DiscoveryCancelledError, DiscoveryErrorKind.CANCELLED),
        (TransportError, DiscoveryErrorKind.TRANSPORT_ERROR),
    ],
)
def test_kinds(error_class, kind) -> None:
    error = error_class("message")
    assert isinstance(error, DiscoveryError)
    assert error.kind is kind
    assert error.cause is None
    assert str(error) == "message"


def test_cause_is_kept() -> None:
    cause = OSError("socket closed")
    assert TransportError("Browser failed", cause).cause is cause


@pytest.mark.parametrize(
    "cause",
    [
        PermissionError("denied"),
        OSError(errno.EPERM, "Operation not permitted"),
        OSError(errno.EACCES, "Permission denied"),
        RuntimeError(DNS_SERVICE_ERR_NO_AUTH),
        RuntimeError(DNS_SERVICE_ERR_POLICY_DENIED, "PolicyDenied"),
    ],
)
def test_permission_causes(cause) -> None:
    assert is_permission_error(cause)
    assert TransportError("failed", cause).is_permission_error


@pytest.mark.parametrize(
    "cause",
    [
        OSError(errno.ENETDOWN, "Network is down"),
        RuntimeError(-65537),
        RuntimeError("boom"),
        ValueError(),
    ],
)
def test_other_causes(cause) -> None:
    assert not is_permission_error(cause)
    assert not TransportError("failed", cause).is_permission_error


def test_transport_error_without_cause() -> None:
    assert not TransportError("failed").is_permission_error
