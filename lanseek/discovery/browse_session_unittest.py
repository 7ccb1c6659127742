import errno
from typing import List
from unittest.mock import MagicMock

import pytest

from lanseek.discovery.browse_session import (
    BrowseSession,
    BrowseState,
    PermissionState,
)
from lanseek.discovery.discovery_error import (
    AlreadyActiveError,
    DNS_SERVICE_ERR_POLICY_DENIED,
    TransportError,
)
from lanseek.discovery.endpoint_registry import EndpointRegistry
from lanseek.test.discovery_fixtures import (
    PRINTER,
    SCANNER,
    FakeTransport,
    RecordingCallbacks,
)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport(MagicMock(name="UnusedClient"))


@pytest.fixture
def registry() -> EndpointRegistry:
    return EndpointRegistry()


@pytest.fixture
def callbacks() -> RecordingCallbacks:
    return RecordingCallbacks()


def start(session: BrowseSession, callbacks: RecordingCallbacks) -> None:
    session.start(
        "_http._tcp",
        "local.",
        callbacks.on_found,
        callbacks.on_removed,
        callbacks.on_error,
    )


def test_start_opens_one_query_and_activates(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    assert session.state is BrowseState.IDLE

    start(session, callbacks)

    assert session.state is BrowseState.ACTIVE
    assert session.service_type == "_http._tcp"
    assert [q.target for q in transport.browse_queries] == [
        ("_http._tcp", "local.")
    ]


def test_start_normalizes_service_type(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    session.start(
        "_http._tcp.local.",
        None,
        callbacks.on_found,
        callbacks.on_removed,
        callbacks.on_error,
    )
    assert transport.browse_queries[0].target == ("_http._tcp", None)


def test_start_twice_raises_already_active(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    start(session, callbacks)

    with pytest.raises(AlreadyActiveError):
        start(session, callbacks)

    assert len(transport.browse_queries) == 1
    assert session.is_active


def test_start_failure_leaves_session_startable(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    transport.fail_next_browse = OSError("interface down")

    with pytest.raises(TransportError):
        start(session, callbacks)
    assert session.state is BrowseState.IDLE

    start(session, callbacks)
    assert session.is_active


def test_raw_events_are_normalized(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    start(session, callbacks)

    session.on_raw_announce(PRINTER, 1)
    session.on_raw_announce(PRINTER, 2)  # duplicate multicast response
    session.on_raw_announce(SCANNER, 3)
    session.on_raw_withdraw(PRINTER, 1)  # stale
    session.on_raw_withdraw(PRINTER, 2)

    assert callbacks.events == [
        ("found", PRINTER),
        ("found", SCANNER),
        ("removed", PRINTER),
    ]


def test_events_after_stop_are_dropped(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    start(session, callbacks)
    session.stop()

    session.on_raw_announce(PRINTER, 1)

    assert callbacks.events == []
    assert len(registry) == 0


def test_stop_closes_query_and_clears_registry(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    start(session, callbacks)
    session.on_raw_announce(PRINTER, 1)

    session.stop()

    assert session.state is BrowseState.STOPPED
    assert transport.browse_queries[0].closed
    assert len(registry) == 0


def test_stop_is_idempotent(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    session.stop()  # never started
    assert session.state is BrowseState.IDLE

    start(session, callbacks)
    session.stop()
    session.stop()

    assert len(transport.closed_browse) == 1


def test_session_can_restart_after_stop(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    start(session, callbacks)
    session.stop()
    start(session, callbacks)

    assert session.is_active
    assert len(transport.browse_queries) == 2


def test_transport_error_reports_and_stops(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    start(session, callbacks)
    session.on_raw_announce(PRINTER, 1)

    cause = OSError("interface down")
    session.on_transport_error(cause)

    assert session.state is BrowseState.STOPPED
    assert transport.browse_queries[0].closed
    assert len(registry) == 0
    [error] = callbacks.errors
    assert isinstance(error, TransportError)
    assert error.cause is cause
    assert not error.is_permission_error
    assert session.permission_state is PermissionState.UNDETERMINED


def test_permission_error_marks_permission_denied(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    states: List[PermissionState] = []
    callbacks = RecordingCallbacks()
    session = BrowseSession(
        transport, registry, on_permission_state_changed=states.append
    )
    start(session, callbacks)

    session.on_transport_error(OSError(errno.EPERM, "Operation not permitted"))

    assert states == [PermissionState.DENIED]
    assert session.permission_state is PermissionState.DENIED
    [error] = callbacks.errors
    assert error.is_permission_error
    assert "permission denied" in str(error)


def test_transport_error_when_inactive_is_ignored(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry)
    session.on_transport_error(OSError("late"))
    assert callbacks.events == []


def test_ready_grants_permission_once(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    states: List[PermissionState] = []
    session = BrowseSession(
        transport, registry, on_permission_state_changed=states.append
    )
    start(session, RecordingCallbacks())

    session.on_transport_ready()
    session.on_transport_ready()

    assert states == [PermissionState.GRANTED]


def test_waiting_timeout_fails_session(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    callbacks = RecordingCallbacks()
    session = BrowseSession(transport, registry, waiting_state_timeout=0.05)
    start(session, callbacks)

    session.on_transport_waiting(OSError("no route to host"))

    assert callbacks.error_event.wait(timeout=5)
    [error] = callbacks.errors
    assert "waiting state timeout" in str(error)
    assert session.state is BrowseState.STOPPED
    assert transport.browse_queries[0].closed


def test_ready_cancels_waiting_timeout(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    callbacks = RecordingCallbacks()
    session = BrowseSession(transport, registry, waiting_state_timeout=0.1)
    start(session, callbacks)

    session.on_transport_waiting(OSError("no route to host"))
    session.on_transport_ready()

    assert not callbacks.error_event.wait(timeout=0.4)
    assert session.is_active


def test_waiting_without_timeout_keeps_session(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry, waiting_state_timeout=None)
    start(session, callbacks)

    session.on_transport_waiting(OSError("no route to host"))

    assert session.is_active
    assert callbacks.events == []


def test_waiting_on_permission_error_fails_immediately(
    transport: FakeTransport,
    registry: EndpointRegistry,
    callbacks: RecordingCallbacks,
) -> None:
    session = BrowseSession(transport, registry, waiting_state_timeout=60)
    start(session, callbacks)

    session.on_transport_waiting(RuntimeError(DNS_SERVICE_ERR_POLICY_DENIED))

    assert session.state is BrowseState.STOPPED
    assert session.permission_state is PermissionState.DENIED
    assert len(callbacks.errors) == 1


def test_callback_exception_does_not_break_session(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    on_found = MagicMock(side_effect=RuntimeError("boom"))
    removed: List[object] = []
    session = BrowseSession(transport, registry)
    session.start("_http._tcp", None, on_found, removed.append, MagicMock())

    session.on_raw_announce(PRINTER, 1)
    session.on_raw_withdraw(PRINTER, 1)

    on_found.assert_called_once_with(PRINTER)
    assert removed == [PRINTER]


def test_constructor_rejects_none() -> None:
    with pytest.raises(ValueError):
        BrowseSession(None, EndpointRegistry())  # type: ignore[arg-type]
