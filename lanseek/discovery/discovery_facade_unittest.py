import threading
from typing import List, Tuple
from unittest.mock import MagicMock, patch

import pytest

from lanseek.discovery.browse_session import BrowseState, PermissionState
from lanseek.discovery.discovery_config import DiscoveryConfig
from lanseek.discovery.discovery_error import (
    AlreadyActiveError,
    DiscoveryCancelledError,
    ResolutionTimeoutError,
    SessionNotActiveError,
    TransportError,
    UnknownServiceError,
)
from lanseek.discovery.discovery_facade import DiscoveryFacade
from lanseek.discovery.discovery_transport import DiscoveryTransport
from lanseek.discovery.resolution_handle import ResolutionHandle
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity
from lanseek.test.discovery_fixtures import (
    PRINTER,
    PRINTER_ENDPOINT,
    SCANNER,
    FakeTransport,
    RecordingCallbacks,
)

NO_TIMEOUTS = DiscoveryConfig(resolve_timeout=None, waiting_state_timeout=None)


def make_facade(
    config: DiscoveryConfig = NO_TIMEOUTS, **kwargs
) -> Tuple[DiscoveryFacade, FakeTransport]:
    transports: List[FakeTransport] = []

    def factory(client: DiscoveryTransport.Client) -> FakeTransport:
        transports.append(FakeTransport(client))
        return transports[-1]

    facade = DiscoveryFacade(transport_factory=factory, config=config, **kwargs)
    return facade, transports[0]


def start(facade: DiscoveryFacade, callbacks: RecordingCallbacks) -> None:
    facade.start(
        "_http._tcp",
        "local",
        callbacks.on_found,
        callbacks.on_removed,
        callbacks.on_error,
    )


def test_printer_scenario() -> None:
    facade, transport = make_facade()
    callbacks = RecordingCallbacks()
    start(facade, callbacks)
    assert transport.browse_queries[0].target == ("_http._tcp", "local")

    transport.announce(
        ServiceIdentity(name="Printer1", type="_http._tcp", domain="local"), 1
    )
    assert callbacks.events == [("found", PRINTER)]

    handle = facade.resolve(PRINTER)
    transport.resolve_ok(
        PRINTER,
        ResolvedEndpoint(
            hostname="printer1.local",
            addresses=["192.0.2.10"],
            port=631,
            txt_records={"ty": b"LaserJet"},
        ),
    )
    endpoint = handle.result(timeout=0)
    assert endpoint.hostname == "printer1.local"
    assert endpoint.addresses == ("192.0.2.10",)
    assert endpoint.port == 631
    assert dict(endpoint.txt_records) == {"ty": b"LaserJet"}

    transport.withdraw(PRINTER, 1)
    assert callbacks.events == [("found", PRINTER), ("removed", PRINTER)]


def test_start_twice_raises_and_opens_one_query() -> None:
    facade, transport = make_facade()
    start(facade, RecordingCallbacks())

    with pytest.raises(AlreadyActiveError):
        start(facade, RecordingCallbacks())

    assert len(transport.browse_queries) == 1


def test_resolve_requires_active_session() -> None:
    facade, _ = make_facade()
    with pytest.raises(SessionNotActiveError):
        facade.resolve(PRINTER)

    start(facade, RecordingCallbacks())
    facade.stop()
    with pytest.raises(SessionNotActiveError):
        facade.resolve(PRINTER)


def test_resolve_unknown_or_removed_service_raises() -> None:
    facade, transport = make_facade()
    start(facade, RecordingCallbacks())

    with pytest.raises(UnknownServiceError):
        facade.resolve(PRINTER)

    transport.announce(PRINTER, 1)
    transport.withdraw(PRINTER, 1)
    with pytest.raises(UnknownServiceError):
        facade.resolve(PRINTER)


def test_concurrent_resolve_joins_single_query() -> None:
    facade, transport = make_facade()
    start(facade, RecordingCallbacks())
    transport.announce(PRINTER, 1)

    first = facade.resolve(PRINTER)
    second = facade.resolve(PRINTER)
    transport.resolve_ok(PRINTER, PRINTER_ENDPOINT)

    assert len(transport.resolve_queries) == 1
    assert first.result(timeout=0) == second.result(timeout=0) == PRINTER_ENDPOINT


def test_stop_cancels_outstanding_resolutions() -> None:
    facade, transport = make_facade()
    start(facade, RecordingCallbacks())
    transport.announce(PRINTER, 1)
    transport.announce(SCANNER, 2)

    printer_handle = facade.resolve(PRINTER)
    scanner_handle = facade.resolve(SCANNER)
    facade.stop()

    for handle in (printer_handle, scanner_handle):
        assert isinstance(handle.exception(timeout=0), DiscoveryCancelledError)
    assert len(transport.closed_resolve) == 2
    assert all(q.closed for q in transport.resolve_queries)
    assert transport.browse_queries[0].closed
    assert facade.state is BrowseState.STOPPED
    assert facade.services == []


def test_stop_is_idempotent() -> None:
    facade, transport = make_facade()
    start(facade, RecordingCallbacks())

    facade.stop()
    facade.stop()

    assert len(transport.closed_browse) == 1


def test_cancel_through_facade() -> None:
    facade, transport = make_facade()
    start(facade, RecordingCallbacks())
    transport.announce(PRINTER, 1)

    handle = facade.resolve(PRINTER)
    facade.cancel(handle)

    assert isinstance(handle.exception(timeout=0), DiscoveryCancelledError)
    assert transport.resolve_queries[0].closed


def test_transport_error_stops_session_and_cancels_resolutions() -> None:
    facade, transport = make_facade()
    callbacks = RecordingCallbacks()
    start(facade, callbacks)
    transport.announce(PRINTER, 1)
    handle = facade.resolve(PRINTER)

    transport.client._on_transport_error(OSError("interface down"))

    assert isinstance(handle.exception(timeout=0), DiscoveryCancelledError)
    assert facade.state is BrowseState.STOPPED
    [error] = callbacks.errors
    assert isinstance(error, TransportError)
    assert [kind for kind, _ in callbacks.events] == ["found", "error"]


def test_transport_error_without_handler_is_logged(caplog) -> None:
    facade, transport = make_facade()
    facade.start("_http._tcp", None, MagicMock(), MagicMock())

    transport.client._on_transport_error(OSError("interface down"))

    assert not facade.is_active
    assert "Unhandled discovery transport error" in caplog.text


def test_resolve_from_found_callback() -> None:
    facade, transport = make_facade()
    handles: List[ResolutionHandle] = []
    facade.start(
        "_http._tcp",
        None,
        lambda identity: handles.append(facade.resolve(identity)),
        MagicMock(),
    )

    transport.announce(PRINTER, 1)
    transport.resolve_ok(PRINTER, PRINTER_ENDPOINT)

    [handle] = handles
    assert handle.result(timeout=0) == PRINTER_ENDPOINT


def test_events_from_many_threads_keep_per_identity_order() -> None:
    facade, transport = make_facade()
    callbacks = RecordingCallbacks()
    start(facade, callbacks)
    identities = [
        ServiceIdentity(f"Service{i}", "_http._tcp", "local") for i in range(8)
    ]

    def churn(identity: ServiceIdentity) -> None:
        for token in range(50):
            transport.announce(identity, token)
            transport.withdraw(identity, token)

    threads = [threading.Thread(target=churn, args=(i,)) for i in identities]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for identity in identities:
        kinds = [kind for kind, i in callbacks.events if i == identity]
        assert kinds == ["found", "removed"] * 50


def test_resolve_timeout_from_config() -> None:
    facade, transport = make_facade(
        DiscoveryConfig(resolve_timeout=0.05, waiting_state_timeout=None)
    )
    start(facade, RecordingCallbacks())
    transport.announce(PRINTER, 1)

    handle = facade.resolve(PRINTER)

    assert isinstance(handle.exception(timeout=5), ResolutionTimeoutError)
    assert transport.resolve_queries[0].closed


def test_permission_state_is_forwarded() -> None:
    states: List[PermissionState] = []
    facade, transport = make_facade(on_permission_state_changed=states.append)
    start(facade, RecordingCallbacks())

    transport.client._on_transport_ready()

    assert facade.permission_state is PermissionState.GRANTED
    assert states == [PermissionState.GRANTED]


def test_services_snapshot() -> None:
    facade, transport = make_facade()
    start(facade, RecordingCallbacks())
    transport.announce(PRINTER, 1)
    transport.announce(SCANNER, 2)

    assert set(facade.services) == {PRINTER, SCANNER}


def test_context_manager_closes_transport() -> None:
    facade, transport = make_facade()
    with facade:
        start(facade, RecordingCallbacks())
        assert facade.is_active

    assert not facade.is_active
    assert transport.is_closed


def test_default_factory_builds_zeroconf_transport() -> None:
    config = DiscoveryConfig(ip_version="all")
    with patch(
        "lanseek.discovery.discovery_facade.ZeroconfTransport.from_config"
    ) as mock_from_config:
        facade = DiscoveryFacade(config=config)

    mock_from_config.assert_called_once_with(facade, config)


def test_factory_returning_none_is_rejected() -> None:
    with pytest.raises(ValueError):
        DiscoveryFacade(transport_factory=lambda client: None)  # type: ignore[arg-type,return-value]
