import asyncio
import errno
import threading
import time
from typing import Any, Iterator, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from zeroconf import InterfaceChoice, IPVersion, Zeroconf

from lanseek.discovery.discovery_config import DiscoveryConfig
from lanseek.discovery.discovery_error import (
    ResolutionTimeoutError,
    TransportError,
)
from lanseek.discovery.discovery_transport import DiscoveryTransport
from lanseek.discovery.mdns.zeroconf_transport import (
    ZeroconfTransport,
    endpoint_from_service_info,
    identity_from_record_name,
    record_names_for,
)
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity

MODULE = "lanseek.discovery.mdns.zeroconf_transport"
PRINTER = ServiceIdentity("Printer1", "_http._tcp", "local")


class RecordingClient(DiscoveryTransport.Client):
    """Collects transport notifications; signals when one arrives."""

    __test__ = False

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Any, Any]] = []
        self.result_queries: List[Any] = []
        self.notified = threading.Event()

    def __record(self, kind: str, first: Any = None, second: Any = None) -> None:
        self.calls.append((kind, first, second))
        self.notified.set()

    def _on_raw_announce(self, identity, token) -> None:
        self.__record("announce", identity, token)

    def _on_raw_withdraw(self, identity, token) -> None:
        self.__record("withdraw", identity, token)

    def _on_transport_error(self, cause) -> None:
        self.__record("error", cause)

    def _on_resolve_success(self, identity, endpoint, query=None) -> None:
        self.result_queries.append(query)
        self.__record("resolved", identity, endpoint)

    def _on_resolve_failure(self, identity, cause, query=None) -> None:
        self.result_queries.append(query)
        self.__record("failed", identity, cause)

    def _on_transport_ready(self) -> None:
        self.__record("ready")

    def wait_for(self, kind: str, timeout: float = 5.0) -> Tuple[str, Any, Any]:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            for call in list(self.calls):
                if call[0] == kind:
                    return call
            self.notified.wait(0.01)
            self.notified.clear()
        raise AssertionError(f"No '{kind}' notification; got {self.calls}.")


def make_service_info(
    *,
    server: Optional[str] = "printer1.local.",
    port: Optional[int] = 631,
    addresses: Optional[List[str]] = None,
    properties: Optional[dict] = None,
) -> MagicMock:
    info = MagicMock(name="ServiceInfo")
    info.name = "Printer1._http._tcp.local."
    info.server = server
    info.port = port
    info.parsed_addresses.return_value = (
        ["192.0.2.10"] if addresses is None else addresses
    )
    info.properties = {b"ty": b"LaserJet"} if properties is None else properties
    return info


def make_async_service_info(request: AsyncMock) -> MagicMock:
    info = make_service_info()
    info.async_request = request
    return info


@pytest.fixture
def client() -> RecordingClient:
    return RecordingClient()


@pytest.fixture
def zc_loop() -> Iterator[asyncio.AbstractEventLoop]:
    """An event loop on its own thread, like the one zeroconf runs."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(5)
    loop.close()


@pytest.fixture
def shared_zc(zc_loop: asyncio.AbstractEventLoop) -> MagicMock:
    zc = MagicMock(spec=Zeroconf, name="SharedZeroconf")
    zc.loop = zc_loop
    return zc


def test_identity_from_record_name() -> None:
    assert identity_from_record_name(
        "_http._tcp.local.", "Printer1._http._tcp.local."
    ) == PRINTER
    assert identity_from_record_name(
        "_http._tcp.local.", "My.Printer._http._tcp.local."
    ) == ServiceIdentity("My.Printer", "_http._tcp", "local")
    assert identity_from_record_name("_http._tcp.local.", "other._ipp._tcp.local.") is None


def test_identity_from_record_name_keeps_unicast_domain() -> None:
    assert identity_from_record_name(
        "_http._tcp.example.com.", "Printer1._http._tcp.example.com."
    ) == ServiceIdentity("Printer1", "_http._tcp", "example.com")


def test_record_names_for() -> None:
    assert record_names_for(PRINTER) == (
        "_http._tcp.local.",
        "Printer1._http._tcp.local.",
    )


def test_endpoint_from_service_info() -> None:
    info = make_service_info(
        addresses=["192.0.2.10", "fe80::1"],
        properties={b"ty": b"LaserJet", b"empty": b"", b"flag": None},
    )

    endpoint = endpoint_from_service_info(info)

    assert endpoint == ResolvedEndpoint(
        hostname="printer1.local",
        addresses=("192.0.2.10", "fe80::1"),
        port=631,
        txt_records={"ty": b"LaserJet", "empty": b"", "flag": b""},
    )
    assert "absent" not in endpoint.txt_records


def test_endpoint_from_service_info_requires_port() -> None:
    with pytest.raises(ValueError):
        endpoint_from_service_info(make_service_info(port=None))


def test_constructor_validates_client() -> None:
    with pytest.raises(ValueError):
        ZeroconfTransport(None)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        ZeroconfTransport(object())  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        ZeroconfTransport(RecordingClient(), ip_version="v5")


def test_browse_maps_listener_calls_to_raw_events(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    transport = ZeroconfTransport(client, zc_instance=shared_zc)
    with patch(f"{MODULE}.ServiceBrowser") as mock_browser:
        query = transport.open_browse_query("_http._tcp", None)

    mock_browser.assert_called_once_with(
        shared_zc, "_http._tcp.local.", listener=query
    )
    client.wait_for("ready")

    query.add_service(shared_zc, "_http._tcp.local.", "Printer1._http._tcp.local.")
    query.update_service(shared_zc, "_http._tcp.local.", "Printer1._http._tcp.local.")
    query.remove_service(shared_zc, "_http._tcp.local.", "Printer1._http._tcp.local.")
    query.add_service(shared_zc, "_ipp._tcp.local.", "Other._ipp._tcp.local.")

    raw = [c for c in client.calls if c[0] in ("announce", "withdraw")]
    assert [(kind, identity) for kind, identity, _ in raw] == [
        ("announce", PRINTER),
        ("announce", PRINTER),
        ("withdraw", PRINTER),
    ]
    first_token, second_token, withdraw_token = (token for _, _, token in raw)
    assert first_token != second_token
    assert withdraw_token == second_token
    transport.close()


def test_closed_browse_query_is_silent(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    transport = ZeroconfTransport(client, zc_instance=shared_zc)
    with patch(f"{MODULE}.ServiceBrowser") as mock_browser:
        query = transport.open_browse_query("_http._tcp", "local.")

    transport.close_browse_query(query)
    query.add_service(shared_zc, "_http._tcp.local.", "Printer1._http._tcp.local.")

    mock_browser.return_value.cancel.assert_called_once()
    assert not [c for c in client.calls if c[0] == "announce"]
    transport.close()


def test_browser_failure_raises_transport_error(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    transport = ZeroconfTransport(client, zc_instance=shared_zc)
    with patch(
        f"{MODULE}.ServiceBrowser",
        side_effect=OSError(errno.EACCES, "Permission denied"),
    ):
        with pytest.raises(TransportError) as excinfo:
            transport.open_browse_query("_http._tcp", None)

    assert excinfo.value.is_permission_error
    transport.close()


def test_owned_zeroconf_is_created_lazily_and_closed(
    client: RecordingClient,
) -> None:
    with patch(f"{MODULE}.Zeroconf") as mock_zc_class, patch(
        f"{MODULE}.ServiceBrowser"
    ):
        transport = ZeroconfTransport(client, ip_version="all")
        mock_zc_class.assert_not_called()

        transport.open_browse_query("_http._tcp", None)
        mock_zc_class.assert_called_once_with(
            interfaces=InterfaceChoice.All, ip_version=IPVersion.All
        )

        transport.close()
        mock_zc_class.return_value.close.assert_called_once()


def test_shared_zeroconf_is_not_closed(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    transport = ZeroconfTransport(client, zc_instance=shared_zc)
    transport.close()
    shared_zc.close.assert_not_called()


def test_named_interfaces_are_resolved_to_addresses(
    client: RecordingClient,
) -> None:
    with patch(f"{MODULE}.Zeroconf") as mock_zc_class, patch(
        f"{MODULE}.ServiceBrowser"
    ), patch(
        f"{MODULE}.get_interface_address_strings",
        return_value=["192.0.2.1"],
    ) as mock_addresses:
        transport = ZeroconfTransport(client, interfaces=["eth0"])
        transport.open_browse_query("_http._tcp", None)

    mock_addresses.assert_called_once_with(["eth0"], "v4")
    mock_zc_class.assert_called_once_with(
        interfaces=["192.0.2.1"], ip_version=IPVersion.V4Only
    )
    transport.close()


def test_resolve_success(client: RecordingClient, shared_zc: MagicMock) -> None:
    request = AsyncMock(return_value=True)
    transport = ZeroconfTransport(
        client, zc_instance=shared_zc, resolve_request_timeout=1.5
    )

    with patch(
        f"{MODULE}.AsyncServiceInfo",
        return_value=make_async_service_info(request),
    ) as mock_info_class:
        query = transport.open_resolve_query(PRINTER)
        _, identity, endpoint = client.wait_for("resolved")

    mock_info_class.assert_called_once_with(
        "_http._tcp.local.", "Printer1._http._tcp.local."
    )
    request.assert_awaited_once_with(shared_zc, 1500)
    assert identity == PRINTER
    assert endpoint.hostname == "printer1.local"
    assert endpoint.txt_records["ty"] == b"LaserJet"
    assert client.result_queries == [query]
    transport.close()


def test_resolve_without_answer_reports_timeout(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    request = AsyncMock(return_value=False)
    transport = ZeroconfTransport(client, zc_instance=shared_zc)

    with patch(
        f"{MODULE}.AsyncServiceInfo",
        return_value=make_async_service_info(request),
    ):
        query = transport.open_resolve_query(PRINTER)
        _, identity, cause = client.wait_for("failed")

    assert identity == PRINTER
    assert isinstance(cause, ResolutionTimeoutError)
    assert client.result_queries == [query]
    transport.close()


def test_resolve_exception_reports_failure(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    request = AsyncMock(side_effect=OSError("socket closed"))
    transport = ZeroconfTransport(client, zc_instance=shared_zc)

    with patch(
        f"{MODULE}.AsyncServiceInfo",
        return_value=make_async_service_info(request),
    ):
        transport.open_resolve_query(PRINTER)
        _, _, cause = client.wait_for("failed")

    assert isinstance(cause, OSError)
    transport.close()


def never_answering_request() -> Tuple[AsyncMock, threading.Event, threading.Event]:
    started = threading.Event()
    cancelled = threading.Event()

    async def wait_for_answers(zc: Any, timeout: int) -> bool:
        started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return True

    return AsyncMock(side_effect=wait_for_answers), started, cancelled


def test_closing_resolve_query_cancels_running_request(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    request, started, cancelled = never_answering_request()
    transport = ZeroconfTransport(client, zc_instance=shared_zc)

    with patch(
        f"{MODULE}.AsyncServiceInfo",
        return_value=make_async_service_info(request),
    ):
        query = transport.open_resolve_query(PRINTER)
        assert started.wait(5)

        transport.close_resolve_query(query)

        assert cancelled.wait(5)
    assert query.future.cancelled()
    assert not [c for c in client.calls if c[0] in ("resolved", "failed")]
    transport.close()


def test_closed_requests_do_not_delay_new_ones(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    stalled = [never_answering_request() for _ in range(4)]
    infos = [make_async_service_info(request) for request, _, _ in stalled]
    infos.append(make_async_service_info(AsyncMock(return_value=True)))
    transport = ZeroconfTransport(client, zc_instance=shared_zc)

    with patch(f"{MODULE}.AsyncServiceInfo", side_effect=infos):
        queries = [transport.open_resolve_query(PRINTER) for _ in range(4)]
        for _, started, _ in stalled:
            assert started.wait(5)
        for query in queries:
            transport.close_resolve_query(query)

        fresh = transport.open_resolve_query(PRINTER)
        client.wait_for("resolved", timeout=2)

    assert all(cancelled.is_set() for _, _, cancelled in stalled)
    assert client.result_queries == [fresh]
    transport.close()


def test_close_cancels_outstanding_resolves(
    client: RecordingClient, shared_zc: MagicMock
) -> None:
    request, started, cancelled = never_answering_request()
    transport = ZeroconfTransport(client, zc_instance=shared_zc)

    with patch(
        f"{MODULE}.AsyncServiceInfo",
        return_value=make_async_service_info(request),
    ):
        query = transport.open_resolve_query(PRINTER)
        assert started.wait(5)
        transport.close()

        assert cancelled.wait(5)
    assert query.closed


def test_resolve_without_event_loop_raises(client: RecordingClient) -> None:
    zc = MagicMock(spec=Zeroconf, name="SharedZeroconf")
    zc.loop = None
    transport = ZeroconfTransport(client, zc_instance=zc)

    with pytest.raises(TransportError):
        transport.open_resolve_query(PRINTER)
    transport.close()


def test_from_config(client: RecordingClient) -> None:
    config = DiscoveryConfig(
        interfaces="default", ip_version="v6", resolve_request_timeout=2.0
    )
    with patch(f"{MODULE}.Zeroconf") as mock_zc_class, patch(
        f"{MODULE}.ServiceBrowser"
    ) as mock_browser:
        transport = ZeroconfTransport.from_config(client, config)
        transport.open_browse_query("_ipp", None)

    mock_zc_class.assert_called_once_with(
        interfaces=InterfaceChoice.Default, ip_version=IPVersion.V6Only
    )
    assert mock_browser.call_args.args[1] == "_ipp._tcp.local."
    transport.close()
