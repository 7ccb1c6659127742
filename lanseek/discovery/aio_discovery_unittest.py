import asyncio
import threading
from typing import List, Optional

import pytest

from lanseek.discovery.aio_discovery import (
    ServiceDiscovered,
    ServiceRemoved,
    ServiceResolved,
    discover_services,
)
from lanseek.discovery.discovery_config import DiscoveryConfig
from lanseek.discovery.discovery_error import TransportError
from lanseek.discovery.discovery_transport import DiscoveryTransport
from lanseek.test.discovery_fixtures import (
    PRINTER,
    PRINTER_ENDPOINT,
    FakeTransport,
)

NO_TIMEOUTS = DiscoveryConfig(resolve_timeout=None, waiting_state_timeout=None)


class TransportRecorder:
    """Transport factory that remembers the transport it built."""

    __test__ = False

    def __init__(self, fail_browse: Optional[BaseException] = None) -> None:
        self.transports: List[FakeTransport] = []
        self.created = threading.Event()
        self.__fail_browse = fail_browse

    def __call__(self, client: DiscoveryTransport.Client) -> FakeTransport:
        self.transports.append(FakeTransport(client))
        self.transports[-1].fail_next_browse = self.__fail_browse
        self.created.set()
        return self.transports[-1]

    @property
    def transport(self) -> FakeTransport:
        return self.transports[0]


def in_thread(func, *args) -> None:
    thread = threading.Thread(target=func, args=args)
    thread.start()
    thread.join()


@pytest.mark.asyncio
async def test_yields_found_resolved_and_removed() -> None:
    recorder = TransportRecorder()
    events = discover_services(
        "_http._tcp", transport_factory=recorder, config=NO_TIMEOUTS
    )
    try:
        next_event = asyncio.ensure_future(events.__anext__())
        await asyncio.sleep(0)
        assert recorder.created.is_set()
        in_thread(recorder.transport.announce, PRINTER, 1)

        discovered = await asyncio.wait_for(next_event, timeout=5)
        assert isinstance(discovered, ServiceDiscovered)
        assert discovered.identity == PRINTER

        handle = discovered.resolve()
        in_thread(recorder.transport.resolve_ok, PRINTER, PRINTER_ENDPOINT)
        assert await asyncio.wait_for(handle, timeout=5) == PRINTER_ENDPOINT

        resolved = await asyncio.wait_for(events.__anext__(), timeout=5)
        assert isinstance(resolved, ServiceResolved)
        assert resolved.endpoint == PRINTER_ENDPOINT

        in_thread(recorder.transport.withdraw, PRINTER, 1)
        removed = await asyncio.wait_for(events.__anext__(), timeout=5)
        assert removed == ServiceRemoved(PRINTER)
    finally:
        await events.aclose()

    assert recorder.transport.is_closed
    assert recorder.transport.browse_queries[0].closed


@pytest.mark.asyncio
async def test_closing_iterator_cancels_pending_resolutions() -> None:
    recorder = TransportRecorder()
    events = discover_services(
        "_http._tcp", transport_factory=recorder, config=NO_TIMEOUTS
    )
    next_event = asyncio.ensure_future(events.__anext__())
    await asyncio.sleep(0)
    recorder.transport.announce(PRINTER, 1)
    discovered = await asyncio.wait_for(next_event, timeout=5)

    discovered.resolve()
    await events.aclose()

    assert recorder.transport.resolve_queries[0].closed


@pytest.mark.asyncio
async def test_transport_error_is_raised_from_iterator() -> None:
    recorder = TransportRecorder()
    events = discover_services(
        "_http._tcp", transport_factory=recorder, config=NO_TIMEOUTS
    )
    next_event = asyncio.ensure_future(events.__anext__())
    await asyncio.sleep(0)

    in_thread(
        recorder.transport.client._on_transport_error, OSError("interface down")
    )

    with pytest.raises(TransportError):
        await asyncio.wait_for(next_event, timeout=5)
    assert recorder.transport.is_closed


@pytest.mark.asyncio
async def test_browse_start_failure_closes_transport() -> None:
    recorder = TransportRecorder(fail_browse=OSError("socket in use"))
    events = discover_services(
        "_http._tcp", transport_factory=recorder, config=NO_TIMEOUTS
    )

    with pytest.raises(TransportError):
        await events.__anext__()
    assert recorder.transport.is_closed
    assert not recorder.transport.browse_queries


@pytest.mark.asyncio
async def test_invalid_service_type_closes_transport() -> None:
    recorder = TransportRecorder()
    events = discover_services(
        "http", transport_factory=recorder, config=NO_TIMEOUTS
    )

    with pytest.raises(ValueError):
        await events.__anext__()
    assert recorder.transport.is_closed
