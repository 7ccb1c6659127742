import asyncio
import concurrent.futures
import threading
import time
from unittest.mock import MagicMock

import pytest

from lanseek.discovery.discovery_error import (
    DiscoveryCancelledError,
    ResolutionFailedError,
    ResolutionTimeoutError,
    UnknownServiceError,
)
from lanseek.discovery.endpoint_registry import (
    EndpointRegistry,
    RawEvent,
    RawEventKind,
)
from lanseek.discovery.resolution_manager import ResolutionManager
from lanseek.discovery.service_identity import ServiceIdentity
from lanseek.test.discovery_fixtures import (
    PRINTER,
    PRINTER_ENDPOINT,
    SCANNER,
    FakeTransport,
)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport(MagicMock(name="UnusedClient"))


@pytest.fixture
def registry() -> EndpointRegistry:
    registry = EndpointRegistry()
    registry.apply(RawEvent(RawEventKind.ANNOUNCED, PRINTER, 1))
    registry.apply(RawEvent(RawEventKind.ANNOUNCED, SCANNER, 2))
    return registry


@pytest.fixture
def manager(
    transport: FakeTransport, registry: EndpointRegistry
) -> ResolutionManager:
    return ResolutionManager(transport, registry)


def test_resolve_unknown_service_raises(manager: ResolutionManager) -> None:
    unknown = ServiceIdentity("Ghost", "_http._tcp", "local")
    with pytest.raises(UnknownServiceError):
        manager.resolve(unknown)


def test_resolve_opens_query_and_delivers_result(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    handle = manager.resolve(PRINTER)

    assert not handle.done()
    assert [q.target for q in transport.resolve_queries] == [PRINTER]
    assert manager.is_pending(PRINTER)

    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)

    assert handle.result(timeout=0) == PRINTER_ENDPOINT
    assert not manager.is_pending(PRINTER)
    assert transport.resolve_queries[0].closed


def test_duplicate_resolve_joins_pending_operation(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    first = manager.resolve(PRINTER)
    second = manager.resolve(PRINTER)

    assert first is not second
    assert len(transport.resolve_queries) == 1

    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)

    assert first.result(timeout=0) == second.result(timeout=0)


def test_concurrent_resolves_open_one_query(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    barrier = threading.Barrier(8)

    def resolve_after_barrier():
        barrier.wait()
        return manager.resolve(PRINTER)

    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
        handles = list(pool.map(lambda _: resolve_after_barrier(), range(8)))

    assert len(transport.resolve_queries) == 1
    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)
    assert {h.result(timeout=0) for h in handles} == {PRINTER_ENDPOINT}


def test_results_are_not_cached(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    manager.resolve(PRINTER)
    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)

    manager.resolve(PRINTER)

    assert len(transport.resolve_queries) == 2


def test_failure_is_delivered_to_every_handle(
    manager: ResolutionManager,
) -> None:
    first = manager.resolve(PRINTER)
    second = manager.resolve(PRINTER)
    cause = OSError("host unreachable")

    manager.on_resolve_failure(PRINTER, cause)

    for handle in (first, second):
        error = handle.exception(timeout=0)
        assert isinstance(error, ResolutionFailedError)
        assert error.cause is cause
    assert not manager.is_pending(PRINTER)


def test_timeout_cause_is_delivered_as_timeout(
    manager: ResolutionManager,
) -> None:
    handle = manager.resolve(PRINTER)
    manager.on_resolve_failure(PRINTER, ResolutionTimeoutError("no answer"))
    assert isinstance(handle.exception(timeout=0), ResolutionTimeoutError)


def test_open_failure_is_delivered_through_handle(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    transport.fail_next_resolve = OSError("socket closed")

    handle = manager.resolve(PRINTER)

    assert isinstance(handle.exception(timeout=0), ResolutionFailedError)
    assert not manager.is_pending(PRINTER)


def test_cancel_sole_observer_closes_query(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    handle = manager.resolve(PRINTER)

    manager.cancel(handle)

    assert isinstance(handle.exception(timeout=0), DiscoveryCancelledError)
    assert transport.resolve_queries[0].closed
    assert not manager.is_pending(PRINTER)


def test_cancel_one_of_many_observers_detaches_only_it(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    first = manager.resolve(PRINTER)
    second = manager.resolve(PRINTER)

    first.cancel()

    assert isinstance(first.exception(timeout=0), DiscoveryCancelledError)
    assert not second.done()
    assert not transport.resolve_queries[0].closed

    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)
    assert second.result(timeout=0) == PRINTER_ENDPOINT
    assert isinstance(first.exception(timeout=0), DiscoveryCancelledError)


def test_cancel_completed_handle_is_noop(manager: ResolutionManager) -> None:
    handle = manager.resolve(PRINTER)
    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)

    manager.cancel(handle)

    assert handle.result(timeout=0) == PRINTER_ENDPOINT


def test_cancel_all_cancels_every_handle(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    printer_handle = manager.resolve(PRINTER)
    scanner_handle = manager.resolve(SCANNER)

    manager.cancel_all()

    for handle in (printer_handle, scanner_handle):
        assert isinstance(handle.exception(timeout=0), DiscoveryCancelledError)
    assert all(q.closed for q in transport.resolve_queries)
    assert manager.pending_count == 0


def test_late_result_after_retire_is_dropped(
    manager: ResolutionManager,
) -> None:
    handle = manager.resolve(PRINTER)
    manager.cancel(handle)

    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)
    manager.on_resolve_failure(PRINTER, OSError("late"))

    assert isinstance(handle.exception(timeout=0), DiscoveryCancelledError)


def test_result_from_closed_query_does_not_reach_new_operation(
    manager: ResolutionManager, transport: FakeTransport
) -> None:
    stale = manager.resolve(PRINTER)
    manager.cancel(stale)
    fresh = manager.resolve(PRINTER)
    old_query, new_query = transport.resolve_queries

    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT, old_query)
    manager.on_resolve_failure(PRINTER, OSError("late"), old_query)

    assert not fresh.done()
    assert manager.is_pending(PRINTER)

    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT, new_query)
    assert fresh.result(timeout=0) == PRINTER_ENDPOINT


def test_resolve_timeout_fails_and_closes_query(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    manager = ResolutionManager(transport, registry, resolve_timeout=0.05)
    first = manager.resolve(PRINTER)
    second = manager.resolve(PRINTER)

    for handle in (first, second):
        assert isinstance(handle.exception(timeout=5), ResolutionTimeoutError)
    assert transport.resolve_queries[0].closed
    assert not manager.is_pending(PRINTER)


def test_completed_operation_does_not_time_out(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    manager = ResolutionManager(transport, registry, resolve_timeout=0.05)
    handle = manager.resolve(PRINTER)
    manager.on_resolve_success(PRINTER, PRINTER_ENDPOINT)

    time.sleep(0.2)

    assert handle.result(timeout=0) == PRINTER_ENDPOINT
    assert len(transport.closed_resolve) == 1
    assert not manager.is_pending(PRINTER)


def test_handle_is_awaitable(manager: ResolutionManager) -> None:
    async def run() -> object:
        handle = manager.resolve(PRINTER)
        asyncio.get_running_loop().call_soon(
            manager.on_resolve_success, PRINTER, PRINTER_ENDPOINT
        )
        return await handle

    assert asyncio.run(run()) == PRINTER_ENDPOINT


def test_rejects_non_positive_timeout(
    transport: FakeTransport, registry: EndpointRegistry
) -> None:
    with pytest.raises(ValueError):
        ResolutionManager(transport, registry, resolve_timeout=0)
