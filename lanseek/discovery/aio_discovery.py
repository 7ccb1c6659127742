"""Asyncio front end: discovery as an async iterator of events.

`discover_services` runs a `DiscoveryFacade` for as long as the iterator is
being consumed. Events produced on transport threads are handed to the
consuming event loop with `call_soon_threadsafe`.

    async for event in discover_services("_http._tcp"):
        if isinstance(event, ServiceDiscovered):
            event.resolve()
        elif isinstance(event, ServiceResolved):
            print(event.identity, event.endpoint.addresses)
"""

import asyncio
import dataclasses
import logging
from functools import partial
from typing import AsyncIterator, Callable, Optional, Union

from lanseek.discovery.discovery_config import DiscoveryConfig
from lanseek.discovery.discovery_error import (
    DiscoveryCancelledError,
    TransportError,
)
from lanseek.discovery.discovery_facade import DiscoveryFacade
from lanseek.discovery.discovery_transport import TransportFactory
from lanseek.discovery.resolution_handle import ResolutionHandle
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity

Resolver = Callable[[], ResolutionHandle]


@dataclasses.dataclass(frozen=True)
class ServiceDiscovered:
    """A service appeared. Call `resolve()` to look up its endpoint.

    The endpoint is delivered both through the returned handle and as a
    `ServiceResolved` event on the same iterator.
    """

    identity: ServiceIdentity
    resolve: Resolver = dataclasses.field(repr=False, compare=False)


@dataclasses.dataclass(frozen=True)
class ServiceRemoved:
    identity: ServiceIdentity


@dataclasses.dataclass(frozen=True)
class ServiceResolved:
    """A resolution requested on this iterator completed.

    `resolve()` requests a fresh resolution of the same service.
    """

    identity: ServiceIdentity
    endpoint: ResolvedEndpoint
    resolve: Resolver = dataclasses.field(repr=False, compare=False)


DiscoveryEvent = Union[ServiceDiscovered, ServiceRemoved, ServiceResolved]


async def discover_services(
    service_type: str,
    domain: Optional[str] = None,
    *,
    transport_factory: Optional[TransportFactory] = None,
    config: Optional[DiscoveryConfig] = None,
) -> AsyncIterator[DiscoveryEvent]:
    """Browses for |service_type| and yields discovery events.

    The browse session starts on first iteration and is stopped, with all
    pending resolutions cancelled, when the iterator is closed.

    Args:
        service_type: Service type, e.g. "_http._tcp".
        domain: Domain to browse, or None for the default domains.
        transport_factory: See `DiscoveryFacade`.
        config: See `DiscoveryFacade`.

    Raises:
        TransportError: If the browse query fails, either when starting or
            later while iterating.
    """
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Union[DiscoveryEvent, TransportError]]" = (
        asyncio.Queue()
    )

    def post(item: Union[DiscoveryEvent, TransportError]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, item)

    facade = DiscoveryFacade(transport_factory=transport_factory, config=config)

    def on_resolution_done(handle: ResolutionHandle) -> None:
        error = handle.exception()
        if error is None:
            post(
                ServiceResolved(
                    handle.identity,
                    handle.result(),
                    partial(resolve, handle.identity),
                )
            )
        elif not isinstance(error, DiscoveryCancelledError):
            logging.warning(
                "Service resolution error for %s: %s", handle.identity, error
            )

    def resolve(identity: ServiceIdentity) -> ResolutionHandle:
        handle = facade.resolve(identity)
        handle.add_done_callback(on_resolution_done)
        return handle

    try:
        facade.start(
            service_type,
            domain,
            lambda identity: post(
                ServiceDiscovered(identity, partial(resolve, identity))
            ),
            lambda identity: post(ServiceRemoved(identity)),
            post,
        )
        while True:
            item = await queue.get()
            if isinstance(item, TransportError):
                raise item
            yield item
    finally:
        facade.close()
