"""Caller-side view of an in-flight resolution."""

import asyncio
import concurrent.futures
import logging
from typing import Any, Callable, Generator, Optional

from lanseek.discovery.discovery_error import DiscoveryError
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity


class ResolutionHandle:
    """Delivers the outcome of resolving one `ServiceIdentity`.

    Several handles may observe the same underlying resolution; all of them
    receive the same outcome unless one is cancelled, in which case only
    that handle receives `DiscoveryCancelledError`.

    Handles can be waited on from any thread with `result()`, observed with
    `add_done_callback()`, or awaited from an asyncio event loop.
    """

    def __init__(
        self,
        identity: ServiceIdentity,
        canceller: Callable[["ResolutionHandle"], None],
    ) -> None:
        self.__identity = identity
        self.__canceller = canceller
        self.__future: concurrent.futures.Future[ResolvedEndpoint] = (
            concurrent.futures.Future()
        )

    @property
    def identity(self) -> ServiceIdentity:
        return self.__identity

    def done(self) -> bool:
        return self.__future.done()

    def result(self, timeout: Optional[float] = None) -> ResolvedEndpoint:
        """Blocks until resolved and returns the endpoint.

        Raises:
            DiscoveryError: The error delivered to this handle.
            concurrent.futures.TimeoutError: If |timeout| elapses first.
        """
        return self.__future.result(timeout)

    def exception(
        self, timeout: Optional[float] = None
    ) -> Optional[BaseException]:
        return self.__future.exception(timeout)

    def add_done_callback(
        self, callback: Callable[["ResolutionHandle"], Any]
    ) -> None:
        """Calls |callback| with this handle once it completes.

        Called immediately if the handle is already done.
        """
        self.__future.add_done_callback(lambda _: callback(self))

    def cancel(self) -> None:
        """Cancels this handle; see `ResolutionManager.cancel`."""
        self.__canceller(self)

    def __await__(self) -> Generator[Any, None, ResolvedEndpoint]:
        return asyncio.wrap_future(self.__future).__await__()

    def _set_result(self, endpoint: ResolvedEndpoint) -> bool:
        if self.__future.done():
            return False
        self.__future.set_result(endpoint)
        return True

    def _set_error(self, error: DiscoveryError) -> bool:
        if self.__future.done():
            logging.debug(
                "Handle for %s already done; dropping %s.",
                self.__identity,
                type(error).__name__,
            )
            return False
        self.__future.set_exception(error)
        return True

    def __repr__(self) -> str:
        return f"ResolutionHandle({self.__identity}, done={self.done()})"
