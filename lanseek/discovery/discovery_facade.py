"""Public entry point for browsing and resolving local network services."""

import logging
import threading
from types import TracebackType
from typing import Callable, Hashable, List, Optional, Type

from lanseek.discovery.browse_session import (
    BrowseSession,
    BrowseState,
    ErrorCallback,
    PermissionState,
    ServiceCallback,
)
from lanseek.discovery.discovery_config import DiscoveryConfig
from lanseek.discovery.discovery_error import (
    SessionNotActiveError,
    TransportError,
)
from lanseek.discovery.discovery_transport import (
    DiscoveryTransport,
    QueryHandle,
    TransportFactory,
)
from lanseek.discovery.endpoint_registry import EndpointRegistry
from lanseek.discovery.mdns.zeroconf_transport import ZeroconfTransport
from lanseek.discovery.resolution_handle import ResolutionHandle
from lanseek.discovery.resolution_manager import ResolutionManager
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity


class DiscoveryFacade(DiscoveryTransport.Client):
    """Browses for one service type and resolves the services it finds.

    Composes a `BrowseSession` and a `ResolutionManager` over one
    `DiscoveryTransport`, acting as that transport's client. Every public
    call and every transport notification goes through a single reentrant
    lock, so for any one service FOUND and REMOVED are reported in the order
    the platform produced them. Callbacks run while that lock is held and
    may call back into the facade, but must not block on other threads
    that use it.

    Example:
        with DiscoveryFacade() as discovery:
            discovery.start("_http._tcp", None, on_found, on_removed, on_error)
            ...
            endpoint = discovery.resolve(identity).result(timeout=5)
    """

    def __init__(
        self,
        *,
        transport_factory: Optional[TransportFactory] = None,
        config: Optional[DiscoveryConfig] = None,
        on_permission_state_changed: Optional[
            Callable[[PermissionState], None]
        ] = None,
    ) -> None:
        """Initializes the DiscoveryFacade.

        Args:
            transport_factory: Creates the transport, given this facade as
                its client. Defaults to a `ZeroconfTransport` built from
                |config|.
            config: Timeouts and transport settings. Defaults to
                `DiscoveryConfig()`.
            on_permission_state_changed: Notified when the observed local
                network permission changes.
        """
        self.__config = config if config is not None else DiscoveryConfig()
        if transport_factory is None:
            transport_factory = self.__default_transport_factory

        self.__lock = threading.RLock()
        self.__registry = EndpointRegistry()
        self.__transport = transport_factory(self)
        if self.__transport is None:
            raise ValueError("transport_factory returned None.")

        self.__session = BrowseSession(
            self.__transport,
            self.__registry,
            lock=self.__lock,
            waiting_state_timeout=self.__config.waiting_state_timeout,
            on_permission_state_changed=on_permission_state_changed,
        )
        self.__resolutions = ResolutionManager(
            self.__transport,
            self.__registry,
            lock=self.__lock,
            resolve_timeout=self.__config.resolve_timeout,
        )
        self.__on_error: Optional[ErrorCallback] = None

    def __default_transport_factory(
        self, client: DiscoveryTransport.Client
    ) -> DiscoveryTransport:
        return ZeroconfTransport.from_config(client, self.__config)

    @property
    def config(self) -> DiscoveryConfig:
        return self.__config

    @property
    def state(self) -> BrowseState:
        return self.__session.state

    @property
    def is_active(self) -> bool:
        return self.__session.is_active

    @property
    def permission_state(self) -> PermissionState:
        return self.__session.permission_state

    @property
    def services(self) -> List[ServiceIdentity]:
        """Snapshot of the services currently known to the session."""
        with self.__lock:
            return list(self.__registry)

    def start(
        self,
        service_type: str,
        domain: Optional[str],
        on_found: ServiceCallback,
        on_removed: ServiceCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        """Starts browsing for |service_type|. Returns without blocking.

        Args:
            service_type: Service type, e.g. "_http._tcp".
            domain: Domain to browse, or None for the default domains.
            on_found: Called with each newly found `ServiceIdentity`.
            on_removed: Called with each removed `ServiceIdentity`.
            on_error: Called with the `TransportError` that stopped the
                session. Outstanding resolutions are cancelled first.

        Raises:
            AlreadyActiveError: If a browse session is already active.
            TransportError: If the platform query could not be opened.
        """
        with self.__lock:
            self.__session.start(
                service_type,
                domain,
                on_found,
                on_removed,
                self.__on_session_error,
            )
            self.__on_error = on_error

    def stop(self) -> None:
        """Stops browsing. Idempotent.

        Every outstanding resolution handle receives
        `DiscoveryCancelledError` and every platform query is closed before
        the session's known services are cleared.
        """
        with self.__lock:
            self.__resolutions.cancel_all()
            self.__session.stop()
            self.__on_error = None

    def resolve(self, identity: ServiceIdentity) -> ResolutionHandle:
        """Resolves a service reported by this session. Returns immediately.

        Raises:
            SessionNotActiveError: If the browse session is not active.
            UnknownServiceError: If |identity| is not currently known.
        """
        with self.__lock:
            if not self.__session.is_active:
                raise SessionNotActiveError(
                    "resolve() requires an active browse session."
                )
            return self.__resolutions.resolve(identity)

    def cancel(self, handle: ResolutionHandle) -> None:
        """Cancels a resolution handle returned by `resolve`."""
        self.__resolutions.cancel(handle)

    def close(self) -> None:
        """Stops the session and releases the transport."""
        self.stop()
        self.__transport.close()
        logging.info("DiscoveryFacade closed.")

    def __enter__(self) -> "DiscoveryFacade":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def __on_session_error(self, error: TransportError) -> None:
        # The session has already stopped itself; resolutions go with it.
        self.__resolutions.cancel_all()
        on_error, self.__on_error = self.__on_error, None
        if on_error is None:
            logging.warning("Unhandled discovery transport error: %s", error)
            return
        on_error(error)

    # --- DiscoveryTransport.Client ---

    def _on_raw_announce(
        self, identity: ServiceIdentity, token: Optional[Hashable]
    ) -> None:
        with self.__lock:
            self.__session.on_raw_announce(identity, token)

    def _on_raw_withdraw(
        self, identity: ServiceIdentity, token: Optional[Hashable]
    ) -> None:
        with self.__lock:
            self.__session.on_raw_withdraw(identity, token)

    def _on_transport_error(self, cause: BaseException) -> None:
        with self.__lock:
            self.__session.on_transport_error(cause)

    def _on_transport_waiting(self, cause: BaseException) -> None:
        with self.__lock:
            self.__session.on_transport_waiting(cause)

    def _on_transport_ready(self) -> None:
        with self.__lock:
            self.__session.on_transport_ready()

    def _on_resolve_success(
        self,
        identity: ServiceIdentity,
        endpoint: ResolvedEndpoint,
        query: Optional[QueryHandle] = None,
    ) -> None:
        with self.__lock:
            self.__resolutions.on_resolve_success(identity, endpoint, query)

    def _on_resolve_failure(
        self,
        identity: ServiceIdentity,
        cause: BaseException,
        query: Optional[QueryHandle] = None,
    ) -> None:
        with self.__lock:
            self.__resolutions.on_resolve_failure(identity, cause, query)
