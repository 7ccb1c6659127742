"""DiscoveryTransport ABC and client interface for platform DNS-SD access."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Hashable, Optional

from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity

QueryHandle = Any


class DiscoveryTransport(ABC):
    """ABC for the platform capability that sends and receives DNS-SD traffic.

    Outbound calls open and close browse and resolve queries. Results come
    back through the `Client` interface, asynchronously and possibly from
    any thread.
    """

    class Client(ABC):
        """Interface for `DiscoveryTransport` clients.

        Notified of raw browse results, resolution outcomes and the state of
        the transport itself. Every method may be called from any thread.
        """

        @abstractmethod
        def _on_raw_announce(
            self, identity: ServiceIdentity, token: Optional[Hashable]
        ) -> None:
            """Called when a service is announced (or re-announced).

            Args:
                identity: The announced service.
                token: Opaque sequencing token labelling this announcement.
            """
            raise NotImplementedError(
                "DiscoveryTransport.Client._on_raw_announce must be implemented by subclasses."
            )

        @abstractmethod
        def _on_raw_withdraw(
            self, identity: ServiceIdentity, token: Optional[Hashable]
        ) -> None:
            """Called when a service is withdrawn from the network.

            Args:
                identity: The withdrawn service.
                token: Token of the announcement this withdrawal applies to.
            """
            raise NotImplementedError(
                "DiscoveryTransport.Client._on_raw_withdraw must be implemented by subclasses."
            )

        @abstractmethod
        def _on_transport_error(self, cause: BaseException) -> None:
            """Called when the browse query fails (interface down, EPERM...)."""
            raise NotImplementedError(
                "DiscoveryTransport.Client._on_transport_error must be implemented by subclasses."
            )

        @abstractmethod
        def _on_resolve_success(
            self,
            identity: ServiceIdentity,
            endpoint: ResolvedEndpoint,
            query: Optional[QueryHandle] = None,
        ) -> None:
            """Called when a resolve query for |identity| completes.

            Args:
                identity: The resolved service.
                endpoint: Where |identity| can be reached.
                query: The handle returned by `open_resolve_query` for this
                    result. A result whose query has since been closed is
                    stale and must be dropped.
            """
            raise NotImplementedError(
                "DiscoveryTransport.Client._on_resolve_success must be implemented by subclasses."
            )

        @abstractmethod
        def _on_resolve_failure(
            self,
            identity: ServiceIdentity,
            cause: BaseException,
            query: Optional[QueryHandle] = None,
        ) -> None:
            """Called when a resolve query for |identity| fails.

            |query| is as for `_on_resolve_success`.
            """
            raise NotImplementedError(
                "DiscoveryTransport.Client._on_resolve_failure must be implemented by subclasses."
            )

        def _on_transport_waiting(self, cause: BaseException) -> None:
            """Called when the browse query is stalled on a transient condition.

            Optional; the default implementation ignores it.
            """

        def _on_transport_ready(self) -> None:
            """Called when the browse query is up and receiving results.

            Optional; the default implementation ignores it.
            """

    @abstractmethod
    def open_browse_query(
        self, service_type: str, domain: Optional[str]
    ) -> QueryHandle:
        """Starts browsing for |service_type| in |domain|.

        Args:
            service_type: Bare service type, e.g. "_http._tcp".
            domain: Domain to browse, or None for the default domains.

        Returns:
            An opaque handle to pass to `close_browse_query`.

        Raises:
            TransportError: If the query could not be opened.
        """
        raise NotImplementedError()

    @abstractmethod
    def close_browse_query(self, handle: QueryHandle) -> None:
        """Stops a browse query. No notifications follow for it."""
        raise NotImplementedError()

    @abstractmethod
    def open_resolve_query(self, identity: ServiceIdentity) -> QueryHandle:
        """Starts resolving |identity| into a `ResolvedEndpoint`.

        Raises:
            TransportError: If the query could not be opened.
        """
        raise NotImplementedError()

    @abstractmethod
    def close_resolve_query(self, handle: QueryHandle) -> None:
        """Stops a resolve query. No outcome is reported for it afterwards."""
        raise NotImplementedError()

    def close(self) -> None:
        """Releases any resources held by the transport."""


TransportFactory = Callable[[DiscoveryTransport.Client], DiscoveryTransport]
