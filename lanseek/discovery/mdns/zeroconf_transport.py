"""DiscoveryTransport implementation built on `zeroconf`."""

import asyncio
import concurrent.futures
import itertools
import logging
import threading
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from zeroconf import (
    InterfaceChoice,
    IPVersion,
    ServiceBrowser,
    ServiceInfo,
    ServiceListener,
    Zeroconf,
)
from zeroconf.asyncio import AsyncServiceInfo

from lanseek.discovery.discovery_config import DiscoveryConfig
from lanseek.discovery.discovery_error import (
    ResolutionTimeoutError,
    TransportError,
    is_permission_error,
)
from lanseek.discovery.discovery_transport import DiscoveryTransport
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity
from lanseek.discovery.service_type import (
    DEFAULT_DOMAIN,
    browse_name,
    normalize_domain,
    split_service_type,
)
from lanseek.util.ip import get_interface_address_strings

_IP_VERSIONS = {
    "v4": IPVersion.V4Only,
    "v6": IPVersion.V6Only,
    "all": IPVersion.All,
}


def identity_from_record_name(type_: str, name: str) -> Optional[ServiceIdentity]:
    """Splits an mDNS record name into a `ServiceIdentity`.

    Args:
        type_: Fully-qualified type, e.g. "_http._tcp.local.".
        name: Fully-qualified instance name, e.g. "Printer1._http._tcp.local.".

    Returns:
        The identity, or None if |name| is not an instance of |type_|.
    """
    suffix = f".{type_}"
    if not name.endswith(suffix) or len(name) == len(suffix):
        return None
    bare_type, domain = split_service_type(type_)
    return ServiceIdentity(
        name[: -len(suffix)], bare_type, (domain or DEFAULT_DOMAIN).rstrip(".")
    )


def record_names_for(identity: ServiceIdentity) -> Tuple[str, str]:
    """Returns the (type, instance name) zeroconf uses for |identity|."""
    type_ = f"{identity.type}.{normalize_domain(identity.domain)}"
    return type_, f"{identity.name}.{type_}"


def endpoint_from_service_info(info: ServiceInfo) -> ResolvedEndpoint:
    """Converts a resolved zeroconf `ServiceInfo` into a `ResolvedEndpoint`.

    Raises:
        ValueError: If |info| carries no port.
    """
    if info.port is None:
        raise ValueError(f"No port for service '{info.name}'.")

    txt_records: Dict[str, bytes] = {}
    for key, value in (info.properties or {}).items():
        key_str = key.decode("utf-8", errors="replace") if isinstance(key, bytes) else str(key)
        # Boolean attributes ("key" without "=") carry no value.
        txt_records[key_str] = value if value is not None else b""

    return ResolvedEndpoint(
        hostname=(info.server or "").rstrip("."),
        addresses=tuple(info.parsed_addresses()),
        port=info.port,
        txt_records=txt_records,
    )


class _BrowseQuery(ServiceListener):
    """One running `ServiceBrowser` and the listener it reports to."""

    def __init__(self, transport: "ZeroconfTransport", type_: str) -> None:
        super().__init__()
        self.type_ = type_
        self.browser: Optional[ServiceBrowser] = None
        self.closed = False
        self.__transport = transport

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        logging.debug("add_service called: type='%s', name='%s'.", type_, name)
        self.__transport._announce(self, type_, name)  # pylint: disable=protected-access

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        logging.debug("update_service called: type='%s', name='%s'.", type_, name)
        self.__transport._announce(self, type_, name)  # pylint: disable=protected-access

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        logging.debug("remove_service called: type='%s', name='%s'.", type_, name)
        self.__transport._withdraw(self, type_, name)  # pylint: disable=protected-access


class _ResolveQuery:
    def __init__(self, identity: ServiceIdentity) -> None:
        self.identity = identity
        self.type_, self.name = record_names_for(identity)
        self.closed = False
        self.future: Optional[
            concurrent.futures.Future[Optional[ResolvedEndpoint]]
        ] = None


class ZeroconfTransport(DiscoveryTransport):
    """Browses and resolves DNS-SD services over mDNS with `zeroconf`.

    Browse results arrive on zeroconf's own thread. Resolutions run as
    `AsyncServiceInfo` requests on zeroconf's event loop, so closing a
    resolve query cancels its request outright; their outcomes are handed to
    the client from a single notifier thread. Each announcement is labelled
    with a per-identity sequencing token and each withdrawal carries the
    token of the last announcement seen for that identity.
    """

    def __init__(
        self,
        client: DiscoveryTransport.Client,
        *,
        zc_instance: Optional[Zeroconf] = None,
        interfaces: Union[str, Sequence[str]] = "all",
        ip_version: str = "v4",
        resolve_request_timeout: float = 3.0,
        default_domain: str = DEFAULT_DOMAIN,
    ) -> None:
        """Initializes the ZeroconfTransport.

        Args:
            client: Receives browse and resolve notifications.
            zc_instance: Shared `Zeroconf` to use. It is not closed by this
                transport. If None, one is created on first use and closed
                by `close()`.
            interfaces: "all", "default" or a list of interface names.
            ip_version: "v4", "v6" or "all".
            resolve_request_timeout: Seconds each `AsyncServiceInfo` request
                waits for answers.
            default_domain: Domain browsed when none is given.

        Raises:
            ValueError: If args invalid.
            TypeError: If |client| is not a `DiscoveryTransport.Client`.
        """
        if client is None:
            raise ValueError("Client cannot be None for ZeroconfTransport.")
        if not isinstance(client, DiscoveryTransport.Client):
            raise TypeError(
                f"Client must be DiscoveryTransport.Client, got {type(client).__name__}."
            )
        if ip_version not in _IP_VERSIONS:
            raise ValueError(f"Unknown ip_version '{ip_version}'.")
        if resolve_request_timeout <= 0:
            raise ValueError("resolve_request_timeout must be positive.")

        self.__client = client
        self.__interfaces = interfaces
        self.__ip_version = ip_version
        self.__request_timeout_ms = int(resolve_request_timeout * 1000)
        self.__default_domain = default_domain

        self.__lock = threading.Lock()
        self.__mdns: Optional[Zeroconf] = zc_instance
        self.__is_shared_zc = zc_instance is not None
        self.__notifier = concurrent.futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="lanseek-notify",
        )
        self.__browse_queries: List[_BrowseQuery] = []
        self.__resolve_queries: Set[_ResolveQuery] = set()
        self.__tokens = itertools.count()
        self.__last_tokens: Dict[ServiceIdentity, int] = {}

    @classmethod
    def from_config(
        cls, client: DiscoveryTransport.Client, config: DiscoveryConfig
    ) -> "ZeroconfTransport":
        return cls(
            client,
            interfaces=config.interfaces,
            ip_version=config.ip_version,
            resolve_request_timeout=config.resolve_request_timeout,
            default_domain=config.default_domain,
        )

    def __get_zeroconf(self) -> Zeroconf:
        with self.__lock:
            if self.__mdns is None:
                self.__mdns = Zeroconf(
                    interfaces=self.__interface_choice(),
                    ip_version=_IP_VERSIONS[self.__ip_version],
                )
                logging.info(
                    "Created Zeroconf instance (interfaces=%s, ip_version=%s).",
                    self.__interfaces,
                    self.__ip_version,
                )
            return self.__mdns

    def __interface_choice(self) -> Any:
        if self.__interfaces == "all":
            return InterfaceChoice.All
        if self.__interfaces == "default":
            return InterfaceChoice.Default
        addresses = get_interface_address_strings(
            self.__interfaces, self.__ip_version
        )
        if not addresses:
            raise OSError(
                f"No {self.__ip_version} addresses on interfaces {list(self.__interfaces)}."
            )
        return addresses

    # --- Browse ---

    def open_browse_query(
        self, service_type: str, domain: Optional[str]
    ) -> _BrowseQuery:
        type_ = browse_name(service_type, domain or self.__default_domain)
        query = _BrowseQuery(self, type_)
        try:
            query.browser = ServiceBrowser(
                self.__get_zeroconf(), type_, listener=query
            )
        except Exception as e:
            logging.error(
                "Failed to start ServiceBrowser for '%s': %s", type_, e
            )
            if is_permission_error(e):
                raise TransportError(
                    "Network permission denied. Please allow local network access.",
                    e,
                ) from e
            raise TransportError(f"Browser failed: {e}", e) from e

        with self.__lock:
            self.__browse_queries.append(query)
        logging.info("Started ServiceBrowser for '%s'.", type_)
        self.__notifier.submit(self.__report_ready, query)
        return query

    def __report_ready(self, query: _BrowseQuery) -> None:
        if not query.closed:
            self.__client._on_transport_ready()  # pylint: disable=protected-access

    def close_browse_query(self, handle: _BrowseQuery) -> None:
        handle.closed = True
        with self.__lock:
            if handle in self.__browse_queries:
                self.__browse_queries.remove(handle)
        if handle.browser is not None:
            logging.info("Cancelling ServiceBrowser for '%s'.", handle.type_)
            handle.browser.cancel()
            handle.browser = None

    def _announce(self, query: _BrowseQuery, type_: str, name: str) -> None:
        identity = self.__identity_for(query, type_, name)
        if identity is None:
            return
        with self.__lock:
            token = next(self.__tokens)
            self.__last_tokens[identity] = token
        self.__client._on_raw_announce(identity, token)  # pylint: disable=protected-access

    def _withdraw(self, query: _BrowseQuery, type_: str, name: str) -> None:
        identity = self.__identity_for(query, type_, name)
        if identity is None:
            return
        with self.__lock:
            token = self.__last_tokens.pop(identity, None)
        self.__client._on_raw_withdraw(identity, token)  # pylint: disable=protected-access

    @staticmethod
    def __identity_for(
        query: _BrowseQuery, type_: str, name: str
    ) -> Optional[ServiceIdentity]:
        if query.closed:
            return None
        if type_.lower() != query.type_.lower():
            logging.debug(
                "Ignoring '%s' of type '%s'. Expected '%s'.",
                name,
                type_,
                query.type_,
            )
            return None
        identity = identity_from_record_name(type_, name)
        if identity is None:
            logging.warning(
                "Record name '%s' does not belong to type '%s'.", name, type_
            )
        return identity

    # --- Resolve ---

    def open_resolve_query(self, identity: ServiceIdentity) -> _ResolveQuery:
        zc = self.__get_zeroconf()
        if zc.loop is None:
            raise TransportError("Zeroconf event loop is not running.")

        query = _ResolveQuery(identity)
        with self.__lock:
            self.__resolve_queries.add(query)
        query.future = asyncio.run_coroutine_threadsafe(
            self.__request(zc, query), zc.loop
        )
        query.future.add_done_callback(partial(self.__on_request_done, query))
        return query

    def close_resolve_query(self, handle: _ResolveQuery) -> None:
        handle.closed = True
        with self.__lock:
            self.__resolve_queries.discard(handle)
        if handle.future is not None and handle.future.cancel():
            logging.debug("Cancelled resolve request for '%s'.", handle.name)

    async def __request(
        self, zc: Zeroconf, query: _ResolveQuery
    ) -> Optional[ResolvedEndpoint]:
        info = AsyncServiceInfo(query.type_, query.name)
        if not await info.async_request(zc, self.__request_timeout_ms):
            return None
        return endpoint_from_service_info(info)

    def __on_request_done(
        self,
        query: _ResolveQuery,
        future: "concurrent.futures.Future[Optional[ResolvedEndpoint]]",
    ) -> None:
        # Runs on the zeroconf event loop; client code runs on the notifier.
        if future.cancelled() or query.closed:
            return
        try:
            self.__notifier.submit(self.__deliver, query, future)
        except RuntimeError:
            logging.debug(
                "Transport closed; dropping result for '%s'.", query.name
            )

    def __deliver(
        self,
        query: _ResolveQuery,
        future: "concurrent.futures.Future[Optional[ResolvedEndpoint]]",
    ) -> None:
        with self.__lock:
            self.__resolve_queries.discard(query)
        if query.closed:
            logging.debug("Dropping result for closed resolve of '%s'.", query.name)
            return

        identity = query.identity
        try:
            endpoint = future.result()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logging.warning("Resolving '%s' raised: %s", query.name, e)
            self.__client._on_resolve_failure(identity, e, query)  # pylint: disable=protected-access
            return

        if endpoint is None:
            self.__client._on_resolve_failure(  # pylint: disable=protected-access
                identity,
                ResolutionTimeoutError(
                    f"No answer for '{query.name}' within "
                    f"{self.__request_timeout_ms}ms."
                ),
                query,
            )
            return
        if not endpoint.addresses:
            logging.warning("No addresses for resolved service '%s'.", query.name)
        self.__client._on_resolve_success(identity, endpoint, query)  # pylint: disable=protected-access

    def close(self) -> None:
        with self.__lock:
            queries, self.__browse_queries = self.__browse_queries, []
            resolves, self.__resolve_queries = self.__resolve_queries, set()
        for query in queries:
            self.close_browse_query(query)
        for resolve in resolves:
            self.close_resolve_query(resolve)
        self.__notifier.shutdown(wait=False, cancel_futures=True)

        if not self.__is_shared_zc and self.__mdns is not None:
            logging.info("Closing owned Zeroconf instance.")
            try:
                self.__mdns.close()
            except Exception as e:  # pylint: disable=broad-exception-caught
                logging.error(
                    "Error during owned Zeroconf.close(): %s", e, exc_info=True
                )
            self.__mdns = None
        elif self.__is_shared_zc:
            logging.info("Not closing shared Zeroconf instance.")
