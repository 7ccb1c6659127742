"""Owns the single outstanding browse query of a discovery facade."""

import logging
import threading
from enum import Enum
from typing import Callable, Hashable, Optional

from lanseek.discovery.discovery_error import (
    AlreadyActiveError,
    TransportError,
    is_permission_error,
)
from lanseek.discovery.discovery_transport import DiscoveryTransport, QueryHandle
from lanseek.discovery.endpoint_registry import (
    EndpointRegistry,
    NormalizedEventKind,
    RawEvent,
    RawEventKind,
)
from lanseek.discovery.service_identity import ServiceIdentity
from lanseek.discovery.service_type import normalize_service_type

ServiceCallback = Callable[[ServiceIdentity], None]
ErrorCallback = Callable[[TransportError], None]


class BrowseState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPED = "stopped"


class PermissionState(Enum):
    """Local network permission, as last observed from the transport."""

    UNDETERMINED = 0
    GRANTED = 1
    DENIED = 2


class BrowseSession:
    """Browses for one service type and reports normalized events.

    Raw notifications are passed through an `EndpointRegistry`, so callers
    only see one FOUND per appearance and one REMOVED per disappearance.
    A transport failure stops the session; it is never retried here.

    All methods acquire |lock|, which is shared with the other components of
    the owning facade. Callbacks run while it is held.
    """

    def __init__(
        self,
        transport: DiscoveryTransport,
        registry: EndpointRegistry,
        *,
        lock: Optional[threading.RLock] = None,
        waiting_state_timeout: Optional[float] = None,
        on_permission_state_changed: Optional[
            Callable[[PermissionState], None]
        ] = None,
    ) -> None:
        """Initializes the BrowseSession.

        Args:
            transport: Platform capability used to open the browse query.
            registry: Registry of known services, owned by this session
                while it is active.
            lock: Serialization boundary shared with sibling components.
            waiting_state_timeout: Seconds the transport may stay waiting
                before the session fails. None disables the timer.
            on_permission_state_changed: Notified when the observed local
                network permission changes.
        """
        if transport is None:
            raise ValueError("transport cannot be None for BrowseSession.")
        if registry is None:
            raise ValueError("registry cannot be None for BrowseSession.")

        self.__transport = transport
        self.__registry = registry
        self.__lock = lock if lock is not None else threading.RLock()
        self.__waiting_state_timeout = waiting_state_timeout
        self.__on_permission_state_changed = on_permission_state_changed

        self.__state = BrowseState.IDLE
        self.__permission_state = PermissionState.UNDETERMINED
        self.__query: Optional[QueryHandle] = None
        self.__waiting_timer: Optional[threading.Timer] = None

        self.__service_type: Optional[str] = None
        self.__domain: Optional[str] = None
        self.__on_found: Optional[ServiceCallback] = None
        self.__on_removed: Optional[ServiceCallback] = None
        self.__on_error: Optional[ErrorCallback] = None

    @property
    def state(self) -> BrowseState:
        return self.__state

    @property
    def is_active(self) -> bool:
        return self.__state is BrowseState.ACTIVE

    @property
    def permission_state(self) -> PermissionState:
        return self.__permission_state

    @property
    def service_type(self) -> Optional[str]:
        return self.__service_type

    @property
    def domain(self) -> Optional[str]:
        return self.__domain

    def start(
        self,
        service_type: str,
        domain: Optional[str],
        on_found: ServiceCallback,
        on_removed: ServiceCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Opens the browse query and transitions to ACTIVE.

        Args:
            service_type: Service type to browse for, e.g. "_http._tcp".
            domain: Domain to browse, or None for the default domains.
            on_found: Called with each newly found `ServiceIdentity`.
            on_removed: Called with each removed `ServiceIdentity`.
            on_error: Called with the `TransportError` that stopped the
                session.

        Raises:
            AlreadyActiveError: If the session is already active.
            TransportError: If the transport could not open the query. The
                session is left as it was and may be started again.
        """
        bare_type = normalize_service_type(service_type)
        with self.__lock:
            if self.__state is BrowseState.ACTIVE:
                raise AlreadyActiveError(
                    f"Browse session for {self.__service_type} is already active."
                )

            query = self.__transport.open_browse_query(bare_type, domain)

            self.__query = query
            self.__service_type = bare_type
            self.__domain = domain
            self.__on_found = on_found
            self.__on_removed = on_removed
            self.__on_error = on_error
            self.__registry.clear()
            self.__state = BrowseState.ACTIVE
            logging.info(
                "Browse session started for type '%s' in domain '%s'.",
                bare_type,
                domain,
            )

    def stop(self) -> None:
        """Closes the query, clears known services and becomes STOPPED.

        Idempotent; stopping a stopped or never-started session does nothing.
        """
        with self.__lock:
            if self.__state is not BrowseState.ACTIVE:
                return
            self.__shutdown()
            logging.info(
                "Browse session stopped for type '%s'.", self.__service_type
            )

    def __shutdown(self) -> None:
        self.__cancel_waiting_timer()
        query, self.__query = self.__query, None
        self.__state = BrowseState.STOPPED
        self.__registry.clear()
        if query is not None:
            try:
                self.__transport.close_browse_query(query)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logging.error(
                    "Error closing browse query for '%s': %s",
                    self.__service_type,
                    e,
                    exc_info=True,
                )

    # --- Inbound notifications, routed here by the owning facade ---

    def on_raw_announce(
        self, identity: ServiceIdentity, token: Optional[Hashable]
    ) -> None:
        self.__on_raw_event(RawEvent(RawEventKind.ANNOUNCED, identity, token))

    def on_raw_withdraw(
        self, identity: ServiceIdentity, token: Optional[Hashable]
    ) -> None:
        self.__on_raw_event(RawEvent(RawEventKind.WITHDRAWN, identity, token))

    def __on_raw_event(self, raw_event: RawEvent) -> None:
        with self.__lock:
            if self.__state is not BrowseState.ACTIVE:
                logging.debug(
                    "Dropping %s for %s; browse session is %s.",
                    raw_event.kind.value,
                    raw_event.identity,
                    self.__state.value,
                )
                return

            event = self.__registry.apply(raw_event)
            if event is None:
                return

            if event.kind is NormalizedEventKind.FOUND:
                logging.info("Service found: %s", event.identity)
                self.__invoke(self.__on_found, event.identity)
            else:
                logging.info("Service removed: %s", event.identity)
                self.__invoke(self.__on_removed, event.identity)

    def on_transport_error(self, cause: BaseException) -> None:
        with self.__lock:
            if self.__state is not BrowseState.ACTIVE:
                logging.debug(
                    "Ignoring transport error on inactive session: %s", cause
                )
                return

            if is_permission_error(cause):
                self.__set_permission_state(PermissionState.DENIED)
                error = TransportError(
                    "Network permission denied. Allow local network access "
                    "and start browsing again.",
                    cause,
                )
            elif isinstance(cause, TransportError):
                error = cause
            else:
                error = TransportError(f"Browser failed: {cause}", cause)
            self.__fail(error)

    def on_transport_waiting(self, cause: BaseException) -> None:
        with self.__lock:
            if self.__state is not BrowseState.ACTIVE:
                return

            if is_permission_error(cause):
                self.on_transport_error(cause)
                return

            self.__cancel_waiting_timer()
            if self.__waiting_state_timeout is None:
                logging.warning(
                    "Browse query for '%s' is waiting: %s",
                    self.__service_type,
                    cause,
                )
                return

            logging.warning(
                "Browse query for '%s' is waiting (%s); failing in %.1fs "
                "unless it recovers.",
                self.__service_type,
                cause,
                self.__waiting_state_timeout,
            )
            timer = threading.Timer(
                self.__waiting_state_timeout,
                self.__on_waiting_timeout,
                args=(cause,),
            )
            timer.daemon = True
            self.__waiting_timer = timer
            timer.start()

    def on_transport_ready(self) -> None:
        with self.__lock:
            if self.__state is not BrowseState.ACTIVE:
                return
            self.__cancel_waiting_timer()
            self.__set_permission_state(PermissionState.GRANTED)

    def __on_waiting_timeout(self, cause: BaseException) -> None:
        with self.__lock:
            # A timer that was cancelled or replaced may still fire.
            if self.__waiting_timer is not threading.current_thread():
                return
            self.__waiting_timer = None
            if self.__state is not BrowseState.ACTIVE:
                return
            self.__fail(
                TransportError(f"Browser waiting state timeout: {cause}", cause)
            )

    def __fail(self, error: TransportError) -> None:
        logging.error(
            "Browse session for '%s' failed: %s", self.__service_type, error
        )
        on_error = self.__on_error
        self.__shutdown()
        self.__invoke(on_error, error)

    def __cancel_waiting_timer(self) -> None:
        timer, self.__waiting_timer = self.__waiting_timer, None
        if timer is not None:
            timer.cancel()

    def __set_permission_state(self, state: PermissionState) -> None:
        if state is self.__permission_state:
            return
        self.__permission_state = state
        logging.info("Local network permission state: %s", state.name)
        self.__invoke(self.__on_permission_state_changed, state)

    @staticmethod
    def __invoke(callback: Optional[Callable[[object], None]], arg: object) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logging.error(
                "Discovery callback %r raised: %s", callback, e, exc_info=True
            )
