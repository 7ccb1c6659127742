"""Manages concurrent resolutions of discovered services.

At most one platform resolve query is open per `ServiceIdentity`. Callers
asking for a service that is already being resolved get a new
`ResolutionHandle` attached to the existing operation, so re-triggered
resolves (e.g. from a re-rendering UI) never open duplicate queries.
Results are not cached: once an operation delivers its outcome it is
retired, and the next request opens a fresh query.
"""

import dataclasses
import logging
import threading
from enum import Enum
from typing import Dict, List, Optional

from lanseek.discovery.discovery_error import (
    DiscoveryCancelledError,
    DiscoveryError,
    ResolutionFailedError,
    ResolutionTimeoutError,
    UnknownServiceError,
)
from lanseek.discovery.discovery_transport import DiscoveryTransport, QueryHandle
from lanseek.discovery.endpoint_registry import EndpointRegistry
from lanseek.discovery.resolution_handle import ResolutionHandle
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity


class ResolutionState(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclasses.dataclass(eq=False)
class ResolutionOperation:
    """One open platform resolve query and the handles observing it."""

    identity: ServiceIdentity
    query: Optional[QueryHandle]
    state: ResolutionState = ResolutionState.PENDING
    handles: List[ResolutionHandle] = dataclasses.field(default_factory=list)
    timer: Optional[threading.Timer] = None


class ResolutionManager:
    """Owns every in-flight `ResolutionOperation` of a discovery facade.

    All methods acquire |lock|, which is shared with the browse session so
    that registry lookups and operation-map updates never interleave.
    Handle completions run while the lock is held.
    """

    def __init__(
        self,
        transport: DiscoveryTransport,
        registry: EndpointRegistry,
        *,
        lock: Optional[threading.RLock] = None,
        resolve_timeout: Optional[float] = None,
    ) -> None:
        if transport is None:
            raise ValueError("transport cannot be None for ResolutionManager.")
        if registry is None:
            raise ValueError("registry cannot be None for ResolutionManager.")
        if resolve_timeout is not None and resolve_timeout <= 0:
            raise ValueError(
                f"resolve_timeout must be positive or None, got {resolve_timeout}."
            )

        self.__transport = transport
        self.__registry = registry
        self.__lock = lock if lock is not None else threading.RLock()
        self.__resolve_timeout = resolve_timeout
        self.__operations: Dict[ServiceIdentity, ResolutionOperation] = {}

    def resolve(self, identity: ServiceIdentity) -> ResolutionHandle:
        """Requests resolution of |identity|. Never blocks on the network.

        Args:
            identity: A service currently known to the endpoint registry.

        Returns:
            A handle that receives the `ResolvedEndpoint`, or a
            `ResolutionFailedError`, `ResolutionTimeoutError` or
            `DiscoveryCancelledError`.

        Raises:
            UnknownServiceError: If |identity| was never reported or has
                been removed.
        """
        with self.__lock:
            if not self.__registry.contains(identity):
                raise UnknownServiceError(
                    f"Cannot resolve unknown service {identity}."
                )

            handle = ResolutionHandle(identity, self.cancel)

            operation = self.__operations.get(identity)
            if operation is not None:
                logging.debug(
                    "Joining pending resolution of %s (%d observers).",
                    identity,
                    len(operation.handles),
                )
                operation.handles.append(handle)
                return handle

            try:
                query = self.__transport.open_resolve_query(identity)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logging.warning(
                    "Failed to open resolve query for %s: %s", identity, e
                )
                handle._set_error(  # pylint: disable=protected-access
                    ResolutionFailedError(f"Resolution failed: {e}", e)
                )
                return handle

            operation = ResolutionOperation(identity, query, handles=[handle])
            self.__operations[identity] = operation
            self.__arm_timer(operation)
            logging.info("Resolving %s.", identity)
            return handle

    def cancel(self, handle: ResolutionHandle) -> None:
        """Cancels |handle|.

        If |handle| is the only observer of its operation, the platform query
        is closed and the operation becomes CANCELLED. Otherwise the operation
        keeps running for the other handles and only |handle| is detached.
        In both cases |handle| receives `DiscoveryCancelledError`. Cancelling
        a completed handle does nothing.
        """
        with self.__lock:
            if handle.done():
                return

            operation = self.__operations.get(handle.identity)
            if operation is not None and handle in operation.handles:
                if len(operation.handles) == 1:
                    self.__retire(operation, ResolutionState.CANCELLED)
                else:
                    operation.handles.remove(handle)
                    logging.debug(
                        "Detached one observer of %s; %d remain.",
                        handle.identity,
                        len(operation.handles),
                    )

            handle._set_error(  # pylint: disable=protected-access
                DiscoveryCancelledError(
                    f"Resolution of {handle.identity} was cancelled."
                )
            )

    def cancel_all(self) -> None:
        """Cancels every operation, closing all platform queries."""
        with self.__lock:
            operations = list(self.__operations.values())
            for operation in operations:
                self.__retire(operation, ResolutionState.CANCELLED)
                self.__deliver_error(
                    operation,
                    DiscoveryCancelledError(
                        f"Resolution of {operation.identity} was cancelled "
                        "because the browse session stopped."
                    ),
                )
            if operations:
                logging.info(
                    "Cancelled %d outstanding resolution(s).", len(operations)
                )

    def is_pending(self, identity: ServiceIdentity) -> bool:
        with self.__lock:
            return identity in self.__operations

    @property
    def pending_count(self) -> int:
        with self.__lock:
            return len(self.__operations)

    # --- Inbound notifications, routed here by the owning facade ---

    def on_resolve_success(
        self,
        identity: ServiceIdentity,
        endpoint: ResolvedEndpoint,
        query: Optional[QueryHandle] = None,
    ) -> None:
        with self.__lock:
            operation = self.__pending_operation(identity, query)
            if operation is None:
                logging.debug(
                    "Dropping resolution result for %s; no pending operation.",
                    identity,
                )
                return

            self.__retire(operation, ResolutionState.RESOLVED)
            logging.info(
                "Resolved %s to %s:%d (%s).",
                identity,
                endpoint.hostname,
                endpoint.port,
                ", ".join(endpoint.addresses),
            )
            for handle in operation.handles:
                handle._set_result(endpoint)  # pylint: disable=protected-access

    def on_resolve_failure(
        self,
        identity: ServiceIdentity,
        cause: BaseException,
        query: Optional[QueryHandle] = None,
    ) -> None:
        with self.__lock:
            operation = self.__pending_operation(identity, query)
            if operation is None:
                logging.debug(
                    "Dropping resolution failure for %s; no pending operation.",
                    identity,
                )
                return

            self.__retire(operation, ResolutionState.FAILED)
            logging.warning("Resolution of %s failed: %s", identity, cause)
            if isinstance(cause, ResolutionTimeoutError):
                error: DiscoveryError = cause
            else:
                error = ResolutionFailedError(
                    f"Resolution failed: {cause}", cause
                )
            self.__deliver_error(operation, error)

    def __pending_operation(
        self, identity: ServiceIdentity, query: Optional[QueryHandle]
    ) -> Optional[ResolutionOperation]:
        operation = self.__operations.get(identity)
        if operation is None:
            return None
        # A result from a query closed before this operation opened its own.
        if query is not None and operation.query is not query:
            logging.debug("Result for %s is from a closed query.", identity)
            return None
        return operation

    def __on_timeout(self, operation: ResolutionOperation) -> None:
        with self.__lock:
            # The operation may have retired while the timer was firing.
            if self.__operations.get(operation.identity) is not operation:
                return

            self.__retire(operation, ResolutionState.FAILED)
            logging.warning(
                "Resolution of %s timed out after %.1fs.",
                operation.identity,
                self.__resolve_timeout,
            )
            self.__deliver_error(
                operation,
                ResolutionTimeoutError(
                    f"Resolution of {operation.identity} timed out after "
                    f"{self.__resolve_timeout}s."
                ),
            )

    def __arm_timer(self, operation: ResolutionOperation) -> None:
        if self.__resolve_timeout is None:
            return
        timer = threading.Timer(
            self.__resolve_timeout, self.__on_timeout, args=(operation,)
        )
        timer.daemon = True
        operation.timer = timer
        timer.start()

    def __retire(
        self, operation: ResolutionOperation, state: ResolutionState
    ) -> None:
        """Removes |operation| from the map and closes its platform query.

        The query is closed in every terminal state, including RESOLVED.
        """
        operation.state = state
        self.__operations.pop(operation.identity, None)

        timer, operation.timer = operation.timer, None
        if timer is not None:
            timer.cancel()

        query, operation.query = operation.query, None
        if query is not None:
            try:
                self.__transport.close_resolve_query(query)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logging.error(
                    "Error closing resolve query for %s: %s",
                    operation.identity,
                    e,
                    exc_info=True,
                )

    @staticmethod
    def __deliver_error(
        operation: ResolutionOperation, error: DiscoveryError
    ) -> None:
        for handle in operation.handles:
            handle._set_error(error)  # pylint: disable=protected-access
