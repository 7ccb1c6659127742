"""Fake transport and recording callbacks shared by discovery tests."""

import threading
from typing import Any, Hashable, List, Optional, Tuple

from lanseek.discovery.discovery_error import TransportError
from lanseek.discovery.discovery_transport import DiscoveryTransport
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity


class FakeQuery:
    __test__ = False

    def __init__(self, kind: str, target: Any) -> None:
        self.kind = kind
        self.target = target
        self.closed = False

    def __repr__(self) -> str:
        return f"FakeQuery({self.kind}, {self.target}, closed={self.closed})"


class FakeTransport(DiscoveryTransport):
    """Records every outbound call and lets tests drive inbound ones."""

    __test__ = False

    def __init__(self, client: DiscoveryTransport.Client) -> None:
        self.client = client
        self.browse_queries: List[FakeQuery] = []
        self.resolve_queries: List[FakeQuery] = []
        self.closed_browse: List[FakeQuery] = []
        self.closed_resolve: List[FakeQuery] = []
        self.fail_next_browse: Optional[BaseException] = None
        self.fail_next_resolve: Optional[BaseException] = None
        self.is_closed = False

    def open_browse_query(
        self, service_type: str, domain: Optional[str]
    ) -> FakeQuery:
        if self.fail_next_browse is not None:
            cause, self.fail_next_browse = self.fail_next_browse, None
            raise TransportError(f"Browser failed: {cause}", cause)
        query = FakeQuery("browse", (service_type, domain))
        self.browse_queries.append(query)
        return query

    def close_browse_query(self, handle: FakeQuery) -> None:
        handle.closed = True
        self.closed_browse.append(handle)

    def open_resolve_query(self, identity: ServiceIdentity) -> FakeQuery:
        if self.fail_next_resolve is not None:
            cause, self.fail_next_resolve = self.fail_next_resolve, None
            raise TransportError(f"Resolve failed: {cause}", cause)
        query = FakeQuery("resolve", identity)
        self.resolve_queries.append(query)
        return query

    def close_resolve_query(self, handle: FakeQuery) -> None:
        handle.closed = True
        self.closed_resolve.append(handle)

    def close(self) -> None:
        self.is_closed = True

    # --- Helpers driving the client, as a platform would ---

    def announce(self, identity: ServiceIdentity, token: Hashable = None) -> None:
        self.client._on_raw_announce(identity, token)

    def withdraw(self, identity: ServiceIdentity, token: Hashable = None) -> None:
        self.client._on_raw_withdraw(identity, token)

    def resolve_ok(
        self,
        identity: ServiceIdentity,
        endpoint: ResolvedEndpoint,
        query: Optional[FakeQuery] = None,
    ) -> None:
        self.client._on_resolve_success(identity, endpoint, query)

    def resolve_fail(
        self,
        identity: ServiceIdentity,
        cause: BaseException,
        query: Optional[FakeQuery] = None,
    ) -> None:
        self.client._on_resolve_failure(identity, cause, query)

    @property
    def open_resolve_count(self) -> int:
        return sum(1 for q in self.resolve_queries if not q.closed)


class RecordingCallbacks:
    """Collects browse callbacks in the order they were delivered."""

    __test__ = False

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []
        self.error_event = threading.Event()

    def on_found(self, identity: ServiceIdentity) -> None:
        self.events.append(("found", identity))

    def on_removed(self, identity: ServiceIdentity) -> None:
        self.events.append(("removed", identity))

    def on_error(self, error: TransportError) -> None:
        self.events.append(("error", error))
        self.error_event.set()

    @property
    def errors(self) -> List[TransportError]:
        return [e for kind, e in self.events if kind == "error"]


PRINTER = ServiceIdentity("Printer1", "_http._tcp", "local")
SCANNER = ServiceIdentity("Scanner", "_http._tcp", "local")

PRINTER_ENDPOINT = ResolvedEndpoint(
    hostname="printer1.local",
    addresses=("192.0.2.10",),
    port=631,
    txt_records={"ty": b"LaserJet"},
)
