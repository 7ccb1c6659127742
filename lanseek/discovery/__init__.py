"""Initializes the lanseek.discovery package and exposes its key components.

This package contains the discovery engine: the endpoint registry that
deduplicates announcements, the browse session, the resolution manager and
the `DiscoveryFacade` composing them, plus an asyncio front end.
"""

from lanseek.discovery.aio_discovery import (
    DiscoveryEvent,
    ServiceDiscovered,
    ServiceRemoved,
    ServiceResolved,
    discover_services,
)
from lanseek.discovery.browse_session import BrowseState, PermissionState
from lanseek.discovery.discovery_config import DiscoveryConfig
from lanseek.discovery.discovery_error import (
    AlreadyActiveError,
    DiscoveryCancelledError,
    DiscoveryError,
    DiscoveryErrorKind,
    ResolutionFailedError,
    ResolutionTimeoutError,
    SessionNotActiveError,
    TransportError,
    UnknownServiceError,
)
from lanseek.discovery.discovery_facade import DiscoveryFacade
from lanseek.discovery.discovery_transport import (
    DiscoveryTransport,
    TransportFactory,
)
from lanseek.discovery.resolution_handle import ResolutionHandle
from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity

__all__ = [
    "AlreadyActiveError",
    "BrowseState",
    "DiscoveryCancelledError",
    "DiscoveryConfig",
    "DiscoveryError",
    "DiscoveryErrorKind",
    "DiscoveryEvent",
    "DiscoveryFacade",
    "DiscoveryTransport",
    "PermissionState",
    "ResolutionFailedError",
    "ResolutionHandle",
    "ResolutionTimeoutError",
    "ResolvedEndpoint",
    "ServiceDiscovered",
    "ServiceIdentity",
    "ServiceRemoved",
    "ServiceResolved",
    "SessionNotActiveError",
    "TransportError",
    "TransportFactory",
    "UnknownServiceError",
    "discover_services",
]
