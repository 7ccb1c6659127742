"""lanseek package for browsing and resolving local network services.

This package discovers DNS-SD services on the local network segment,
reports them as they appear and disappear, and resolves them into
connectable endpoints.
"""

from lanseek.discovery import (
    DiscoveryConfig,
    DiscoveryError,
    DiscoveryFacade,
    ResolutionHandle,
    ResolvedEndpoint,
    ServiceIdentity,
)

__all__ = [
    "DiscoveryConfig",
    "DiscoveryError",
    "DiscoveryFacade",
    "ResolutionHandle",
    "ResolvedEndpoint",
    "ServiceIdentity",
]
