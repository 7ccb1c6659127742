"""Initializes the lanseek.discovery.mdns package.

This package provides the `zeroconf`-backed `DiscoveryTransport` used by
default to browse and resolve services over multicast DNS.
"""

from lanseek.discovery.mdns.zeroconf_transport import ZeroconfTransport

__all__ = ["ZeroconfTransport"]
