"""Utilities for network interface addresses."""

import socket
from typing import Iterable, List

import psutil  # type: ignore[import-untyped]

_FAMILIES = {
    "v4": (socket.AF_INET,),
    "v6": (socket.AF_INET6,),
    "all": (socket.AF_INET, socket.AF_INET6),
}


def get_interface_address_strings(
    interface_names: Iterable[str], ip_version: str = "v4"
) -> List[str]:
    """Retrieves the address strings assigned to the named interfaces.

    Args:
        interface_names: Interface names, e.g. ["eth0", "wlan0"]. Names not
            present on this host are skipped.
        ip_version: "v4", "v6" or "all".

    Returns:
        Address strings in interface order, without duplicates. IPv6
        link-local addresses keep their "%scope" suffix, which zeroconf
        uses to pick the interface.

    Raises:
        ValueError: If |ip_version| is not recognized.
    """
    if ip_version not in _FAMILIES:
        raise ValueError(f"Unknown ip_version '{ip_version}'.")
    families = _FAMILIES[ip_version]

    all_addresses = psutil.net_if_addrs()
    addresses: List[str] = []
    for name in interface_names:
        for address in all_addresses.get(name, []):
            if address.family in families and address.address not in addresses:
                addresses.append(address.address)
    return addresses
