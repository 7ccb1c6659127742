# lanseek/discovery/discovery_config.py
from dataclasses import dataclass
from typing import Literal, Optional, Sequence, Union

from lanseek.discovery.service_type import DEFAULT_DOMAIN

IpVersion = Literal["v4", "v6", "all"]

InterfaceSelection = Union[Literal["all", "default"], Sequence[str]]


@dataclass(frozen=True)
class DiscoveryConfig:
    """Configuration for a DiscoveryFacade and its default transport."""

    # Seconds before a pending resolution fails with ResolutionTimeoutError.
    # None lets resolutions wait for the platform indefinitely.
    resolve_timeout: Optional[float] = 10.0

    # Seconds the browse query may stay in a transient waiting state before
    # the session fails with a TransportError. None disables the timer.
    waiting_state_timeout: Optional[float] = 5.0

    default_domain: str = DEFAULT_DOMAIN

    # Used only by the zeroconf transport.
    interfaces: InterfaceSelection = "all"
    ip_version: IpVersion = "v4"
    resolve_request_timeout: float = 3.0

    def __post_init__(self) -> None:
        for field_name in ("resolve_timeout", "waiting_state_timeout"):
            value = getattr(self, field_name)
            if value is not None and value <= 0:
                raise ValueError(
                    f"{field_name} must be positive or None, got {value}."
                )
        if self.resolve_request_timeout <= 0:
            raise ValueError(
                "resolve_request_timeout must be positive, got "
                f"{self.resolve_request_timeout}."
            )
        if self.ip_version not in ("v4", "v6", "all"):
            raise ValueError(
                f"ip_version must be 'v4', 'v6' or 'all', got '{self.ip_version}'."
            )
        if isinstance(self.interfaces, str) and self.interfaces not in (
            "all",
            "default",
        ):
            raise ValueError(
                "interfaces must be 'all', 'default' or a list of interface "
                f"names, got '{self.interfaces}'."
            )
