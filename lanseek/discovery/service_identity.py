"""Defines the ServiceIdentity and ResolvedEndpoint value types."""

import dataclasses
from types import MappingProxyType
from typing import Mapping, Tuple


@dataclasses.dataclass(frozen=True)
class ServiceIdentity:
    """Uniquely identifies a service instance within a browse session.

    Used both as the key of the endpoint registry and as the key of
    resolution requests, so it must stay hashable.

    Attributes:
        name: Instance name of the service (e.g., "Printer1").
        type: Service type string (e.g., "_http._tcp").
        domain: Domain the service was found in (e.g., "local").
    """

    name: str
    type: str
    domain: str

    def __str__(self) -> str:
        return f"{self.name}.{self.type}.{self.domain}"


@dataclasses.dataclass(frozen=True)
class ResolvedEndpoint:
    """Connectable endpoint produced by resolving a `ServiceIdentity`.

    `addresses` keeps the order reported by the platform. `txt_records`
    maps each TXT key to its raw value; a key with an empty value is
    present with `b""`, which is distinct from the key being absent.
    """

    hostname: str
    addresses: Tuple[str, ...]
    port: int
    txt_records: Mapping[str, bytes] = dataclasses.field(
        default_factory=dict
    )

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or isinstance(self.port, bool):
            raise TypeError(
                f"port must be int, got {type(self.port).__name__}."
            )
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port must be in [0, 65535], got {self.port}.")

        # Freeze the containers so instances are safe to share across
        # every handle observing the same resolution.
        object.__setattr__(self, "addresses", tuple(self.addresses))
        object.__setattr__(
            self, "txt_records", MappingProxyType(dict(self.txt_records))
        )

    def __hash__(self) -> int:
        return hash(
            (
                self.hostname,
                self.addresses,
                self.port,
                tuple(sorted(self.txt_records.items())),
            )
        )
