"""Tracks the services known to a browse session and diffs raw events.

The `EndpointRegistry` is a deterministic state-transition function with no
I/O. It turns the noisy stream of platform announcements and withdrawals
(duplicate multicast responses, out-of-order removals) into clean FOUND and
REMOVED events. It is not thread-safe; callers serialize access.
"""

import dataclasses
import logging
from enum import Enum
from typing import Dict, Hashable, Iterator, Optional

from lanseek.discovery.service_identity import ServiceIdentity


class RawEventKind(Enum):
    ANNOUNCED = "announced"
    WITHDRAWN = "withdrawn"


class NormalizedEventKind(Enum):
    FOUND = "found"
    REMOVED = "removed"


@dataclasses.dataclass(frozen=True)
class RawEvent:
    """A notification as reported by the platform transport.

    `token` is the platform's opaque sequencing token. For an announcement
    it labels that announcement; for a withdrawal it names the announcement
    being withdrawn.
    """

    kind: RawEventKind
    identity: ServiceIdentity
    token: Optional[Hashable] = None


@dataclasses.dataclass(frozen=True)
class NormalizedEvent:
    kind: NormalizedEventKind
    identity: ServiceIdentity


@dataclasses.dataclass
class ServiceRecord:
    """Registry entry for one currently-known service."""

    identity: ServiceIdentity
    generation: int = 0
    token: Optional[Hashable] = None


class EndpointRegistry:
    """Set of currently-known services, keyed by `ServiceIdentity`."""

    def __init__(self) -> None:
        self.__records: Dict[ServiceIdentity, ServiceRecord] = {}

    def apply(self, raw_event: RawEvent) -> Optional[NormalizedEvent]:
        """Applies |raw_event| and returns the event to report, if any.

        Args:
            raw_event: The platform notification to apply.

        Returns:
            A FOUND event for the first announcement of an identity, a
            REMOVED event for a withdrawal of its current generation, and
            None for re-announcements and stale or unknown withdrawals.
        """
        if raw_event.kind is RawEventKind.ANNOUNCED:
            return self.__apply_announce(raw_event)
        return self.__apply_withdraw(raw_event)

    def __apply_announce(self, raw_event: RawEvent) -> Optional[NormalizedEvent]:
        identity = raw_event.identity
        record = self.__records.get(identity)
        if record is None:
            self.__records[identity] = ServiceRecord(
                identity, generation=0, token=raw_event.token
            )
            return NormalizedEvent(NormalizedEventKind.FOUND, identity)

        record.generation += 1
        record.token = raw_event.token
        logging.debug(
            "Re-announcement of %s absorbed; now at generation %d.",
            identity,
            record.generation,
        )
        return None

    def __apply_withdraw(self, raw_event: RawEvent) -> Optional[NormalizedEvent]:
        identity = raw_event.identity
        record = self.__records.get(identity)
        if record is None:
            logging.debug("Ignoring withdrawal of unknown service %s.", identity)
            return None

        if raw_event.token != record.token:
            logging.debug(
                "Ignoring stale withdrawal of %s (token %r, current %r at "
                "generation %d).",
                identity,
                raw_event.token,
                record.token,
                record.generation,
            )
            return None

        del self.__records[identity]
        return NormalizedEvent(NormalizedEventKind.REMOVED, identity)

    def contains(self, identity: ServiceIdentity) -> bool:
        return identity in self.__records

    def generation_of(self, identity: ServiceIdentity) -> Optional[int]:
        record = self.__records.get(identity)
        return None if record is None else record.generation

    def clear(self) -> None:
        self.__records.clear()

    def __contains__(self, identity: object) -> bool:
        return identity in self.__records

    def __len__(self) -> int:
        return len(self.__records)

    def __iter__(self) -> Iterator[ServiceIdentity]:
        return iter(list(self.__records))
