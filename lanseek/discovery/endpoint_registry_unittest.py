import random
from typing import Dict, List, Optional

import pytest

from lanseek.discovery.endpoint_registry import (
    EndpointRegistry,
    NormalizedEvent,
    NormalizedEventKind,
    RawEvent,
    RawEventKind,
)
from lanseek.discovery.service_identity import ServiceIdentity

PRINTER = ServiceIdentity("Printer1", "_http._tcp", "local")
SCANNER = ServiceIdentity("Scanner", "_http._tcp", "local")


def announce(identity: ServiceIdentity, token: object = None) -> RawEvent:
    return RawEvent(RawEventKind.ANNOUNCED, identity, token)


def withdraw(identity: ServiceIdentity, token: object = None) -> RawEvent:
    return RawEvent(RawEventKind.WITHDRAWN, identity, token)


@pytest.fixture
def registry() -> EndpointRegistry:
    return EndpointRegistry()


def test_first_announce_emits_found(registry: EndpointRegistry) -> None:
    event = registry.apply(announce(PRINTER, 1))

    assert event == NormalizedEvent(NormalizedEventKind.FOUND, PRINTER)
    assert registry.contains(PRINTER)
    assert registry.generation_of(PRINTER) == 0
    assert len(registry) == 1


def test_reannounce_is_absorbed_and_bumps_generation(
    registry: EndpointRegistry,
) -> None:
    registry.apply(announce(PRINTER, 1))

    assert registry.apply(announce(PRINTER, 2)) is None
    assert registry.apply(announce(PRINTER, 3)) is None
    assert registry.generation_of(PRINTER) == 2


def test_withdraw_of_current_generation_emits_removed(
    registry: EndpointRegistry,
) -> None:
    registry.apply(announce(PRINTER, 1))
    registry.apply(announce(PRINTER, 2))

    event = registry.apply(withdraw(PRINTER, 2))

    assert event == NormalizedEvent(NormalizedEventKind.REMOVED, PRINTER)
    assert not registry.contains(PRINTER)
    assert registry.generation_of(PRINTER) is None


def test_stale_withdraw_is_absorbed(registry: EndpointRegistry) -> None:
    registry.apply(announce(PRINTER, 1))
    registry.apply(announce(PRINTER, 2))

    # Withdrawal of the first announcement arrives after the re-announcement.
    assert registry.apply(withdraw(PRINTER, 1)) is None
    assert registry.contains(PRINTER)
    assert registry.generation_of(PRINTER) == 1


def test_withdraw_of_unknown_identity_is_absorbed(
    registry: EndpointRegistry,
) -> None:
    assert registry.apply(withdraw(PRINTER, 1)) is None
    assert len(registry) == 0


def test_duplicate_withdraw_emits_once(registry: EndpointRegistry) -> None:
    registry.apply(announce(PRINTER, 7))

    assert registry.apply(withdraw(PRINTER, 7)) is not None
    assert registry.apply(withdraw(PRINTER, 7)) is None


def test_untokened_events_pair_up(registry: EndpointRegistry) -> None:
    assert registry.apply(announce(PRINTER)) is not None
    assert registry.apply(announce(PRINTER)) is None
    assert registry.apply(withdraw(PRINTER)) is not None


def test_reappearance_after_removal_is_found_again(
    registry: EndpointRegistry,
) -> None:
    registry.apply(announce(PRINTER, 1))
    registry.apply(withdraw(PRINTER, 1))

    event = registry.apply(announce(PRINTER, 2))

    assert event is not None and event.kind is NormalizedEventKind.FOUND
    assert registry.generation_of(PRINTER) == 0


def test_identities_are_tracked_independently(
    registry: EndpointRegistry,
) -> None:
    registry.apply(announce(PRINTER, 1))
    registry.apply(announce(SCANNER, 2))

    assert registry.apply(withdraw(SCANNER, 2)) is not None
    assert registry.contains(PRINTER)
    assert list(registry) == [PRINTER]


def test_clear_forgets_everything(registry: EndpointRegistry) -> None:
    registry.apply(announce(PRINTER, 1))
    registry.apply(announce(SCANNER, 2))

    registry.clear()

    assert len(registry) == 0
    assert PRINTER not in registry
    assert registry.apply(withdraw(PRINTER, 1)) is None


def test_random_sequences_keep_found_removed_balanced() -> None:
    """Found minus Removed per identity stays in {0, 1}, never two Founds."""
    rng = random.Random(1234)
    identities = [PRINTER, SCANNER]

    for _ in range(200):
        registry = EndpointRegistry()
        balance: Dict[ServiceIdentity, int] = {i: 0 for i in identities}
        last_kind: Dict[ServiceIdentity, Optional[NormalizedEventKind]] = {
            i: None for i in identities
        }
        tokens: List[int] = []

        for step in range(40):
            identity = rng.choice(identities)
            if rng.random() < 0.5:
                tokens.append(step)
                event = registry.apply(announce(identity, step))
            else:
                token = rng.choice(tokens) if tokens else None
                event = registry.apply(withdraw(identity, token))

            if event is None:
                continue
            if event.kind is NormalizedEventKind.FOUND:
                assert last_kind[identity] is not NormalizedEventKind.FOUND
                balance[identity] += 1
            else:
                balance[identity] -= 1
            last_kind[identity] = event.kind
            assert balance[identity] in (0, 1)
