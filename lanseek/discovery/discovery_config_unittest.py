import dataclasses

import pytest

from lanseek.discovery.discovery_config import DiscoveryConfig


def test_defaults() -> None:
    config = DiscoveryConfig()
    assert config.resolve_timeout == 10.0
    assert config.waiting_state_timeout == 5.0
    assert config.default_domain == "local."
    assert config.interfaces == "all"
    assert config.ip_version == "v4"


def test_timeouts_can_be_disabled() -> None:
    config = DiscoveryConfig(resolve_timeout=None, waiting_state_timeout=None)
    assert config.resolve_timeout is None
    assert config.waiting_state_timeout is None


def test_is_frozen() -> None:
    config = DiscoveryConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.resolve_timeout = 1.0  # type: ignore[misc]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"resolve_timeout": 0},
        {"resolve_timeout": -1.0},
        {"waiting_state_timeout": 0},
        {"resolve_request_timeout": 0},
        {"ip_version": "v5"},
        {"interfaces": "eth0"},
    ],
)
def test_invalid_values(kwargs) -> None:
    with pytest.raises(ValueError):
        DiscoveryConfig(**kwargs)


def test_interface_names_accepted() -> None:
    config = DiscoveryConfig(interfaces=["eth0", "wlan0"], ip_version="all")
    assert list(config.interfaces) == ["eth0", "wlan0"]
