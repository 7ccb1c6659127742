import pytest

from lanseek.discovery.service_type import (
    DEFAULT_DOMAIN,
    browse_name,
    normalize_domain,
    normalize_service_type,
    qualified,
    split_service_type,
    strip_local,
)


def test_qualified() -> None:
    assert qualified("_http._tcp") == "_http._tcp."
    assert qualified("_http._tcp.") == "_http._tcp."


def test_strip_local() -> None:
    assert strip_local("_http._tcp.local.") == "_http._tcp"
    assert strip_local("_http._tcp.local") == "_http._tcp"
    assert strip_local("_http._tcp") == "_http._tcp"


@pytest.mark.parametrize(
    "given,expected",
    [
        ("_http._tcp", "_http._tcp"),
        ("_http._tcp.", "_http._tcp"),
        ("_http._tcp.local.", "_http._tcp"),
        ("_sleep-proxy._udp", "_sleep-proxy._udp"),
        ("_ipp", "_ipp._tcp"),
        ("_http._tcp.example.com.", "_http._tcp"),
    ],
)
def test_normalize_service_type(given: str, expected: str) -> None:
    assert normalize_service_type(given) == expected


def test_normalize_service_type_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        normalize_service_type("http._tcp")
    with pytest.raises(TypeError):
        normalize_service_type(None)  # type: ignore[arg-type]


def test_normalize_domain() -> None:
    assert normalize_domain(None) == DEFAULT_DOMAIN
    assert normalize_domain("") == DEFAULT_DOMAIN
    assert normalize_domain(".") == DEFAULT_DOMAIN
    assert normalize_domain("local") == "local."
    assert normalize_domain("example.com.") == "example.com."


def test_browse_name() -> None:
    assert browse_name("_http._tcp") == "_http._tcp.local."
    assert browse_name("_ipp", "example.com") == "_ipp._tcp.example.com."


@pytest.mark.parametrize(
    "given,expected",
    [
        ("_http._tcp", ("_http._tcp", None)),
        ("_http._tcp.local.", ("_http._tcp", "local.")),
        ("_http._tcp.example.com.", ("_http._tcp", "example.com.")),
        ("_http._tcp.example.com", ("_http._tcp", "example.com.")),
        ("_sleep-proxy._udp.local.", ("_sleep-proxy._udp", "local.")),
        ("_ipp", ("_ipp._tcp", None)),
        ("_ipp.local.", ("_ipp._tcp", "local.")),
    ],
)
def test_split_service_type(given: str, expected) -> None:
    assert split_service_type(given) == expected
