"""Helpers for normalizing DNS-SD service type and domain strings."""

from typing import Optional, Tuple

DEFAULT_DOMAIN = "local."

_PROTOCOL_LABELS = ("._tcp", "._udp")


def qualified(value: str) -> str:
    """Returns |value| with a trailing dot (fully-qualified DNS form)."""
    return value if value.endswith(".") else f"{value}."


def strip_local(value: str) -> str:
    """Removes a trailing ".local." or ".local" from |value|."""
    if value.endswith(".local."):
        return value[: -len(".local.")]
    if value.endswith(".local"):
        return value[: -len(".local")]
    return value


def split_service_type(service_type: str) -> Tuple[str, Optional[str]]:
    """Splits a service type into its bare type and the domain it names.

    "_http._tcp.example.com." gives ("_http._tcp", "example.com."),
    "_http._tcp" gives ("_http._tcp", None) and a bare "_ipp" defaults to
    TCP, giving ("_ipp._tcp", None).

    Raises:
        TypeError: If |service_type| is not a string.
        ValueError: If |service_type| does not start with '_'.
    """
    if not isinstance(service_type, str):
        raise TypeError(
            f"service_type must be str, got {type(service_type).__name__}."
        )
    # DNS-SD service types always start with an underscore.
    if not service_type.startswith("_"):
        raise ValueError(
            f"service_type must start with '_', got '{service_type}'."
        )

    value = qualified(service_type)
    for label in _PROTOCOL_LABELS:
        index = value.find(f"{label}.")
        if index != -1:
            end = index + len(label)
            domain = value[end + 1 :]
            return value[:end], domain or None

    bare = strip_local(value).rstrip(".")
    domain = DEFAULT_DOMAIN if bare != value.rstrip(".") else None
    return f"{bare}._tcp", domain


def normalize_service_type(service_type: str) -> str:
    """Returns the bare service type, e.g. "_http._tcp".

    Accepts "_http._tcp", "_http._tcp.", "_http._tcp.local." and a bare
    "_http" (which defaults to TCP). Any domain part is dropped.

    Raises:
        TypeError: If |service_type| is not a string.
        ValueError: If |service_type| does not start with '_'.
    """
    return split_service_type(service_type)[0]


def normalize_domain(domain: Optional[str]) -> str:
    """Returns |domain| in qualified form, or the default domain if None."""
    if domain is None or domain.strip(".") == "":
        return DEFAULT_DOMAIN
    return qualified(domain)


def browse_name(service_type: str, domain: Optional[str] = None) -> str:
    """Composes the fully-qualified browse name, e.g. "_http._tcp.local."."""
    return f"{normalize_service_type(service_type)}.{normalize_domain(domain)}"
