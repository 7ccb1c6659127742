import dataclasses

import pytest

from lanseek.discovery.service_identity import ResolvedEndpoint, ServiceIdentity


def test_identity_equality_and_hash() -> None:
    first = ServiceIdentity("Printer1", "_http._tcp", "local")
    second = ServiceIdentity(name="Printer1", type="_http._tcp", domain="local")

    assert first == second
    assert hash(first) == hash(second)
    assert first != ServiceIdentity("Printer1", "_ipp._tcp", "local")
    assert str(first) == "Printer1._http._tcp.local"


def test_identity_is_frozen() -> None:
    identity = ServiceIdentity("Printer1", "_http._tcp", "local")
    with pytest.raises(dataclasses.FrozenInstanceError):
        identity.name = "Printer2"  # type: ignore[misc]


def test_endpoint_freezes_containers() -> None:
    addresses = ["192.0.2.10", "fe80::1"]
    txt = {"ty": b"LaserJet", "empty": b""}
    endpoint = ResolvedEndpoint("printer1.local", addresses, 631, txt)  # type: ignore[arg-type]

    addresses.append("192.0.2.11")
    txt["late"] = b"x"

    assert endpoint.addresses == ("192.0.2.10", "fe80::1")
    assert dict(endpoint.txt_records) == {"ty": b"LaserJet", "empty": b""}
    assert endpoint.txt_records["empty"] == b""
    assert "absent" not in endpoint.txt_records
    with pytest.raises(TypeError):
        endpoint.txt_records["new"] = b"x"  # type: ignore[index]


def test_endpoint_is_hashable() -> None:
    first = ResolvedEndpoint("h.local", ("192.0.2.1",), 80, {"a": b"1"})
    second = ResolvedEndpoint("h.local", ("192.0.2.1",), 80, {"a": b"1"})
    assert first == second
    assert hash(first) == hash(second)


@pytest.mark.parametrize("port", [-1, 65536])
def test_endpoint_rejects_out_of_range_port(port: int) -> None:
    with pytest.raises(ValueError):
        ResolvedEndpoint("h.local", (), port)


def test_endpoint_rejects_non_int_port() -> None:
    with pytest.raises(TypeError):
        ResolvedEndpoint("h.local", (), "80")  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        ResolvedEndpoint("h.local", (), True)
