import socket

import pytest

from lanseek.util import ip as ip_util


# Helper to create a mock address object
def create_mock_address(mocker, family, address):
    mock_addr = mocker.MagicMock()
    mock_addr.family = family
    mock_addr.address = address
    return mock_addr


class TestIpUtils:

    def test_no_interfaces(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {}

        assert ip_util.get_interface_address_strings(["eth0"]) == []
        mock_net_if_addrs.assert_called_once()

    def test_filters_by_name_and_family(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {
            "eth0": [
                create_mock_address(mocker, socket.AF_INET, "192.0.2.1"),
                create_mock_address(mocker, socket.AF_INET6, "fe80::1%eth0"),
            ],
            "wlan0": [
                create_mock_address(mocker, socket.AF_INET, "198.51.100.7"),
            ],
        }

        assert ip_util.get_interface_address_strings(["eth0"]) == ["192.0.2.1"]
        assert ip_util.get_interface_address_strings(["eth0"], "v6") == [
            "fe80::1%eth0"
        ]
        assert ip_util.get_interface_address_strings(
            ["wlan0", "eth0"], "all"
        ) == ["198.51.100.7", "192.0.2.1", "fe80::1%eth0"]

    def test_unknown_interface_is_skipped(self, mocker):
        mocker.patch(
            "psutil.net_if_addrs",
            return_value={
                "eth0": [create_mock_address(mocker, socket.AF_INET, "192.0.2.1")]
            },
        )

        assert ip_util.get_interface_address_strings(["eth9", "eth0"]) == [
            "192.0.2.1"
        ]

    def test_duplicates_removed(self, mocker):
        mocker.patch(
            "psutil.net_if_addrs",
            return_value={
                "br0": [
                    create_mock_address(mocker, socket.AF_INET, "192.0.2.1"),
                    create_mock_address(mocker, socket.AF_INET, "192.0.2.1"),
                ]
            },
        )

        assert ip_util.get_interface_address_strings(["br0", "br0"]) == [
            "192.0.2.1"
        ]

    def test_unknown_ip_version(self):
        with pytest.raises(ValueError):
            ip_util.get_interface_address_strings(["eth0"], "v5")
