from ipaddress import IPv4Address

import httpx

from instance_control.clients.leases import get_ip_for
from instance_control.clients.lxd import LXDClient


BASE = "http://lxd/1.0"
LEASES_URL = f"{BASE}/networks/mpbr0/leases"
MAC = "52:54:00:aa:bb:cc"


def _lxd(leases) -> LXDClient:
    def handler(request):
        assert request.url.path == "/1.0/networks/mpbr0/leases"
        return httpx.Response(
            200, json={"type": "sync", "status_code": 200, "metadata": leases}
        )

    return LXDClient(BASE, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_returns_none_without_matching_mac():
    lxd = _lxd([{"hwaddr": "52:54:00:00:00:01", "address": "10.0.0.2"}])
    assert get_ip_for(lxd, MAC, LEASES_URL) is None


def test_returns_none_for_empty_lease_table():
    assert get_ip_for(_lxd([]), MAC, LEASES_URL) is None


def test_resolves_single_matching_lease():
    lxd = _lxd(
        [
            {"hwaddr": "52:54:00:00:00:01", "address": "10.0.0.2"},
            {"hwaddr": MAC, "address": "10.0.0.5"},
        ]
    )
    assert get_ip_for(lxd, MAC, LEASES_URL) == IPv4Address("10.0.0.5")


def test_skips_malformed_lease_and_keeps_scanning():
    lxd = _lxd(
        [
            {"hwaddr": MAC, "address": "not-an-address"},
            {"hwaddr": MAC, "address": "10.0.0.7"},
        ]
    )
    assert get_ip_for(lxd, MAC, LEASES_URL) == IPv4Address("10.0.0.7")


def test_skips_ipv6_lease_for_same_mac():
    lxd = _lxd(
        [
            {"hwaddr": MAC, "address": "fd42:1:2:3::10"},
            {"hwaddr": MAC},
            {"hwaddr": MAC, "address": "10.0.0.8"},
        ]
    )
    assert get_ip_for(lxd, MAC, LEASES_URL) == IPv4Address("10.0.0.8")


def test_non_list_metadata_resolves_nothing():
    assert get_ip_for(_lxd({"unexpected": True}), MAC, LEASES_URL) is None
