import logging
from ipaddress import IPv4Address

from instance_control.clients.lxd import LXDClient


logger = logging.getLogger(__name__)


def get_ip_for(lxd: LXDClient, mac_address: str, leases_url: str) -> IPv4Address | None:
    reply = lxd.request("GET", leases_url)
    leases = reply.get("metadata")
    if not isinstance(leases, list):
        return None

    for lease in leases:
        if not isinstance(lease, dict) or lease.get("hwaddr") != mac_address:
            continue
        address = lease.get("address")
        try:
            return IPv4Address(address)
        except ValueError:
            # Same hwaddr often appears with an IPv6 or stale record first.
            logger.debug(
                "skipping lease with unusable address mac=%s address=%r",
                mac_address,
                address,
            )
            continue
    return None
