import logging
import threading
import time
from ipaddress import IPv4Address
from pathlib import Path

from instance_control.clients.http import (
    RemoteNotFound,
    RemoteTimeout,
    RemoteUnavailable,
)
from instance_control.clients.leases import get_ip_for
from instance_control.clients.lxd import LXDClient
from instance_control.config import Settings, get_settings
from instance_control.errors import (
    InstanceStartError,
    PreconditionViolation,
    UnsupportedOperation,
)
from instance_control.models import InstanceState
from instance_control.monitor import VMStatusMonitor
from instance_control.schemas import VirtualMachineDescription, VMMount
from instance_control.services.mount_handler import LXDMountHandler
from instance_control.state_machine import state_for_status


logger = logging.getLogger(__name__)

SSH_PORT = 22
UNKNOWN_IP = "UNKNOWN"
DEBOUNCED_STATES = {InstanceState.STARTING, InstanceState.DELAYED_SHUTDOWN}


def generate_base_vm_config(desc: VirtualMachineDescription) -> dict:
    config = {
        "limits.cpu": str(desc.num_cores),
        "limits.memory": str(desc.mem_size_bytes),
        "security.secureboot": "false",
    }
    cloud_init = {
        "user.meta-data": desc.meta_data_config,
        "user.vendor-data": desc.vendor_data_config,
        "user.user-data": desc.user_data_config,
        "user.network-config": desc.network_data_config,
    }
    config.update({key: value for key, value in cloud_init.items() if value is not None})
    return config


def root_disk_device(storage_pool: str, size_bytes: int) -> dict:
    return {"path": "/", "pool": storage_pool, "size": str(size_bytes), "type": "disk"}


def bridged_nic_device(name: str, parent: str, mac_address: str) -> dict:
    return {
        "name": name,
        "nictype": "bridged",
        "parent": parent,
        "type": "nic",
        "hwaddr": mac_address,
    }


def generate_devices_config(
    desc: VirtualMachineDescription, bridge_name: str, storage_pool: str
) -> dict:
    devices = {
        "config": {"source": "cloud-init:config", "type": "disk"},
        "root": root_disk_device(storage_pool, desc.disk_space_bytes),
        "eth0": bridged_nic_device("eth0", bridge_name, desc.default_mac_address),
    }
    for index, net in enumerate(desc.extra_interfaces, start=1):
        name = f"eth{index}"
        devices[name] = bridged_nic_device(name, net.id, net.mac_address)
    return devices


class BootInterruptSignal:
    """Fired when an instance that was expected to boot is found shut down.

    Shares the instance state lock, so stop() can wait on it while holding
    that lock and the booting side can fire it from inside the same lock.
    """

    def __init__(self, lock: threading.RLock):
        self._condition = threading.Condition(lock)
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def clear(self) -> None:
        with self._condition:
            self._fired = False

    def fire(self) -> None:
        with self._condition:
            self._fired = True
            self._condition.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: self._fired, timeout)


class LXDVirtualMachine:
    def __init__(
        self,
        desc: VirtualMachineDescription,
        monitor: VMStatusMonitor,
        lxd: LXDClient,
        *,
        bridge_name: str | None = None,
        storage_pool: str | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.vm_name = desc.vm_name
        self.username = desc.ssh_username
        self.monitor = monitor
        self.lxd = lxd
        self.bridge_name = bridge_name or self.settings.bridge_name
        self.storage_pool = storage_pool or self.settings.storage_pool
        self.mac_addr = desc.default_mac_address

        self.state = InstanceState.UNKNOWN
        self.remote_state: InstanceState | None = None
        self.port: int | None = None
        self.management_ip: IPv4Address | None = None
        self.update_shutdown_status = True
        self.state_mutex = threading.RLock()
        self.boot_interrupted = BootInterruptSignal(self.state_mutex)
        self._closed = False

        try:
            self.current_state()
        except RemoteNotFound:
            self._create(desc)
            self.current_state()

    @property
    def url(self) -> str:
        return self.lxd.url_for("virtual-machines", self.vm_name)

    @property
    def state_url(self) -> str:
        return f"{self.url}/state"

    @property
    def network_leases_url(self) -> str:
        return self.lxd.url_for("networks", self.bridge_name, "leases")

    @property
    def pending_intent(self) -> bool:
        return self.state != self.remote_state

    def _create(self, desc: VirtualMachineDescription) -> None:
        logger.debug(
            "creating instance name=%s image_id=%s", self.vm_name, desc.image_id
        )
        virtual_machine = {
            "name": self.vm_name,
            "config": generate_base_vm_config(desc),
            "devices": generate_devices_config(
                desc, self.bridge_name, self.storage_pool
            ),
            "source": {"type": "image", "fingerprint": desc.image_id},
        }
        reply = self.lxd.request(
            "POST", self.lxd.url_for("virtual-machines"), virtual_machine
        )
        self.lxd.wait(reply, self.settings.create_timeout_sec)

    def start(self) -> None:
        self.boot_interrupted.clear()
        if self.state == InstanceState.SUSPENDED:
            logger.info("resuming from a suspended state name=%s", self.vm_name)
            self.request_state("unfreeze")
        else:
            self.request_state("start")

        with self.state_mutex:
            self.state = InstanceState.STARTING
        self.update_state()

    def stop(self) -> None:
        with self.state_mutex:
            present_state = self.current_state()

            if present_state == InstanceState.STOPPED:
                logger.debug(
                    "ignoring stop request since instance is already stopped name=%s",
                    self.vm_name,
                )
                return
            if present_state == InstanceState.SUSPENDED:
                logger.info(
                    "ignoring shutdown issued while suspended name=%s", self.vm_name
                )
                return

            self.request_state("stop")
            self.state = InstanceState.STOPPED

            if present_state == InstanceState.STARTING:
                logger.debug(
                    "waiting for boot to be interrupted name=%s", self.vm_name
                )
                self.boot_interrupted.wait()

            self.port = None
            self.management_ip = None

            if self.update_shutdown_status:
                self.update_state()

    def shutdown(self) -> None:
        self.stop()

    def suspend(self) -> None:
        raise UnsupportedOperation(
            self.vm_name, "suspend", "suspend is currently not supported"
        )

    def current_state(self) -> InstanceState:
        try:
            reply = self.lxd.request("GET", self.state_url)
        except RemoteUnavailable as exc:
            logger.warning("lxd unreachable name=%s: %s", self.vm_name, exc)
            with self.state_mutex:
                self.remote_state = None
                self.state = InstanceState.UNKNOWN
                return self.state

        metadata = reply.get("metadata")
        present_state = state_for_status(
            self.vm_name, metadata if isinstance(metadata, dict) else {}
        )
        with self.state_mutex:
            self.remote_state = present_state
            if present_state == InstanceState.STOPPED:
                # The next boot may be handed a different lease.
                self.management_ip = None

            # TODO: confirm against real daemon timing whether the daemon can
            # report Running before boot bookkeeping completes.
            if self.state in DEBOUNCED_STATES and present_state == InstanceState.RUNNING:
                return self.state

            self.state = present_state
            return self.state

    def confirm_running(self) -> None:
        with self.state_mutex:
            self.state = InstanceState.RUNNING
        self.update_state()

    def ensure_vm_is_running(self, timeout_sec: float | None = None) -> None:
        grace_sec = (
            self.settings.ensure_running_grace_sec if timeout_sec is None else timeout_sec
        )
        with self.state_mutex:
            if self._is_vm_running(grace_sec):
                return
            self.boot_interrupted.fire()
            raise InstanceStartError(self.vm_name, "Instance shutdown during start")

    def _is_vm_running(self, grace_sec: float) -> bool:
        if self.current_state() != InstanceState.STOPPED:
            return True

        # LXD may just be rebooting the instance.
        time.sleep(grace_sec)

        if self.current_state() != InstanceState.STOPPED:
            self.state = InstanceState.STARTING
            return True
        return False

    def update_state(self) -> None:
        self.monitor.persist_state_for(self.vm_name, self.state)

    def ssh_port(self) -> int:
        with self.state_mutex:
            self.port = SSH_PORT
        return SSH_PORT

    def ssh_username(self) -> str:
        return self.username

    def ssh_hostname(self, timeout_sec: float) -> str:
        address = self.management_ip
        if address is None:
            deadline = time.monotonic() + timeout_sec
            while True:
                self.ensure_vm_is_running()
                address = get_ip_for(self.lxd, self.mac_addr, self.network_leases_url)
                if address is not None:
                    with self.state_mutex:
                        self.management_ip = address
                    break

                now = time.monotonic()
                if now >= deadline:
                    with self.state_mutex:
                        self.state = InstanceState.UNKNOWN
                    raise RemoteTimeout(
                        method="GET",
                        url=self.network_leases_url,
                        detail=f"failed to determine IP address of {self.vm_name}",
                    )
                time.sleep(min(self.settings.ip_poll_interval_sec, deadline - now))

        return str(address)

    def management_ipv4(self) -> str:
        address = self.management_ip
        if address is None:
            try:
                address = get_ip_for(self.lxd, self.mac_addr, self.network_leases_url)
            except RemoteUnavailable as exc:
                logger.warning("lxd unreachable name=%s: %s", self.vm_name, exc)
            if address is None:
                logger.debug("ip address not found name=%s", self.vm_name)
                return UNKNOWN_IP
            with self.state_mutex:
                self.management_ip = address
        return str(address)

    def ipv6(self) -> str:
        return ""

    def request_state(self, action: str) -> None:
        reply = self.lxd.request(
            "PUT",
            self.state_url,
            {"action": action},
            timeout=self.settings.state_request_timeout_sec,
        )
        self.lxd.wait(reply, self.settings.state_wait_timeout_sec)

    def update_cpus(self, num_cores: int) -> None:
        if num_cores <= 0:
            raise PreconditionViolation(
                self.vm_name,
                "update_cpus",
                f"cannot give {self.vm_name} {num_cores} CPUs",
            )
        self._patch({"config": {"limits.cpu": str(num_cores)}})

    def resize_memory(self, size_bytes: int) -> None:
        if size_bytes <= 0:
            raise PreconditionViolation(
                self.vm_name,
                "resize_memory",
                f"cannot give {self.vm_name} {size_bytes} bytes of memory",
            )
        self._patch({"config": {"limits.memory": str(size_bytes)}})

    def resize_disk(self, size_bytes: int) -> None:
        if size_bytes <= 0:
            raise PreconditionViolation(
                self.vm_name,
                "resize_disk",
                f"cannot give {self.vm_name} a {size_bytes} byte disk",
            )
        self._patch(
            {"devices": {"root": root_disk_device(self.storage_pool, size_bytes)}}
        )

    def _patch(self, patch: dict) -> None:
        reply = self.lxd.request("PATCH", self.url, patch)
        self.lxd.wait(reply, self.settings.state_wait_timeout_sec)

    def make_native_mount_handler(self, target: str, mount: VMMount) -> LXDMountHandler:
        if mount.uid_mappings or mount.gid_mappings:
            raise UnsupportedOperation(
                self.vm_name, "mount", "lxd native mount does not accept gid or uid."
            )
        return LXDMountHandler(
            self.lxd,
            self,
            target,
            mount,
            timeout_sec=self.settings.mount_timeout_sec,
        )

    def _snap_refresh_pending(self) -> bool:
        if not self.settings.snap_common_dir:
            return False
        return (Path(self.settings.snap_common_dir) / "snap_refresh").exists()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.update_shutdown_status = False
        try:
            self.current_state()
            if self.state == InstanceState.RUNNING:
                if not self._snap_refresh_pending():
                    self.stop()
            else:
                self.update_state()
        except RemoteNotFound:
            logger.debug("lxd object not found name=%s", self.vm_name)
        except Exception as exc:  # noqa: BLE001
            logger.exception("instance release failed name=%s: %s", self.vm_name, exc)

    def __enter__(self) -> "LXDVirtualMachine":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()
