import logging
import uuid

from instance_control.clients.lxd import LXDClient
from instance_control.errors import PreconditionViolation
from instance_control.models import InstanceState
from instance_control.schemas import VMMount
from instance_control.state_machine import STOPPED_STATES


logger = logging.getLogger(__name__)

# LXD rejects device names longer than 27 characters ("d_" + 25).
DEVICE_ID_LENGTH = 25
DEFAULT_MOUNT_TIMEOUT_SEC = 300.0


def device_name_for(target_path: str) -> str:
    seed = uuid.uuid3(uuid.UUID(int=0), target_path)
    return f"d_{str(seed)[:DEVICE_ID_LENGTH]}"


class LXDMountHandler:
    """Host directory exposed to a stopped instance as an LXD disk device.

    The device is added on construction and removed on close(). Both sides
    rewrite the whole device map, so they run under the daemon connection's
    device lock.
    """

    def __init__(
        self,
        lxd: LXDClient,
        vm,
        target_path: str,
        mount: VMMount,
        *,
        timeout_sec: float | None = None,
    ):
        self.lxd = lxd
        self.vm_name = vm.vm_name
        self.target = target_path
        self.source = mount.source_path
        self.device_name = device_name_for(target_path)
        self.timeout_sec = timeout_sec or DEFAULT_MOUNT_TIMEOUT_SEC
        self.instance_url = lxd.url_for("instances", vm.vm_name)
        self.active = False
        self._closed = False

        state = vm.current_state()
        if state == InstanceState.UNKNOWN:
            raise PreconditionViolation(
                vm.vm_name,
                "mount",
                f"Cannot mount natively: the state of instance {vm.vm_name} "
                "could not be determined.",
            )
        if state not in STOPPED_STATES:
            raise PreconditionViolation(
                vm.vm_name,
                "mount",
                f"Please stop the instance {vm.vm_name} before mount it natively.",
            )

        logger.info(
            "initializing native mount source=%s target=%s instance=%s device=%s",
            self.source,
            self.target,
            self.vm_name,
            self.device_name,
        )
        self.attach()

    def attach(self) -> None:
        with self.lxd.device_lock:
            metadata, devices = self._read_devices()
            devices[self.device_name] = {
                "path": self.target,
                "source": self.source,
                "type": "disk",
            }
            logger.info(
                "adding native mount device device=%s instance=%s",
                self.device_name,
                self.vm_name,
            )
            self._write_devices(metadata, devices)
        self.active = True

    def detach(self) -> None:
        with self.lxd.device_lock:
            metadata, devices = self._read_devices()
            if devices.pop(self.device_name, None) is None:
                logger.info(
                    "native mount device already absent device=%s instance=%s",
                    self.device_name,
                    self.vm_name,
                )
                self.active = False
                return
            logger.info(
                "removing native mount device device=%s instance=%s",
                self.device_name,
                self.vm_name,
            )
            self._write_devices(metadata, devices)
        self.active = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info(
            "stopping native mount target=%s instance=%s", self.target, self.vm_name
        )
        try:
            self.detach()
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "native mount removal failed target=%s instance=%s: %s",
                self.target,
                self.vm_name,
                exc,
            )

    def __enter__(self) -> "LXDMountHandler":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()

    def _read_devices(self) -> tuple[dict, dict]:
        reply = self.lxd.request("GET", self.instance_url)
        metadata = reply.get("metadata")
        metadata = dict(metadata) if isinstance(metadata, dict) else {}
        devices = metadata.get("devices")
        devices = dict(devices) if isinstance(devices, dict) else {}
        return metadata, devices

    def _write_devices(self, metadata: dict, devices: dict) -> None:
        metadata["devices"] = devices
        reply = self.lxd.request("PUT", self.instance_url, metadata)
        self.lxd.wait(reply, self.timeout_sec)
