import pytest
from fastapi.testclient import TestClient

import fake_lxd.app as fake_daemon
from instance_control.clients.lxd import LXDClient
from instance_control.config import Settings
from instance_control.schemas import VirtualMachineDescription


BASE_URL = "http://lxd/1.0"
GIB = 1024**3


class RecordingMonitor:
    def __init__(self) -> None:
        self.calls: list = []

    def persist_state_for(self, name, state) -> None:
        self.calls.append((name, state))


@pytest.fixture
def daemon():
    fake_daemon.reset()
    yield fake_daemon
    fake_daemon.reset()


@pytest.fixture
def lxd(daemon):
    client = LXDClient(
        BASE_URL,
        project="multipass",
        client=TestClient(daemon.app),
        poll_interval_sec=0.01,
    )
    yield client
    client.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        base_url=BASE_URL,
        bridge_name="mpbr0",
        storage_pool="default",
        snap_common_dir=None,
        poll_interval_sec=0.01,
        state_wait_timeout_sec=5,
        create_timeout_sec=5,
        mount_timeout_sec=5,
        ensure_running_grace_sec=0,
        ip_poll_interval_sec=0.01,
    )


@pytest.fixture
def monitor() -> RecordingMonitor:
    return RecordingMonitor()


@pytest.fixture
def make_desc():
    def _make(**overrides) -> VirtualMachineDescription:
        values = {
            "vm_name": "test-vm",
            "num_cores": 2,
            "mem_size_bytes": GIB,
            "disk_space_bytes": 5 * GIB,
            "image_id": "abc123",
            "ssh_username": "ubuntu",
            "default_mac_address": "52:54:00:aa:bb:cc",
        }
        values.update(overrides)
        return VirtualMachineDescription(**values)

    return _make
