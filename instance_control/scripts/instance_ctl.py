import argparse
import logging
import sys

from instance_control.clients.http import LXDError
from instance_control.clients.lxd import LXDClient
from instance_control.config import get_settings
from instance_control.errors import (
    InstanceStartError,
    PreconditionViolation,
    UnsupportedOperation,
)
from instance_control.logging_config import configure_logging
from instance_control.monitor import DatabaseStatusMonitor
from instance_control.schemas import VirtualMachineDescription
from instance_control.scripts.init_db import init_db
from instance_control.services.virtual_machine import LXDVirtualMachine


logger = logging.getLogger(__name__)

GIB = 1024**3
ACTIONS = ("create", "status", "start", "stop", "ip")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="instance-ctl", description="Drive the lifecycle of one LXD virtual machine"
    )
    parser.add_argument("name")
    parser.add_argument("action", choices=ACTIONS)
    parser.add_argument("--cpus", type=int, default=1)
    parser.add_argument("--memory-gib", type=int, default=1)
    parser.add_argument("--disk-gib", type=int, default=5)
    parser.add_argument("--image", default="", help="image fingerprint for create")
    parser.add_argument("--mac", default="52:54:00:00:00:01")
    parser.add_argument("--username", default="ubuntu")
    parser.add_argument("--timeout", type=float, default=120.0)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    settings = get_settings()
    init_db()

    desc = VirtualMachineDescription(
        vm_name=args.name,
        num_cores=args.cpus,
        mem_size_bytes=args.memory_gib * GIB,
        disk_space_bytes=args.disk_gib * GIB,
        image_id=args.image,
        ssh_username=args.username,
        default_mac_address=args.mac,
    )
    lxd = LXDClient.from_settings(settings)
    try:
        # The instance outlives this process, so vm.close() is never called.
        vm = LXDVirtualMachine(desc, DatabaseStatusMonitor(), lxd, settings=settings)
        if args.action == "start":
            vm.start()
        elif args.action == "stop":
            vm.stop()
        elif args.action == "ip":
            print(vm.ssh_hostname(args.timeout))
            return 0
        print(f"{vm.vm_name} {vm.current_state().value}")
    except (
        LXDError,
        PreconditionViolation,
        UnsupportedOperation,
        InstanceStartError,
    ) as exc:
        logger.error(
            "instance action failed name=%s action=%s: %s", args.name, args.action, exc
        )
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        lxd.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
