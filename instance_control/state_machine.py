import logging

from instance_control.models import InstanceState


logger = logging.getLogger(__name__)


# LXD instance status codes collapsed into controller states. Transient
# codes map to the nearest state the controller exposes.
STATUS_CODE_STATES: dict[int, InstanceState] = {
    101: InstanceState.RUNNING,  # Started
    102: InstanceState.STOPPED,  # Stopped
    103: InstanceState.RUNNING,  # Running
    104: InstanceState.UNKNOWN,  # Cancelling
    106: InstanceState.STARTING,  # Starting
    107: InstanceState.RUNNING,  # Stopping
    108: InstanceState.UNKNOWN,  # Aborting
    109: InstanceState.SUSPENDING,  # Freezing
    110: InstanceState.SUSPENDED,  # Frozen
    111: InstanceState.RUNNING,  # Thawed
    112: InstanceState.UNKNOWN,  # Error
}

STOPPED_STATES = {InstanceState.STOPPED}


def state_for_status(name: str, metadata: dict) -> InstanceState:
    status = metadata.get("status")
    status_code = metadata.get("status_code")
    logger.debug("lxd instance state name=%s status=%s", name, status)

    state = (
        STATUS_CODE_STATES.get(status_code) if isinstance(status_code, int) else None
    )
    if state is None:
        logger.error(
            "unexpected lxd state name=%s status=%s status_code=%s",
            name,
            status,
            status_code,
        )
        return InstanceState.UNKNOWN
    return state
