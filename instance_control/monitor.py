import logging
from typing import Protocol

from instance_control.db import SessionLocal, session_scope
from instance_control.models import InstanceState
from instance_control.repositories import upsert_instance_state, write_event


logger = logging.getLogger(__name__)


class VMStatusMonitor(Protocol):
    def persist_state_for(self, name: str, state: InstanceState) -> None: ...


class DatabaseStatusMonitor:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def persist_state_for(self, name: str, state: InstanceState) -> None:
        with session_scope(self.session_factory) as session:
            _, previous = upsert_instance_state(session, name, state)
            if previous == state.value:
                return
            write_event(
                session,
                "instance.state",
                {"from": previous, "to": state.value},
                name,
            )
        logger.debug("persisted instance state name=%s state=%s", name, state.value)
