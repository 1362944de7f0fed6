import json
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from instance_control.models import Event, InstanceRecord, InstanceState


def now_utc() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def write_event(
    session: Session,
    event_type: str,
    payload: dict,
    instance_name: str | None = None,
) -> None:
    session.add(
        Event(
            instance_name=instance_name,
            event_type=event_type,
            payload_json=json.dumps(payload, sort_keys=True),
        )
    )


def get_instance(session: Session, name: str) -> InstanceRecord | None:
    return session.get(InstanceRecord, name)


def list_instances(session: Session) -> list[InstanceRecord]:
    return list(session.scalars(select(InstanceRecord).order_by(InstanceRecord.name)))


def upsert_instance_state(
    session: Session, name: str, state: InstanceState
) -> tuple[InstanceRecord, str | None]:
    record = get_instance(session, name)
    previous: str | None = None
    if record is None:
        record = InstanceRecord(name=name, state=state.value)
        session.add(record)
        session.flush()
    else:
        previous = record.state
        record.state = state.value
    record.updated_at = now_utc()
    return record, previous


def list_events(session: Session, instance_name: str) -> list[Event]:
    query = (
        select(Event)
        .where(Event.instance_name == instance_name)
        .order_by(Event.id.asc())
    )
    return list(session.scalars(query))
