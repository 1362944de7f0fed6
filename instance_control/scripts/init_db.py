import instance_control.models  # noqa: F401
from instance_control.db import Base, engine
from instance_control.logging_config import configure_logging


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    configure_logging()
    init_db()
    print("instance state tables created")
