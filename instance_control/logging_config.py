import logging

from instance_control.config import get_settings


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    settings = get_settings()
    resolved = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # httpx logs every request at INFO; keep it for debug runs only.
    logging.getLogger("httpx").setLevel(
        logging.DEBUG if resolved == "DEBUG" else logging.WARNING
    )
