from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LXD_", env_file=".env", extra="ignore")

    socket_path: str = Field(default="/var/snap/lxd/common/lxd/unix.socket")
    base_url: str = Field(default="http://lxd/1.0")
    project: str | None = Field(default="multipass")

    bridge_name: str = Field(default="mpbr0")
    storage_pool: str = Field(default="default")

    request_timeout_sec: float = Field(default=30.0, gt=0)
    state_request_timeout_sec: float = Field(default=5.0, gt=0)
    state_wait_timeout_sec: float = Field(default=60.0, gt=0)
    create_timeout_sec: float = Field(default=600.0, gt=0)
    mount_timeout_sec: float = Field(default=300.0, gt=0)
    poll_interval_sec: float = Field(default=0.5, gt=0)

    ensure_running_grace_sec: float = Field(default=20.0, ge=0)
    ip_poll_interval_sec: float = Field(default=1.0, gt=0)

    snap_common_dir: str | None = Field(default=None)

    database_url: str = Field(default="sqlite:///./instance_control.db")
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
