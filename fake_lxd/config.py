from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FakeLXDSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FAKE_LXD_", extra="ignore")

    server_version: str = Field(default="5.21-fake")
    default_project: str = Field(default="multipass")
    create_status_code: int = Field(default=102)


@lru_cache(maxsize=1)
def get_settings() -> FakeLXDSettings:
    return FakeLXDSettings()
