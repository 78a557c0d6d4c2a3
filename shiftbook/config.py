import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SHIFTBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Local persistence
    snapshot_path: str = Field(default="var/shiftbook.json")

    # Remote backend (guest mode when unset)
    remote_url: str | None = Field(default=None)
    remote_api_key: str | None = Field(default=None)
    remote_timeout: float = Field(default=10.0)
    # Signed-in session, kept so a restart stays signed in
    session_path: str = Field(default="var/session.json")

    log_level: str = Field(default="INFO")

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_url and self.remote_api_key)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )
