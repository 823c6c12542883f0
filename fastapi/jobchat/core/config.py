"""Runtime configuration read from the environment or a `.env` file."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    app_name: str = "Job Marketplace Messaging"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "jobchat"
    redis_url: Optional[str] = Field(
        default=None,
        description="Realtime bus for message/read events. Unset disables publishing.",
    )
    log_level: str = "info"
    log_file: Optional[str] = None
    preview_max_length: int = Field(default=200, ge=1)
    message_page_size: int = Field(default=50, ge=1, le=200)
    conversation_page_size: int = Field(default=20, ge=1, le=100)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
