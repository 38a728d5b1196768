"""Runtime configuration read from ``COACH_CHAT_*`` environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Completion endpoint and streaming settings.

    Invalid values (non-numeric or not positive) fail validation at startup.
    """

    base_url: str = "http://localhost:54321"
    api_key: str = ""
    completion_path: str = "/functions/v1/chat"
    stream_timeout: float = Field(default=120.0, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    max_rebuffer_attempts: int = Field(default=8, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="COACH_CHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def completion_url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.completion_path.lstrip("/")
