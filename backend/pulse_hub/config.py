import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

DEFAULT_DATA_DIR = Path(os.getcwd()) / "data"


class Settings(BaseSettings):
    data_dir: Path = Field(DEFAULT_DATA_DIR, alias="PULSE_DATA_DIR")
    webhook_secret: Optional[str] = Field(None, alias="PULSE_WEBHOOK_SECRET")
    signature_policy: Literal["warn", "reject"] = Field("warn", alias="PULSE_SIGNATURE_POLICY")
    history_capacity: int = Field(1000, ge=1, alias="PULSE_HISTORY_CAPACITY")
    history_page_size: int = Field(100, ge=1, alias="PULSE_HISTORY_PAGE_SIZE")
    top_profiles: int = Field(10, ge=1, alias="PULSE_TOP_PROFILES")
    cors_origins: str = Field("*", alias="PULSE_CORS_ORIGINS")
    host: str = Field("127.0.0.1", alias="PULSE_HOST")
    port: int = Field(8000, alias="PULSE_PORT")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True

    @property
    def store_path(self) -> Path:
        return self.data_dir / "webhook-data.json"

    @property
    def backup_path(self) -> Path:
        return self.data_dir / "webhook-backup.json"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "webhook-history.json"

    @property
    def stats_path(self) -> Path:
        return self.data_dir / "webhook-stats.json"

    @property
    def event_counts_path(self) -> Path:
        return self.data_dir / "webhook-event-counts.json"

    @property
    def departments_path(self) -> Path:
        return self.data_dir / "department-assignments.json"


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid webhook hub configuration: {exc}") from exc
