from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./fitjourney.db"
    firebase_api_key: str = ""
    firebase_project_id: str = ""
    session_dir: Path = Path.home() / ".fitjourney"

    sync_interval_minutes: int = 15
    daily_update_hour: int = 3
    remote_timeout_seconds: float = 30.0
    max_retries: int = 5  # entries retried more often than this are skipped
    delete_batch_size: int = 100
    queue_retention_days: int = 7
    pull_overlap_minutes: int = 5
    daily_log_lookback_days: int = 90

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
