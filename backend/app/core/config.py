"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "DayWeaver Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///./dayweaver.db"
    timezone: str = "Asia/Shanghai"

    openai_api_key: str | None = None
    openai_base_url: str | None = None
    llm_model: str = "gpt-4o"
    llm_timeout_seconds: float = 60.0

    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "dayweaver"

    chat_max_messages_per_session: int = 100
    chat_max_sessions: int = 50
    chat_history_window: int = 20
    progress_log_size: int = 200
    schedule_max_attempts: int = 3

    cleanup_job_enabled: bool = False
    cleanup_interval_minutes: int = 60
    scheduler_timezone: str = "Asia/Shanghai"
    jobs_run_on_startup: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
