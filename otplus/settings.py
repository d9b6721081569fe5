from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "OtplusEngine"
    database_url: str = "sqlite:///./otplus.db"
    cors_allow_origins: str = "http://127.0.0.1:5173,http://localhost:5173"
    log_level: str = "INFO"
    report_timezone: str = "UTC"
    default_daily_threshold: float = 8.0
    default_weekly_threshold: float = 40.0
    default_overtime_multiplier: float = 1.5
    # 0 puts every overtime hour in tier 2 while tiered overtime is enabled.
    default_tier2_threshold_hours: float = 0.0
    default_tier2_multiplier: float = 2.0
    offload_enabled: bool = True
    offload_init_timeout_seconds: float = 5.0
    offload_min_entries: int = 500

    model_config = SettingsConfigDict(
        env_prefix="OTPLUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins() -> list[str]:
    raw = get_settings().cors_allow_origins
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
