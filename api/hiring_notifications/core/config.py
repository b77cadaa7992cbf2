from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "hiring-notifications-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    career_name_column: str | None = None
    backfill_lookback_days: int = 3
    reconcile_cooldown_seconds: int = 300
    list_cache_ttl_seconds: int = 120
    unread_count_cache_ttl_seconds: int = 120
    read_cache_max_entries: int = 10_000
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "hiring-notifications-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="HN_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
