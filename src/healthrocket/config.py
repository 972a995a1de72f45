"""Client settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client configuration loaded from environment variables with HR_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="HR_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"

    # --- Hosted backend ---
    supabase_url: str = ""
    supabase_anon_key: str = ""
    request_timeout_seconds: float = 15.0

    # --- Session / local storage ---
    persist_session: bool = True
    storage_path: str = ".healthrocket/storage.json"
    password_reset_redirect: str = "healthrocket://reset-password"

    # --- Integrity checks ---
    fp_fail_delta: int = 100
    fp_warn_delta: int = 10
    fp_per_level: int = 500
    recent_earnings_window: int = 10

    # --- Diagnostics ---
    slow_response_ms: float = 1000.0
    test_users_file: str = ""


@lru_cache
def get_settings() -> Settings:
    """Get cached client settings."""
    return Settings()
