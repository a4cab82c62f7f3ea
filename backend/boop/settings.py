"""Settings for the boop backend with observability configuration."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")

    # Outer radius for proximity alerts; boop threshold is fixed in the engine.
    proximity_alert_radius_m: float = _env_field(100.0, "PROXIMITY_ALERT_RADIUS_M")
    # Re-send a proximity_alert for an unchanged zone after this many seconds
    proximity_realert_seconds: float = _env_field(30.0, "PROXIMITY_REALERT_SECONDS")
    # Identical coordinates resubmitted inside this window are not re-persisted
    location_dedup_window_seconds: float = _env_field(5.0, "LOCATION_DEDUP_WINDOW_SECONDS")
    location_rate_limit: int = _env_field(20, "LOCATION_RATE_LIMIT")
    location_rate_window_seconds: int = _env_field(10, "LOCATION_RATE_WINDOW_SECONDS")
    nearby_max_radius_m: int = _env_field(50000, "NEARBY_MAX_RADIUS_M")

    # Online marker TTL; clients heartbeat every 15s
    presence_ttl_seconds: int = _env_field(60, "PRESENCE_TTL_SECONDS")
    presence_sweep_interval_seconds: float = _env_field(30.0, "PRESENCE_SWEEP_INTERVAL_SECONDS")

    default_hot_zone_m: int = _env_field(50, "DEFAULT_HOT_ZONE_M")
    default_warm_zone_m: int = _env_field(200, "DEFAULT_WARM_ZONE_M")
    default_cold_zone_m: int = _env_field(1000, "DEFAULT_COLD_ZONE_M")

    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_metrics_public: bool = _env_field(False, "OBS_METRICS_PUBLIC")
    obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(0.1, "LOG_SAMPLING_RATE_INFO")
    service_name: str = _env_field("boop-api", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

    cors_allow_origins: Any = _env_field((), "CORS_ALLOW_ORIGINS")

    # Environment helpers
    def is_dev(self) -> bool:
        return self.environment.lower() in ("dev", "development")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("cors_allow_origins", mode="before")
    def _split_cors(cls, value):  # type: ignore[override]
        if value in (None, ""):
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        if isinstance(value, (list, tuple, set)):
            return tuple(str(item).strip() for item in value if str(item).strip())
        return ()

    @field_validator("obs_log_level", mode="after")
    def _normalise_level(cls, value: str) -> str:  # type: ignore[override]
        return value.upper()


settings = Settings()
