from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    BOOKING_API_BASE_URL: str | None = None
    BOOKING_API_TOKEN: str | None = None
    HTTP_TIMEOUT_SECONDS: float = 10.0

    AVAILABILITY_CACHE_TTL_SECONDS: float = 30.0
    AVAILABILITY_THROTTLE_SECONDS: float = 0.8
    LOCATION_BIAS_DECIMALS: int = 4

    HOLD_TICK_INTERVAL_SECONDS: float = 0.5
    HOLD_URGENT_THRESHOLD_SECONDS: int = 120

    FALLBACK_TIMEZONE: str = "UTC"
    VIEWER_TIMEZONE: str | None = None

    WAITLIST_DEFAULT_FLEX_MINUTES: int = 60


settings = Settings()
