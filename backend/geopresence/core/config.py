from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Внешний провайдер данных о местоположении (HRM backend)
    PROVIDER_BASE_URL: str = "http://hrm:8000/api"
    PROVIDER_UPDATES_PATH: str = "/check-user-locations-updates/{date}"
    PROVIDER_LOCATIONS_PATH: str = "/user-locations"
    PROVIDER_TENANT_HEADER: str = "X-Tenant"

    POLL_INTERVAL_SEC: float = 5.0
    FETCH_TIMEOUT_SEC: float = 10.0
    # Максимальное время показа индикатора загрузки, даже если запрос завис
    LOADING_WATCHDOG_SEC: float = 10.0

    BACKOFF_MODE: Literal["fixed", "exponential"] = "exponential"
    BACKOFF_BASE_SEC: float = 5.0
    BACKOFF_MAX_SEC: float = 60.0
    FAILURE_CEILING: int = 3

    # Подписка без чтений дольше этого срока останавливается
    SUBSCRIPTION_IDLE_SEC: float = 300.0

    # Разнесение совпадающих маркеров (градусы)
    POSITION_THRESHOLD: float = 0.0001
    OFFSET_MULTIPLIER: float = 0.0001
    MAX_ADJUST_ATTEMPTS: int = 10

    DEFAULT_CENTER_LAT: float = 23.8103
    DEFAULT_CENTER_LNG: float = 90.4125

    LOG_LEVEL: str = "INFO"


settings = Settings()
