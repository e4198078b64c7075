from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    PROJECT_NAME: str = "Ride Promotions API"
    API_V1_STR: str = "/api/v1"

    DATABASE_URL: str = "sqlite:///./ridepromo.db"

    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Leave empty to run without Sentry
    SENTRY_DSN: str = ""

    # Vehicle classes the platform dispatches; anything else is rejected as input
    VEHICLE_TYPES: List[str] = ["bike", "auto", "car", "premium", "xl"]
    COUPON_RATE_LIMIT: str = "30/minute"
    COUPON_HISTORY_LIMIT: int = 50
    COUPON_STATS_RECENT_LIMIT: int = 50
    COUPON_TOP_LIMIT: int = 10
    CURRENCY_SYMBOL: str = "₹"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("VEHICLE_TYPES")
    @classmethod
    def normalize_vehicle_types(cls, value: List[str]) -> List[str]:
        normalized = [vehicle.strip().lower() for vehicle in value if vehicle and vehicle.strip()]
        if not normalized:
            raise ValueError("VEHICLE_TYPES must name at least one vehicle class")
        return normalized

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
