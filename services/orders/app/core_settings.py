from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    DATABASE_URL: Optional[str] = None
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "homefoods"
    POSTGRES_USER: str = "homefoods"
    POSTGRES_PASSWORD: str = "homefoods"

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    # Payment gateway
    PAYMENT_PROVIDER: str = "razorpay"
    PAYMENT_CURRENCY: str = "INR"
    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    API_BASE_URL: str = "http://localhost:8000"
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    RAZORPAY_API_BASE_URL: str = "https://api.razorpay.com/v1"
    CASHFREE_APP_ID: Optional[str] = None
    CASHFREE_SECRET_KEY: Optional[str] = None
    CASHFREE_API_BASE_URL: str = "https://sandbox.cashfree.com/pg"
    CASHFREE_API_VERSION: str = "2022-09-01"

    # Delivery hub and radius
    HUB_LATITUDE: float = 12.9716
    HUB_LONGITUDE: float = 80.2340
    MAX_DELIVERY_RADIUS_KM: float = 25.0
    BASE_PREP_MINUTES: int = 30
    MINUTES_PER_KM: float = 3.0
    MAX_ETA_MINUTES: int = 120
    SLOT_BUFFER_MINUTES: int = 30

    # Pricing defaults and business rules
    TAX_RATE: float = 0.05
    NEAR_DELIVERY_FEE: float = 30.0
    FAR_DELIVERY_FEE: float = 50.0
    FAR_DELIVERY_THRESHOLD_KM: float = 5.0
    MIN_CANCEL_REASON_LENGTH: int = 5

    # Profile and address lookups; unset reads the local directory tables
    USERS_SERVICE_URL: Optional[str] = None
    DIRECTORY_TIMEOUT_SECONDS: float = 5.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
