from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./reservations.db"

    # Admin tokens are issued elsewhere; this service only VERIFIES them
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ADMIN_AUTH_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: list[str] = ["*"]

    # --- Listing defaults ---
    DEFAULT_LISTING_ID: int = 49599459
    DEFAULT_NIGHTLY_RATE: Decimal = Decimal("350")
    CLEANING_FEE: Decimal = Decimal("199")
    SERVICE_FEE: Decimal = Decimal("0")

    # --- Payments (disabled unless the secret key is set) ---
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_PUBLISHABLE_KEY: str | None = None
    CURRENCY: str = "usd"

    # --- Calendar sync (disabled unless the calendar id is set) ---
    GOOGLE_CALENDAR_ID: str | None = None
    GOOGLE_CREDENTIALS_FILE: str = "google-credentials.json"
    CALENDAR_TIMEZONE: str = "America/Los_Angeles"
    CALENDAR_TIMEOUT_SECONDS: float = 10.0

    model_config = SettingsConfigDict(env_file=".env")


settings = Settings()
