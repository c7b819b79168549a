from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "ITravel Booking API"
    # Comma-separated origins for CORS (e.g. https://itravel.example,https://admin.itravel.example). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "bookings@itravel.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    CLIENT_BASE_URL: str = ""  # e.g. https://itravel.example - used in password reset links

    # Pricing (amounts are always integer cents)
    DEFAULT_CURRENCY: str = "eur"
    CHILD_DISCOUNT_PERCENT: int = 50
    SINGLE_SUPPLEMENT_PERCENT: int = 20
    GROUP_DISCOUNT_PERCENT: int = 10
    GROUP_DISCOUNT_THRESHOLD: int = 6
    MIN_CHARGE_CENTS: int = 100
    MAX_CHARGE_CENTS: int = 10_000_000

    # Payment gateway (Stripe-compatible REST API)
    PAYMENTS_SANDBOX: bool = False  # If True (or no key set), use the in-memory gateway; no real charges
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com"
    PAYMENTS_TIMEOUT_SECONDS: int = 15
    PAYMENTS_WEBHOOK_VERIFY: bool = False  # also verify in sandbox mode; live payments always verify
    STRIPE_WEBHOOK_SECRET: str = ""
    PAYMENTS_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Guest accounts
    PASSWORD_RESET_EXPIRY_HOURS: int = 24
    TEMP_PASSWORD_BYTES: int = 16

    # Background jobs
    STALE_BOOKING_HOURS: int = 24
    RECONCILE_AFTER_MINUTES: int = 30

    @field_validator("GROUP_DISCOUNT_THRESHOLD", mode="after")
    @classmethod
    def group_threshold_above_one(cls, v: int) -> int:
        """A single traveler must never qualify for the group discount."""
        if v < 2:
            raise ValueError("GROUP_DISCOUNT_THRESHOLD must be >= 2")
        return v

    @model_validator(mode="after")
    def webhook_secret_when_verifying(self) -> "Settings":
        if self.webhook_signature_required and not self.STRIPE_WEBHOOK_SECRET:
            raise ValueError("STRIPE_WEBHOOK_SECRET is required when payment webhooks are verified")
        return self

    @property
    def payments_sandbox(self) -> bool:
        return self.PAYMENTS_SANDBOX or not self.STRIPE_SECRET_KEY

    @property
    def webhook_signature_required(self) -> bool:
        return self.PAYMENTS_WEBHOOK_VERIFY or not self.payments_sandbox


settings = Settings()
