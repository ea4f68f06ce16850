"""
Application configuration.
Values are read from environment variables / .env file. Pricing and points
constants live here too so the booking engine, the webhook handlers and the
tests all agree on the same numbers.
"""
import logging
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    APP_ENV: str = "development"
    DATABASE_URL: str = "postgresql+asyncpg://localhost/lafade"
    JWT_SECRET_KEY: str = ""

    # Stripe (payment gateway)
    STRIPE_API_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_STANDARD_PRICE_ID: str = ""
    STRIPE_DELUXE_PRICE_ID: str = ""

    # SendGrid Email
    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = "bookings@lafade.com"
    SENDGRID_FROM_NAME: str = "LaFade"

    # Booking rules
    APPOINTMENT_DURATION_MINUTES: int = 30
    SHOP_OPENS_AT: str = "09:00"
    SHOP_CLOSES_AT: str = "18:00"

    # Pricing (minor currency units)
    SECOND_CUT_PRICE_CENTS: int = 1000
    SECOND_CUT_WINDOW_DAYS: int = 10
    STANDARD_CUT_PRICE_CENTS: int = 4500
    DELUXE_CUT_PRICE_CENTS: int = 9000

    # Points
    POINTS_PER_BOOKING: int = 5
    SUBSCRIBE_BONUS_POINTS: int = 10
    RENEWAL_BONUS_POINTS: int = 12

    # One-time payment intents
    PAYMENT_INTENT_TTL_MINUTES: int = 120
    CASH_APP_TAG: str = "LaFade01"

    class Config:
        env_file = ".env"


settings = Settings()

# Validate critical security settings
if not settings.JWT_SECRET_KEY:
    if settings.APP_ENV == "production":
        raise ValueError(
            "JWT_SECRET_KEY is not set. It must exist as a JWT_SECRET_KEY environment variable "
            "in production so bearer tokens from the identity provider can be verified."
        )
    logger.warning("JWT_SECRET_KEY is not set; bearer tokens cannot be verified.")
