import os
from typing import Literal, Optional
from dotenv import load_dotenv
import logging


logger = logging.getLogger(__name__)

# Load environment variables from .env file located in the backend directory.
# Environment variables explicitly set (e.g., by Docker Compose) take precedence.
BASE_DIR = os.path.dirname(os.path.dirname(__file__))
ENV_PATH = os.path.join(BASE_DIR, '.env')
load_dotenv(ENV_PATH)


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """
    Parses a boolean flag from an environment string.
    Accepts "1", "true", "yes" and "on" (any casing) as True.
    """
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # --- General Environment Settings ---
    # ENVIRONMENT determines application behavior (e.g., email no-op mode, SQL echo).
    ENVIRONMENT: Literal["local", "staging",
                         "production"] = os.getenv('ENVIRONMENT', 'local')

    # --- PostgreSQL Database Configuration ---
    POSTGRES_USER: str = os.getenv('POSTGRES_USER', 'storefront')
    POSTGRES_PASSWORD: str = os.getenv('POSTGRES_PASSWORD', 'storefront_password')
    POSTGRES_SERVER: str = os.getenv('POSTGRES_SERVER', 'postgres')
    POSTGRES_PORT: int = int(os.getenv('POSTGRES_PORT', 5432))
    POSTGRES_DB: str = os.getenv('POSTGRES_DB', 'storefront_db')

    # Full database URL. Takes precedence over the individual components when set.
    POSTGRES_DB_URL: str = os.getenv('POSTGRES_DB_URL', "")

    # --- Mailgun Configuration ---
    MAILGUN_API_KEY: str = os.getenv('MAILGUN_API_KEY', '')
    MAILGUN_DOMAIN: str = os.getenv('MAILGUN_DOMAIN', '')
    MAILGUN_FROM_EMAIL: str = os.getenv('MAILGUN_FROM_EMAIL', 'Dazzle Jewelry <noreply@dazzlejewelry.com>')

    # --- Branding used in email templates ---
    BRAND_NAME: str = os.getenv('BRAND_NAME', 'Dazzle Jewelry')
    SUPPORT_EMAIL: str = os.getenv('SUPPORT_EMAIL', 'support@dazzlejewelry.com')
    CURRENCY_SYMBOL: str = os.getenv('CURRENCY_SYMBOL', '₹')
    FRONTEND_URL: str = os.getenv('FRONTEND_URL', 'http://localhost:3000')

    # --- Admin recipient for new-order and priority alerts ---
    ADMIN_EMAIL: str = os.getenv('ADMIN_EMAIL', 'admin@example.com')

    # --- Notification dispatch ---
    # Total send attempts per notification (first try included).
    NOTIFICATION_MAX_ATTEMPTS: int = int(os.getenv('NOTIFICATION_MAX_ATTEMPTS', 3))
    # Window during which admin new-order alerts are coalesced.
    NOTIFICATION_BATCH_WINDOW_SECONDS: float = float(
        os.getenv('NOTIFICATION_BATCH_WINDOW_SECONDS', 60))

    # --- Delivery pricing ---
    DELIVERY_SETTINGS_CACHE_TTL_SECONDS: float = float(
        os.getenv('DELIVERY_SETTINGS_CACHE_TTL_SECONDS', 300))
    LOCAL_DELIVERY_RADIUS_KM: float = float(os.getenv('LOCAL_DELIVERY_RADIUS_KM', 10))
    PINCODE_LOOKUP_URL: str = os.getenv(
        'PINCODE_LOOKUP_URL', 'https://nominatim.openstreetmap.org/search')
    PINCODE_LOOKUP_TIMEOUT_SECONDS: float = float(
        os.getenv('PINCODE_LOOKUP_TIMEOUT_SECONDS', 5))
    PINCODE_LOOKUP_USER_AGENT: str = os.getenv(
        'PINCODE_LOOKUP_USER_AGENT', 'DazzleJewelry-Checkout/1.0')

    # --- Pricing ---
    TAX_RATE_PERCENT: float = float(os.getenv('TAX_RATE_PERCENT', 18))

    # --- Reports ---
    REPORT_ASYNC_THRESHOLD: int = int(os.getenv('REPORT_ASYNC_THRESHOLD', 1000))
    REPORT_JOB_RETENTION_DAYS: int = int(os.getenv('REPORT_JOB_RETENTION_DAYS', 30))

    # --- Razorpay payment gateway ---
    RAZORPAY_KEY_ID: str = os.getenv('RAZORPAY_KEY_ID', '')
    RAZORPAY_KEY_SECRET: str = os.getenv('RAZORPAY_KEY_SECRET', '')
    RAZORPAY_TEST_MODE: bool = parse_bool(os.getenv('RAZORPAY_TEST_MODE'), default=False)

    # --- Logging ---
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT: str = os.getenv('LOG_FORMAT', 'json')

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """
        Constructs the SQLAlchemy database URI.
        Prioritizes a full URL (POSTGRES_DB_URL) over individual components.
        """
        if self.POSTGRES_DB_URL:
            return self.POSTGRES_DB_URL

        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


# Instantiate the settings object to be used throughout the application
settings = Settings()
