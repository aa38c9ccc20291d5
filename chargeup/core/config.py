from pydantic import BaseModel
import logging
import os
from decimal import Decimal

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    # JWT secret shared with the identity provider that issues driver/owner tokens
    JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./chargeup.db")

    # Stripe configuration
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    ENABLE_STRIPE_PAYMENTS: bool = os.getenv("ENABLE_STRIPE_PAYMENTS", "false").lower() == "true"
    STRIPE_CURRENCY: str = os.getenv("STRIPE_CURRENCY", "usd")

    # Nominal hold placed when a session opens ($1.00); the real amount is captured on close
    AUTHORIZATION_AMOUNT_CENTS: int = int(os.getenv("AUTHORIZATION_AMOUNT_CENTS", "100"))

    # Platform fee in basis points (500 = 5%); the owner receives the remainder
    PLATFORM_FEE_BPS: int = int(os.getenv("PLATFORM_FEE_BPS", "500"))

    # Charge flow geometry (miles)
    CHARGE_RADIUS_MI: float = float(os.getenv("CHARGE_RADIUS_MI", "0.5"))
    DEFAULT_SEARCH_RADIUS_MI: float = float(os.getenv("DEFAULT_SEARCH_RADIUS_MI", "25"))

    # En-route reservations older than this are released
    EN_ROUTE_TIMEOUT_MINUTES: int = int(os.getenv("EN_ROUTE_TIMEOUT_MINUTES", "15"))

    # Background workers
    SETTLEMENT_POLL_INTERVAL_SECONDS: int = int(os.getenv("SETTLEMENT_POLL_INTERVAL_SECONDS", "5"))
    RESERVATION_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("RESERVATION_SWEEP_INTERVAL_SECONDS", "60"))
    CHANGE_EVENT_MAX_ATTEMPTS: int = int(os.getenv("CHANGE_EVENT_MAX_ATTEMPTS", "5"))
    WORKERS_ENABLED: bool = os.getenv("WORKERS_ENABLED", "true").lower() == "true"

    # Optimistic concurrency on owner wallet balances
    WALLET_CAS_MAX_ATTEMPTS: int = int(os.getenv("WALLET_CAS_MAX_ATTEMPTS", "5"))

    # Directions deep link opened by the client after a reservation
    DIRECTIONS_BASE_URL: str = os.getenv("DIRECTIONS_BASE_URL", "https://www.google.com/maps/dir/")

    ENV: str = os.getenv("ENV", "dev")  # dev, staging, prod
    SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL

    @property
    def platform_fee_rate(self) -> Decimal:
        return Decimal(self.PLATFORM_FEE_BPS) / Decimal(10000)

    @property
    def payments_live(self) -> bool:
        """Live Stripe calls only when explicitly enabled and a key is present."""
        return self.ENABLE_STRIPE_PAYMENTS and bool(self.STRIPE_SECRET_KEY)


settings = Settings()


def validate_config():
    """Validate configuration at startup. Raises ValueError if invalid."""
    if settings.ENABLE_STRIPE_PAYMENTS and not settings.STRIPE_SECRET_KEY:
        error_msg = "ENABLE_STRIPE_PAYMENTS is true but STRIPE_SECRET_KEY is not set"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if not 0 <= settings.PLATFORM_FEE_BPS <= 10000:
        error_msg = f"PLATFORM_FEE_BPS must be between 0 and 10000, got {settings.PLATFORM_FEE_BPS}"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if settings.AUTHORIZATION_AMOUNT_CENTS < 50:
        # Stripe rejects USD charges under $0.50
        error_msg = f"AUTHORIZATION_AMOUNT_CENTS must be at least 50, got {settings.AUTHORIZATION_AMOUNT_CENTS}"
        logger.error(error_msg)
        raise ValueError(error_msg)

    # Production safety gates
    if settings.ENV == "prod":
        if not settings.JWT_SECRET or settings.JWT_SECRET == "dev-secret-change-me":
            error_msg = (
                "CRITICAL SECURITY ERROR: JWT_SECRET must be set and not use default value in production."
            )
            logger.error(error_msg)
            raise ValueError(error_msg)

        if settings.database_url.startswith("sqlite"):
            error_msg = "CRITICAL: SQLite database is not supported in production. Use PostgreSQL."
            logger.error(error_msg)
            raise ValueError(error_msg)

        if not settings.payments_live:
            error_msg = "CRITICAL: Stripe payments must be enabled in production (ENABLE_STRIPE_PAYMENTS + STRIPE_SECRET_KEY)"
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info("Production safety gates validated")

    logger.info("Configuration validation complete")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Stripe payments live: {settings.payments_live}")
