"""
Application lifespan management for startup and shutdown events
"""
import logging
from contextlib import asynccontextmanager

from sqlalchemy import text

from .core.config import settings, validate_config
from .core.env import is_local_env
from .db import get_engine
from .events.change_feed import change_feed
from .services.payments import get_payment_provider
from .services.settlement import subscribe_settlement
from .workers.reservation_sweeper import ReservationSweeper
from .workers.settlement_relay import SettlementRelay

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    """Manage application lifespan events"""
    logger.info("Starting ChargeUp backend...")

    validate_config()

    engine = get_engine()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
    except Exception as e:
        if is_local_env():
            logger.warning(f"Database connection failed in local/dev environment: {e}")
        else:
            logger.error(f"Database connection failed in production: {e}")
            raise

    subscription = None
    relay = None
    sweeper = None
    if settings.WORKERS_ENABLED:
        change_feed.max_attempts = settings.CHANGE_EVENT_MAX_ATTEMPTS
        subscription = subscribe_settlement(change_feed, get_payment_provider())
        relay = SettlementRelay(change_feed, poll_interval=settings.SETTLEMENT_POLL_INTERVAL_SECONDS)
        sweeper = ReservationSweeper(poll_interval=settings.RESERVATION_SWEEP_INTERVAL_SECONDS)
        await relay.start()
        await sweeper.start()
    else:
        logger.info("Background workers disabled (WORKERS_ENABLED=false)")

    app.state.change_feed = change_feed

    yield

    logger.info("Shutting down ChargeUp backend...")
    if sweeper:
        await sweeper.stop()
    if relay:
        await relay.stop()
    if subscription:
        subscription.cancel()
    logger.info("Shutdown complete")
