"""
ChargeUp API application.

    uvicorn chargeup.main:app
"""
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

import sentry_sdk  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from sentry_sdk.integrations.fastapi import FastApiIntegration  # noqa: E402
from sentry_sdk.integrations.logging import LoggingIntegration  # noqa: E402
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration  # noqa: E402

from . import __version__  # noqa: E402
from .core.config import settings  # noqa: E402
from .core.env import get_env_name, is_local_env  # noqa: E402
from .exception_handlers import register_exception_handlers  # noqa: E402
from .lifespan import lifespan  # noqa: E402
from .routers import charge_flow, charges, me, owner, stations  # noqa: E402

# Configure logging for production visibility
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("chargeup")

# Sentry error tracking only outside local environments
env = get_env_name()
if settings.SENTRY_DSN and not is_local_env():
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=0.1,
        environment=env,
        send_default_pii=False,
    )
    logger.info(f"Sentry error tracking initialized for environment: {env}")
elif settings.SENTRY_DSN:
    logger.info("Sentry DSN configured but not initializing in local environment")

app = FastAPI(title="ChargeUp Backend", version=__version__, lifespan=lifespan)


@app.get("/healthz")
async def healthz():
    """Liveness probe; never touches the database."""
    return {
        "ok": True,
        "service": "chargeup-backend",
        "version": __version__,
        "status": "healthy",
    }


register_exception_handlers(app)

app.include_router(stations.router)
app.include_router(owner.router)
app.include_router(charge_flow.router)
app.include_router(charges.router)
app.include_router(me.router)
