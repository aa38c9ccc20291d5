"""
Apply the ChargeUp schema with Alembic.

    python -m chargeup.run_migrations

Run before starting uvicorn. Upgrading an up-to-date database does nothing.
"""
from pathlib import Path
import logging

from alembic import command
from alembic.config import Config

from .core.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _redacted(url: str) -> str:
    # Keep host/database, drop credentials
    return url.split("@", 1)[-1]


def alembic_config(database_url: str = None) -> Config:
    ini_path = PROJECT_ROOT / "alembic.ini"
    if not ini_path.exists():
        logger.error(f"alembic.ini missing at {ini_path}")
        raise FileNotFoundError(f"alembic.ini missing at {ini_path}")

    cfg = Config(str(ini_path))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    # The runtime DATABASE_URL wins over whatever alembic.ini says
    cfg.set_main_option("sqlalchemy.url", database_url or settings.database_url)
    return cfg


def run_migrations(revision: str = "head", database_url: str = None) -> None:
    cfg = alembic_config(database_url)
    target = cfg.get_main_option("sqlalchemy.url")

    logger.info(f"Upgrading {_redacted(target)} to {revision}")
    try:
        command.upgrade(cfg, revision)
    except Exception as e:
        logger.error(f"Schema upgrade failed: {e}", exc_info=True)
        raise
    logger.info("Schema is up to date")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    run_migrations()
