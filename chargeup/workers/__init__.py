"""
Background workers started from the application lifespan.
"""
from contextlib import contextmanager

from chargeup.db import SessionLocal


@contextmanager
def get_db_session():
    """Context manager for database sessions"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
