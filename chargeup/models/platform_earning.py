from ..core.clock import utcnow
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, UniqueConstraint

from ..db import Base


class PlatformEarning(Base):
    """Append-only platform revenue ledger, one row per completed session"""
    __tablename__ = "platform_earnings"

    id = Column(String(180), primary_key=True)  # "{session_id}_platform"
    session_id = Column(String(160), ForeignKey("charges.id"), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", name="uq_platform_earning_per_session"),
    )
