"""
Charge session model.

One row per charging engagement, from plug-in to settlement. Timing and cost
are written by the charge flow; payment fields and terminal status are
written only by settlement.
"""
from ..core.clock import utcnow
import enum

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from ..db import Base


class ChargeStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (ChargeStatus.PENDING.value, ChargeStatus.AUTHORIZED.value)
TERMINAL_STATUSES = (ChargeStatus.COMPLETED.value, ChargeStatus.FAILED.value)


class ReminderState(str, enum.Enum):
    NONE = "none"
    SHOWN = "shown"
    ACKNOWLEDGED = "acknowledged"


class ChargeSession(Base):
    __tablename__ = "charges"

    # "{driver_id}_{start_epoch_ms}"
    id = Column(String(160), primary_key=True)
    station_id = Column(String(160), ForeignKey("stations.id"), nullable=False, index=True)
    driver_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)  # null = still charging
    rate_at_close = Column(Numeric(10, 4), nullable=True)
    total_cost = Column(Numeric(12, 4), nullable=True)

    status = Column(String(12), nullable=False, default=ChargeStatus.PENDING.value, index=True)
    payment_intent_id = Column(String(255), nullable=True)

    # Settlement results
    amount_cents = Column(Integer, nullable=True)
    platform_share_cents = Column(Integer, nullable=True)
    owner_share_cents = Column(Integer, nullable=True)
    payout_method = Column(String(10), nullable=True)  # transfer, wallet
    transfer_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)

    reminder_state = Column(String(12), nullable=False, default=ReminderState.NONE.value)
    revision = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=True)

    station = relationship("Station", foreign_keys=[station_id])
    driver = relationship("User", foreign_keys=[driver_id])

    __table_args__ = (
        Index("ix_charges_driver_status", "driver_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        """Snapshot used for change events and API responses."""
        return {
            "id": self.id,
            "station_id": self.station_id,
            "driver_id": self.driver_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "rate_at_close": str(self.rate_at_close) if self.rate_at_close is not None else None,
            "total_cost": str(self.total_cost) if self.total_cost is not None else None,
            "status": self.status,
            "payment_intent_id": self.payment_intent_id,
            "amount_cents": self.amount_cents,
            "platform_share_cents": self.platform_share_cents,
            "owner_share_cents": self.owner_share_cents,
            "payout_method": self.payout_method,
            "transfer_id": self.transfer_id,
            "error": self.error,
            "reminder_state": self.reminder_state,
            "revision": self.revision,
        }
