"""
Change feed rows.

Written in the same transaction as the document change they describe, then
delivered (before, after) to subscribers by the change feed dispatcher.
"""
from ..core.clock import utcnow
from sqlalchemy import Column, Integer, String, DateTime, Text, Index

from ..db import Base


class ChangeEvent(Base):
    __tablename__ = "change_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(32), nullable=False)  # charges, stations
    document_id = Column(String(160), nullable=False, index=True)
    before_json = Column(Text, nullable=True)  # null = document created
    after_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    delivered_at = Column(DateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_change_events_pending", "delivered_at", "id"),
    )
