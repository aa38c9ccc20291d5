"""
Charging station owned by a private host.
"""
from ..core.clock import utcnow
import enum

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Numeric, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship

from ..db import Base


class StationStatus(str, enum.Enum):
    AVAILABLE = "available"
    EN_ROUTE = "enRoute"
    CHARGING = "charging"


class NetworkType(str, enum.Enum):
    IN_NETWORK = "In-net"
    OUT_OF_NETWORK = "Out-net"


ADAPTER_TYPES = ("NACS", "CCS", "CHAdeMO", "J1772")


class Station(Base):
    __tablename__ = "stations"

    id = Column(String(160), primary_key=True)
    owner_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)

    address = Column(String, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    # Currency units per minute
    charge_rate = Column(Numeric(10, 4), nullable=False)
    adapter_types = Column(JSON, nullable=False, default=list)  # ["NACS", "CCS"]
    network_type = Column(String(10), nullable=False, default=NetworkType.IN_NETWORK.value)
    photo_url = Column(String, nullable=True)

    # Owner-controlled listing flag
    available = Column(Boolean, nullable=False, default=True)

    # Occupancy
    status = Column(String(10), nullable=False, default=StationStatus.AVAILABLE.value, index=True)
    driver_id = Column(String(128), nullable=True, index=True)
    en_route_at = Column(DateTime, nullable=True)
    revision = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=True)

    owner = relationship("User", foreign_keys=[owner_id])

    __table_args__ = (
        Index("ix_stations_status_en_route_at", "status", "en_route_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "charge_rate": str(self.charge_rate) if self.charge_rate is not None else None,
            "adapter_types": list(self.adapter_types or []),
            "network_type": self.network_type,
            "photo_url": self.photo_url,
            "available": self.available,
            "status": self.status,
            "driver_id": self.driver_id,
            "en_route_at": self.en_route_at.isoformat() if self.en_route_at else None,
            "revision": self.revision,
        }
