"""
Test helpers for charge flow tests.

Users, stations and a controllable clock.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from chargeup.core.security import create_access_token
from chargeup.models.station import Station
from chargeup.models.user import User
from chargeup.services.station_registry import StationRegistry

# Downtown San Francisco; 0.01 deg of latitude is ~0.69 mi
STATION_LAT = 37.7749
STATION_LNG = -122.4194
NEARBY = (37.7750, -122.4195)
FAR_AWAY = (37.8049, -122.4194)


class FakeClock:
    """Deterministic clock injected wherever services take `clock`."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


_default_clock = FakeClock()


def create_user(
    db: Session,
    user_id: str,
    email: Optional[str] = None,
    role: str = "Driver",
    payment_method: Optional[str] = None,
    payout_account: Optional[str] = None,
    wallet_balance_cents: int = 0,
) -> User:
    user = User(
        id=user_id,
        email=email,
        role=role,
        stripe_payment_method_id=payment_method,
        stripe_account_id=payout_account,
        wallet_balance_cents=wallet_balance_cents,
        revision=0,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_station(
    db: Session,
    owner_id: str,
    clock=None,
    latitude: float = STATION_LAT,
    longitude: float = STATION_LNG,
    charge_rate: str = "2.00",
    adapter_types=("NACS", "CCS"),
    network_type: str = "In-net",
    address: str = "1 Market St, San Francisco, CA",
) -> Station:
    clock = clock or _default_clock
    registry = StationRegistry(db, clock)
    station = registry.create_station(
        owner_id=owner_id,
        address=address,
        latitude=latitude,
        longitude=longitude,
        charge_rate=Decimal(charge_rate),
        adapter_types=list(adapter_types),
        network_type=network_type,
    )
    # Distinct ids for stations created at the same fake instant
    clock.advance(milliseconds=1)
    return station


def auth_headers(user_id: str, email: Optional[str] = None) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, email)}"}
