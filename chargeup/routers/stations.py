"""
Stations Router - driver map listing and owner station management
"""
import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.config import settings
from ..db import get_db
from ..dependencies.auth import get_current_user
from ..models.station import NetworkType
from ..models.user import User
from ..services.station_filters import nearby_stations
from ..services.station_registry import StationRegistry
from .serializers import station_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/stations", tags=["stations"])


class CreateStationRequest(BaseModel):
    address: str
    latitude: float
    longitude: float
    charge_rate: Decimal
    adapter_types: List[str] = []
    network_type: str = NetworkType.IN_NETWORK.value
    photo_url: Optional[str] = None


class AvailabilityRequest(BaseModel):
    available: bool


@router.get("")
def list_stations(
    adapter: Optional[str] = None,
    level: Optional[str] = None,
    network: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius_mi: float = Query(default=settings.DEFAULT_SEARCH_RADIUS_MI, gt=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Listed stations matching the map filters, nearest first when a location is given"""
    origin = (lat, lng) if lat is not None and lng is not None else None
    registry = StationRegistry(db)
    stations = nearby_stations(
        registry.list_stations(include_unavailable=False),
        origin=origin,
        adapter=adapter,
        level=level,
        network=network,
        radius_mi=radius_mi,
    )
    return {"stations": [station_out(s, origin) for s in stations], "count": len(stations)}


@router.get("/{station_id}")
def get_station(
    station_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return station_out(StationRegistry(db).get(station_id))


@router.post("", status_code=201)
def create_station(
    request: CreateStationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List a new station owned by the caller"""
    station = StationRegistry(db).create_station(
        owner_id=current_user.id,
        address=request.address,
        latitude=request.latitude,
        longitude=request.longitude,
        charge_rate=request.charge_rate,
        adapter_types=request.adapter_types,
        network_type=request.network_type,
        photo_url=request.photo_url,
    )
    return station_out(station)


@router.patch("/{station_id}/availability")
def set_availability(
    station_id: str,
    request: AvailabilityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    station = StationRegistry(db).set_availability(station_id, current_user.id, request.available)
    return station_out(station)
