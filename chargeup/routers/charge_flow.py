"""
Charge Flow Router - navigate, start and end a charge

Settlement is not performed in the request: the session writes emit change
events that the settlement relay delivers in the background.
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies.auth import get_current_user
from ..models.user import User
from ..services.session_controller import SessionController
from .serializers import session_out, station_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/charge-flow", tags=["charge-flow"])


class Location(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class StationRequest(BaseModel):
    station_id: str


class StartChargeRequest(BaseModel):
    station_id: str
    location: Location


class EndChargeRequest(BaseModel):
    session_id: str
    station_id: str


class ProximityRequest(BaseModel):
    session_id: str
    location: Location


class ReminderAckRequest(BaseModel):
    session_id: str


@router.post("/navigate")
def navigate(
    request: StationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Reserve the station and return a driving-directions link"""
    result = SessionController(db).start_navigation(request.station_id, current_user.id)
    return {
        "station": station_out(result.station),
        "directions_url": result.directions_url,
    }


@router.post("/cancel")
def cancel(
    request: StationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    station = SessionController(db).cancel_navigation(request.station_id, current_user.id)
    return {"station": station_out(station)}


@router.post("/start", status_code=201)
def start_charge(
    request: StartChargeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    location = (request.location.lat, request.location.lng)
    result = SessionController(db).start_charge(request.station_id, current_user.id, location)
    return {
        "station": station_out(result.station),
        "session": session_out(result.session),
    }


@router.post("/end")
def end_charge(
    request: EndChargeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Close the session; the returned cost is provisional until settlement completes"""
    result = SessionController(db).end_charge(request.session_id, request.station_id, current_user.id)
    return {
        "session": session_out(result.session),
        "station": station_out(result.station),
        "duration_minutes": str(result.duration_minutes.quantize(Decimal("0.01"))),
        "total_cost": str(result.total_cost),
    }


@router.post("/proximity")
def check_proximity(
    request: ProximityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    location = (request.location.lat, request.location.lng)
    check = SessionController(db).check_proximity(request.session_id, current_user.id, location)
    return {
        "session_id": check.session_id,
        "distance_mi": round(check.distance_miles, 2),
        "show_reminder": check.show_reminder,
        "message": check.message,
    }


@router.post("/reminder/ack")
def acknowledge_reminder(
    request: ReminderAckRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    session = SessionController(db).acknowledge_reminder(request.session_id, current_user.id)
    return {"session": session_out(session)}


@router.get("/state")
def current_state(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The caller's occupied station and open session, if any"""
    state = SessionController(db).current_state(current_user.id)
    station: Optional[dict] = station_out(state.station) if state.station else None
    session: Optional[dict] = session_out(state.session) if state.session else None
    return {"station": station, "session": session}
