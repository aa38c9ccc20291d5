"""
Owner Router - the caller's own stations and wallet
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies.auth import get_current_user
from ..models.user import User
from ..services.station_registry import StationRegistry
from ..services.users import UserService
from .serializers import station_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/owner", tags=["owner"])


@router.get("/stations")
def list_my_stations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    stations = StationRegistry(db).list_by_owner(current_user.id)
    return {"stations": [station_out(s) for s in stations], "count": len(stations)}


@router.get("/wallet")
def get_wallet(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Accrued wallet balance for owners without a linked payout account"""
    return UserService.wallet_summary(db, current_user.id)
