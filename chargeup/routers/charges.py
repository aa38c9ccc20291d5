"""
Charges Router - the driver's charge history
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.errors import NotFound
from ..db import get_db
from ..dependencies.auth import get_current_user_id
from ..services.session_store import SessionStore
from .serializers import session_out

router = APIRouter(prefix="/v1/charges", tags=["charges"])


@router.get("")
def list_charges(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    driver_id: str = Depends(get_current_user_id),
):
    """Newest first"""
    sessions = SessionStore(db).list_by_driver(driver_id, limit=limit, offset=offset)
    return {"charges": [session_out(s) for s in sessions], "count": len(sessions)}


@router.get("/{session_id}")
def get_charge(
    session_id: str,
    db: Session = Depends(get_db),
    driver_id: str = Depends(get_current_user_id),
):
    session = SessionStore(db).get(session_id)
    if session.driver_id != driver_id:
        raise NotFound(f"Charge session {session_id} not found")
    return session_out(session)
