"""
Me Router - the caller's billing card and payout account

Card entry and Connect onboarding happen client-side with Stripe; these
endpoints only store the resulting ids.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies.auth import get_current_user
from ..models.user import User
from ..services.users import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/me", tags=["me"])


class PaymentMethodRequest(BaseModel):
    payment_method_id: str = Field(min_length=1)
    customer_id: Optional[str] = None


class PayoutAccountRequest(BaseModel):
    stripe_account_id: str = Field(min_length=1)


def _profile(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "has_payment_method": bool(user.stripe_payment_method_id),
        "payout_account_linked": bool(user.stripe_account_id),
        "wallet_balance_cents": user.wallet_balance_cents,
    }


@router.get("")
def get_me(current_user: User = Depends(get_current_user)):
    return _profile(current_user)


@router.put("/payment-method")
def set_payment_method(
    request: PaymentMethodRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user = UserService.set_payment_method(db, current_user.id, request.payment_method_id, request.customer_id)
    return _profile(user)


@router.delete("/payment-method")
def clear_payment_method(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user = UserService.clear_payment_method(db, current_user.id)
    return _profile(user)


@router.put("/payout-account")
def set_payout_account(
    request: PayoutAccountRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user = UserService.set_payout_account(db, current_user.id, request.stripe_account_id)
    return _profile(user)
