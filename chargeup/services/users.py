"""
Driver and owner accounts: identity-provider users, stored card, payout
destination and wallet summary.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from chargeup.core.clock import utcnow
from chargeup.core.errors import NotFound
from chargeup.models.charge import ChargeSession, ChargeStatus
from chargeup.models.station import Station
from chargeup.models.user import User

logger = logging.getLogger(__name__)


class UserService:
    @staticmethod
    def get_or_create(db: Session, user_id: str, email: Optional[str] = None) -> User:
        """Users are created on first authenticated request."""
        user = db.get(User, user_id)
        if user is not None:
            return user
        now = utcnow()
        user = User(
            id=user_id,
            email=email,
            role="Driver",
            wallet_balance_cents=0,
            revision=0,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"Created user {user_id}")
        return user

    @staticmethod
    def get(db: Session, user_id: str) -> User:
        user = db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    @staticmethod
    def set_payment_method(
        db: Session,
        user_id: str,
        payment_method_id: str,
        customer_id: Optional[str] = None,
    ) -> User:
        user = UserService.get(db, user_id)
        user.stripe_payment_method_id = payment_method_id
        if customer_id:
            user.stripe_customer_id = customer_id
        user.updated_at = utcnow()
        db.commit()
        db.refresh(user)
        logger.info(f"Stored payment method for user {user_id}")
        return user

    @staticmethod
    def clear_payment_method(db: Session, user_id: str) -> User:
        user = UserService.get(db, user_id)
        user.stripe_payment_method_id = None
        user.updated_at = utcnow()
        db.commit()
        db.refresh(user)
        logger.info(f"Removed payment method for user {user_id}")
        return user

    @staticmethod
    def set_payout_account(db: Session, user_id: str, stripe_account_id: str) -> User:
        user = UserService.get(db, user_id)
        user.stripe_account_id = stripe_account_id
        if user.role == "Driver":
            user.role = "Both"
        user.updated_at = utcnow()
        db.commit()
        db.refresh(user)
        logger.info(f"Linked payout account for owner {user_id}")
        return user

    @staticmethod
    def wallet_summary(db: Session, owner_id: str) -> Dict[str, Any]:
        owner = UserService.get(db, owner_id)
        completed = (
            db.query(ChargeSession)
            .join(Station, Station.id == ChargeSession.station_id)
            .filter(
                Station.owner_id == owner_id,
                ChargeSession.status == ChargeStatus.COMPLETED.value,
            )
            .all()
        )
        return {
            "balance_cents": owner.wallet_balance_cents,
            "payout_account_linked": bool(owner.stripe_account_id),
            "completed_sessions": len(completed),
            "lifetime_earnings_cents": sum(s.owner_share_cents or 0 for s in completed),
        }
