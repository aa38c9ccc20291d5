from ..core.clock import utcnow
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint

from ..db import Base


class User(Base):
    """
    Driver and/or station owner.

    The id is the identity provider's uid. Drivers keep a Stripe payment
    method on file; owners may link a Stripe Connect account as payout
    destination, otherwise their share accrues in the in-app wallet.
    """
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    email = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(String(10), nullable=False, default="Driver")  # Driver, Owner, Both

    stripe_customer_id = Column(String(255), nullable=True)
    stripe_payment_method_id = Column(String(255), nullable=True)
    stripe_account_id = Column(String(255), nullable=True)

    wallet_balance_cents = Column(Integer, nullable=False, default=0)
    # Bumped on every balance write; wallet credits compare-and-set on it
    revision = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=True)

    __table_args__ = (
        CheckConstraint('wallet_balance_cents >= 0', name='ck_user_wallet_non_negative'),
    )
