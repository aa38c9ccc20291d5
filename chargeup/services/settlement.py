"""
Settlement Engine - two-phase payment for charge sessions.

Driven by `charges` change events:

    Phase 1 (session created, pending):
        authorize a nominal hold on the driver's card -> authorized
    Phase 2 (end_time first set, status authorized):
        capture the real amount, split 95/5, pay the owner by transfer or
        wallet credit, append the platform ledger row -> completed

Any failure in a phase marks the session failed with the error recorded.
Transient failures (provider timeouts, wallet write conflicts) are raised as
Unavailable instead, so the change feed redelivers the event; the last
attempt records them as failed. The station is never touched here.
Re-delivered events are no-ops because every phase first checks the
session's current stored status.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from chargeup.core.clock import Clock, utcnow
from chargeup.core.config import settings
from chargeup.core.errors import ChargeFlowError, NoPaymentMethod, PaymentFailed, Unavailable
from chargeup.events.change_feed import CHARGES, ChangeFeed, ChangeNotice, Subscription
from chargeup.models.charge import ChargeSession, ChargeStatus
from chargeup.models.platform_earning import PlatformEarning
from chargeup.models.station import NetworkType, Station
from chargeup.models.user import User
from chargeup.services.payments import (
    PaymentMethodRef,
    PaymentProvider,
    PaymentProviderError,
)
from chargeup.services.session_store import SessionStore

logger = logging.getLogger(__name__)

CENT = Decimal("1")


def to_cents(total: Decimal) -> int:
    """Currency units to integer cents, rounding half up."""
    return int((Decimal(total) * 100).quantize(CENT, rounding=ROUND_HALF_UP))


def compute_split(amount_cents: int, fee_rate: Decimal) -> Tuple[int, int]:
    """
    Split a captured amount into (platform, owner) cents.

    The platform share is rounded half up; the owner gets the remainder, so
    the two always add back to amount_cents.
    """
    platform = int((Decimal(amount_cents) * fee_rate).quantize(CENT, rounding=ROUND_HALF_UP))
    return platform, amount_cents - platform


class SettlementEngine:
    """
    `final_attempt` is False while the change feed will redeliver the event:
    transient failures then raise Unavailable so the phase is retried, and
    only the last attempt records the session as failed.
    """

    def __init__(
        self,
        db: Session,
        provider: PaymentProvider,
        clock: Clock = utcnow,
        fee_rate: Optional[Decimal] = None,
        authorization_amount_cents: Optional[int] = None,
        wallet_max_attempts: Optional[int] = None,
        final_attempt: bool = True,
    ):
        self.db = db
        self.provider = provider
        self.clock = clock
        self.store = SessionStore(db, clock)
        self.fee_rate = fee_rate if fee_rate is not None else settings.platform_fee_rate
        self.authorization_amount_cents = (
            authorization_amount_cents
            if authorization_amount_cents is not None
            else settings.AUTHORIZATION_AMOUNT_CENTS
        )
        self.wallet_max_attempts = wallet_max_attempts or settings.WALLET_CAS_MAX_ATTEMPTS
        self.final_attempt = final_attempt

    def handle_charge_change(self, notice: ChangeNotice) -> None:
        before, after = notice.before, notice.after
        if after is None:
            return

        if before is None:
            if after.get("status") == ChargeStatus.PENDING.value:
                self.authorize(notice.document_id)
            return

        if before.get("end_time") is None and after.get("end_time") is not None:
            self.capture_and_split(notice.document_id)

    # ------------------------------------------------------------------
    # Phase 1
    # ------------------------------------------------------------------

    def authorize(self, session_id: str) -> ChargeSession:
        session = self.store.get(session_id)
        if session.status == ChargeStatus.AUTHORIZED.value and session.end_time is not None:
            # Redelivery after the inline capture below did not finish
            return self.capture_and_split(session_id)
        if session.status != ChargeStatus.PENDING.value:
            logger.info(f"Authorization skipped for {session_id}: status is {session.status}")
            return session

        payment_method = self._payment_method_for(session.driver_id)
        if payment_method is None:
            logger.warning(f"Driver {session.driver_id} has no payment method, failing session {session_id}")
            self.store.mark_failed(session, NoPaymentMethod().message, expected=(ChargeStatus.PENDING.value,))
            return session

        try:
            authorization = self.provider.create_authorization(
                payment_method,
                self.authorization_amount_cents,
                idempotency_key=f"auth_{session.id}",
                metadata=self._metadata(session),
            )
        except PaymentProviderError as e:
            logger.error(f"Authorization failed for session {session_id}: {e.message}")
            self._fail(session, f"Authorization failed: {e.message}", ChargeStatus.PENDING, transient=e.transient)
            return session

        if not self.store.mark_authorized(session, authorization.id):
            logger.warning(f"Session {session_id} is {session.status}, releasing hold {authorization.id}")
            self._cancel_hold(authorization.id)
            return session

        logger.info(
            f"Authorized {self.authorization_amount_cents} cents for session {session_id} "
            f"({authorization.id})"
        )

        # Closed while the authorization was in flight: settle now
        if session.end_time is not None:
            logger.info(f"Session {session_id} closed before authorization finished, capturing now")
            self.capture_and_split(session.id)
        return session

    # ------------------------------------------------------------------
    # Phase 2
    # ------------------------------------------------------------------

    def capture_and_split(self, session_id: str) -> ChargeSession:
        session = self.store.get(session_id)
        if session.status != ChargeStatus.AUTHORIZED.value:
            # Pending: capture runs once authorization lands. Terminal: duplicate delivery.
            logger.info(f"Capture skipped for {session_id}: status is {session.status}")
            return session
        if session.end_time is None:
            return session

        station = self.db.get(Station, session.station_id)
        amount_cents = to_cents(session.total_cost or Decimal("0"))

        if amount_cents <= 0 or station.network_type == NetworkType.OUT_OF_NETWORK.value:
            self._cancel_hold(session.payment_intent_id)
            self.store.mark_completed(session, 0, 0, 0)
            logger.info(f"Session {session_id} settled without charge (amount={amount_cents}, network={station.network_type})")
            return session

        platform_cents, owner_cents = compute_split(amount_cents, self.fee_rate)

        try:
            hold = self.provider.retrieve_authorization(session.payment_intent_id)
            receipt = self.provider.update_and_capture(
                hold,
                amount_cents,
                idempotency_key=f"capture_{session.id}",
                payment_method=self._payment_method_for(session.driver_id),
                metadata=self._metadata(session),
            )
        except PaymentProviderError as e:
            logger.error(f"Capture failed for session {session_id}: {e.message}")
            self._fail(
                session,
                f"{PaymentFailed.default_message} {e.message}",
                ChargeStatus.AUTHORIZED,
                transient=e.transient,
            )
            return session

        owner = self.db.get(User, station.owner_id)
        transfer_id = None
        if owner is not None and owner.stripe_account_id:
            try:
                transfer_id = self.provider.transfer(
                    owner.stripe_account_id,
                    owner_cents,
                    receipt.charge_id,
                    session.id,
                )
            except PaymentProviderError as e:
                logger.error(f"Owner transfer failed for session {session_id}: {e.message}")
                self._fail(session, f"Owner transfer failed: {e.message}", ChargeStatus.AUTHORIZED, transient=e.transient)
                return session
            payout_method = "transfer"
        else:
            payout_method = "wallet"

        def write_ledgers():
            if payout_method == "wallet":
                self.credit_owner_wallet(station.owner_id, owner_cents)
            self.record_platform_earning(session.id, platform_cents)

        try:
            completed = self.store.mark_completed(
                session,
                amount_cents,
                platform_cents,
                owner_cents,
                payout_method=payout_method,
                transfer_id=transfer_id,
                before_commit=write_ledgers,
            )
        except ChargeFlowError as e:
            self.db.rollback()
            logger.error(f"Ledger write failed for session {session_id}: {e.message}")
            self._fail(
                session,
                f"Settlement failed: {e.message}",
                ChargeStatus.AUTHORIZED,
                transient=isinstance(e, Unavailable),
            )
            return session

        if completed:
            logger.info(
                f"Settled session {session_id}: amount={amount_cents} platform={platform_cents} "
                f"owner={owner_cents} via {payout_method}"
            )
        return session

    def _fail(self, session: ChargeSession, error: str, expected: ChargeStatus, transient: bool = False) -> None:
        """
        Record a phase failure. Transient errors are raised as Unavailable
        instead while the event has attempts left.
        """
        if transient and not self.final_attempt:
            raise Unavailable(error)
        self.store.mark_failed(session, error, expected=(expected.value,))

    # ------------------------------------------------------------------
    # Ledgers
    # ------------------------------------------------------------------

    def _load_balance(self, owner_id: str) -> Tuple[int, int]:
        row = self.db.execute(
            select(User.wallet_balance_cents, User.revision).where(User.id == owner_id)
        ).one_or_none()
        if row is None:
            raise PaymentFailed(f"Station owner {owner_id} not found")
        return row[0], row[1]

    def credit_owner_wallet(self, owner_id: str, amount_cents: int) -> int:
        """
        Add amount_cents to the owner's wallet with a compare-and-set loop on
        the user row's revision. Does not commit.
        """
        for attempt in range(1, self.wallet_max_attempts + 1):
            balance, revision = self._load_balance(owner_id)
            result = self.db.execute(
                update(User)
                .where(User.id == owner_id, User.revision == revision)
                .values(
                    wallet_balance_cents=balance + amount_cents,
                    revision=revision + 1,
                    updated_at=self.clock(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(f"Credited {amount_cents} cents to owner {owner_id} wallet (balance {balance + amount_cents})")
                return balance + amount_cents
            logger.info(f"Wallet update for owner {owner_id} conflicted, attempt {attempt}/{self.wallet_max_attempts}")

        raise Unavailable(f"Could not credit wallet for owner {owner_id}, please retry.")

    def record_platform_earning(self, session_id: str, amount_cents: int) -> PlatformEarning:
        """Append the platform's share once per session. Does not commit."""
        existing = self.db.query(PlatformEarning).filter(PlatformEarning.session_id == session_id).first()
        if existing is not None:
            return existing
        earning = PlatformEarning(
            id=f"{session_id}_platform",
            session_id=session_id,
            amount_cents=amount_cents,
            amount=(Decimal(amount_cents) / 100).quantize(Decimal("0.01")),
            timestamp=self.clock(),
        )
        self.db.add(earning)
        self.db.flush()
        return earning

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _payment_method_for(self, driver_id: str) -> Optional[PaymentMethodRef]:
        driver = self.db.get(User, driver_id)
        if driver is None or not driver.stripe_payment_method_id:
            return None
        return PaymentMethodRef(driver.stripe_payment_method_id, driver.stripe_customer_id)

    def _cancel_hold(self, authorization_id: Optional[str]) -> None:
        if not authorization_id:
            return
        try:
            self.provider.cancel_authorization(authorization_id)
        except PaymentProviderError as e:
            # The hold lapses on its own at the provider
            logger.warning(f"Could not cancel authorization {authorization_id}: {e.message}")

    @staticmethod
    def _metadata(session: ChargeSession) -> dict:
        return {
            "session_id": session.id,
            "station_id": session.station_id,
            "driver_id": session.driver_id,
        }


def subscribe_settlement(feed: ChangeFeed, provider: PaymentProvider, **engine_kwargs) -> Subscription:
    """Register settlement on the `charges` change feed."""

    def handle(db: Session, notice: ChangeNotice) -> None:
        engine = SettlementEngine(db, provider, final_attempt=notice.final_attempt, **engine_kwargs)
        engine.handle_charge_change(notice)

    return feed.subscribe(CHARGES, handle)
