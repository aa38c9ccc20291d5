"""
Session Store - charge session records.

Creation enforces one active (pending/authorized) session per driver under a
row lock on the driver's user row. Status transitions are conditional UPDATEs
on the expected current status; a terminal session is never written again.
Every write appends a `charges` change event in the same transaction.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from chargeup.core.clock import Clock, epoch_ms, utcnow
from chargeup.core.errors import AlreadyClosed, DuplicateActiveSession, NotFound
from chargeup.events.change_feed import CHARGES, record_change
from chargeup.models.charge import (
    ACTIVE_STATUSES,
    ChargeSession,
    ChargeStatus,
    ReminderState,
)
from chargeup.models.user import User

logger = logging.getLogger(__name__)


class SessionStore:
    """Owns the `charges` table."""

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def get(self, session_id: str) -> ChargeSession:
        session = self.db.get(ChargeSession, session_id)
        if session is None:
            raise NotFound(f"Charge session {session_id} not found")
        return session

    def get_active_for_driver(self, driver_id: str) -> Optional[ChargeSession]:
        return (
            self.db.query(ChargeSession)
            .filter(
                ChargeSession.driver_id == driver_id,
                ChargeSession.status.in_(ACTIVE_STATUSES),
            )
            .order_by(desc(ChargeSession.start_time))
            .first()
        )

    def get_open_for_driver(self, driver_id: str) -> Optional[ChargeSession]:
        """The driver's session that is still charging (no end time yet)."""
        return (
            self.db.query(ChargeSession)
            .filter(
                ChargeSession.driver_id == driver_id,
                ChargeSession.status.in_(ACTIVE_STATUSES),
                ChargeSession.end_time.is_(None),
            )
            .order_by(desc(ChargeSession.start_time))
            .first()
        )

    def list_by_driver(self, driver_id: str, limit: int = 50, offset: int = 0) -> List[ChargeSession]:
        """Driver's charge history, newest first."""
        return (
            self.db.query(ChargeSession)
            .filter(ChargeSession.driver_id == driver_id)
            .order_by(desc(ChargeSession.start_time))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def create(self, station_id: str, driver_id: str, start_time: Optional[datetime] = None) -> ChargeSession:
        """
        Open a pending session for the driver.

        Raises:
            NotFound: unknown driver
            DuplicateActiveSession: the driver already has a pending or
                authorized session
        """
        start_time = start_time or self.clock()

        # Driver-scoped lock: concurrent creates for the same driver serialize here
        driver = (
            self.db.query(User)
            .filter(User.id == driver_id)
            .with_for_update()
            .first()
        )
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")

        if self.get_active_for_driver(driver_id) is not None:
            raise DuplicateActiveSession()

        session_id = f"{driver_id}_{epoch_ms(start_time)}"
        if self.db.get(ChargeSession, session_id) is not None:
            raise DuplicateActiveSession()

        session = ChargeSession(
            id=session_id,
            station_id=station_id,
            driver_id=driver_id,
            start_time=start_time,
            status=ChargeStatus.PENDING.value,
            reminder_state=ReminderState.NONE.value,
            revision=0,
            created_at=start_time,
            updated_at=start_time,
        )
        self.db.add(session)
        self.db.flush()
        record_change(self.db, CHARGES, session.id, None, session.to_dict())
        self.db.commit()
        self.db.refresh(session)

        logger.info(f"Created charge session {session.id} for driver {driver_id} at station {station_id}")
        return session

    def close(
        self,
        session_id: str,
        end_time: datetime,
        total_cost: Decimal,
        rate: Optional[Decimal] = None,
    ) -> ChargeSession:
        """
        Record end time and cost. Status is left to settlement.

        Raises:
            NotFound: unknown session
            AlreadyClosed: session already has an end time or is terminal
        """
        session = self.get(session_id)
        self.db.refresh(session)
        if session.end_time is not None or session.is_terminal:
            raise AlreadyClosed()

        if end_time < session.start_time:
            end_time = session.start_time

        won = self._compare_and_set(
            session,
            {"end_time": end_time, "total_cost": total_cost, "rate_at_close": rate},
            self._open_conditions(),
        )
        if not won:
            raise AlreadyClosed()

        logger.info(f"Closed charge session {session_id}: total_cost={total_cost}")
        return session

    def set_reminder_state(self, session: ChargeSession, state: ReminderState) -> bool:
        """Only written while the session is still charging."""
        self.db.refresh(session)
        if session.end_time is not None or session.is_terminal:
            return False
        return self._compare_and_set(session, {"reminder_state": state.value}, self._open_conditions())

    # ------------------------------------------------------------------
    # Status transitions (settlement only)
    # ------------------------------------------------------------------

    def mark_authorized(self, session: ChargeSession, payment_intent_id: str) -> bool:
        return self._transition(
            session,
            (ChargeStatus.PENDING.value,),
            ChargeStatus.AUTHORIZED,
            payment_intent_id=payment_intent_id,
        )

    def mark_completed(
        self,
        session: ChargeSession,
        amount_cents: int,
        platform_share_cents: int,
        owner_share_cents: int,
        payout_method: Optional[str] = None,
        transfer_id: Optional[str] = None,
        before_commit: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        authorized -> completed. `before_commit` runs inside the same
        transaction once the transition has won, so ledger writes commit
        (or roll back) together with the status change.
        """
        return self._transition(
            session,
            (ChargeStatus.AUTHORIZED.value,),
            ChargeStatus.COMPLETED,
            before_commit=before_commit,
            amount_cents=amount_cents,
            platform_share_cents=platform_share_cents,
            owner_share_cents=owner_share_cents,
            payout_method=payout_method,
            transfer_id=transfer_id,
            error=None,
        )

    def mark_failed(
        self,
        session: ChargeSession,
        error: str,
        expected: Sequence[str] = ACTIVE_STATUSES,
    ) -> bool:
        return self._transition(session, tuple(expected), ChargeStatus.FAILED, error=error[:2000])

    def _transition(
        self,
        session: ChargeSession,
        expected: tuple,
        status: ChargeStatus,
        before_commit: Optional[Callable[[], None]] = None,
        **fields,
    ) -> bool:
        # Guarded on status only; unrelated writes to the row do not matter
        self.db.refresh(session)
        if session.status not in expected:
            return False
        won = self._compare_and_set(
            session,
            dict(fields, status=status.value),
            [ChargeSession.status.in_(expected)],
            before_commit=before_commit,
        )
        if won:
            logger.info(f"Charge session {session.id} -> {status.value}")
        else:
            logger.info(f"Charge session {session.id} left {'/'.join(expected)} before {status.value} was recorded")
        return won

    @staticmethod
    def _open_conditions() -> list:
        return [ChargeSession.end_time.is_(None), ChargeSession.status.in_(ACTIVE_STATUSES)]

    def _compare_and_set(
        self,
        session: ChargeSession,
        values: dict,
        conditions: list,
        before_commit: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        Conditional UPDATE of one session row. `revision` is bumped on every
        write but is not part of the guard; each caller states the fields it
        depends on in `conditions`.
        """
        before = session.to_dict()

        result = self.db.execute(
            update(ChargeSession)
            .where(ChargeSession.id == session.id, *conditions)
            .values(revision=ChargeSession.revision + 1, updated_at=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.refresh(session)
            return False

        if before_commit is not None:
            before_commit()
        self.db.refresh(session)
        record_change(self.db, CHARGES, session.id, before, session.to_dict())
        self.db.commit()
        return True
