"""
Document change feed.

Every write to a `charges` or `stations` row appends a ChangeEvent carrying
the before/after snapshots in the same database transaction (outbox
pattern). The dispatcher later delivers each event to the handlers
subscribed to its collection and marks it delivered once all of them
succeed. Delivery is at-least-once: handlers must treat a re-delivered
(before, after) pair as a no-op.
"""
import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from chargeup.core.clock import utcnow
from chargeup.models.change_event import ChangeEvent

logger = logging.getLogger(__name__)

CHARGES = "charges"
STATIONS = "stations"


@dataclass
class ChangeNotice:
    """A single (before, after) pair for one document write"""
    event_id: int
    collection: str
    document_id: str
    before: Optional[dict]
    after: Optional[dict]
    attempt: int = 1
    final_attempt: bool = True

    @property
    def created(self) -> bool:
        return self.before is None and self.after is not None


ChangeHandler = Callable[[Session, ChangeNotice], None]


class Subscription:
    """
    Cancellation handle returned by ChangeFeed.subscribe.

    Usable as a context manager so the handler is always unsubscribed on
    teardown:

        with feed.subscribe("charges", handler):
            feed.dispatch_pending(db)
    """

    def __init__(self, feed: "ChangeFeed", collection: str, handler: ChangeHandler):
        self._feed = feed
        self.collection = collection
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._feed._unsubscribe(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()


def record_change(
    db: Session,
    collection: str,
    document_id: str,
    before: Optional[dict],
    after: Optional[dict],
) -> ChangeEvent:
    """
    Stage a change event on the caller's session.

    The caller commits it together with the document write.
    """
    event = ChangeEvent(
        collection=collection,
        document_id=document_id,
        before_json=json.dumps(before, default=str) if before is not None else None,
        after_json=json.dumps(after, default=str) if after is not None else None,
        created_at=utcnow(),
    )
    db.add(event)
    return event


def _to_notice(event: ChangeEvent, max_attempts: int) -> ChangeNotice:
    attempt = (event.attempts or 0) + 1
    return ChangeNotice(
        event_id=event.id,
        collection=event.collection,
        document_id=event.document_id,
        before=json.loads(event.before_json) if event.before_json else None,
        after=json.loads(event.after_json) if event.after_json else None,
        attempt=attempt,
        final_attempt=attempt >= max_attempts,
    )


class ChangeFeed:
    """In-process subscriber registry plus the outbox dispatcher"""

    def __init__(self, max_attempts: int = 5):
        self.max_attempts = max_attempts
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, collection: str, handler: ChangeHandler) -> Subscription:
        subscription = Subscription(self, collection, handler)
        self._subscribers.setdefault(collection, []).append(subscription)
        logger.info(f"Subscribed {getattr(handler, '__qualname__', handler)} to {collection} changes")
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.collection, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

    def subscribers(self, collection: str) -> List[Subscription]:
        return list(self._subscribers.get(collection, []))

    def pending_events(self, db: Session, limit: int = 100) -> List[ChangeEvent]:
        return (
            db.query(ChangeEvent)
            .filter(
                ChangeEvent.delivered_at.is_(None),
                ChangeEvent.attempts < self.max_attempts,
            )
            .order_by(ChangeEvent.id.asc())
            .limit(limit)
            .all()
        )

    def deliver(self, db: Session, event: ChangeEvent) -> bool:
        """
        Deliver one event to every subscriber of its collection.

        Returns True once the event is marked delivered. A handler error
        leaves the event pending for another attempt. Handlers see
        `notice.final_attempt` on the last one and should settle the
        document rather than raise.
        """
        notice = _to_notice(event, self.max_attempts)
        event_id = event.id
        try:
            for subscription in self.subscribers(notice.collection):
                subscription.handler(db, notice)
        except Exception as e:
            logger.error(
                f"Error delivering change event {event_id} ({notice.collection}/{notice.document_id}): {e}",
                exc_info=True,
            )
            db.rollback()
            event = db.get(ChangeEvent, event_id)
            event.attempts += 1
            event.last_error = str(e)[:2000]
            if event.attempts >= self.max_attempts:
                logger.error(f"Change event {event_id} exceeded {self.max_attempts} attempts, giving up")
            db.commit()
            return False

        event.attempts += 1
        event.delivered_at = utcnow()
        db.commit()
        return True

    def dispatch_pending(self, db: Session, limit: int = 100, max_rounds: int = 10) -> int:
        """
        Deliver pending events in commit order.

        Handlers may write documents and so append new events; those are
        picked up in the next round, up to max_rounds.
        """
        delivered = 0
        for _ in range(max_rounds):
            events = self.pending_events(db, limit)
            if not events:
                break
            progressed = False
            for event in events:
                if self.deliver(db, event):
                    delivered += 1
                    progressed = True
            if not progressed:
                break
        return delivered


change_feed = ChangeFeed()
