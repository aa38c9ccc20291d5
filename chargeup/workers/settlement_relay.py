"""
Settlement relay worker

Polls the change_events outbox and delivers pending events to the change
feed's subscribers (settlement among them).
"""
import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from chargeup.events.change_feed import ChangeFeed
from chargeup.workers import get_db_session

logger = logging.getLogger(__name__)


class SettlementRelay:
    """Worker that drains the change feed on a fixed interval"""

    def __init__(
        self,
        feed: ChangeFeed,
        poll_interval: int = 5,
        session_factory: Optional[Callable[[], object]] = None,
    ):
        self.feed = feed
        self.poll_interval = poll_interval
        self.session_factory = session_factory or get_db_session
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        if self.running:
            logger.warning("Settlement relay is already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info("Settlement relay started")

    async def stop(self):
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("Settlement relay stopped")

    async def _run(self):
        while self.running:
            try:
                await asyncio.to_thread(self.process_once)
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in settlement relay: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    def process_once(self, db: Optional[Session] = None) -> int:
        """Deliver everything pending. Returns the number of events delivered."""
        if db is not None:
            return self._dispatch(db)
        with self.session_factory() as session:
            return self._dispatch(session)

    def _dispatch(self, db: Session) -> int:
        delivered = self.feed.dispatch_pending(db)
        if delivered:
            logger.info(f"Delivered {delivered} change event(s)")
        return delivered
