"""
Reservation sweeper worker

Releases en-route reservations older than EN_ROUTE_TIMEOUT_MINUTES, so a
driver who never arrives does not hold a station indefinitely.
"""
import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from chargeup.core.clock import Clock, utcnow
from chargeup.services.station_registry import StationRegistry
from chargeup.workers import get_db_session

logger = logging.getLogger(__name__)


class ReservationSweeper:
    def __init__(
        self,
        poll_interval: int = 60,
        clock: Clock = utcnow,
        session_factory: Optional[Callable[[], object]] = None,
    ):
        self.poll_interval = poll_interval
        self.clock = clock
        self.session_factory = session_factory or get_db_session
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        if self.running:
            logger.warning("Reservation sweeper is already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info("Reservation sweeper started")

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
        logger.info("Reservation sweeper stopped")

    async def _run(self):
        while self.running:
            try:
                await asyncio.to_thread(self.sweep_once)
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in reservation sweeper: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    def sweep_once(self, db: Optional[Session] = None) -> int:
        if db is not None:
            return StationRegistry(db, self.clock).sweep_expired_reservations()
        with self.session_factory() as session:
            return StationRegistry(session, self.clock).sweep_expired_reservations()
