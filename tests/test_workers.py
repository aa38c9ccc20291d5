"""
Tests for the background workers: settlement relay and reservation sweeper.
"""
import asyncio
import threading
from contextlib import contextmanager

from chargeup.events.change_feed import CHARGES, record_change
from chargeup.services.station_registry import StationRegistry
from chargeup.workers.reservation_sweeper import ReservationSweeper
from chargeup.workers.settlement_relay import SettlementRelay


def session_factory_for(db):
    @contextmanager
    def factory():
        yield db
    return factory


class TestSettlementRelay:
    def test_process_once_delivers_pending(self, db, feed):
        record_change(db, CHARGES, "s1", None, {"status": "pending"})
        db.commit()
        seen = []
        feed.subscribe(CHARGES, lambda session, notice: seen.append(notice.document_id))

        relay = SettlementRelay(feed, poll_interval=1)
        assert relay.process_once(db) == 1
        assert relay.process_once(db) == 0
        assert seen == ["s1"]

    def test_process_once_uses_session_factory(self, db, feed):
        record_change(db, CHARGES, "s1", None, {"status": "pending"})
        db.commit()

        relay = SettlementRelay(feed, session_factory=session_factory_for(db))
        assert relay.process_once() == 1

    def test_start_and_stop(self, db, feed):
        record_change(db, CHARGES, "s1", None, {"status": "pending"})
        db.commit()
        delivered = threading.Event()
        feed.subscribe(CHARGES, lambda session, notice: delivered.set())
        relay = SettlementRelay(feed, poll_interval=60, session_factory=session_factory_for(db))

        async def run():
            await relay.start()
            await relay.start()
            for _ in range(200):
                if delivered.is_set():
                    break
                await asyncio.sleep(0.01)
            await relay.stop()

        asyncio.run(run())

        assert delivered.is_set()
        assert relay.running is False


class TestReservationSweeper:
    def test_sweep_once_releases_stale(self, db, station, driver, clock):
        StationRegistry(db, clock).reserve(station.id, driver.id)
        clock.advance(minutes=16)

        sweeper = ReservationSweeper(clock=clock)
        assert sweeper.sweep_once(db) == 1
        assert sweeper.sweep_once(db) == 0

        db.refresh(station)
        assert station.status == "available"
        assert station.driver_id is None

    def test_fresh_reservation_untouched(self, db, station, driver, clock):
        StationRegistry(db, clock).reserve(station.id, driver.id)
        clock.advance(minutes=5)

        sweeper = ReservationSweeper(clock=clock, session_factory=session_factory_for(db))
        assert sweeper.sweep_once() == 0
