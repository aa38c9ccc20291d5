"""
Tests for StationRegistry: occupancy transitions, compare-and-set, expiry,
and owner operations.
"""
import logging
from decimal import Decimal

import pytest
from sqlalchemy import update

from chargeup.core.clock import epoch_ms
from chargeup.core.errors import AlreadyOccupied, Forbidden, InvalidStation, NotFound, NotReserved
from chargeup.models.change_event import ChangeEvent
from chargeup.models.station import Station
from chargeup.services.station_registry import StationRegistry
from tests.helpers.factories import create_station


@pytest.fixture
def registry(db, clock):
    return StationRegistry(db, clock)


def assert_occupancy_invariant(station):
    if station.status == "available":
        assert station.driver_id is None
    else:
        assert station.driver_id is not None


class TestReserve:
    def test_reserve_available_station(self, registry, station, driver, clock):
        reserved = registry.reserve(station.id, driver.id)

        assert reserved.status == "enRoute"
        assert reserved.driver_id == driver.id
        assert reserved.en_route_at == clock.now
        assert_occupancy_invariant(reserved)

    def test_second_driver_gets_already_occupied(self, registry, station, driver, other_driver):
        registry.reserve(station.id, driver.id)

        with pytest.raises(AlreadyOccupied):
            registry.reserve(station.id, other_driver.id)

        current = registry.get(station.id)
        assert current.driver_id == driver.id
        assert current.status == "enRoute"

    def test_deactivated_station_cannot_be_reserved(self, registry, station, owner, driver):
        registry.set_availability(station.id, owner.id, False)

        with pytest.raises(AlreadyOccupied) as exc:
            registry.reserve(station.id, driver.id)
        assert "unavailable" in exc.value.message

    def test_unknown_station(self, registry, driver):
        with pytest.raises(NotFound):
            registry.reserve("missing", driver.id)

    def test_stale_revision_loses(self, db, registry, station, driver):
        """A writer holding an old revision matches zero rows."""
        loaded = registry.get(station.id)
        db.execute(
            update(Station)
            .where(Station.id == station.id)
            .values(revision=Station.revision + 1)
            .execution_options(synchronize_session=False)
        )

        won = registry._compare_and_set(
            loaded,
            {"status": "enRoute", "driver_id": driver.id},
            expected_statuses=("available",),
        )
        assert won is False

    def test_reserve_records_change_event(self, db, registry, station, driver):
        registry.reserve(station.id, driver.id)

        event = (
            db.query(ChangeEvent)
            .filter(ChangeEvent.collection == "stations", ChangeEvent.document_id == station.id)
            .order_by(ChangeEvent.id.desc())
            .first()
        )
        assert '"status": "available"' in event.before_json
        assert '"status": "enRoute"' in event.after_json


class TestBeginCharging:
    def test_reserved_driver_starts_charging(self, registry, station, driver):
        registry.reserve(station.id, driver.id)
        charging = registry.begin_charging(station.id, driver.id)

        assert charging.status == "charging"
        assert charging.available is False
        assert charging.driver_id == driver.id

    def test_requires_reservation(self, registry, station, driver):
        with pytest.raises(NotReserved):
            registry.begin_charging(station.id, driver.id)

    def test_other_drivers_reservation(self, registry, station, driver, other_driver):
        registry.reserve(station.id, driver.id)
        with pytest.raises(NotReserved):
            registry.begin_charging(station.id, other_driver.id)


class TestRelease:
    def test_release_charging_station(self, registry, station, driver):
        registry.reserve(station.id, driver.id)
        registry.begin_charging(station.id, driver.id)

        released = registry.release(station.id)

        assert released.status == "available"
        assert released.driver_id is None
        assert released.en_route_at is None
        assert released.available is True

    def test_release_is_idempotent(self, registry, station, driver):
        registry.reserve(station.id, driver.id)
        first = registry.release(station.id)
        revision = first.revision

        second = registry.release(station.id)

        assert second.status == "available"
        assert second.revision == revision

    def test_release_unknown_station(self, registry):
        with pytest.raises(NotFound):
            registry.release("missing")


class TestExpiry:
    def test_twenty_minute_old_reservation_is_released_on_read(self, registry, station, driver, clock, caplog):
        registry.reserve(station.id, driver.id)
        clock.advance(minutes=20)

        with caplog.at_level(logging.WARNING):
            current = registry.get(station.id)

        assert current.status == "available"
        assert current.driver_id is None
        assert any("Auto-released" in r.message for r in caplog.records)

    def test_fresh_reservation_is_kept(self, registry, station, driver, clock):
        registry.reserve(station.id, driver.id)
        clock.advance(minutes=10)

        assert registry.get(station.id).status == "enRoute"

    def test_charging_station_never_expires(self, registry, station, driver, clock):
        registry.reserve(station.id, driver.id)
        registry.begin_charging(station.id, driver.id)
        clock.advance(hours=3)

        assert registry.get(station.id).status == "charging"

    def test_sweep_releases_only_stale_reservations(self, db, registry, owner, station, driver, other_driver, clock):
        second = create_station(db, owner.id, clock=clock)
        registry.reserve(station.id, driver.id)
        clock.advance(minutes=10)
        registry.reserve(second.id, other_driver.id)
        clock.advance(minutes=6)

        assert registry.sweep_expired_reservations() == 1
        assert registry.get(station.id).status == "available"
        assert registry.get(second.id).status == "enRoute"

    def test_expired_reservation_can_be_taken_by_another_driver(self, registry, station, driver, other_driver, clock):
        registry.reserve(station.id, driver.id)
        clock.advance(minutes=16)

        reserved = registry.reserve(station.id, other_driver.id)
        assert reserved.driver_id == other_driver.id


class TestOwnerOperations:
    def test_create_station_id_and_defaults(self, registry, owner, clock):
        station = registry.create_station(
            owner_id=owner.id,
            address="  500 Howard St  ",
            latitude=37.78,
            longitude=-122.39,
            charge_rate=Decimal("0.30"),
            adapter_types=["CCS"],
        )

        assert station.id == f"{owner.id}_{epoch_ms(clock.now)}"
        assert station.address == "500 Howard St"
        assert station.status == "available"
        assert station.available is True
        assert station.network_type == "In-net"

    @pytest.mark.parametrize("overrides", [
        {"charge_rate": Decimal("0")},
        {"charge_rate": "abc"},
        {"adapter_types": []},
        {"adapter_types": ["Tesla Wall Plug"]},
        {"latitude": 0.0},
        {"address": "   "},
        {"network_type": "Partner"},
    ])
    def test_invalid_station(self, registry, owner, overrides):
        fields = dict(
            owner_id=owner.id,
            address="500 Howard St",
            latitude=37.78,
            longitude=-122.39,
            charge_rate=Decimal("0.30"),
            adapter_types=["CCS"],
        )
        fields.update(overrides)
        with pytest.raises(InvalidStation):
            registry.create_station(**fields)

    def test_only_owner_changes_availability(self, registry, station, driver):
        with pytest.raises(Forbidden):
            registry.set_availability(station.id, driver.id, False)

    def test_cannot_deactivate_occupied_station(self, registry, station, owner, driver):
        registry.reserve(station.id, driver.id)
        with pytest.raises(AlreadyOccupied):
            registry.set_availability(station.id, owner.id, False)

    def test_deactivated_station_hidden_from_map(self, registry, station, owner):
        registry.set_availability(station.id, owner.id, False)

        assert station.id not in [s.id for s in registry.list_stations(include_unavailable=False)]
        assert station.id in [s.id for s in registry.list_by_owner(owner.id)]

    def test_find_driver_occupancy(self, registry, station, driver, other_driver):
        assert registry.find_driver_occupancy(driver.id) is None
        registry.reserve(station.id, driver.id)

        assert registry.find_driver_occupancy(driver.id).id == station.id
        assert registry.find_driver_occupancy(other_driver.id) is None
