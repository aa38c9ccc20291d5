"""
Tests for the driver map filters (pure functions, no database).
"""
from decimal import Decimal

import pytest

from chargeup.models.station import Station
from chargeup.services.station_filters import (
    LEVEL_1,
    LEVEL_2,
    LEVEL_3,
    charger_level_for_rate,
    filter_by_adapter,
    filter_by_level,
    filter_by_network,
    filter_by_radius,
    nearby_stations,
    sort_by_proximity,
)

ORIGIN = (37.7749, -122.4194)


def _station(id, lat, lng, rate="0.20", adapters=("CCS",), network="In-net"):
    return Station(
        id=id,
        owner_id="owner-1",
        address=f"{id} street",
        latitude=lat,
        longitude=lng,
        charge_rate=Decimal(rate),
        adapter_types=list(adapters),
        network_type=network,
    )


@pytest.fixture
def stations():
    return [
        # ~20 mi south
        _station("far", 37.4849, -122.4194, rate="0.50", adapters=("NACS",)),
        # ~0.7 mi north
        _station("near", 37.7849, -122.4194, rate="0.08", adapters=("CCS", "CHAdeMO"), network="Out-net"),
        # ~7 mi north
        _station("mid", 37.8749, -122.4194, rate="0.25", adapters=("NACS", "CCS")),
    ]


class TestChargerLevel:
    @pytest.mark.parametrize("rate,level", [
        ("0.05", LEVEL_1),
        ("0.10", LEVEL_1),
        ("0.1001", LEVEL_2),
        ("0.25", LEVEL_2),
        ("0.26", LEVEL_3),
        (1.5, LEVEL_3),
    ])
    def test_level_thresholds(self, rate, level):
        assert charger_level_for_rate(rate) == level


class TestFilters:
    def test_adapter(self, stations):
        assert [s.id for s in filter_by_adapter(stations, "NACS")] == ["far", "mid"]

    def test_all_disables_filter(self, stations):
        assert len(filter_by_adapter(stations, "All")) == 3
        assert len(filter_by_level(stations, None)) == 3
        assert len(filter_by_network(stations, "All")) == 3

    def test_level(self, stations):
        assert [s.id for s in filter_by_level(stations, LEVEL_1)] == ["near"]
        assert [s.id for s in filter_by_level(stations, LEVEL_2)] == ["mid"]

    def test_network(self, stations):
        assert [s.id for s in filter_by_network(stations, "Out-net")] == ["near"]

    def test_radius(self, stations):
        assert {s.id for s in filter_by_radius(stations, ORIGIN, 10)} == {"near", "mid"}

    def test_radius_without_location_keeps_everything(self, stations):
        assert len(filter_by_radius(stations, None, 1)) == 3


class TestProximity:
    def test_sorted_nearest_first(self, stations):
        assert [s.id for s in sort_by_proximity(stations, ORIGIN)] == ["near", "mid", "far"]

    def test_no_origin_keeps_order(self, stations):
        assert [s.id for s in sort_by_proximity(stations, None)] == ["far", "near", "mid"]

    def test_nearby_stations_combines_filters(self, stations):
        result = nearby_stations(stations, origin=ORIGIN, adapter="CCS", radius_mi=25)
        assert [s.id for s in result] == ["near", "mid"]

    def test_default_radius_is_25_miles(self, stations):
        assert len(nearby_stations(stations, origin=ORIGIN)) == 3
        assert [s.id for s in nearby_stations(stations, origin=ORIGIN, radius_mi=5)] == ["near"]
