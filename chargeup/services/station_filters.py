"""
Station list filtering for the driver map.

Pure functions over a station collection and the driver's coordinate.
"""
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from chargeup.models.station import Station
from chargeup.services.geo import Coordinate, distance_miles

LEVEL_1 = "Level 1"
LEVEL_2 = "Level 2"
LEVEL_3 = "Level 3"

# Per-minute rate ceilings for each charger level
LEVEL_1_MAX_RATE = Decimal("0.10")
LEVEL_2_MAX_RATE = Decimal("0.25")


def charger_level_for_rate(rate) -> str:
    rate = Decimal(str(rate))
    if rate <= LEVEL_1_MAX_RATE:
        return LEVEL_1
    if rate <= LEVEL_2_MAX_RATE:
        return LEVEL_2
    return LEVEL_3


def station_coordinate(station: Station) -> Coordinate:
    return (station.latitude, station.longitude)


def filter_by_adapter(stations: Iterable[Station], adapter: Optional[str]) -> List[Station]:
    if not adapter or adapter == "All":
        return list(stations)
    return [s for s in stations if adapter in (s.adapter_types or [])]


def filter_by_level(stations: Iterable[Station], level: Optional[str]) -> List[Station]:
    if not level or level == "All":
        return list(stations)
    return [s for s in stations if charger_level_for_rate(s.charge_rate) == level]


def filter_by_network(stations: Iterable[Station], network: Optional[str]) -> List[Station]:
    if not network or network == "All":
        return list(stations)
    return [s for s in stations if s.network_type == network]


def filter_by_radius(
    stations: Iterable[Station],
    origin: Optional[Coordinate],
    radius_mi: float,
) -> List[Station]:
    """Without a known location every station is kept."""
    if origin is None:
        return list(stations)
    return [s for s in stations if distance_miles(origin, station_coordinate(s)) <= radius_mi]


def sort_by_proximity(stations: Iterable[Station], origin: Optional[Coordinate]) -> List[Station]:
    if origin is None:
        return list(stations)
    return sorted(stations, key=lambda s: distance_miles(origin, station_coordinate(s)))


def nearby_stations(
    stations: Sequence[Station],
    origin: Optional[Coordinate] = None,
    adapter: Optional[str] = None,
    level: Optional[str] = None,
    network: Optional[str] = None,
    radius_mi: float = 25.0,
) -> List[Station]:
    """Apply every map filter, then order by distance from origin."""
    result = filter_by_adapter(stations, adapter)
    result = filter_by_level(result, level)
    result = filter_by_network(result, network)
    result = filter_by_radius(result, origin, radius_mi)
    return sort_by_proximity(result, origin)
