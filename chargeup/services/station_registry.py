"""
Station Registry - station documents and the occupancy state machine.

    available -> enRoute -> charging -> available
        ^           |
        +-----------+  (cancel or en-route timeout)

Every occupancy write is a conditional UPDATE guarded by the row's revision,
so two drivers racing for the same station cannot both win: the loser's
UPDATE matches zero rows, re-reads the station and sees it occupied.
"""
import logging
import time
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from chargeup.core.clock import Clock, epoch_ms, utcnow
from chargeup.core.config import settings
from chargeup.core.errors import AlreadyOccupied, Forbidden, InvalidStation, NotFound, NotReserved
from chargeup.core.retry import retry_sync_with_backoff
from chargeup.events.change_feed import STATIONS, record_change
from chargeup.models.station import ADAPTER_TYPES, NetworkType, Station, StationStatus

logger = logging.getLogger(__name__)

OCCUPIED_STATUSES = (StationStatus.EN_ROUTE.value, StationStatus.CHARGING.value)

# Bound on re-reads when a conditional update loses to a concurrent writer
MAX_CAS_ATTEMPTS = 5


class StationRegistry:
    """Owns the `stations` table. Only this class mutates occupancy."""

    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        en_route_timeout_minutes: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        if en_route_timeout_minutes is None:
            en_route_timeout_minutes = settings.EN_ROUTE_TIMEOUT_MINUTES
        self.en_route_timeout = timedelta(minutes=en_route_timeout_minutes)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, station_id: str) -> Station:
        """Load a station, releasing it first if its reservation expired."""
        station = self.db.get(Station, station_id)
        if station is None:
            raise NotFound(f"Station {station_id} not found")
        self._expire_if_stale(station)
        return station

    def list_stations(self, include_unavailable: bool = True) -> List[Station]:
        query = self.db.query(Station)
        if not include_unavailable:
            query = query.filter(Station.available.is_(True))
        stations = query.order_by(Station.created_at.asc()).all()
        return self._expire_all(stations)

    def list_by_owner(self, owner_id: str) -> List[Station]:
        stations = (
            self.db.query(Station)
            .filter(Station.owner_id == owner_id)
            .order_by(Station.created_at.desc())
            .all()
        )
        return self._expire_all(stations)

    def find_driver_occupancy(self, driver_id: str) -> Optional[Station]:
        """The station the driver is navigating to or charging at, if any."""
        stations = (
            self.db.query(Station)
            .filter(Station.driver_id == driver_id, Station.status.in_(OCCUPIED_STATUSES))
            .all()
        )
        for station in self._expire_all(stations):
            if station.driver_id == driver_id and station.status in OCCUPIED_STATUSES:
                return station
        return None

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def create_station(
        self,
        owner_id: str,
        address: str,
        latitude: float,
        longitude: float,
        charge_rate,
        adapter_types: Iterable[str],
        network_type: str = NetworkType.IN_NETWORK.value,
        photo_url: Optional[str] = None,
    ) -> Station:
        address = (address or "").strip()
        adapters = [a for a in (adapter_types or []) if a]
        try:
            rate = Decimal(str(charge_rate))
        except (InvalidOperation, ValueError):
            raise InvalidStation("Charge rate must be a number.")

        if not address:
            raise InvalidStation("Please enter the station address.")
        if not latitude or not longitude:
            raise InvalidStation("Please choose the station location on the map.")
        if not rate.is_finite() or rate <= 0:
            raise InvalidStation("Charge rate must be greater than zero.")
        if not adapters:
            raise InvalidStation("Please select at least one adapter type.")
        unknown = [a for a in adapters if a not in ADAPTER_TYPES]
        if unknown:
            raise InvalidStation(f"Unsupported adapter type: {', '.join(unknown)}")
        if network_type not in (NetworkType.IN_NETWORK.value, NetworkType.OUT_OF_NETWORK.value):
            raise InvalidStation(f"Unsupported network type: {network_type}")

        now = self.clock()
        station = Station(
            id=f"{owner_id}_{epoch_ms(now)}",
            owner_id=owner_id,
            address=address,
            latitude=latitude,
            longitude=longitude,
            charge_rate=rate,
            adapter_types=adapters,
            network_type=network_type,
            photo_url=photo_url,
            available=True,
            status=StationStatus.AVAILABLE.value,
            driver_id=None,
            en_route_at=None,
            revision=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(station)
        self.db.flush()
        record_change(self.db, STATIONS, station.id, None, station.to_dict())
        self.db.commit()
        self.db.refresh(station)
        logger.info(f"Owner {owner_id} listed station {station.id} at {address}")
        return station

    def set_availability(self, station_id: str, owner_id: str, available: bool) -> Station:
        station = self.get(station_id)
        if station.owner_id != owner_id:
            raise Forbidden("Only the station owner can change its availability.")
        if station.available == available:
            return station
        if station.status != StationStatus.AVAILABLE.value:
            raise AlreadyOccupied("This station is in use and cannot be changed right now.")

        if not self._compare_and_set(
            station,
            {"available": available},
            expected_statuses=(StationStatus.AVAILABLE.value,),
        ):
            raise AlreadyOccupied("This station is in use and cannot be changed right now.")
        logger.info(f"Owner {owner_id} set station {station_id} available={available}")
        return station

    # ------------------------------------------------------------------
    # Occupancy transitions
    # ------------------------------------------------------------------

    def reserve(self, station_id: str, driver_id: str) -> Station:
        """available -> enRoute for driver_id, or AlreadyOccupied."""
        for _ in range(MAX_CAS_ATTEMPTS):
            station = self.get(station_id)
            if not station.available and station.status == StationStatus.AVAILABLE.value:
                raise AlreadyOccupied("This station is currently unavailable.")
            if station.status != StationStatus.AVAILABLE.value:
                raise AlreadyOccupied()

            won = self._compare_and_set(
                station,
                {
                    "status": StationStatus.EN_ROUTE.value,
                    "driver_id": driver_id,
                    "en_route_at": self.clock(),
                },
                expected_statuses=(StationStatus.AVAILABLE.value,),
            )
            if won:
                logger.info(f"Driver {driver_id} reserved station {station_id}")
                return station
            self.db.expire(station)
        raise AlreadyOccupied()

    def begin_charging(self, station_id: str, driver_id: str) -> Station:
        """enRoute (held by driver_id) -> charging. Proximity is checked by the caller."""
        for _ in range(MAX_CAS_ATTEMPTS):
            station = self.get(station_id)
            if station.status != StationStatus.EN_ROUTE.value or station.driver_id != driver_id:
                raise NotReserved()

            won = self._compare_and_set(
                station,
                {"status": StationStatus.CHARGING.value, "available": False},
                expected_statuses=(StationStatus.EN_ROUTE.value,),
            )
            if won:
                logger.info(f"Driver {driver_id} started charging at station {station_id}")
                return station
            self.db.expire(station)
        raise NotReserved()

    def release(self, station_id: str) -> Station:
        """
        Return a station to available. Idempotent, and retried on transient
        store failures since it must always eventually succeed.
        """
        return retry_sync_with_backoff(
            lambda: self._release(station_id, reason="released"),
            before_retry=self.db.rollback,
        )

    def sweep_expired_reservations(self) -> int:
        """Release every en-route reservation older than the timeout."""
        cutoff = self.clock() - self.en_route_timeout
        stale = (
            self.db.query(Station)
            .filter(
                Station.status == StationStatus.EN_ROUTE.value,
                Station.en_route_at < cutoff,
            )
            .all()
        )
        released = 0
        for station in stale:
            if self._expire_if_stale(station):
                released += 1
        if released:
            logger.info(f"Reservation sweep released {released} station(s)")
        return released

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_expired(self, station: Station) -> bool:
        return (
            station.status == StationStatus.EN_ROUTE.value
            and station.en_route_at is not None
            and self.clock() - station.en_route_at > self.en_route_timeout
        )

    def _expire_if_stale(self, station: Station) -> bool:
        if not self._is_expired(station):
            return False
        driver_id = station.driver_id
        en_route_at = station.en_route_at
        won = self._compare_and_set(
            station,
            self._released_values(),
            expected_statuses=(StationStatus.EN_ROUTE.value,),
        )
        if won:
            # Audit trail for timeout releases
            logger.warning(
                f"Auto-released station {station.id}: reservation by driver {driver_id} "
                f"since {en_route_at.isoformat()} exceeded {self.en_route_timeout}"
            )
        else:
            self.db.refresh(station)
        return won

    def _expire_all(self, stations: List[Station]) -> List[Station]:
        for station in stations:
            self._expire_if_stale(station)
        return stations

    @staticmethod
    def _released_values() -> dict:
        return {
            "status": StationStatus.AVAILABLE.value,
            "driver_id": None,
            "en_route_at": None,
            "available": True,
        }

    def _release(self, station_id: str, reason: str) -> Station:
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            station = self.db.get(Station, station_id)
            if station is None:
                raise NotFound(f"Station {station_id} not found")
            if (
                station.status == StationStatus.AVAILABLE.value
                and station.driver_id is None
                and station.en_route_at is None
                and station.available
            ):
                return station

            driver_id = station.driver_id
            if self._compare_and_set(station, self._released_values()):
                logger.info(f"Station {station_id} {reason} (was held by driver {driver_id})")
                return station
            logger.info(f"Release of station {station_id} lost a concurrent write, attempt {attempt}")
            self.db.expire(station)
            time.sleep(0.01 * attempt)
        raise AlreadyOccupied(f"Station {station_id} could not be released, please retry.")

    def _compare_and_set(
        self,
        station: Station,
        values: dict,
        expected_statuses: Optional[tuple] = None,
    ) -> bool:
        """
        Conditionally write `values` if the row still has the revision (and
        status) this process read. Commits with the matching change event.
        """
        before = station.to_dict()
        conditions = [Station.id == station.id, Station.revision == station.revision]
        if expected_statuses:
            conditions.append(Station.status.in_(expected_statuses))

        result = self.db.execute(
            update(Station)
            .where(*conditions)
            .values(revision=Station.revision + 1, updated_at=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        self.db.refresh(station)
        record_change(self.db, STATIONS, station.id, before, station.to_dict())
        self.db.commit()
        return True
