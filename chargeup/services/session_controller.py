"""
Session Controller - the driver-facing charge flow.

    navigate -> (cancel | start charge) -> end charge

Validates preconditions (occupancy, distance, billing) before any write, so
a rejected request leaves stations and sessions untouched. Payment is not
performed here: creating and closing the session emits change events that
settlement picks up out of band.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from urllib.parse import quote_plus

from sqlalchemy.orm import Session

from chargeup.core.clock import Clock, utcnow
from chargeup.core.config import settings
from chargeup.core.errors import (
    AlreadyClosed,
    AlreadyOccupied,
    BillingRequired,
    Busy,
    ChargeFlowError,
    Forbidden,
    NotFound,
    NotReserved,
    PaymentFailed,
    TooFar,
)
from chargeup.models.charge import ChargeSession, ChargeStatus, ReminderState
from chargeup.models.station import NetworkType, Station, StationStatus
from chargeup.models.user import User
from chargeup.services.geo import Coordinate, distance_miles
from chargeup.services.session_store import SessionStore
from chargeup.services.station_registry import StationRegistry

logger = logging.getLogger(__name__)

COST_PLACES = Decimal("0.0001")

REMINDER_MESSAGE = (
    "You're more than {radius:g} miles from the charger. "
    "Did you forget to end your charging session?"
)


@dataclass
class NavigationResult:
    station: Station
    directions_url: Optional[str]


@dataclass
class ChargeStart:
    station: Station
    session: ChargeSession


@dataclass
class ChargeEnd:
    session: ChargeSession
    station: Station
    duration_minutes: Decimal
    total_cost: Decimal


@dataclass
class ProximityCheck:
    session_id: str
    distance_miles: float
    show_reminder: bool
    message: Optional[str] = None


@dataclass
class DriverState:
    station: Optional[Station]
    session: Optional[ChargeSession]


def directions_url(address: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Google Maps driving directions deep link for the station address."""
    if not address:
        return None
    base_url = base_url or settings.DIRECTIONS_BASE_URL
    return f"{base_url}?api=1&destination={quote_plus(address)}&travelmode=driving"


def compute_total_cost(duration_minutes: Decimal, rate: Decimal) -> Decimal:
    return (Decimal(duration_minutes) * Decimal(rate)).quantize(COST_PLACES, rounding=ROUND_HALF_UP)


class SessionController:
    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        registry: Optional[StationRegistry] = None,
        store: Optional[SessionStore] = None,
        charge_radius_mi: Optional[float] = None,
    ):
        self.db = db
        self.clock = clock
        self.registry = registry or StationRegistry(db, clock)
        self.store = store or SessionStore(db, clock)
        self.charge_radius_mi = charge_radius_mi if charge_radius_mi is not None else settings.CHARGE_RADIUS_MI

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def start_navigation(self, station_id: str, driver_id: str) -> NavigationResult:
        if self.registry.find_driver_occupancy(driver_id) is not None:
            raise Busy()

        station = self.registry.reserve(station_id, driver_id)

        try:
            url = directions_url(station.address)
        except (TypeError, ValueError) as e:
            # Reservation stands even if no link can be built
            logger.warning(f"Could not build directions link for station {station_id}: {e}")
            url = None
        return NavigationResult(station=station, directions_url=url)

    def cancel_navigation(self, station_id: str, driver_id: str) -> Station:
        station = self.registry.get(station_id)
        if station.status != StationStatus.EN_ROUTE.value or station.driver_id != driver_id:
            raise NotReserved()
        logger.info(f"Driver {driver_id} canceled navigation to station {station_id}")
        return self.registry.release(station_id)

    # ------------------------------------------------------------------
    # Charging
    # ------------------------------------------------------------------

    def start_charge(self, station_id: str, driver_id: str, location: Coordinate) -> ChargeStart:
        occupancy = self.registry.find_driver_occupancy(driver_id)
        if occupancy is not None and (
            occupancy.id != station_id or occupancy.status == StationStatus.CHARGING.value
        ):
            raise Busy()
        if self.store.get_active_for_driver(driver_id) is not None:
            raise Busy("You already have a charge session in progress.")

        station = self.registry.get(station_id)
        if station.driver_id is not None and station.driver_id != driver_id:
            raise AlreadyOccupied()
        if station.status == StationStatus.AVAILABLE.value and not station.available:
            raise AlreadyOccupied("This station is currently unavailable.")

        distance = distance_miles(location, (station.latitude, station.longitude))
        if not distance <= self.charge_radius_mi:
            logger.info(f"Driver {driver_id} is {distance:.2f} mi from station {station_id}, too far to charge")
            raise TooFar(f"You must be within {self.charge_radius_mi:g} miles to start charging.")

        driver = self.db.get(User, driver_id)
        if driver is None or not driver.stripe_payment_method_id:
            raise BillingRequired()

        reserved_here = False
        if station.status == StationStatus.AVAILABLE.value:
            self.registry.reserve(station_id, driver_id)
            reserved_here = True

        try:
            station = self.registry.begin_charging(station_id, driver_id)
        except NotReserved:
            if reserved_here:
                self.registry.release(station_id)
            raise

        try:
            session = self.store.create(station_id, driver_id, start_time=self.clock())
        except ChargeFlowError:
            logger.warning(f"Session creation failed for driver {driver_id}, releasing station {station_id}")
            self.registry.release(station_id)
            raise

        return ChargeStart(station=station, session=session)

    def end_charge(self, session_id: str, station_id: str, driver_id: str) -> ChargeEnd:
        session = self.store.get(session_id)
        if session.driver_id != driver_id:
            raise Forbidden("This charge session belongs to another driver.")
        if session.station_id != station_id:
            raise NotFound(f"Charge session {session_id} is not at station {station_id}")

        station = self.registry.get(station_id)

        if session.status == ChargeStatus.FAILED.value and session.end_time is None:
            # Authorization was declined mid-charge: free the station, surface the error
            self._release_held(station, driver_id)
            raise PaymentFailed(session.error or PaymentFailed.default_message)
        if session.end_time is not None or session.is_terminal:
            raise AlreadyClosed()

        end_time = max(self.clock(), session.start_time)
        duration_minutes = Decimal(str((end_time - session.start_time).total_seconds())) / Decimal(60)
        rate = Decimal(station.charge_rate)
        if station.network_type == NetworkType.OUT_OF_NETWORK.value:
            total_cost = Decimal("0")
        else:
            total_cost = compute_total_cost(duration_minutes, rate)

        session = self.store.close(session_id, end_time, total_cost, rate)
        station = self._release_held(station, driver_id)

        logger.info(
            f"Driver {driver_id} ended session {session_id}: "
            f"{duration_minutes:.2f} min x {rate} = {total_cost}"
        )
        return ChargeEnd(
            session=session,
            station=station,
            duration_minutes=duration_minutes,
            total_cost=total_cost,
        )

    def _release_held(self, station: Station, driver_id: str) -> Station:
        if station.driver_id not in (None, driver_id):
            logger.warning(f"Station {station.id} is held by another driver, not releasing")
            return station
        return self.registry.release(station.id)

    # ------------------------------------------------------------------
    # Proximity reminder
    # ------------------------------------------------------------------

    def check_proximity(self, session_id: str, driver_id: str, location: Coordinate) -> ProximityCheck:
        """Show the end-charge reminder once per session when the driver walks away."""
        session = self._own_session(session_id, driver_id)
        station = self.registry.get(session.station_id)
        distance = distance_miles(location, (station.latitude, station.longitude))

        if session.end_time is not None or session.is_terminal:
            return ProximityCheck(session_id, distance, False)

        if distance > self.charge_radius_mi and session.reminder_state == ReminderState.NONE.value:
            self.store.set_reminder_state(session, ReminderState.SHOWN)
            logger.info(f"Showing end-charge reminder for session {session_id} ({distance:.2f} mi away)")
            return ProximityCheck(
                session_id,
                distance,
                True,
                REMINDER_MESSAGE.format(radius=self.charge_radius_mi),
            )
        return ProximityCheck(session_id, distance, False)

    def acknowledge_reminder(self, session_id: str, driver_id: str) -> ChargeSession:
        session = self._own_session(session_id, driver_id)
        if session.end_time is not None or session.is_terminal:
            return session
        if session.reminder_state != ReminderState.ACKNOWLEDGED.value:
            self.store.set_reminder_state(session, ReminderState.ACKNOWLEDGED)
        return session

    def current_state(self, driver_id: str) -> DriverState:
        return DriverState(
            station=self.registry.find_driver_occupancy(driver_id),
            session=self.store.get_open_for_driver(driver_id),
        )

    def _own_session(self, session_id: str, driver_id: str) -> ChargeSession:
        session = self.store.get(session_id)
        if session.driver_id != driver_id:
            raise Forbidden("This charge session belongs to another driver.")
        return session
