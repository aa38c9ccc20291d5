"""
Response shaping shared by the routers.
"""
from typing import Optional

from ..models.charge import ChargeSession
from ..models.station import Station
from ..services.geo import Coordinate, distance_miles
from ..services.station_filters import charger_level_for_rate, station_coordinate


def _money(value) -> Optional[str]:
    return str(value) if value is not None else None


def station_out(station: Station, origin: Optional[Coordinate] = None) -> dict:
    data = {
        "id": station.id,
        "owner_id": station.owner_id,
        "address": station.address,
        "latitude": station.latitude,
        "longitude": station.longitude,
        "charge_rate": _money(station.charge_rate),
        "charger_level": charger_level_for_rate(station.charge_rate),
        "adapter_types": list(station.adapter_types or []),
        "network_type": station.network_type,
        "photo_url": station.photo_url,
        "available": station.available,
        "status": station.status,
        "driver_id": station.driver_id,
        "en_route_at": station.en_route_at.isoformat() if station.en_route_at else None,
    }
    if origin is not None:
        data["distance_mi"] = round(distance_miles(origin, station_coordinate(station)), 2)
    return data


def session_out(session: ChargeSession) -> dict:
    return {
        "id": session.id,
        "station_id": session.station_id,
        "driver_id": session.driver_id,
        "start_time": session.start_time.isoformat() if session.start_time else None,
        "end_time": session.end_time.isoformat() if session.end_time else None,
        "rate_at_close": _money(session.rate_at_close),
        "total_cost": _money(session.total_cost),
        "status": session.status,
        "payment_intent_id": session.payment_intent_id,
        "amount_cents": session.amount_cents,
        "platform_share_cents": session.platform_share_cents,
        "owner_share_cents": session.owner_share_cents,
        "payout_method": session.payout_method,
        "error": session.error,
        "reminder_state": session.reminder_state,
    }
