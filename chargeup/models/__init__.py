"""
Models package - organized by domain
"""
from .user import User
from .station import Station, StationStatus, NetworkType, ADAPTER_TYPES
from .charge import (
    ChargeSession,
    ChargeStatus,
    ReminderState,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
)
from .platform_earning import PlatformEarning
from .change_event import ChangeEvent

__all__ = [
    "User",
    "Station",
    "StationStatus",
    "NetworkType",
    "ADAPTER_TYPES",
    "ChargeSession",
    "ChargeStatus",
    "ReminderState",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "PlatformEarning",
    "ChangeEvent",
]
