from .change_feed import (
    CHARGES,
    STATIONS,
    ChangeFeed,
    ChangeNotice,
    Subscription,
    change_feed,
    record_change,
)

__all__ = [
    "CHARGES",
    "STATIONS",
    "ChangeFeed",
    "ChangeNotice",
    "Subscription",
    "change_feed",
    "record_change",
]
