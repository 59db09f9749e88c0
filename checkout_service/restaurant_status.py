from datetime import datetime
from typing import Optional

from . import models, schemas

DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
FALLBACK_HOURS_MESSAGE = "Check restaurant for hours"


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def within_hours(now_hhmm: str, open_hhmm: str, close_hhmm: str) -> bool:
    current, opens, closes = _minutes(now_hhmm), _minutes(open_hhmm), _minutes(close_hhmm)
    if closes < opens:
        # closes after midnight
        return current >= opens or current <= closes
    return opens <= current <= closes


def next_opening_time(operating_hours: Optional[dict], now: datetime) -> str:
    if not operating_hours:
        return FALLBACK_HOURS_MESSAGE
    today = now.weekday()
    for offset in range(1, 8):
        day = DAYS[(today + offset) % 7]
        hours = operating_hours.get(day)
        if hours and not hours.get("closed"):
            label = "Tomorrow" if offset == 1 else day.capitalize()
            return f"Opens {label} at {hours.get('open')}"
    return FALLBACK_HOURS_MESSAGE


def status_message(is_open: bool, reason: Optional[str], next_opening: Optional[str] = None) -> str:
    if is_open:
        return "Open now"
    if reason == "temporarily_closed":
        return "Temporarily closed"
    if reason == "outside_hours":
        return next_opening or "Closed"
    if reason == "no_hours":
        return "Hours not available"
    return "Closed"


def get_restaurant_status(restaurant: models.Restaurant, now: Optional[datetime] = None) -> schemas.RestaurantStatus:
    """Open/closed for ``now`` (restaurant-local time).

    Temporary closure beats the manual flag, which beats operating hours.
    A restaurant without operating hours is open whenever its flags allow.
    """
    now = now or datetime.now()

    def closed(reason, next_opening=None):
        return schemas.RestaurantStatus(
            is_open=False,
            reason=reason,
            next_opening_time=next_opening,
            message=status_message(False, reason, next_opening),
        )

    if restaurant.is_temporarily_closed:
        return closed("temporarily_closed")
    if not restaurant.is_open:
        return closed("manually_closed")

    hours = restaurant.operating_hours
    if hours:
        today = hours.get(DAYS[now.weekday()])
        if not today:
            return closed("no_hours")
        if today.get("closed") or not within_hours(now.strftime("%H:%M"), today["open"], today["close"]):
            return closed("outside_hours", next_opening_time(hours, now))

    return schemas.RestaurantStatus(is_open=True, message=status_message(True, None))
