from datetime import datetime

from checkout_service import models
from checkout_service.restaurant_status import get_restaurant_status, next_opening_time, within_hours

WEEK = {
    "monday": {"open": "11:00", "close": "22:00"},
    "tuesday": {"open": "11:00", "close": "22:00"},
    "wednesday": {"closed": True},
    "thursday": {"open": "11:00", "close": "22:00"},
    "friday": {"open": "18:00", "close": "02:00"},
    "saturday": {"open": "12:00", "close": "23:00"},
}

# 2024-01-01 was a Monday
MONDAY_NOON = datetime(2024, 1, 1, 12, 0)
MONDAY_LATE = datetime(2024, 1, 1, 23, 30)
TUESDAY_LATE = datetime(2024, 1, 2, 23, 30)
SATURDAY_1AM = datetime(2024, 1, 6, 1, 0)


def restaurant(**kw):
    kw.setdefault("is_open", True)
    kw.setdefault("is_temporarily_closed", False)
    return models.Restaurant(name="Testaurant", **kw)


def test_open_within_hours():
    status = get_restaurant_status(restaurant(operating_hours=WEEK), MONDAY_NOON)
    assert status.is_open
    assert status.message == "Open now"


def test_temporary_closure_wins():
    status = get_restaurant_status(restaurant(is_temporarily_closed=True, is_open=False), MONDAY_NOON)
    assert not status.is_open
    assert status.reason == "temporarily_closed"
    assert status.message == "Temporarily closed"


def test_manually_closed():
    status = get_restaurant_status(restaurant(is_open=False), MONDAY_NOON)
    assert status.reason == "manually_closed"
    assert status.message == "Closed"


def test_outside_hours_reports_next_opening():
    status = get_restaurant_status(restaurant(operating_hours=WEEK), MONDAY_LATE)
    assert not status.is_open
    assert status.reason == "outside_hours"
    assert status.next_opening_time == "Opens Tomorrow at 11:00"


def test_next_opening_skips_closed_days():
    # Wednesday is closed, so after Tuesday comes Thursday
    assert next_opening_time(WEEK, TUESDAY_LATE) == "Opens Thursday at 11:00"


def test_no_hours_for_today():
    status = get_restaurant_status(restaurant(operating_hours=WEEK), datetime(2024, 1, 7, 12, 0))  # Sunday
    assert status.reason == "no_hours"
    assert status.message == "Hours not available"


def test_hours_past_midnight():
    assert within_hours("01:00", "18:00", "02:00")
    assert within_hours("19:30", "18:00", "02:00")
    assert not within_hours("03:00", "18:00", "02:00")
    # Saturday 1am is outside Saturday's 12:00-23:00 window
    assert not get_restaurant_status(restaurant(operating_hours=WEEK), SATURDAY_1AM).is_open


def test_no_schedule_means_flags_decide():
    assert get_restaurant_status(restaurant(), MONDAY_LATE).is_open
    assert next_opening_time(None, MONDAY_LATE) == "Check restaurant for hours"
