"""
US federal holiday detection

Holidays are computed for any year. Besides the holidays themselves, the observed
weekday (Saturday -> Friday, Sunday -> Monday), the Friday before a Monday holiday
and the Saturday after a Friday holiday are flagged, since traffic on those days
follows long-weekend patterns.
"""

import calendar
from datetime import date, timedelta
from functools import lru_cache


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> date:
    """
    Get the nth occurrence of a weekday in a month

    Args:
        year: The year
        month: The month (1-12)
        weekday: Python weekday (0=Monday, 6=Sunday)
        n: Which occurrence (1, 2, ...) or -1 for the last one
    """
    if n == -1:
        last_day = date(year, month, calendar.monthrange(year, month)[1])
        return last_day - timedelta(days=(last_day.weekday() - weekday) % 7)

    first_day = date(year, month, 1)
    first_occurrence = first_day + timedelta(days=(weekday - first_day.weekday()) % 7)
    return first_occurrence + timedelta(weeks=n - 1)


def federal_holidays(year: int) -> list[tuple[date, str]]:
    """All federal holidays (plus the day after Thanksgiving) for a year"""
    thanksgiving = nth_weekday_of_month(year, 11, calendar.THURSDAY, 4)
    return [
        (date(year, 1, 1), "New Year's Day"),
        (nth_weekday_of_month(year, 1, calendar.MONDAY, 3), "Martin Luther King Jr. Day"),
        (nth_weekday_of_month(year, 2, calendar.MONDAY, 3), "Presidents' Day"),
        (nth_weekday_of_month(year, 5, calendar.MONDAY, -1), "Memorial Day"),
        (date(year, 7, 4), "Independence Day"),
        (nth_weekday_of_month(year, 9, calendar.MONDAY, 1), "Labor Day"),
        (nth_weekday_of_month(year, 10, calendar.MONDAY, 2), "Columbus Day"),
        (date(year, 11, 11), "Veterans Day"),
        (thanksgiving, "Thanksgiving Day"),
        (thanksgiving + timedelta(days=1), "Day after Thanksgiving"),
        (date(year, 12, 25), "Christmas Day"),
    ]


def observed_date(holiday: date) -> date:
    if holiday.weekday() == calendar.SATURDAY:
        return holiday - timedelta(days=1)
    if holiday.weekday() == calendar.SUNDAY:
        return holiday + timedelta(days=1)
    return holiday


@lru_cache(maxsize=16)
def holiday_dates(year: int) -> frozenset:
    """Every holiday-related date for a year (actual, observed and long-weekend days)"""
    dates = set()
    for holiday, _name in federal_holidays(year):
        dates.add(holiday)
        dates.add(observed_date(holiday))

        # Long weekend: Friday before a Monday holiday
        if holiday.weekday() == calendar.MONDAY:
            dates.add(holiday - timedelta(days=3))

        # Friday holidays (day after Thanksgiving) pull in the Saturday
        if holiday.weekday() == calendar.FRIDAY:
            dates.add(holiday + timedelta(days=1))

    return frozenset(dates)


def is_holiday(day: date) -> bool:
    """True if the (local) date is a holiday or holiday-adjacent day"""
    # New Year's Day on a Saturday is observed on Dec 31 of the previous year
    return day in holiday_dates(day.year) or day in holiday_dates(day.year + 1)
