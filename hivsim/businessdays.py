"""
Business-day calendar used to drive the simulation clock.

The simulation only ever asks two questions of a calendar: whether a
day is a working day at the clinic and what the next working day is.
Both are answered with a pandas ``CustomBusinessDay`` offset, so any
pandas holiday calendar (or a plain list of dates) can be plugged in.
"""

from datetime import date, timedelta
from typing import Iterable, Optional

import pandas as pd
from pandas.tseries.holiday import AbstractHolidayCalendar, USFederalHolidayCalendar
from pandas.tseries.offsets import CustomBusinessDay

WEEKDAYS = "Mon Tue Wed Thu Fri"


class BusinessCalendar:
    """Clinic working days: weekdays in ``weekmask`` minus ``holidays``."""

    def __init__(self, holidays: Optional[Iterable] = None,
                 weekmask: str = WEEKDAYS, name: str = "weekdays"):
        self.name = name
        self.holidays = sorted(pd.Timestamp(h).date() for h in (holidays or []))
        self.weekmask = weekmask
        self._offset = CustomBusinessDay(holidays=self.holidays, weekmask=weekmask)

    @classmethod
    def from_holiday_calendar(cls, holiday_calendar: AbstractHolidayCalendar,
                              start: date, end: date,
                              name: Optional[str] = None) -> "BusinessCalendar":
        """Materialise a pandas holiday calendar over ``[start, end]``."""
        # pad the range so advancing past the end date still sees holidays
        holidays = holiday_calendar.holidays(start=pd.Timestamp(start),
                                             end=pd.Timestamp(end) + pd.DateOffset(months=1))
        return cls(holidays=holidays, name=name or holiday_calendar.name)

    def is_business_day(self, day: date) -> bool:
        return bool(self._offset.is_on_offset(pd.Timestamp(day)))

    def advance(self, day: date, n: int = 1) -> date:
        """Move ``n`` business days forward from ``day``."""
        return (pd.Timestamp(day) + n * self._offset).date()

    def first_business_day(self, day: date) -> date:
        """The business day on or immediately after ``day``."""
        return self.advance(day - timedelta(days=1), 1)

    def __repr__(self):
        return f"BusinessCalendar(name={self.name!r}, holidays={len(self.holidays)})"


def make_calendar(kind: str, start: date, end: date) -> BusinessCalendar:
    """Build one of the named calendars offered on the command line."""
    if kind == "none":
        return BusinessCalendar()
    if kind == "us-federal":
        return BusinessCalendar.from_holiday_calendar(
            USFederalHolidayCalendar(), start, end, name="us-federal")
    raise ValueError(f"Unknown holiday calendar: {kind!r}")
