import datetime as _dt
from typing import Iterator

from constants import MONTHS_PER_YEAR


def month_start(d: _dt.date) -> _dt.date:
    return d.replace(day=1)


def add_months(d: _dt.date, months: int) -> _dt.date:
    """Shifts a date by whole months, landing on the first of the target month."""
    index = d.year * MONTHS_PER_YEAR + (d.month - 1) + months
    return _dt.date(index // MONTHS_PER_YEAR, index % MONTHS_PER_YEAR + 1, 1)


def months_between(start: _dt.date, end: _dt.date) -> int:
    """Whole calendar months from ``start`` to ``end`` (negative if end is earlier)."""
    return (end.year - start.year) * MONTHS_PER_YEAR + (end.month - start.month)


def month_range(start: _dt.date, end: _dt.date) -> Iterator[_dt.date]:
    """Yields the first day of every month from ``start`` through ``end`` inclusive."""
    current = month_start(start)
    last = month_start(end)
    while current <= last:
        yield current
        current = add_months(current, 1)


def age_in_months(date_of_birth: _dt.date, as_of: _dt.date) -> int:
    """Completed months of age at the first day of the ``as_of`` month."""
    months = months_between(date_of_birth, as_of)
    if date_of_birth.day > 1:
        months -= 1
    return max(0, months)


def age_in_years(date_of_birth: _dt.date, as_of: _dt.date) -> int:
    return age_in_months(date_of_birth, as_of) // MONTHS_PER_YEAR
