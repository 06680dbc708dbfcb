"""Date manipulation utilities"""

import re
from datetime import date, timedelta
from typing import Tuple

from fleet_settlement.domain.exceptions import InvalidInputError

_WEEK_ID = re.compile(r"^(\d{4})-W(\d{2})$")


def week_bounds(week_id: str) -> Tuple[date, date]:
    """Monday and Sunday of an ISO week id such as '2025-W40'"""
    match = _WEEK_ID.match(week_id or "")
    if not match:
        raise InvalidInputError(f"Invalid week id: {week_id!r}")
    year, week = int(match.group(1)), int(match.group(2))
    try:
        start = date.fromisocalendar(year, week, 1)
    except ValueError as e:
        raise InvalidInputError(f"Invalid week id: {week_id!r}") from e
    return start, start + timedelta(days=6)


def exemption_end(start: date, weeks: int) -> date:
    """Inclusive last day of an exemption lasting `weeks` weeks"""
    return start + timedelta(days=weeks * 7 - 1)


def next_week_id(week_id: str) -> str:
    """The ISO week following week_id"""
    year, week, _ = (week_bounds(week_id)[0] + timedelta(days=7)).isocalendar()
    return f"{year}-W{week:02d}"
