"""Unit tests for ISO week helpers"""

import pytest
from datetime import date

from fleet_settlement.domain.exceptions import InvalidInputError
from fleet_settlement.utils.date_utils import next_week_id, week_bounds


def test_week_bounds_monday_to_sunday():
    assert week_bounds("2025-W40") == (date(2025, 9, 29), date(2025, 10, 5))


def test_week_one_can_start_in_previous_year():
    assert week_bounds("2025-W01") == (date(2024, 12, 30), date(2025, 1, 5))


@pytest.mark.parametrize("week_id", ["2025-40", "2025-W4", "2025-W54", "", "W40-2025"])
def test_malformed_week_ids_are_rejected(week_id):
    with pytest.raises(InvalidInputError):
        week_bounds(week_id)


@pytest.mark.parametrize(
    "week_id,expected",
    [("2025-W40", "2025-W41"), ("2025-W52", "2026-W01"), ("2026-W53", "2027-W01")],
)
def test_next_week_crosses_year_boundaries(week_id, expected):
    assert next_week_id(week_id) == expected
