"""Unit tests for financing eligibility and amortization"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from fleet_settlement.domain.exceptions import InvalidInputError
from fleet_settlement.domain.financing import (
    consume_week,
    financing_cost_for_week,
    get_eligibility_policy,
    is_eligible,
    register_eligibility_policy,
    weekly_line,
)
from fleet_settlement.domain.models import FinancingAgreement, FinancingKind, FinancingStatus

WEEK_START = date(2025, 9, 29)
WEEK_END = date(2025, 10, 5)
DEFAULT = get_eligibility_policy("start_on_or_before_week_end")


def agreement(**kwargs) -> FinancingAgreement:
    values = dict(
        agreement_id="a1",
        driver_id="d1",
        kind=FinancingKind.AMORTIZING,
        principal=Decimal("1000"),
        term_weeks=10,
        remaining_weeks=10,
        weekly_interest_percent=Decimal("5"),
        start_date=WEEK_START,
    )
    values.update(kwargs)
    return FinancingAgreement(**values)


def test_amortizing_installment_and_interest():
    """1000 over 10 weeks at 5% weekly interest -> 100 + 5"""
    line = weekly_line(agreement())

    assert line.installment == Decimal("100.00")
    assert line.interest == Decimal("5.00")
    assert line.total == Decimal("105.00")


def test_fixed_discount_charges_principal_each_week():
    line = weekly_line(
        agreement(kind=FinancingKind.FIXED_DISCOUNT, principal=Decimal("45"), weekly_interest_percent=Decimal("0"))
    )
    assert line.installment == Decimal("45.00")
    assert line.interest == Decimal("0.00")


def test_installment_rounds_to_cents():
    line = weekly_line(agreement(principal=Decimal("100"), term_weeks=3, weekly_interest_percent=Decimal("2.5")))

    assert line.installment == Decimal("33.33")
    assert line.interest == Decimal("0.83")


def test_agreement_starting_after_week_is_not_charged():
    later = agreement(start_date=WEEK_END + timedelta(days=1))
    assert is_eligible(later, WEEK_START, WEEK_END, DEFAULT) is False


def test_eligibility_policies_differ_for_mid_week_start():
    mid_week = agreement(start_date=WEEK_START + timedelta(days=3))
    strict = get_eligibility_policy("start_on_or_before_week_start")

    assert is_eligible(mid_week, WEEK_START, WEEK_END, DEFAULT) is True
    assert is_eligible(mid_week, WEEK_START, WEEK_END, strict) is False


def test_missing_start_date_counts_as_started():
    assert is_eligible(agreement(start_date=None), WEEK_START, WEEK_END, DEFAULT) is True


def test_exhausted_or_completed_agreements_are_skipped():
    exhausted = agreement(remaining_weeks=0)
    completed_discount = agreement(kind=FinancingKind.FIXED_DISCOUNT, status=FinancingStatus.COMPLETED)

    cost = financing_cost_for_week([exhausted, completed_discount], WEEK_START, WEEK_END, DEFAULT)

    assert cost.lines == []
    assert cost.total == Decimal("0")


def test_cost_sums_every_eligible_agreement():
    cost = financing_cost_for_week(
        [
            agreement(),
            agreement(
                agreement_id="a2",
                kind=FinancingKind.FIXED_DISCOUNT,
                principal=Decimal("20"),
                weekly_interest_percent=Decimal("0"),
            ),
        ],
        WEEK_START,
        WEEK_END,
        DEFAULT,
    )

    assert cost.installment == Decimal("120.00")
    assert cost.interest == Decimal("5.00")
    assert [line.agreement_id for line in cost.lines] == ["a1", "a2"]


def test_consume_week_completes_after_term():
    current = agreement()
    for _ in range(10):
        current = consume_week(current)

    assert current.remaining_weeks == 0
    assert current.status is FinancingStatus.COMPLETED

    # Further weeks are a no-op
    assert consume_week(current).remaining_weeks == 0


def test_consume_week_leaves_fixed_discount_alone():
    discount = agreement(kind=FinancingKind.FIXED_DISCOUNT, remaining_weeks=0)
    assert consume_week(discount).status is FinancingStatus.ACTIVE


def test_unknown_policy_is_rejected():
    with pytest.raises(InvalidInputError):
        get_eligibility_policy("whenever")


def test_registered_policy_is_used():
    register_eligibility_policy("never", lambda start, week_start, week_end: False)
    assert is_eligible(agreement(), WEEK_START, WEEK_END, get_eligibility_policy("never")) is False
