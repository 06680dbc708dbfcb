"""Financing ledger math: eligibility, weekly installments and amortization"""

from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List

from fleet_settlement.domain.exceptions import InvalidInputError
from fleet_settlement.domain.models import (
    FinancingAgreement,
    FinancingCost,
    FinancingKind,
    FinancingLine,
    FinancingStatus,
)
from fleet_settlement.domain.money import round2

# A policy decides whether an agreement's start date falls inside the window
# that makes a given week chargeable: (start_date, week_start, week_end) -> bool
EligibilityPolicy = Callable[[date, date, date], bool]

ELIGIBILITY_POLICIES: Dict[str, EligibilityPolicy] = {
    "start_on_or_before_week_end": lambda start, week_start, week_end: start <= week_end,
    "start_on_or_before_week_start": lambda start, week_start, week_end: start <= week_start,
}


def register_eligibility_policy(name: str, policy: EligibilityPolicy) -> None:
    ELIGIBILITY_POLICIES[name] = policy


def get_eligibility_policy(name: str) -> EligibilityPolicy:
    try:
        return ELIGIBILITY_POLICIES[name]
    except KeyError:
        raise InvalidInputError(f"Unknown financing eligibility policy: {name}") from None


def is_eligible(agreement: FinancingAgreement, week_start: date, week_end: date, policy: EligibilityPolicy) -> bool:
    """
    An agreement is chargeable for a week when the policy accepts its start
    date and it still has weeks to run (amortizing) or is active (fixed discount).
    Agreements without a start date are treated as already started.
    """
    if agreement.start_date is not None and not policy(agreement.start_date, week_start, week_end):
        return False
    if agreement.kind is FinancingKind.AMORTIZING:
        return agreement.term_weeks > 0 and agreement.remaining_weeks > 0
    return agreement.status is FinancingStatus.ACTIVE


def weekly_line(agreement: FinancingAgreement) -> FinancingLine:
    """
    Installment and interest charged for one week.

    Amortizing: installment = principal / term_weeks.
    Fixed discount: installment = principal (the fixed weekly amount).
    Interest = installment x weekly_interest_percent / 100 in both cases.
    """
    if agreement.kind is FinancingKind.AMORTIZING:
        installment = agreement.principal / agreement.term_weeks
    else:
        installment = agreement.principal
    installment = round2(installment)
    interest = round2(installment * agreement.weekly_interest_percent / Decimal("100"))
    return FinancingLine(
        agreement_id=agreement.agreement_id,
        kind=agreement.kind,
        installment=installment,
        interest=interest,
    )


def financing_cost_for_week(
    agreements: Iterable[FinancingAgreement],
    week_start: date,
    week_end: date,
    policy: EligibilityPolicy,
) -> FinancingCost:
    """Sum the weekly lines of every eligible agreement"""
    lines: List[FinancingLine] = [
        weekly_line(agreement)
        for agreement in agreements
        if is_eligible(agreement, week_start, week_end, policy)
    ]
    return FinancingCost(
        lines=lines,
        installment=round2(sum((line.installment for line in lines), Decimal("0"))),
        interest=round2(sum((line.interest for line in lines), Decimal("0"))),
    )


def consume_week(agreement: FinancingAgreement) -> FinancingAgreement:
    """
    Apply one committed payment to an amortizing agreement.

    Decrements remaining_weeks by one and completes the agreement when it
    reaches zero. Fixed discounts are left untouched.
    """
    if agreement.kind is not FinancingKind.AMORTIZING or agreement.remaining_weeks <= 0:
        return agreement
    agreement.remaining_weeks -= 1
    if agreement.remaining_weeks == 0:
        agreement.status = FinancingStatus.COMPLETED
    return agreement
