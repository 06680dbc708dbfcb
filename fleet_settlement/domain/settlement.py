"""Settlement math - the fixed-order weekly net payable computation"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Tuple

from fleet_settlement.config import SettlementConfig
from fleet_settlement.domain.fees import resolve_admin_fee
from fleet_settlement.domain.financing import financing_cost_for_week, get_eligibility_policy
from fleet_settlement.domain.models import (
    AppliedFee,
    DriverProfile,
    DriverType,
    FinancingAgreement,
    FinancingCost,
    IngestionTotals,
    SettlementAmounts,
)
from fleet_settlement.domain.money import non_negative, round2


def compute_base_net(
    totals: IngestionTotals,
    driver: DriverProfile,
    week_start: date,
    week_end: date,
    agreements: Iterable[FinancingAgreement],
    config: SettlementConfig,
) -> Tuple[SettlementAmounts, AppliedFee, FinancingCost]:
    """
    Steps 1-6 of the settlement, strictly in order.

    Each intermediate value is rounded to cents before it feeds the next step:
    1. gross = earnings_a + earnings_b (fuel and tolls summed separately)
    2. vat = gross x vat_rate
    3. net_after_vat = gross - vat
    4. admin fee (exemption > override > default)
    5. financing = sum of eligible installments + interest
    6. base_net = net_after_vat - admin_fee - fuel - tolls - rental - financing
    """
    amounts = SettlementAmounts()

    amounts.earnings_a = round2(totals.earnings_a)
    amounts.earnings_b = round2(totals.earnings_b)
    amounts.gross_earnings = round2(amounts.earnings_a + amounts.earnings_b)
    amounts.fuel_cost = round2(totals.fuel)
    amounts.toll_cost = round2(totals.tolls)

    amounts.vat = round2(amounts.gross_earnings * config.vat_rate)
    amounts.net_after_vat = round2(amounts.gross_earnings - amounts.vat)

    applied_fee = resolve_admin_fee(driver, week_start, amounts.net_after_vat, config)
    amounts.admin_fee = applied_fee.amount

    policy = get_eligibility_policy(config.financing_eligibility_policy)
    financing = financing_cost_for_week(agreements, week_start, week_end, policy)
    amounts.financing_installment = financing.installment
    amounts.financing_interest = financing.interest
    amounts.financing_cost = round2(financing.total)

    amounts.rental_fee = round2(driver.rental_fee) if driver.type is DriverType.RENTER else Decimal("0.00")

    amounts.base_net = round2(
        amounts.net_after_vat
        - amounts.admin_fee
        - amounts.fuel_cost
        - amounts.toll_cost
        - amounts.rental_fee
        - amounts.financing_cost
    )
    return amounts, applied_fee, financing


def apply_additions(
    amounts: SettlementAmounts,
    extra_commission: Decimal = Decimal("0"),
    referral_bonus: Decimal = Decimal("0"),
    goal_reward: Decimal = Decimal("0"),
) -> SettlementAmounts:
    """
    Step 7: layer the additions on top of base_net.

    Negative contributions are clamped to zero so net_payable never falls
    below base_net.
    """
    amounts.extra_commission = non_negative(round2(extra_commission))
    amounts.referral_bonus = non_negative(round2(referral_bonus))
    amounts.goal_reward = non_negative(round2(goal_reward))
    amounts.net_payable = round2(
        amounts.base_net + amounts.extra_commission + amounts.referral_bonus + amounts.goal_reward
    )
    return amounts
