"""Extra commission paid on top of the weekly net"""

from decimal import Decimal

from fleet_settlement.config import SettlementConfig
from fleet_settlement.domain.exceptions import InvalidInputError
from fleet_settlement.domain.models import DriverType, SettlementAmounts
from fleet_settlement.domain.money import non_negative, round2


def commission_base(amounts: SettlementAmounts, base: str) -> Decimal:
    if base == "gross":
        return amounts.gross_earnings
    if base == "net_of_vat":
        return amounts.net_after_vat
    if base == "net_of_expenses":
        expenses = amounts.fuel_cost + amounts.toll_cost + amounts.rental_fee + amounts.financing_cost
        return non_negative(amounts.net_after_vat - expenses)
    raise InvalidInputError(f"Unknown commission base: {base}")


def calculate_extra_commission(
    amounts: SettlementAmounts,
    driver_type: DriverType,
    config: SettlementConfig,
) -> Decimal:
    """Commission for the driver's type, or zero when the feature is disabled"""
    if not config.extra_commission_enabled:
        return Decimal("0.00")

    rule = config.extra_commission_rules.get(driver_type.value)
    if rule is None:
        return Decimal("0.00")

    if rule.mode == "percent":
        amount = commission_base(amounts, rule.base) * Decimal(str(rule.value)) / Decimal("100")
    elif rule.mode == "fixed":
        amount = Decimal(str(rule.value))
    else:
        raise InvalidInputError(f"Unknown commission mode: {rule.mode}")

    return non_negative(round2(amount))
