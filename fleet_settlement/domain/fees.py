"""Administrative fee policy resolution"""

from datetime import date
from decimal import Decimal

from fleet_settlement.config import FeeRule, SettlementConfig
from fleet_settlement.domain.exceptions import InvalidInputError
from fleet_settlement.domain.models import AppliedFee, DriverProfile, FeeMode
from fleet_settlement.domain.money import non_negative, round2


def default_rule_for(driver: DriverProfile, config: SettlementConfig) -> FeeRule:
    """
    Global default for the driver's type.

    Every driver type must have an explicit default in the configuration
    snapshot; there is no implicit fallback between fixed and percent modes.
    """
    rule = config.admin_fee_defaults.get(driver.type.value)
    if rule is None:
        raise InvalidInputError(f"No administrative fee default configured for {driver.type.value} drivers")
    return rule


def resolve_admin_fee(
    driver: DriverProfile,
    week_start: date,
    net_after_vat: Decimal,
    config: SettlementConfig,
) -> AppliedFee:
    """
    Resolve the administrative fee for a driver-week.

    Precedence: exemption window > per-driver override > global default.
    Exemption windows are inclusive and matched against the week start.
    Percent fees apply to earnings net of VAT.
    """
    if driver.fee_override is not None:
        mode, rate, source = driver.fee_override.mode, driver.fee_override.value, "override"
    else:
        rule = default_rule_for(driver, config)
        mode, rate, source = FeeMode(rule.mode), Decimal(str(rule.value)), "default"

    if any(window.covers(week_start) for window in driver.exemptions):
        return AppliedFee(mode=mode, rate=rate, amount=Decimal("0.00"), source="exemption", exempt=True)

    if mode is FeeMode.PERCENT:
        amount = non_negative(net_after_vat) * rate / Decimal("100")
    else:
        amount = rate

    return AppliedFee(mode=mode, rate=rate, amount=non_negative(round2(amount)), source=source)
