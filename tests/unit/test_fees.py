"""Unit tests for administrative fee resolution"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from fleet_settlement.config import FeeRule, SettlementConfig
from fleet_settlement.domain.exceptions import InvalidInputError
from fleet_settlement.domain.fees import resolve_admin_fee
from fleet_settlement.domain.models import (
    DriverProfile,
    DriverType,
    FeeExemptionWindow,
    FeeMode,
    FeeOverride,
)
from fleet_settlement.utils.date_utils import exemption_end

WEEK_START = date(2025, 9, 29)
NET = Decimal("943.40")


def driver(**kwargs) -> DriverProfile:
    return DriverProfile(driver_id="d1", name="Driver One", type=kwargs.pop("type", DriverType.AFFILIATE), **kwargs)


def test_default_fixed_fee():
    fee = resolve_admin_fee(driver(), WEEK_START, NET, SettlementConfig())

    assert fee.amount == Decimal("25.00")
    assert fee.mode is FeeMode.FIXED
    assert fee.source == "default"


def test_percent_override_applies_to_net_after_vat():
    """7% of 943.40 = 66.038 -> 66.04"""
    fee = resolve_admin_fee(
        driver(fee_override=FeeOverride(FeeMode.PERCENT, Decimal("7"))), WEEK_START, NET, SettlementConfig()
    )

    assert fee.amount == Decimal("66.04")
    assert fee.source == "override"


def test_exemption_beats_override():
    profile = driver(
        fee_override=FeeOverride(FeeMode.FIXED, Decimal("40")),
        exemptions=[FeeExemptionWindow(WEEK_START - timedelta(days=14), WEEK_START)],
    )

    fee = resolve_admin_fee(profile, WEEK_START, NET, SettlementConfig())

    assert fee.amount == Decimal("0.00")
    assert fee.exempt is True
    assert fee.source == "exemption"


def test_exemption_window_is_inclusive_at_both_ends():
    starts_on_week = driver(exemptions=[FeeExemptionWindow(WEEK_START, WEEK_START + timedelta(days=6))])
    ended_day_before = driver(exemptions=[FeeExemptionWindow(WEEK_START - timedelta(days=7), WEEK_START - timedelta(days=1))])

    assert resolve_admin_fee(starts_on_week, WEEK_START, NET, SettlementConfig()).exempt is True
    assert resolve_admin_fee(ended_day_before, WEEK_START, NET, SettlementConfig()).exempt is False


def test_percent_fee_never_negative():
    fee = resolve_admin_fee(
        driver(fee_override=FeeOverride(FeeMode.PERCENT, Decimal("10"))),
        WEEK_START,
        Decimal("-50.00"),
        SettlementConfig(),
    )
    assert fee.amount == Decimal("0.00")


def test_per_type_defaults():
    config = SettlementConfig(
        admin_fee_defaults={
            "affiliate": FeeRule("fixed", Decimal("25")),
            "renter": FeeRule("percent", Decimal("5")),
        }
    )

    fee = resolve_admin_fee(driver(type=DriverType.RENTER), WEEK_START, Decimal("200.00"), config)

    assert fee.amount == Decimal("10.00")
    assert fee.mode is FeeMode.PERCENT


def test_missing_default_for_type_is_an_error():
    config = SettlementConfig(admin_fee_defaults={"affiliate": FeeRule("fixed", Decimal("25"))})

    with pytest.raises(InvalidInputError):
        resolve_admin_fee(driver(type=DriverType.RENTER), WEEK_START, NET, config)


def test_exemption_end_from_weeks():
    assert exemption_end(WEEK_START, 1) == date(2025, 10, 5)
    assert exemption_end(WEEK_START, 2) == date(2025, 10, 12)
