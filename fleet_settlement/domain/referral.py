"""Multi-level referral bonus accrual"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional

from fleet_settlement.config import ReferralPolicy
from fleet_settlement.domain.models import ReferralBonus, ReferralBonusDetail
from fleet_settlement.domain.money import round2


@dataclass
class DownlineWeek:
    """What one referred driver contributes to the week's accrual"""

    driver_id: str
    base: Decimal  # earnings net of VAT
    revenue: Decimal  # gross earnings
    tenure_weeks: int  # prior weeks with a processed payment


def downline_eligible(week: DownlineWeek, policy: ReferralPolicy) -> bool:
    if week.base <= 0:
        return False
    if week.revenue <= policy.min_weekly_revenue:
        return False
    return week.tenure_weeks >= policy.min_tenure_weeks


def accrue_referral_bonuses(
    weeks: Mapping[str, DownlineWeek],
    referred_by: Mapping[str, Optional[str]],
    policy: ReferralPolicy,
) -> Dict[str, ReferralBonus]:
    """
    Walk each eligible driver's referrer chain and accrue a level-rated share
    of the driver's base to every ancestor up to `policy.max_depth`.

    Returns bonuses keyed by referrer id.
    """
    bonuses: Dict[str, ReferralBonus] = {}
    if not policy.enabled:
        return bonuses

    for driver_id in sorted(weeks):
        week = weeks[driver_id]
        if not downline_eligible(week, policy):
            continue

        seen = {driver_id}
        referrer = referred_by.get(driver_id)
        level = 1
        while referrer and level <= policy.max_depth and referrer not in seen:
            seen.add(referrer)
            rate = policy.rate_for_level(level)
            if rate > 0:
                amount = round2(week.base * rate)
                if amount > 0:
                    bonus = bonuses.setdefault(referrer, ReferralBonus())
                    bonus.details.append(
                        ReferralBonusDetail(
                            level=level,
                            referred_driver_id=driver_id,
                            base=week.base,
                            amount=amount,
                        )
                    )
                    bonus.total = round2(bonus.total + amount)
            referrer = referred_by.get(referrer)
            level += 1

    return bonuses
