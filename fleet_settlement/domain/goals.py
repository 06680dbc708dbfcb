"""Goal reward evaluation against tiered weekly targets"""

from decimal import Decimal
from typing import Iterable, List

from fleet_settlement.domain.models import DriverType, GoalResult, GoalTier
from fleet_settlement.domain.money import round2


def tier_satisfied(tier: GoalTier, trips: int, revenue: Decimal) -> bool:
    if tier.min_trips is not None and trips < tier.min_trips:
        return False
    if tier.min_revenue is not None and revenue < tier.min_revenue:
        return False
    return True


def evaluate_goals(
    tiers: Iterable[GoalTier],
    driver_type: DriverType,
    trips: int,
    revenue: Decimal,
) -> List[GoalResult]:
    """Each satisfied tier pays its reward once; tiers stack"""
    results = []
    for tier in tiers:
        if tier.driver_type is not None and tier.driver_type is not driver_type:
            continue
        achieved = tier_satisfied(tier, trips, revenue)
        results.append(
            GoalResult(
                tier_id=tier.tier_id,
                name=tier.name,
                achieved=achieved,
                reward=round2(tier.reward) if achieved and tier.reward > 0 else Decimal("0.00"),
            )
        )
    return results


def total_goal_reward(results: Iterable[GoalResult]) -> Decimal:
    return round2(sum((result.reward for result in results), Decimal("0")))
