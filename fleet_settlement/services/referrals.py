"""Weekly referral bonus accrual"""

import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from fleet_settlement.config import SettlementConfig, settings
from fleet_settlement.domain.aggregation import aggregate_entries
from fleet_settlement.domain.models import ReferralBonus
from fleet_settlement.domain.money import round2
from fleet_settlement.domain.referral import DownlineWeek, accrue_referral_bonuses
from fleet_settlement.infrastructure.database.repositories import (
    DriverRepository,
    IngestionRepository,
    ReferralBonusRepository,
    SettlementRepository,
)
from fleet_settlement.utils.date_utils import week_bounds

logger = logging.getLogger(__name__)


class ReferralAccrualService:
    """
    Accrues the week's referral bonuses into the ledger.

    Accrual is idempotent per (referrer, earning week, referred driver); running it
    again after new ingestion only adds rows that were missing. Referrers
    collect the accrued amount through their own settlement, and the payment
    commit claims it exactly once. When the referrer's week is already paid,
    new rows are carried to the referrer's first unpaid week after it.
    """

    def __init__(self, db: Session, config: Optional[SettlementConfig] = None):
        self.db = db
        self.config = config or settings.snapshot()

    def accrue_week(self, week_id: str) -> Dict[str, ReferralBonus]:
        week_start, _ = week_bounds(week_id)
        settlements = SettlementRepository(self.db)

        weeks: Dict[str, DownlineWeek] = {}
        for driver_id, entries in IngestionRepository(self.db).list_week_entries(week_id).items():
            totals = aggregate_entries(entries)
            gross = round2(totals.gross_earnings)
            base = round2(gross - round2(gross * self.config.vat_rate))
            weeks[driver_id] = DownlineWeek(
                driver_id=driver_id,
                base=base,
                revenue=gross,
                tenure_weeks=settlements.count_paid_weeks_before(driver_id, week_start),
            )

        bonuses = accrue_referral_bonuses(weeks, DriverRepository(self.db).referral_map(), self.config.referral)
        payable_weeks = {}
        for referrer_id in bonuses:
            payable = settlements.first_unpaid_week(referrer_id, week_id, week_start)
            if payable != week_id:
                payable_weeks[referrer_id] = payable
                logger.info(
                    "Referral bonus carried to next unpaid week",
                    extra={"referrer_id": referrer_id, "earned_week_id": week_id, "week_id": payable},
                )
        written = ReferralBonusRepository(self.db).accrue(week_id, bonuses, payable_weeks)
        self.db.commit()

        logger.info(
            "Referral bonuses accrued",
            extra={"week_id": week_id, "referrers": len(bonuses), "rows_written": written},
        )
        return bonuses
