"""Driver-week settlement computation and draft persistence"""

import logging
import time
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleet_settlement.config import SettlementConfig, settings
from fleet_settlement.domain.commission import calculate_extra_commission
from fleet_settlement.domain.exceptions import (
    IngestionUnavailableError,
    NoDataError,
    NotFoundError,
    PartialSourceFailure,
)
from fleet_settlement.domain.goals import evaluate_goals, total_goal_reward
from fleet_settlement.domain.models import (
    DriverProfile,
    DriverWeekError,
    GoalResult,
    PaymentStatus,
    ReferralBonus,
    SettlementRecord,
    WeekSettlements,
)
from fleet_settlement.domain.settlement import apply_additions, compute_base_net
from fleet_settlement.infrastructure.database.models import SettlementRow
from fleet_settlement.infrastructure.database.repositories import (
    Created,
    DriverRepository,
    FinancingRepository,
    GoalRepository,
    IngestionRepository,
    ReferralBonusRepository,
    SettlementRepository,
    settlement_breakdown,
)
from fleet_settlement.infrastructure.observability.logging import log_settlement
from fleet_settlement.infrastructure.observability.metrics import accumulator_failure_counter, record_settlement
from fleet_settlement.services.ingestion import IngestionSource, collect_ingestion, default_sources
from fleet_settlement.utils.date_utils import week_bounds

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SettlementService:
    """
    Computes the weekly net payable for a driver and keeps the stored draft
    in step with it until the week is paid.

    Paid weeks are frozen: every read returns the payment snapshot and no
    ingestion or config change reaches them.
    """

    def __init__(
        self,
        db: Session,
        config: Optional[SettlementConfig] = None,
        sources: Optional[Sequence[IngestionSource]] = None,
        source_timeout: Optional[float] = None,
    ):
        self.db = db
        self.config = config or settings.snapshot()
        self.sources = list(sources) if sources is not None else default_sources(db)
        self.source_timeout = source_timeout or settings.ingestion_source_timeout_seconds
        self.drivers = DriverRepository(db)
        self.financing = FinancingRepository(db)
        self.goals = GoalRepository(db)
        self.referrals = ReferralBonusRepository(db)
        self.settlements = SettlementRepository(db)

    def load_driver(self, driver_id: str) -> DriverProfile:
        driver = self.drivers.get_profile(driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        return driver

    async def get_driver_week_settlement(
        self,
        driver_id: str,
        week_id: str,
        force_refresh: bool = False,
    ) -> SettlementRecord:
        """
        Return the settlement for a driver-week.

        Unpaid weeks are recomputed from current ingestion data and the draft
        is stored when it changed (or always, with force_refresh). A paid week
        returns its frozen snapshot regardless of force_refresh.

        Raises:
            InvalidInputError: Malformed week id
            NotFoundError: Unknown driver
            NoDataError: Zero ingestion rows for the week
            IngestionUnavailableError: Zero rows while at least one source failed
        """
        start_time = time.time()
        week_start, week_end = week_bounds(week_id)
        driver = self.load_driver(driver_id)

        stored = self.settlements.get(driver_id, week_id)
        if stored is not None and stored.payment_status == PaymentStatus.PAID.value:
            record_settlement("frozen")
            return self.settlements.to_domain(stored)

        try:
            record = await self.compute_draft(driver, week_id, week_start, week_end)
        except NoDataError:
            record_settlement("no_data")
            raise

        result = self.settlements.get_or_initialize(driver_id, week_id, week_start, week_end, driver.type)
        row = result.row
        if not isinstance(result, Created) and row.payment_status == PaymentStatus.PAID.value:
            # Paid between our first read and now
            record_settlement("frozen")
            return self.settlements.to_domain(row)

        if isinstance(result, Created) or force_refresh or self._changed(row, record):
            if not self.settlements.write_draft(row, record):
                self.db.commit()
                record_settlement("frozen")
                return self.settlements.to_domain(self.settlements.get(driver_id, week_id))

        self.db.commit()
        record.record_id = str(row.id)
        record.version = row.version

        duration_ms = (time.time() - start_time) * 1000
        record_settlement("draft")
        log_settlement(
            driver_id,
            week_id,
            "draft",
            record.net_payable,
            sum(1 for note in record.notes if note.get("kind") == "partial_source_failure"),
            duration_ms,
        )
        return record

    async def compute_draft(
        self,
        driver: DriverProfile,
        week_id: str,
        week_start: date,
        week_end: date,
    ) -> SettlementRecord:
        """Pure recomputation of the driver-week; persists nothing"""
        report = await collect_ingestion(self.sources, driver.driver_id, week_id, self.source_timeout)
        entries = report.entries
        if not entries:
            if report.failures:
                raise IngestionUnavailableError(
                    f"No ingestion rows for {driver.driver_id} {week_id}; "
                    + ", ".join(f"{f.source}: {f.reason}" for f in report.failures)
                )
            raise NoDataError(f"No ingestion data for {driver.driver_id} {week_id}")

        totals = report.totals()
        notes = [failure.as_note() for failure in report.failures]
        notes.extend(
            {"kind": "unmapped_platform", "source": "ingestion", "reason": f"unknown platform tag '{tag}'"}
            for tag in totals.unmapped_tags
        )

        agreements = self.financing.list_active(driver.driver_id)
        amounts, applied_fee, financing = compute_base_net(
            totals, driver, week_start, week_end, agreements, self.config
        )

        extra_commission = self._accumulate(
            "extra_commission",
            lambda: calculate_extra_commission(amounts, driver.type, self.config),
            Decimal("0.00"),
            notes,
        )
        referral = self._accumulate(
            "referral_bonus",
            lambda: self.referrals.pending(driver.driver_id, week_id)
            if self.config.referral.enabled
            else ReferralBonus(),
            ReferralBonus(),
            notes,
        )
        goals: List[GoalResult] = self._accumulate(
            "goal_reward",
            lambda: evaluate_goals(self.goals.list_active(), driver.type, totals.trips, amounts.gross_earnings)
            if self.config.goal_rewards_enabled
            else [],
            [],
            notes,
        )
        apply_additions(amounts, extra_commission, referral.total, total_goal_reward(goals))

        return SettlementRecord(
            driver_id=driver.driver_id,
            week_id=week_id,
            week_start=week_start,
            week_end=week_end,
            driver_type=driver.type,
            amounts=amounts,
            applied_fee=applied_fee,
            financing=financing,
            referral=referral,
            goals=goals,
            trips=totals.trips,
            notes=notes,
        )

    async def list_week_settlements(self, week_id: str) -> WeekSettlements:
        """
        Settle every driver with ingestion rows in the week.

        Drivers are settled independently: one that fails is reported in
        errors and the rest of the batch still completes.
        """
        week_bounds(week_id)
        batch = WeekSettlements(week_id=week_id)
        for driver_id in IngestionRepository(self.db).driver_ids_for_week(week_id):
            try:
                batch.records.append(await self.get_driver_week_settlement(driver_id, week_id))
                continue
            except NotFoundError as e:
                error = DriverWeekError(driver_id, "not_found", str(e))
            except NoDataError as e:
                error = DriverWeekError(driver_id, "no_data", str(e))
            except IngestionUnavailableError as e:
                error = DriverWeekError(driver_id, "ingestion_unavailable", str(e))
            except Exception as e:
                logger.exception("Driver settlement failed in weekly listing", extra={"driver_id": driver_id})
                error = DriverWeekError(driver_id, "error", str(e) or e.__class__.__name__)

            self.db.rollback()
            logger.warning(
                "Driver left out of weekly listing",
                extra={"driver_id": driver_id, "week_id": week_id, "code": error.code, "reason": error.message},
            )
            batch.errors.append(error)
        return batch

    def _accumulate(self, name: str, compute: Callable[[], T], fallback: T, notes: List[dict]) -> T:
        """
        Run one addition; any failure contributes the fallback and leaves a note.

        Nothing has been written in this read yet, so a database error rolls
        the session back and the base computation is still stored.
        """
        try:
            return compute()
        except Exception as e:
            if isinstance(e, SQLAlchemyError):
                self.db.rollback()
            accumulator_failure_counter.labels(accumulator=name).inc()
            logger.warning("Accumulator failed", extra={"accumulator": name, "reason": str(e)})
            notes.append(PartialSourceFailure(name, str(e) or e.__class__.__name__).as_note())
            return fallback

    @staticmethod
    def _changed(row: SettlementRow, record: SettlementRecord) -> bool:
        return (
            row.amounts != record.amounts.as_dict()
            or row.breakdown != settlement_breakdown(record)
            or row.notes != record.notes
            or row.trips != record.trips
            or row.driver_type != record.driver_type.value
        )
