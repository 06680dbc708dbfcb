"""Data access layer for drivers, ingestion, financing and settlements"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleet_settlement.domain.aggregation import normalize_platform
from fleet_settlement.domain.exceptions import ConflictError, InvalidInputError
from fleet_settlement.domain.financing import consume_week
from fleet_settlement.domain.models import (
    AppliedFee,
    DriverProfile,
    DriverType,
    FeeExemptionWindow,
    FeeMode,
    FeeOverride,
    FinancingAgreement,
    FinancingCost,
    FinancingKind,
    FinancingLine,
    FinancingStatus,
    GoalResult,
    GoalTier,
    IngestionEntry,
    PaymentStatus,
    PaymentTransaction,
    ReferralBonus,
    ReferralBonusDetail,
    SettlementAmounts,
    SettlementRecord,
)
from fleet_settlement.domain.money import from_cents, to_cents
from fleet_settlement.utils.date_utils import exemption_end, next_week_id
from fleet_settlement.infrastructure.database.models import (
    Driver,
    FeeExemption,
    FinancingAgreementRow,
    FinancingConsumption,
    GoalTierRow,
    IngestionRow,
    PaymentTransactionRow,
    ReferralBonusRow,
    SettlementRow,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DriverRepository:
    """Repository for driver profiles and fee exemptions"""

    def __init__(self, db: Session):
        self.db = db

    def get_profile(self, driver_id: str) -> Optional[DriverProfile]:
        """Driver profile with exemption windows, or None when unknown"""
        driver = self.db.get(Driver, driver_id)
        if driver is None:
            return None

        override = None
        if driver.admin_fee_mode == FeeMode.FIXED.value and driver.admin_fee_fixed_cents is not None:
            override = FeeOverride(FeeMode.FIXED, from_cents(driver.admin_fee_fixed_cents))
        elif driver.admin_fee_mode == FeeMode.PERCENT.value and driver.admin_fee_percent_bps is not None:
            override = FeeOverride(FeeMode.PERCENT, Decimal(driver.admin_fee_percent_bps) / 100)

        return DriverProfile(
            driver_id=driver.id,
            name=driver.full_name,
            type=DriverType.RENTER if driver.type == DriverType.RENTER.value else DriverType.AFFILIATE,
            rental_fee=from_cents(driver.rental_fee_cents),
            fee_override=override,
            exemptions=[
                FeeExemptionWindow(start_date=e.start_date, end_date=e.end_date, reason=e.reason)
                for e in driver.exemptions
            ],
            iban=driver.iban,
            referred_by=driver.referred_by,
        )

    def add_exemption(
        self,
        driver_id: str,
        start_date: date,
        end_date: date,
        reason: str = "",
        created_by: Optional[str] = None,
    ) -> FeeExemption:
        exemption = FeeExemption(
            driver_id=driver_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            created_by=created_by,
        )
        self.db.add(exemption)
        self.db.flush()
        return exemption

    def grant_exemption_weeks(
        self,
        driver_id: str,
        start_date: date,
        weeks: int,
        reason: str = "",
        created_by: Optional[str] = None,
    ) -> FeeExemption:
        """Exemption covering `weeks` whole weeks from start_date"""
        if weeks <= 0:
            raise InvalidInputError("Exemption must last at least one week")
        return self.add_exemption(driver_id, start_date, exemption_end(start_date, weeks), reason, created_by)

    def referral_map(self) -> Dict[str, Optional[str]]:
        """driver id -> referrer id for every driver"""
        rows = self.db.execute(select(Driver.id, Driver.referred_by)).all()
        return {driver_id: referred_by for driver_id, referred_by in rows}


class IngestionRepository:
    """Read-only access to imported platform rows"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_domain(row: IngestionRow) -> IngestionEntry:
        return IngestionEntry(
            driver_id=row.driver_id,
            week_id=row.week_id,
            platform=normalize_platform(row.platform),
            amount=from_cents(row.amount_cents),
            trips=row.trips or 0,
            raw_platform=row.platform,
            source="store",
        )

    def list_entries(self, driver_id: str, week_id: str) -> List[IngestionEntry]:
        rows = (
            self.db.query(IngestionRow)
            .filter(IngestionRow.driver_id == driver_id, IngestionRow.week_id == week_id)
            .order_by(IngestionRow.imported_at, IngestionRow.id)
            .all()
        )
        return [self._to_domain(row) for row in rows]

    def list_week_entries(self, week_id: str) -> Dict[str, List[IngestionEntry]]:
        """Rows for every driver with data in the week, grouped by driver"""
        grouped: Dict[str, List[IngestionEntry]] = {}
        rows = self.db.query(IngestionRow).filter(IngestionRow.week_id == week_id).all()
        for row in rows:
            grouped.setdefault(row.driver_id, []).append(self._to_domain(row))
        return grouped

    def driver_ids_for_week(self, week_id: str) -> List[str]:
        rows = self.db.execute(
            select(IngestionRow.driver_id).where(IngestionRow.week_id == week_id).distinct()
        ).all()
        return sorted(driver_id for (driver_id,) in rows)


class FinancingRepository:
    """Repository for financing agreements and their weekly consumption"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_domain(row: FinancingAgreementRow) -> FinancingAgreement:
        return FinancingAgreement(
            agreement_id=str(row.id),
            driver_id=row.driver_id,
            kind=FinancingKind(row.kind),
            principal=from_cents(row.principal_cents),
            term_weeks=row.term_weeks or 0,
            remaining_weeks=row.remaining_weeks or 0,
            weekly_interest_percent=Decimal(row.weekly_interest_bps or 0) / 100,
            start_date=row.start_date,
            status=FinancingStatus(row.status),
        )

    def list_active(self, driver_id: str) -> List[FinancingAgreement]:
        rows = (
            self.db.query(FinancingAgreementRow)
            .filter(
                FinancingAgreementRow.driver_id == driver_id,
                FinancingAgreementRow.status == FinancingStatus.ACTIVE.value,
            )
            .order_by(FinancingAgreementRow.created_at, FinancingAgreementRow.id)
            .all()
        )
        return [self._to_domain(row) for row in rows]

    def get(self, agreement_id: str) -> Optional[FinancingAgreement]:
        row = self.db.get(FinancingAgreementRow, uuid.UUID(agreement_id))
        return self._to_domain(row) if row else None

    def consume_week(self, agreement_id: str, driver_id: str, week_id: str, transaction_id: uuid.UUID) -> bool:
        """
        Decrement remaining_weeks once for this agreement and week.

        Returns False when the week was already consumed, so a repeated
        commit for the same week never decrements twice.
        """
        agreement_uuid = uuid.UUID(agreement_id)
        already = (
            self.db.query(FinancingConsumption)
            .filter(
                FinancingConsumption.agreement_id == agreement_uuid,
                FinancingConsumption.week_id == week_id,
            )
            .first()
        )
        if already is not None:
            return False

        row = (
            self.db.query(FinancingAgreementRow)
            .filter(FinancingAgreementRow.id == agreement_uuid)
            .with_for_update()
            .one()
        )
        agreement = consume_week(self._to_domain(row))
        row.remaining_weeks = agreement.remaining_weeks
        row.status = agreement.status.value

        self.db.add(
            FinancingConsumption(
                agreement_id=agreement_uuid,
                driver_id=driver_id,
                week_id=week_id,
                transaction_id=transaction_id,
            )
        )
        self.db.flush()
        return True


class GoalRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_active(self) -> List[GoalTier]:
        rows = (
            self.db.query(GoalTierRow)
            .filter(GoalTierRow.active.is_(True))
            .order_by(GoalTierRow.reward_cents, GoalTierRow.name)
            .all()
        )
        return [
            GoalTier(
                tier_id=str(row.id),
                name=row.name,
                reward=from_cents(row.reward_cents),
                min_trips=row.min_trips,
                min_revenue=from_cents(row.min_revenue_cents) if row.min_revenue_cents is not None else None,
                driver_type=DriverType(row.driver_type) if row.driver_type else None,
            )
            for row in rows
        ]


class ReferralBonusRepository:
    """Referral accrual ledger with an atomic read-and-mark-paid claim"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_bonus(rows: List[ReferralBonusRow]) -> ReferralBonus:
        details = [
            ReferralBonusDetail(
                level=row.level,
                referred_driver_id=row.referred_driver_id,
                base=from_cents(row.base_cents),
                amount=from_cents(row.amount_cents),
            )
            for row in rows
        ]
        return ReferralBonus(total=from_cents(sum(row.amount_cents for row in rows)), details=details)

    def accrue(
        self,
        week_id: str,
        bonuses: Dict[str, ReferralBonus],
        payable_weeks: Optional[Dict[str, str]] = None,
    ) -> int:
        """
        Insert accrual rows not yet present for the earning week; returns rows written.

        payable_weeks maps a referrer to the week that will pay its rows when
        that is not the earning week itself.
        """
        payable_weeks = payable_weeks or {}
        existing = {
            (referrer_id, referred_id)
            for referrer_id, referred_id in self.db.execute(
                select(ReferralBonusRow.referrer_id, ReferralBonusRow.referred_driver_id).where(
                    ReferralBonusRow.earned_week_id == week_id
                )
            ).all()
        }
        written = 0
        for referrer_id, bonus in bonuses.items():
            for detail in bonus.details:
                if (referrer_id, detail.referred_driver_id) in existing:
                    continue
                self.db.add(
                    ReferralBonusRow(
                        referrer_id=referrer_id,
                        week_id=payable_weeks.get(referrer_id, week_id),
                        earned_week_id=week_id,
                        referred_driver_id=detail.referred_driver_id,
                        level=detail.level,
                        base_cents=to_cents(detail.base),
                        amount_cents=to_cents(detail.amount),
                    )
                )
                existing.add((referrer_id, detail.referred_driver_id))
                written += 1
        self.db.flush()
        return written

    def pending(self, referrer_id: str, week_id: str) -> ReferralBonus:
        """Accrued, not yet paid bonus for the referrer's week (read only)"""
        rows = (
            self.db.query(ReferralBonusRow)
            .filter(
                ReferralBonusRow.referrer_id == referrer_id,
                ReferralBonusRow.week_id == week_id,
                ReferralBonusRow.status == "accrued",
            )
            .order_by(ReferralBonusRow.level, ReferralBonusRow.referred_driver_id)
            .all()
        )
        return self._to_bonus(rows)

    def claim(self, referrer_id: str, week_id: str, settlement_record_id: uuid.UUID) -> ReferralBonus:
        """
        Read the accrued rows and mark them paid in one step.

        A week with nothing left to claim yields a zero bonus rather than an
        error. Losing a race against another claim raises ConflictError.
        """
        rows = (
            self.db.query(ReferralBonusRow)
            .filter(
                ReferralBonusRow.referrer_id == referrer_id,
                ReferralBonusRow.week_id == week_id,
                ReferralBonusRow.status == "accrued",
            )
            .order_by(ReferralBonusRow.level, ReferralBonusRow.referred_driver_id)
            .with_for_update()
            .all()
        )
        if not rows:
            return ReferralBonus()

        ids = [row.id for row in rows]
        result = self.db.execute(
            update(ReferralBonusRow)
            .where(ReferralBonusRow.id.in_(ids), ReferralBonusRow.status == "accrued")
            .values(status="paid", paid_at=_utcnow(), settlement_record_id=settlement_record_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            raise ConflictError(f"Referral bonus for {referrer_id} {week_id} was claimed concurrently")
        return self._to_bonus(rows)


@dataclass
class Created:
    row: SettlementRow


@dataclass
class Existing:
    row: SettlementRow

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.row.payment_status)


InitResult = Union[Created, Existing]


def settlement_breakdown(record: SettlementRecord) -> dict:
    fee = record.applied_fee
    return {
        "applied_fee": None
        if fee is None
        else {
            "mode": fee.mode.value,
            "rate": str(fee.rate),
            "amount": str(fee.amount),
            "source": fee.source,
            "exempt": fee.exempt,
        },
        "financing_lines": [
            {
                "agreement_id": line.agreement_id,
                "kind": line.kind.value,
                "installment": str(line.installment),
                "interest": str(line.interest),
            }
            for line in record.financing.lines
        ],
        "referral_details": [
            {
                "level": detail.level,
                "referred_driver_id": detail.referred_driver_id,
                "base": str(detail.base),
                "amount": str(detail.amount),
            }
            for detail in record.referral.details
        ],
        "goals": [
            {"tier_id": g.tier_id, "name": g.name, "achieved": g.achieved, "reward": str(g.reward)}
            for g in record.goals
        ],
    }


def _restore(record: SettlementRecord, breakdown: dict) -> None:
    fee = breakdown.get("applied_fee")
    if fee:
        record.applied_fee = AppliedFee(
            mode=FeeMode(fee["mode"]),
            rate=Decimal(fee["rate"]),
            amount=Decimal(fee["amount"]),
            source=fee["source"],
            exempt=fee.get("exempt", False),
        )
    lines = [
        FinancingLine(
            agreement_id=line["agreement_id"],
            kind=FinancingKind(line["kind"]),
            installment=Decimal(line["installment"]),
            interest=Decimal(line["interest"]),
        )
        for line in breakdown.get("financing_lines", [])
    ]
    record.financing = FinancingCost(
        lines=lines,
        installment=record.amounts.financing_installment,
        interest=record.amounts.financing_interest,
    )
    record.referral = ReferralBonus(
        total=record.amounts.referral_bonus,
        details=[
            ReferralBonusDetail(
                level=d["level"],
                referred_driver_id=d["referred_driver_id"],
                base=Decimal(d["base"]),
                amount=Decimal(d["amount"]),
            )
            for d in breakdown.get("referral_details", [])
        ],
    )
    record.goals = [
        GoalResult(tier_id=g["tier_id"], name=g["name"], achieved=g["achieved"], reward=Decimal(g["reward"]))
        for g in breakdown.get("goals", [])
    ]


class SettlementRepository:
    """Repository for settlement records; writes are conditional on payment status"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, driver_id: str, week_id: str) -> Optional[SettlementRow]:
        return (
            self.db.query(SettlementRow)
            .filter(SettlementRow.driver_id == driver_id, SettlementRow.week_id == week_id)
            .first()
        )

    def get_or_initialize(
        self,
        driver_id: str,
        week_id: str,
        week_start: date,
        week_end: date,
        driver_type: DriverType,
    ) -> InitResult:
        """
        Return the stored record, creating an empty pending one when missing.

        Must run before any other write in the unit of work: losing the
        creation race rolls the session back and re-reads the winner.
        """
        row = self.get(driver_id, week_id)
        if row is not None:
            return Existing(row)

        row = SettlementRow(
            driver_id=driver_id,
            week_id=week_id,
            week_start=week_start,
            week_end=week_end,
            driver_type=driver_type.value,
            payment_status=PaymentStatus.PENDING.value,
            amounts={},
            breakdown={},
            notes=[],
            version=0,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return Existing(self.get(driver_id, week_id))
        return Created(row)

    def write_draft(self, row: SettlementRow, record: SettlementRecord) -> bool:
        """
        Store a recomputed draft unless the record has become paid meanwhile.

        Returns False (and writes nothing) when the stored status is 'paid'.
        """
        result = self.db.execute(
            update(SettlementRow)
            .where(SettlementRow.id == row.id, SettlementRow.payment_status != PaymentStatus.PAID.value)
            .values(
                driver_type=record.driver_type.value,
                gross_earnings_cents=to_cents(record.amounts.gross_earnings),
                net_payable_cents=to_cents(record.amounts.net_payable),
                trips=record.trips,
                amounts=record.amounts.as_dict(),
                breakdown=settlement_breakdown(record),
                notes=record.notes,
                computed_at=_utcnow(),
                version=SettlementRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        self.db.refresh(row)
        return result.rowcount == 1

    def mark_paid(
        self,
        row: SettlementRow,
        record: SettlementRecord,
        transaction: PaymentTransactionRow,
    ) -> bool:
        """Freeze the record as paid; False if it is no longer the pending version read"""
        snapshot = {
            "amounts": record.amounts.as_dict(),
            "breakdown": settlement_breakdown(record),
            "notes": record.notes,
            "trips": record.trips,
            "transaction_id": str(transaction.id),
            "total_amount": str(from_cents(transaction.total_cents)),
            "paid_at": _utcnow().isoformat(),
        }
        result = self.db.execute(
            update(SettlementRow)
            .where(
                SettlementRow.id == row.id,
                SettlementRow.payment_status == PaymentStatus.PENDING.value,
                SettlementRow.version == row.version,
            )
            .values(
                gross_earnings_cents=to_cents(record.amounts.gross_earnings),
                net_payable_cents=to_cents(record.amounts.net_payable),
                trips=record.trips,
                amounts=record.amounts.as_dict(),
                breakdown=settlement_breakdown(record),
                notes=record.notes,
                payment_status=PaymentStatus.PAID.value,
                payment_snapshot=snapshot,
                payment_transaction_id=transaction.id,
                version=SettlementRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        return result.rowcount == 1

    def first_unpaid_week(self, driver_id: str, week_id: str, week_start: date) -> str:
        """week_id, or the first later week of the driver that is not paid yet"""
        paid = {
            paid_week
            for (paid_week,) in self.db.execute(
                select(SettlementRow.week_id).where(
                    SettlementRow.driver_id == driver_id,
                    SettlementRow.payment_status == PaymentStatus.PAID.value,
                    SettlementRow.week_start >= week_start,
                )
            ).all()
        }
        while week_id in paid:
            week_id = next_week_id(week_id)
        return week_id

    def count_paid_weeks_before(self, driver_id: str, week_start: date) -> int:
        """Tenure: prior weeks with a processed payment"""
        return (
            self.db.query(func.count(SettlementRow.id))
            .filter(
                SettlementRow.driver_id == driver_id,
                SettlementRow.payment_status == PaymentStatus.PAID.value,
                SettlementRow.week_start < week_start,
            )
            .scalar()
            or 0
        )

    @staticmethod
    def to_domain(row: SettlementRow) -> SettlementRecord:
        """Domain view of a stored record; paid records come from their snapshot"""
        frozen = row.payment_status == PaymentStatus.PAID.value and row.payment_snapshot is not None
        source = row.payment_snapshot if frozen else {
            "amounts": row.amounts,
            "breakdown": row.breakdown,
            "notes": row.notes,
            "trips": row.trips,
        }
        record = SettlementRecord(
            driver_id=row.driver_id,
            week_id=row.week_id,
            week_start=row.week_start,
            week_end=row.week_end,
            driver_type=DriverType(row.driver_type),
            amounts=SettlementAmounts.from_dict(source.get("amounts") or {}),
            trips=source.get("trips") or 0,
            payment_status=PaymentStatus(row.payment_status),
            payment_snapshot=row.payment_snapshot,
            notes=list(source.get("notes") or []),
            record_id=str(row.id),
            version=row.version,
            frozen=frozen,
        )
        _restore(record, source.get("breakdown") or {})
        return record


class PaymentRepository:
    """Repository for payment transactions"""

    def __init__(self, db: Session):
        self.db = db

    def create_transaction(
        self,
        record_row: SettlementRow,
        base_cents: int,
        bonus_cents: int,
        discount_cents: int,
        payment_date: date,
        actor: str,
        notes: str = "",
        proof_ref: Optional[str] = None,
        proof_url: Optional[str] = None,
    ) -> PaymentTransactionRow:
        """
        Insert the active transaction for the record's driver-week.

        The partial unique index rejects a second active transaction; the
        IntegrityError propagates so the caller can roll back.
        """
        transaction = PaymentTransactionRow(
            record_id=record_row.id,
            driver_id=record_row.driver_id,
            week_id=record_row.week_id,
            kind="payment",
            active=True,
            base_cents=base_cents,
            bonus_cents=bonus_cents,
            discount_cents=discount_cents,
            total_cents=base_cents + bonus_cents - discount_cents,
            payment_date=payment_date,
            proof_ref=proof_ref,
            proof_url=proof_url,
            actor=actor,
            notes=notes or "",
        )
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get_active(self, driver_id: str, week_id: str) -> Optional[PaymentTransactionRow]:
        return (
            self.db.query(PaymentTransactionRow)
            .filter(
                PaymentTransactionRow.driver_id == driver_id,
                PaymentTransactionRow.week_id == week_id,
                PaymentTransactionRow.active.is_(True),
            )
            .first()
        )

    @staticmethod
    def to_domain(row: PaymentTransactionRow) -> PaymentTransaction:
        return PaymentTransaction(
            transaction_id=str(row.id),
            record_id=str(row.record_id),
            driver_id=row.driver_id,
            week_id=row.week_id,
            base_amount=from_cents(row.base_cents),
            bonus_amount=from_cents(row.bonus_cents),
            discount_amount=from_cents(row.discount_cents),
            total_amount=from_cents(row.total_cents),
            payment_date=row.payment_date,
            actor=row.actor,
            notes=row.notes or "",
            proof_ref=row.proof_ref,
            proof_url=row.proof_url,
        )
