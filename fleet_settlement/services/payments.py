"""Payment commit: evidence upload, transaction insert and record freeze as one unit"""

import asyncio
import logging
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fleet_settlement.config import settings
from fleet_settlement.domain.exceptions import (
    ConflictError,
    InvalidInputError,
    PaymentAlreadyRecordedError,
    StorageFailureError,
)
from fleet_settlement.domain.models import (
    FinancingKind,
    PaymentRequest,
    PaymentTransaction,
    SettlementRecord,
)
from fleet_settlement.domain.money import round2, to_cents
from fleet_settlement.domain.settlement import apply_additions
from fleet_settlement.infrastructure.clients.evidence import EvidenceStore, evidence_key
from fleet_settlement.infrastructure.database.models import SettlementRow
from fleet_settlement.infrastructure.database.repositories import (
    FinancingRepository,
    PaymentRepository,
    ReferralBonusRepository,
    SettlementRepository,
)
from fleet_settlement.infrastructure.observability.logging import log_payment
from fleet_settlement.infrastructure.observability.metrics import evidence_rollback_counter, record_payment_commit
from fleet_settlement.services.settlement import SettlementService

logger = logging.getLogger(__name__)


class PaymentRecorder:
    """
    Records the payment for a driver-week.

    Flow:
    1. Validate the request and reject weeks that are already paid
    2. Recompute the draft so the payment uses current values
    3. Upload the proof, if any
    4. Claim referral bonuses, insert the transaction, consume financing
       weeks and freeze the record, all in one database transaction
    5. Commit; on any failure or timeout roll back and delete the proof
    """

    def __init__(
        self,
        db: Session,
        settlement_service: SettlementService,
        evidence_store: EvidenceStore,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.settlement_service = settlement_service
        self.evidence = evidence_store
        self.timeout = timeout or settings.payment_commit_timeout_seconds
        self.settlements = SettlementRepository(db)
        self.payments = PaymentRepository(db)
        self.financing = FinancingRepository(db)
        self.referrals = ReferralBonusRepository(db)

    async def commit_payment(self, driver_id: str, week_id: str, request: PaymentRequest) -> PaymentTransaction:
        """
        Raises:
            InvalidInputError: Missing date, negative adjustments or non-positive total
            PaymentAlreadyRecordedError: The week already has an active payment
            ConflictError: A concurrent commit won the race
            StorageFailureError: Upload, persistence or timeout; everything was rolled back
        """
        start_time = time.monotonic()
        deadline = start_time + self.timeout

        bonus, discount = self._validate(request)
        self._ensure_unpaid(driver_id, week_id)

        record = await self.settlement_service.get_driver_week_settlement(driver_id, week_id)
        if record.frozen:
            self._ensure_unpaid(driver_id, week_id)
            record_payment_commit("already_recorded")
            raise PaymentAlreadyRecordedError(f"Week {week_id} is already paid for driver {driver_id}")
        row = self.settlements.get(driver_id, week_id)

        proof_ref = None
        try:
            self._check_total(record.net_payable, bonus, discount)
            proof_url = None
            if request.proof is not None:
                proof_ref = evidence_key(driver_id, week_id, request.proof.filename)
                proof_url = await asyncio.wait_for(
                    self.evidence.upload(proof_ref, request.proof.content, request.proof.content_type),
                    timeout=max(deadline - time.monotonic(), 0),
                )

            transaction = self._persist(row, record, request, bonus, discount, proof_ref, proof_url)
            if time.monotonic() > deadline:
                raise asyncio.TimeoutError()
            self.db.commit()

        except asyncio.TimeoutError as e:
            await self._roll_back(proof_ref, "timeout")
            raise StorageFailureError(
                f"Payment commit for {driver_id} {week_id} timed out after {self.timeout}s"
            ) from e
        except IntegrityError as e:
            await self._roll_back(proof_ref, "conflict")
            raise ConflictError(f"Concurrent payment commit for {driver_id} {week_id}") from e
        except InvalidInputError:
            await self._roll_back(proof_ref, "invalid")
            raise
        except ConflictError:
            await self._roll_back(proof_ref, "conflict")
            raise
        except StorageFailureError:
            await self._roll_back(proof_ref, "storage_failure")
            raise
        except SQLAlchemyError as e:
            await self._roll_back(proof_ref, "storage_failure")
            raise StorageFailureError(f"Persisting payment for {driver_id} {week_id} failed: {e}") from e
        except asyncio.CancelledError:
            await self._roll_back(proof_ref, "cancelled")
            raise

        duration_ms = (time.monotonic() - start_time) * 1000
        record_payment_commit("committed")
        log_payment(
            driver_id,
            week_id,
            transaction.transaction_id,
            transaction.total_amount,
            proof_ref is not None,
            duration_ms,
        )
        return transaction

    def _persist(
        self,
        row: SettlementRow,
        record: SettlementRecord,
        request: PaymentRequest,
        bonus: Decimal,
        discount: Decimal,
        proof_ref: Optional[str],
        proof_url: Optional[str],
    ) -> PaymentTransaction:
        if self.settlement_service.config.referral.enabled:
            claimed = self.referrals.claim(record.driver_id, record.week_id, row.id)
            if claimed.total != record.referral.total:
                # Accrual moved between the draft read and the claim
                apply_additions(
                    record.amounts,
                    record.amounts.extra_commission,
                    claimed.total,
                    record.amounts.goal_reward,
                )
                self._check_total(record.net_payable, bonus, discount)
            record.referral = claimed

        transaction = self.payments.create_transaction(
            row,
            base_cents=to_cents(record.net_payable),
            bonus_cents=to_cents(bonus),
            discount_cents=to_cents(discount),
            payment_date=request.payment_date,
            actor=request.actor,
            notes=request.notes,
            proof_ref=proof_ref,
            proof_url=proof_url,
        )

        for line in record.financing.lines:
            if line.kind is FinancingKind.AMORTIZING:
                self.financing.consume_week(line.agreement_id, record.driver_id, record.week_id, transaction.id)

        if not self.settlements.mark_paid(row, record, transaction):
            raise ConflictError(f"Settlement {record.driver_id} {record.week_id} changed during commit")

        return self.payments.to_domain(transaction)

    async def _roll_back(self, proof_ref: Optional[str], outcome: str) -> None:
        """Undo the database work and delete the uploaded proof, if any"""
        self.db.rollback()
        record_payment_commit(outcome)
        if proof_ref is None:
            return
        try:
            await self.evidence.remove(proof_ref)
            evidence_rollback_counter.labels(result="deleted").inc()
        except StorageFailureError as e:
            evidence_rollback_counter.labels(result="failed").inc()
            logger.error("Evidence cleanup failed, object orphaned", extra={"key": proof_ref, "reason": str(e)})

    def _ensure_unpaid(self, driver_id: str, week_id: str) -> None:
        existing = self.payments.get_active(driver_id, week_id)
        if existing is not None:
            record_payment_commit("already_recorded")
            raise PaymentAlreadyRecordedError(
                f"Week {week_id} is already paid for driver {driver_id}",
                transaction=self.payments.to_domain(existing),
            )

    @staticmethod
    def _validate(request: PaymentRequest):
        if request.payment_date is None:
            record_payment_commit("invalid")
            raise InvalidInputError("payment_date is required")
        bonus = round2(request.bonus_amount or 0)
        discount = round2(request.discount_amount or 0)
        if bonus < 0 or discount < 0:
            record_payment_commit("invalid")
            raise InvalidInputError("bonus and discount must not be negative")
        return bonus, discount

    @staticmethod
    def _check_total(base: Decimal, bonus: Decimal, discount: Decimal) -> None:
        total = round2(base + bonus - discount)
        if total <= 0:
            raise InvalidInputError(f"Payment total must be positive, got {total}")
