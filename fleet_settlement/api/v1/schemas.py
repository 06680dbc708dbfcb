"""Pydantic schemas for API request/response validation"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel

from fleet_settlement.domain.models import PaymentTransaction, ReferralBonus, SettlementRecord, WeekSettlements
from fleet_settlement.domain.money import round2


class AppliedFeeSchema(BaseModel):
    mode: str
    rate: Decimal
    amount: Decimal
    source: str
    exempt: bool = False


class FinancingLineSchema(BaseModel):
    agreement_id: str
    kind: str
    installment: Decimal
    interest: Decimal


class ReferralDetailSchema(BaseModel):
    level: int
    referred_driver_id: str
    base: Decimal
    amount: Decimal


class GoalSchema(BaseModel):
    tier_id: str
    name: str
    achieved: bool
    reward: Decimal


class SettlementAmountsSchema(BaseModel):
    """Every monetary field, in euros with two decimals"""

    earnings_a: Decimal
    earnings_b: Decimal
    gross_earnings: Decimal
    vat: Decimal
    net_after_vat: Decimal
    admin_fee: Decimal
    fuel_cost: Decimal
    toll_cost: Decimal
    rental_fee: Decimal
    financing_installment: Decimal
    financing_interest: Decimal
    financing_cost: Decimal
    base_net: Decimal
    extra_commission: Decimal
    referral_bonus: Decimal
    goal_reward: Decimal
    net_payable: Decimal


class SettlementResponse(BaseModel):
    """Response for GET /v1/drivers/{driver_id}/weeks/{week_id}/settlement"""

    record_id: Optional[str] = None
    driver_id: str
    week_id: str
    week_start: date
    week_end: date
    driver_type: str
    payment_status: str
    frozen: bool
    version: int
    trips: int
    net_payable: Decimal
    amounts: SettlementAmountsSchema
    applied_fee: Optional[AppliedFeeSchema] = None
    financing_lines: List[FinancingLineSchema] = []
    referral_details: List[ReferralDetailSchema] = []
    goals: List[GoalSchema] = []
    notes: List[Dict[str, str]] = []

    @classmethod
    def from_record(cls, record: SettlementRecord) -> "SettlementResponse":
        fee = record.applied_fee
        return cls(
            record_id=record.record_id,
            driver_id=record.driver_id,
            week_id=record.week_id,
            week_start=record.week_start,
            week_end=record.week_end,
            driver_type=record.driver_type.value,
            payment_status=record.payment_status.value,
            frozen=record.frozen,
            version=record.version,
            trips=record.trips,
            net_payable=record.net_payable,
            amounts=SettlementAmountsSchema(**record.amounts.__dict__),
            applied_fee=None
            if fee is None
            else AppliedFeeSchema(
                mode=fee.mode.value, rate=fee.rate, amount=fee.amount, source=fee.source, exempt=fee.exempt
            ),
            financing_lines=[
                FinancingLineSchema(
                    agreement_id=line.agreement_id,
                    kind=line.kind.value,
                    installment=line.installment,
                    interest=line.interest,
                )
                for line in record.financing.lines
            ],
            referral_details=[
                ReferralDetailSchema(
                    level=d.level, referred_driver_id=d.referred_driver_id, base=d.base, amount=d.amount
                )
                for d in record.referral.details
            ],
            goals=[
                GoalSchema(tier_id=g.tier_id, name=g.name, achieved=g.achieved, reward=g.reward)
                for g in record.goals
            ],
            notes=[{k: str(v) for k, v in note.items()} for note in record.notes],
        )


class DriverWeekErrorSchema(BaseModel):
    driver_id: str
    code: str
    message: str


class WeekSettlementsResponse(BaseModel):
    """Response for GET /v1/weeks/{week_id}/settlements"""

    week_id: str
    settlements: List[SettlementResponse]
    errors: List[DriverWeekErrorSchema] = []
    total_net_payable: Decimal

    @classmethod
    def from_batch(cls, batch: WeekSettlements) -> "WeekSettlementsResponse":
        return cls(
            week_id=batch.week_id,
            settlements=[SettlementResponse.from_record(record) for record in batch.records],
            errors=[DriverWeekErrorSchema(**error.__dict__) for error in batch.errors],
            total_net_payable=round2(sum((record.net_payable for record in batch.records), 0)),
        )


class PaymentResponse(BaseModel):
    """Response for POST /v1/drivers/{driver_id}/weeks/{week_id}/payment"""

    transaction_id: str
    record_id: str
    driver_id: str
    week_id: str
    base_amount: Decimal
    bonus_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_date: date
    actor: str
    notes: str = ""
    proof_ref: Optional[str] = None
    proof_url: Optional[str] = None

    @classmethod
    def from_transaction(cls, transaction: PaymentTransaction) -> "PaymentResponse":
        return cls(**transaction.__dict__)


class ReferralAccrualItem(BaseModel):
    referrer_id: str
    total: Decimal
    details: List[ReferralDetailSchema]


class ReferralAccrualResponse(BaseModel):
    """Response for POST /v1/weeks/{week_id}/referral-bonuses"""

    week_id: str
    referrers: List[ReferralAccrualItem]

    @classmethod
    def from_bonuses(cls, week_id: str, bonuses: Dict[str, ReferralBonus]) -> "ReferralAccrualResponse":
        return cls(
            week_id=week_id,
            referrers=[
                ReferralAccrualItem(
                    referrer_id=referrer_id,
                    total=bonus.total,
                    details=[
                        ReferralDetailSchema(
                            level=d.level, referred_driver_id=d.referred_driver_id, base=d.base, amount=d.amount
                        )
                        for d in bonus.details
                    ],
                )
                for referrer_id, bonus in sorted(bonuses.items())
            ],
        )
