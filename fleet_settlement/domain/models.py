"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

ZERO = Decimal("0")


class Platform(str, Enum):
    """Closed set of ingestion platform kinds"""

    EARNINGS_A = "earnings_a"
    EARNINGS_B = "earnings_b"
    FUEL = "fuel"
    TOLLS = "tolls"
    UNMAPPED = "unmapped"


EARNINGS_PLATFORMS = (Platform.EARNINGS_A, Platform.EARNINGS_B)


class DriverType(str, Enum):
    AFFILIATE = "affiliate"
    RENTER = "renter"


class FinancingKind(str, Enum):
    AMORTIZING = "amortizing"
    FIXED_DISCOUNT = "fixed_discount"


class FinancingStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class FeeMode(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"


@dataclass
class IngestionEntry:
    """One raw income/expense row from an ingestion source"""

    driver_id: str
    week_id: str
    platform: Platform
    amount: Decimal
    trips: int = 0
    raw_platform: str = ""
    source: str = "store"


@dataclass
class IngestionTotals:
    """Per-platform sums for one driver-week"""

    earnings_a: Decimal = ZERO
    earnings_b: Decimal = ZERO
    fuel: Decimal = ZERO
    tolls: Decimal = ZERO
    trips: int = 0
    row_count: int = 0
    unmapped_tags: List[str] = field(default_factory=list)

    @property
    def gross_earnings(self) -> Decimal:
        return self.earnings_a + self.earnings_b


@dataclass
class FeeExemptionWindow:
    """Inclusive date range during which the administrative fee is waived"""

    start_date: date
    end_date: date
    reason: str = ""

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass
class FeeOverride:
    mode: FeeMode
    value: Decimal


@dataclass
class DriverProfile:
    """Driver attributes the settlement needs"""

    driver_id: str
    name: str
    type: DriverType
    rental_fee: Decimal = ZERO
    fee_override: Optional[FeeOverride] = None
    exemptions: List[FeeExemptionWindow] = field(default_factory=list)
    iban: Optional[str] = None
    referred_by: Optional[str] = None


@dataclass
class AppliedFee:
    """Administrative fee resolved for a driver-week"""

    mode: FeeMode
    rate: Decimal  # percent (0-100) when mode is PERCENT, euros when FIXED
    amount: Decimal
    source: str  # "default" | "override" | "exemption"
    exempt: bool = False


@dataclass
class FinancingAgreement:
    agreement_id: str
    driver_id: str
    kind: FinancingKind
    principal: Decimal
    term_weeks: int
    remaining_weeks: int
    weekly_interest_percent: Decimal
    start_date: Optional[date]
    status: FinancingStatus = FinancingStatus.ACTIVE


@dataclass
class FinancingLine:
    """Installment and interest an eligible agreement charges for one week"""

    agreement_id: str
    kind: FinancingKind
    installment: Decimal
    interest: Decimal

    @property
    def total(self) -> Decimal:
        return self.installment + self.interest


@dataclass
class FinancingCost:
    lines: List[FinancingLine] = field(default_factory=list)
    installment: Decimal = ZERO
    interest: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.installment + self.interest


@dataclass
class ReferralBonusDetail:
    level: int
    referred_driver_id: str
    base: Decimal
    amount: Decimal


@dataclass
class ReferralBonus:
    total: Decimal = ZERO
    details: List[ReferralBonusDetail] = field(default_factory=list)


@dataclass
class GoalTier:
    """Performance tier; a None threshold is not checked"""

    tier_id: str
    name: str
    reward: Decimal
    min_trips: Optional[int] = None
    min_revenue: Optional[Decimal] = None
    driver_type: Optional[DriverType] = None


@dataclass
class GoalResult:
    tier_id: str
    name: str
    achieved: bool
    reward: Decimal


@dataclass
class SettlementAmounts:
    """Every monetary field of a settlement, each rounded to cents"""

    earnings_a: Decimal = ZERO
    earnings_b: Decimal = ZERO
    gross_earnings: Decimal = ZERO
    vat: Decimal = ZERO
    net_after_vat: Decimal = ZERO
    admin_fee: Decimal = ZERO
    fuel_cost: Decimal = ZERO
    toll_cost: Decimal = ZERO
    rental_fee: Decimal = ZERO
    financing_installment: Decimal = ZERO
    financing_interest: Decimal = ZERO
    financing_cost: Decimal = ZERO
    base_net: Decimal = ZERO
    extra_commission: Decimal = ZERO
    referral_bonus: Decimal = ZERO
    goal_reward: Decimal = ZERO
    net_payable: Decimal = ZERO

    def as_dict(self) -> Dict[str, str]:
        return {name: str(value) for name, value in self.__dict__.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "SettlementAmounts":
        return cls(**{name: Decimal(str(value)) for name, value in data.items() if name in cls.__dataclass_fields__})


@dataclass
class SettlementRecord:
    """Computed weekly net-payable aggregate for one driver"""

    driver_id: str
    week_id: str
    week_start: date
    week_end: date
    driver_type: DriverType
    amounts: SettlementAmounts
    applied_fee: Optional[AppliedFee] = None
    financing: FinancingCost = field(default_factory=FinancingCost)
    referral: ReferralBonus = field(default_factory=ReferralBonus)
    goals: List[GoalResult] = field(default_factory=list)
    trips: int = 0
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_snapshot: Optional[Dict[str, str]] = None
    notes: List[Dict[str, str]] = field(default_factory=list)
    record_id: Optional[str] = None
    version: int = 0
    frozen: bool = False

    @property
    def net_payable(self) -> Decimal:
        return self.amounts.net_payable


@dataclass
class DriverWeekError:
    """A driver that could not be settled in a weekly batch"""

    driver_id: str
    code: str  # not_found | no_data | ingestion_unavailable | error
    message: str


@dataclass
class WeekSettlements:
    week_id: str
    records: List[SettlementRecord] = field(default_factory=list)
    errors: List[DriverWeekError] = field(default_factory=list)


@dataclass
class EvidenceFile:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class PaymentRequest:
    payment_date: Optional[date]
    bonus_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    notes: str = ""
    actor: str = "system"
    proof: Optional[EvidenceFile] = None


@dataclass
class PaymentTransaction:
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
