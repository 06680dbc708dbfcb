"""SQLAlchemy ORM models for drivers, ingestion, financing and settlements"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Driver(Base):
    """Driver profile as far as settlements are concerned"""

    __tablename__ = "driver"

    id = Column(Text, primary_key=True)
    full_name = Column(Text, nullable=False, default="")
    type = Column(Text, nullable=False, default="affiliate")  # affiliate | renter
    status = Column(Text, nullable=False, default="active")
    rental_fee_cents = Column(BigInteger, nullable=False, default=0)
    admin_fee_mode = Column(Text, nullable=True)  # fixed | percent, NULL = global default
    admin_fee_fixed_cents = Column(BigInteger, nullable=True)
    admin_fee_percent_bps = Column(Integer, nullable=True)  # 7% = 700
    iban = Column(String(34), nullable=True)
    referred_by = Column(Text, ForeignKey("driver.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    exemptions = relationship("FeeExemption", back_populates="driver", cascade="all, delete-orphan")


class FeeExemption(Base):
    """Administrative fee exemption window (inclusive dates)"""

    __tablename__ = "fee_exemption"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    driver_id = Column(Text, ForeignKey("driver.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=False, default="")
    created_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    driver = relationship("Driver", back_populates="exemptions")


class IngestionRow(Base):
    """Raw platform income/expense row, written by the importers"""

    __tablename__ = "ingestion_entry"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    driver_id = Column(Text, nullable=False)
    week_id = Column(Text, nullable=False)
    platform = Column(Text, nullable=False)  # raw tag as imported
    amount_cents = Column(BigInteger, nullable=False)
    trips = Column(Integer, nullable=False, default=0)
    imported_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_ingestion_driver_week", "driver_id", "week_id"),)


class FinancingAgreementRow(Base):
    """Amortizing loan or fixed weekly discount owed by a driver"""

    __tablename__ = "financing_agreement"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    driver_id = Column(Text, ForeignKey("driver.id"), nullable=False, index=True)
    kind = Column(Text, nullable=False)  # amortizing | fixed_discount
    principal_cents = Column(BigInteger, nullable=False)
    term_weeks = Column(Integer, nullable=False, default=0)
    remaining_weeks = Column(Integer, nullable=False, default=0)
    weekly_interest_bps = Column(Integer, nullable=False, default=0)  # 5% = 500
    start_date = Column(Date, nullable=True)
    status = Column(Text, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())


class FinancingConsumption(Base):
    """One committed week consumed from an agreement; makes the decrement idempotent"""

    __tablename__ = "financing_consumption"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agreement_id = Column(UUID(as_uuid=True), ForeignKey("financing_agreement.id"), nullable=False)
    driver_id = Column(Text, nullable=False)
    week_id = Column(Text, nullable=False)
    transaction_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (UniqueConstraint("agreement_id", "week_id", name="uq_financing_consumption_week"),)


class SettlementRow(Base):
    """Weekly settlement per driver; frozen once paid"""

    __tablename__ = "settlement_record"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    driver_id = Column(Text, nullable=False)
    week_id = Column(Text, nullable=False)
    week_start = Column(Date, nullable=False)
    week_end = Column(Date, nullable=False)
    driver_type = Column(Text, nullable=False)
    gross_earnings_cents = Column(BigInteger, nullable=False, default=0)
    net_payable_cents = Column(BigInteger, nullable=False, default=0)
    trips = Column(Integer, nullable=False, default=0)
    amounts = Column(JSON, nullable=False, default=dict)
    breakdown = Column(JSON, nullable=False, default=dict)
    notes = Column(JSON, nullable=False, default=list)
    payment_status = Column(Text, nullable=False, default="pending")
    payment_snapshot = Column(JSON, nullable=True)
    payment_transaction_id = Column(UUID(as_uuid=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)
    computed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    transactions = relationship("PaymentTransactionRow", back_populates="record")

    __table_args__ = (UniqueConstraint("driver_id", "week_id", name="uq_settlement_driver_week"),)


class PaymentTransactionRow(Base):
    """Payment committed against a settlement; the only writer of 'paid'"""

    __tablename__ = "payment_transaction"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    record_id = Column(UUID(as_uuid=True), ForeignKey("settlement_record.id"), nullable=False)
    driver_id = Column(Text, nullable=False)
    week_id = Column(Text, nullable=False)
    kind = Column(Text, nullable=False, default="payment")  # payment | correction
    active = Column(Boolean, nullable=False, default=True)
    base_cents = Column(BigInteger, nullable=False)
    bonus_cents = Column(BigInteger, nullable=False, default=0)
    discount_cents = Column(BigInteger, nullable=False, default=0)
    total_cents = Column(BigInteger, nullable=False)
    payment_date = Column(Date, nullable=False)
    proof_ref = Column(Text, nullable=True)
    proof_url = Column(Text, nullable=True)
    actor = Column(Text, nullable=False)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    record = relationship("SettlementRow", back_populates="transactions")

    # At most one active transaction per driver-week
    __table_args__ = (
        Index(
            "uq_payment_active_driver_week",
            "driver_id",
            "week_id",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active = 1"),
        ),
    )


class ReferralBonusRow(Base):
    """
    Referral accrual ledger: one row per referrer, earning week and referred driver.

    week_id is the referrer week that pays the row. It equals earned_week_id
    unless that week was already paid when the row was accrued.
    """

    __tablename__ = "referral_bonus"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    referrer_id = Column(Text, nullable=False, index=True)
    week_id = Column(Text, nullable=False)
    earned_week_id = Column(Text, nullable=False)
    referred_driver_id = Column(Text, nullable=False)
    level = Column(Integer, nullable=False)
    base_cents = Column(BigInteger, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="accrued")  # accrued | paid
    settlement_record_id = Column(UUID(as_uuid=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("referrer_id", "earned_week_id", "referred_driver_id", name="uq_referral_bonus_week"),
        Index("ix_referral_bonus_payable", "referrer_id", "week_id", "status"),
    )


class GoalTierRow(Base):
    """Weekly performance tier; NULL thresholds are not checked"""

    __tablename__ = "goal_tier"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    reward_cents = Column(BigInteger, nullable=False)
    min_trips = Column(Integer, nullable=True)
    min_revenue_cents = Column(BigInteger, nullable=True)
    driver_type = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
