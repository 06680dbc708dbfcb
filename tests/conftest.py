"""Pytest fixtures for testing"""

import asyncio
import uuid
from datetime import date
from decimal import Decimal
from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from fleet_settlement.api.dependencies import get_evidence_store, get_ingestion_sources
from fleet_settlement.api.main import create_app
from fleet_settlement.config import SettlementConfig
from fleet_settlement.domain.exceptions import StorageFailureError
from fleet_settlement.domain.money import to_cents
from fleet_settlement.infrastructure.database.models import (
    Base,
    Driver,
    FinancingAgreementRow,
    GoalTierRow,
    IngestionRow,
)
from fleet_settlement.infrastructure.database.session import get_db
from fleet_settlement.services.ingestion import StoreIngestionSource
from fleet_settlement.services.payments import PaymentRecorder
from fleet_settlement.services.settlement import SettlementService

WEEK = "2025-W40"  # Monday 2025-09-29 .. Sunday 2025-10-05
WEEK_START = date(2025, 9, 29)
WEEK_END = date(2025, 10, 5)

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeEvidenceStore:
    """In-memory stand-in for the S3 evidence store"""

    def __init__(self):
        self.objects = {}
        self.removed = []
        self.fail_upload = False
        self.upload_delay = 0.0

    def url_for(self, key: str) -> str:
        return f"memory://{key}"

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail_upload:
            raise StorageFailureError("upload refused")
        self.objects[key] = data
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        return self.url_for(key)

    async def remove(self, key: str) -> None:
        self.removed.append(key)
        self.objects.pop(key, None)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def config() -> SettlementConfig:
    return SettlementConfig()


@pytest.fixture
def evidence_store() -> FakeEvidenceStore:
    return FakeEvidenceStore()


@pytest.fixture
def settlement_service(db: Session, config: SettlementConfig) -> SettlementService:
    return SettlementService(db, config=config, sources=[StoreIngestionSource(db)])


@pytest.fixture
def payment_recorder(
    db: Session,
    settlement_service: SettlementService,
    evidence_store: FakeEvidenceStore,
) -> PaymentRecorder:
    return PaymentRecorder(db, settlement_service, evidence_store, timeout=5.0)


@pytest.fixture
def client(db: Session, evidence_store: FakeEvidenceStore) -> TestClient:
    """Create FastAPI test client with test database and in-memory evidence store"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_evidence_store] = lambda: evidence_store
    app.dependency_overrides[get_ingestion_sources] = lambda: [StoreIngestionSource(db)]
    return TestClient(app)


@pytest.fixture
def make_driver(db: Session):
    """Insert a driver row"""

    def _make(
        driver_id: str,
        type: str = "affiliate",
        rental_fee: str = "0",
        referred_by: Optional[str] = None,
        fee_mode: Optional[str] = None,
        fee_value: Optional[str] = None,
    ) -> Driver:
        driver = Driver(
            id=driver_id,
            full_name=driver_id.replace("_", " ").title(),
            type=type,
            rental_fee_cents=to_cents(Decimal(rental_fee)),
            referred_by=referred_by,
            admin_fee_mode=fee_mode,
            admin_fee_fixed_cents=to_cents(Decimal(fee_value)) if fee_mode == "fixed" else None,
            admin_fee_percent_bps=int(Decimal(fee_value) * 100) if fee_mode == "percent" else None,
        )
        db.add(driver)
        db.commit()
        return driver

    return _make


@pytest.fixture
def add_ingestion(db: Session):
    """Insert one imported platform row"""

    def _add(driver_id: str, platform: str, amount: str, trips: int = 0, week_id: str = WEEK) -> IngestionRow:
        row = IngestionRow(
            driver_id=driver_id,
            week_id=week_id,
            platform=platform,
            amount_cents=to_cents(Decimal(amount)),
            trips=trips,
        )
        db.add(row)
        db.commit()
        return row

    return _add


@pytest.fixture
def add_agreement(db: Session):
    """Insert a financing agreement"""

    def _add(
        driver_id: str,
        kind: str = "amortizing",
        principal: str = "1000",
        term_weeks: int = 10,
        interest_percent: str = "5",
        start_date: Optional[date] = WEEK_START,
        remaining_weeks: Optional[int] = None,
    ) -> FinancingAgreementRow:
        row = FinancingAgreementRow(
            id=uuid.uuid4(),
            driver_id=driver_id,
            kind=kind,
            principal_cents=to_cents(Decimal(principal)),
            term_weeks=term_weeks,
            remaining_weeks=term_weeks if remaining_weeks is None else remaining_weeks,
            weekly_interest_bps=int(Decimal(interest_percent) * 100),
            start_date=start_date,
            status="active",
        )
        db.add(row)
        db.commit()
        return row

    return _add


@pytest.fixture
def add_goal_tier(db: Session):
    def _add(
        name: str,
        reward: str,
        min_trips: Optional[int] = None,
        min_revenue: Optional[str] = None,
        driver_type: Optional[str] = None,
    ) -> GoalTierRow:
        row = GoalTierRow(
            name=name,
            reward_cents=to_cents(Decimal(reward)),
            min_trips=min_trips,
            min_revenue_cents=to_cents(Decimal(min_revenue)) if min_revenue is not None else None,
            driver_type=driver_type,
            active=True,
        )
        db.add(row)
        db.commit()
        return row

    return _add
