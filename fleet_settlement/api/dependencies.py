"""Dependency injection for FastAPI endpoints"""

from typing import List

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from fleet_settlement.config import SettlementConfig, settings
from fleet_settlement.infrastructure.clients.evidence import EvidenceStore
from fleet_settlement.infrastructure.database.session import get_db
from fleet_settlement.services.ingestion import IngestionSource, default_sources
from fleet_settlement.services.payments import PaymentRecorder
from fleet_settlement.services.referrals import ReferralAccrualService
from fleet_settlement.services.settlement import SettlementService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_settlement_config() -> SettlementConfig:
    """Configuration snapshot for one request"""
    return settings.snapshot()


def get_evidence_store() -> EvidenceStore:
    """Provide payment evidence store instance"""
    return EvidenceStore()


def get_ingestion_sources(db: Session = Depends(get_db)) -> List[IngestionSource]:
    return default_sources(db)


def get_settlement_service(
    db: Session = Depends(get_db),
    config: SettlementConfig = Depends(get_settlement_config),
    sources: List[IngestionSource] = Depends(get_ingestion_sources),
) -> SettlementService:
    return SettlementService(db, config=config, sources=sources)


def get_payment_recorder(
    db: Session = Depends(get_db),
    settlement_service: SettlementService = Depends(get_settlement_service),
    evidence_store: EvidenceStore = Depends(get_evidence_store),
) -> PaymentRecorder:
    return PaymentRecorder(db, settlement_service, evidence_store)


def get_referral_service(
    db: Session = Depends(get_db),
    config: SettlementConfig = Depends(get_settlement_config),
) -> ReferralAccrualService:
    return ReferralAccrualService(db, config=config)
