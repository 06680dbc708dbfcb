"""Database engine, session factory and schema bootstrap"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from fleet_settlement.config import settings
from fleet_settlement.infrastructure.database.models import Base

# Settlement reads fan out per driver; keep the pool sized for a week's batch
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_schema(bind: Engine | None = None) -> None:
    """Create any missing tables (development and tests; production uses migrations)"""
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Generator[Session, None, None]:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
