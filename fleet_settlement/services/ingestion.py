"""Fan-out over ingestion sources with per-source timeout and error capture"""

import asyncio
import logging
import time
from typing import List, Protocol, Sequence

from sqlalchemy.orm import Session, sessionmaker

from fleet_settlement.config import settings
from fleet_settlement.domain.aggregation import IngestionReport, SourceResult
from fleet_settlement.domain.exceptions import PartialSourceFailure
from fleet_settlement.domain.models import IngestionEntry
from fleet_settlement.infrastructure.clients.ingestion_feed import IngestionFeedClient
from fleet_settlement.infrastructure.database.repositories import IngestionRepository
from fleet_settlement.infrastructure.observability.metrics import (
    ingestion_source_failure_counter,
    ingestion_source_latency_histogram,
)

logger = logging.getLogger(__name__)


class IngestionSource(Protocol):
    name: str

    async def fetch(self, driver_id: str, week_id: str) -> List[IngestionEntry]:
        ...


class StoreIngestionSource:
    """
    Rows already imported into the ingestion store.

    The query runs in a worker thread on its own session so the per-source
    timeout bounds it like any remote feed. It sees committed rows only.
    """

    name = "store"

    def __init__(self, db: Session):
        self.session_factory = sessionmaker(bind=db.get_bind(), autocommit=False, autoflush=False)

    def _read(self, driver_id: str, week_id: str) -> List[IngestionEntry]:
        with self.session_factory() as session:
            return IngestionRepository(session).list_entries(driver_id, week_id)

    async def fetch(self, driver_id: str, week_id: str) -> List[IngestionEntry]:
        return await asyncio.to_thread(self._read, driver_id, week_id)


def default_sources(db: Session) -> List[IngestionSource]:
    """The ingestion store plus every configured external feed"""
    sources: List[IngestionSource] = [StoreIngestionSource(db)]
    for name, url in sorted(settings.ingestion_feed_urls.items()):
        sources.append(IngestionFeedClient(name, url))
    return sources


async def _fetch_branch(source: IngestionSource, driver_id: str, week_id: str, timeout: float) -> SourceResult:
    started = time.monotonic()
    try:
        entries = await asyncio.wait_for(source.fetch(driver_id, week_id), timeout=timeout)
    except asyncio.TimeoutError:
        failure = PartialSourceFailure(source.name, f"timeout after {timeout}s")
    except Exception as e:
        # A failing branch must not fail its siblings
        failure = PartialSourceFailure(source.name, str(e) or e.__class__.__name__)
    else:
        return SourceResult(source=source.name, entries=list(entries))
    finally:
        ingestion_source_latency_histogram.labels(source=source.name).observe(time.monotonic() - started)

    ingestion_source_failure_counter.labels(source=source.name).inc()
    logger.warning(
        "Ingestion source failed",
        extra={"source": source.name, "driver_id": driver_id, "week_id": week_id, "reason": failure.reason},
    )
    return SourceResult(source=source.name, error=failure)


async def collect_ingestion(
    sources: Sequence[IngestionSource],
    driver_id: str,
    week_id: str,
    timeout: float | None = None,
) -> IngestionReport:
    """Read every source concurrently and join the per-branch results"""
    timeout = timeout or settings.ingestion_source_timeout_seconds
    results = await asyncio.gather(*(_fetch_branch(source, driver_id, week_id, timeout) for source in sources))
    return IngestionReport(results=list(results))
