"""HTTP client for external platform ingestion feeds"""

import httpx
from decimal import Decimal, InvalidOperation
from typing import List
from fleet_settlement.domain.aggregation import normalize_platform
from fleet_settlement.domain.models import IngestionEntry
from fleet_settlement.domain.exceptions import IngestionSourceError
from fleet_settlement.config import settings


class IngestionFeedClient:
    """Client for one external feed publishing per-driver weekly platform rows"""

    def __init__(self, name: str, base_url: str, timeout: float | None = None):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds

    async def fetch(self, driver_id: str, week_id: str) -> List[IngestionEntry]:
        """
        Fetch the feed's rows for a driver-week.

        Expected body: {"entries": [{"platform": "uber", "amount": "12.50", "trips": 4}, ...]}

        Raises:
            IngestionSourceError: On timeout, HTTP errors, or invalid rows
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/ingestion/entries",
                    params={"driver_id": driver_id, "week_id": week_id},
                )
                response.raise_for_status()
                data = response.json()

                return [
                    IngestionEntry(
                        driver_id=driver_id,
                        week_id=week_id,
                        platform=normalize_platform(row["platform"]),
                        amount=Decimal(str(row["amount"])),
                        trips=int(row.get("trips") or 0),
                        raw_platform=str(row["platform"]),
                        source=self.name,
                    )
                    for row in data.get("entries", [])
                ]

            except httpx.TimeoutException as e:
                raise IngestionSourceError(f"{self.name} feed timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise IngestionSourceError(f"{self.name} feed error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise IngestionSourceError(f"{self.name} feed unreachable: {e}") from e
            except (KeyError, ValueError, TypeError, InvalidOperation) as e:
                raise IngestionSourceError(f"Invalid ingestion rows from {self.name}: {e}") from e
