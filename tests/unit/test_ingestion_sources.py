"""Unit tests for the ingestion feed client and the source fan-out"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fleet_settlement.domain.exceptions import IngestionSourceError
from fleet_settlement.domain.models import IngestionEntry, Platform
from fleet_settlement.infrastructure.clients.ingestion_feed import IngestionFeedClient
from fleet_settlement.services.ingestion import collect_ingestion

FEED_URL = "http://feeds.test/bolt"


def feed_response(status: int, body) -> httpx.Response:
    return httpx.Response(status, json=body, request=httpx.Request("GET", f"{FEED_URL}/ingestion/entries"))


@patch("httpx.AsyncClient.get", new_callable=AsyncMock)
def test_feed_rows_are_normalized(mock_get: AsyncMock):
    mock_get.return_value = feed_response(
        200,
        {"entries": [{"platform": "Bolt", "amount": "120.50", "trips": 9}, {"platform": "viaverde", "amount": 3.1}]},
    )

    entries = asyncio.run(IngestionFeedClient("bolt_feed", FEED_URL).fetch("d1", "2025-W40"))

    assert [e.platform for e in entries] == [Platform.EARNINGS_B, Platform.TOLLS]
    assert entries[0].amount == Decimal("120.50")
    assert entries[0].trips == 9
    assert entries[1].amount == Decimal("3.1")
    assert all(e.source == "bolt_feed" for e in entries)
    mock_get.assert_awaited_once()


@pytest.mark.parametrize(
    "outcome",
    [
        feed_response(502, {"detail": "bad gateway"}),
        feed_response(200, {"entries": [{"platform": "uber"}]}),
        feed_response(200, {"entries": [{"platform": "uber", "amount": "twelve"}]}),
        httpx.ReadTimeout("slow"),
        httpx.ConnectError("refused"),
    ],
)
def test_feed_failures_raise_source_error(outcome):
    with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
        if isinstance(outcome, Exception):
            mock_get.side_effect = outcome
        else:
            mock_get.return_value = outcome

        with pytest.raises(IngestionSourceError):
            asyncio.run(IngestionFeedClient("bolt_feed", FEED_URL).fetch("d1", "2025-W40"))


class StaticSource:
    def __init__(self, name, entries):
        self.name = name
        self.entries = entries

    async def fetch(self, driver_id, week_id):
        return self.entries


class ExplodingSource:
    name = "exploding"

    async def fetch(self, driver_id, week_id):
        raise RuntimeError("connection reset")


def test_fan_out_keeps_good_branches_when_one_fails():
    row = IngestionEntry(driver_id="d1", week_id="2025-W40", platform=Platform.EARNINGS_A, amount=Decimal("50"))

    report = asyncio.run(
        collect_ingestion(
            [StaticSource("store", [row]), ExplodingSource(), StaticSource("empty", [])],
            "d1",
            "2025-W40",
            timeout=1.0,
        )
    )

    assert [r.source for r in report.results] == ["store", "exploding", "empty"]
    assert report.entries == [row]
    assert report.failures[0].source == "exploding"
    assert report.failures[0].reason == "connection reset"
