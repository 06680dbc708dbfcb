"""Ingestion aggregation - folds raw platform rows into per-platform totals"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from fleet_settlement.domain.exceptions import PartialSourceFailure
from fleet_settlement.domain.models import EARNINGS_PLATFORMS, IngestionEntry, IngestionTotals, Platform
from fleet_settlement.domain.money import round2

# Raw feed tags seen in imports, mapped onto the closed platform set
PLATFORM_ALIASES = {
    "uber": Platform.EARNINGS_A,
    "bolt": Platform.EARNINGS_B,
    "myprio": Platform.FUEL,
    "prio": Platform.FUEL,
    "combustivel": Platform.FUEL,
    "viaverde": Platform.TOLLS,
    "portagens": Platform.TOLLS,
}


def normalize_platform(tag: str | None) -> Platform:
    """Map a raw platform tag onto a Platform; unknown tags become UNMAPPED"""
    key = (tag or "").strip().lower()
    if key in PLATFORM_ALIASES:
        return PLATFORM_ALIASES[key]
    try:
        platform = Platform(key)
    except ValueError:
        return Platform.UNMAPPED
    return platform


def aggregate_entries(entries: Iterable[IngestionEntry]) -> IngestionTotals:
    """
    Sum rows per platform.

    Duplicate rows for the same platform are added together, never replaced.
    Unmapped rows contribute nothing to the totals; their raw tags are kept
    so they can be reported as diagnostics.
    """
    totals = IngestionTotals()
    sums = {platform: Decimal("0") for platform in Platform}

    for entry in entries:
        totals.row_count += 1
        if entry.platform is Platform.UNMAPPED:
            totals.unmapped_tags.append(entry.raw_platform or "?")
            continue
        sums[entry.platform] += entry.amount
        if entry.platform in EARNINGS_PLATFORMS:
            totals.trips += entry.trips or 0

    totals.earnings_a = round2(sums[Platform.EARNINGS_A])
    totals.earnings_b = round2(sums[Platform.EARNINGS_B])
    totals.fuel = round2(sums[Platform.FUEL])
    totals.tolls = round2(sums[Platform.TOLLS])
    return totals


@dataclass
class SourceResult:
    """Outcome of one ingestion branch: rows on success, a failure otherwise"""

    source: str
    entries: List[IngestionEntry] = field(default_factory=list)
    error: Optional[PartialSourceFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class IngestionReport:
    """Joined result of every ingestion branch for one driver-week"""

    results: List[SourceResult] = field(default_factory=list)

    @property
    def entries(self) -> List[IngestionEntry]:
        return [entry for result in self.results if result.ok for entry in result.entries]

    @property
    def failures(self) -> List[PartialSourceFailure]:
        return [result.error for result in self.results if result.error is not None]

    def totals(self) -> IngestionTotals:
        return aggregate_entries(self.entries)
