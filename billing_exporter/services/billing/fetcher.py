"""
Report Fetcher

Locates the most relevant billing report objects, skips the ones whose
content hash is already cached and downloads the rest.

- LatestObjectFetcher: one date-suffixed report per prefix (AWS CSV);
  the lexicographically greatest key is the most recent.
- RollingWindowFetcher: one object per day of the current (or previous)
  month (GCP JSON export), each mapped to a fixed slot of the window.
- QueryResultFetcher: a warehouse query (GCP BigQuery export) whose
  serialized result is treated as a single object.

Every fetcher returns the RawReports that changed; an empty list means
nothing new.
"""

import asyncio
import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from billing_exporter.schemas.billing import AggregatedElement, RawReport
from billing_exporter.shared.adapters.base import ObjectInfo, ObjectStore
from billing_exporter.shared.core.clock import Clock

logger = structlog.get_logger()

DEFAULT_REPORTS_PER_MONTH = 32


def month_prefixes(report_prefix: str, now: datetime) -> List[str]:
    """Object prefixes of the current and the previous calendar month, in that order."""
    year, month = now.year, now.month
    if month == 1:
        last_year, last_month = year - 1, 12
    else:
        last_year, last_month = year, month - 1
    return [
        f"{report_prefix}-{year:04d}-{month:02d}-",
        f"{report_prefix}-{last_year:04d}-{last_month:02d}-",
    ]


@dataclass
class ReportSlot:
    content_hash: str
    origin_key: str
    elements: List[AggregatedElement] = field(default_factory=list)


class ReportCache:
    """
    Fixed-size rolling window of parsed reports for one billing period.

    Slots are only written after a report has been parsed successfully, so
    a failed parse is retried on the next fetch.
    """

    def __init__(self, size: int = 1):
        if size < 1:
            raise ValueError("report cache needs at least one slot")
        self.size = size
        self.period_prefix: Optional[str] = None
        self._slots: List[Optional[ReportSlot]] = [None] * size

    def reset(self, period_prefix: Optional[str]) -> None:
        """Drop every slot and switch to a new billing period."""
        self._slots = [None] * self.size
        self.period_prefix = period_prefix

    def hash_at(self, slot: int) -> Optional[str]:
        entry = self._slots[slot]
        return entry.content_hash if entry else None

    def store(self, slot: int, content_hash: str, origin_key: str, elements: List[AggregatedElement]) -> None:
        self._slots[slot] = ReportSlot(content_hash=content_hash, origin_key=origin_key, elements=elements)

    def reports(self) -> List[List[AggregatedElement]]:
        return [entry.elements for entry in self._slots if entry is not None]

    def __len__(self) -> int:
        return sum(1 for entry in self._slots if entry is not None)


class ReportFetcher(ABC):
    """Abstract Base Class for report fetchers."""

    @abstractmethod
    async def fetch(self, cache: ReportCache) -> List[RawReport]:
        """Return the reports that changed since they were cached."""
        pass

    @abstractmethod
    def describe(self) -> str:
        pass


class LatestObjectFetcher(ReportFetcher):
    """Fetches the most recent object under a prefix, if its content changed."""

    def __init__(self, store: ObjectStore, prefix_resolver: Callable[[], Awaitable[str]]):
        self.store = store
        self.prefix_resolver = prefix_resolver
        self.prefix: Optional[str] = None

    async def fetch(self, cache: ReportCache) -> List[RawReport]:
        prefix = await self.prefix_resolver()
        self.prefix = prefix

        objects = await self.store.list(prefix)
        if not objects:
            logger.warning("no_billing_report_found", store=self.store.describe(), prefix=prefix)
            return []

        latest = max(objects, key=lambda o: o.key)
        for obj in objects:
            logger.debug("billing_report_found", key=obj.key, period=obj.key[len(prefix):].rsplit(".", 1)[0])

        if cache.period_prefix != prefix:
            cache.reset(prefix)

        if cache.hash_at(0) == latest.content_hash:
            logger.debug("billing_report_already_parsed", key=latest.key, content_hash=latest.content_hash)
            return []

        logger.info("billing_report_download", key=latest.key, content_hash=latest.content_hash)
        data = await self.store.get(latest.key)
        return [RawReport(data=data, content_hash=latest.content_hash, origin_key=latest.key, slot=0)]

    def describe(self) -> str:
        return f"latest report under '{self.prefix or '?'}' in {self.store.describe()}"


class RollingWindowFetcher(ReportFetcher):
    """Fetches the per-day report objects of the current billing month concurrently."""

    def __init__(
        self,
        store: ObjectStore,
        report_prefix: str,
        clock: Clock,
        size: int = DEFAULT_REPORTS_PER_MONTH,
    ):
        self.store = store
        self.report_prefix = report_prefix
        self.clock = clock
        self.size = size

    def slot_for(self, key: str) -> Optional[int]:
        """Window slot from the day number embedded in '...-DD.json'."""
        if len(key) < 8:
            logger.warning("invalid_report_name", key=key)
            return None
        try:
            day = int(key[-7:-5])
        except ValueError:
            logger.warning("invalid_report_name", key=key)
            return None
        slot = day - 1
        if not 0 <= slot < self.size:
            logger.warning("report_slot_out_of_range", key=key, slot=slot, size=self.size)
            return None
        return slot

    async def _find_period(self) -> Optional[Tuple[str, Sequence[ObjectInfo]]]:
        for prefix in month_prefixes(self.report_prefix, self.clock.now()):
            logger.debug("looking_for_reports", store=self.store.describe(), prefix=prefix)
            objects = await self.store.list(prefix)
            if objects:
                return prefix, objects
        return None

    async def _download(self, obj: ObjectInfo, slot: int) -> Optional[RawReport]:
        try:
            data = await self.store.get(obj.key)
        except Exception as e:
            logger.warning("report_download_failed", key=obj.key, error=str(e))
            return None
        return RawReport(data=data, content_hash=obj.content_hash, origin_key=obj.key, slot=slot)

    async def fetch(self, cache: ReportCache) -> List[RawReport]:
        found = await self._find_period()
        if found is None:
            logger.warning(
                "no_reports_this_or_last_month",
                store=self.store.describe(),
                prefix=self.report_prefix,
            )
            return []
        prefix, objects = found

        if cache.period_prefix != prefix:
            logger.info("report_period_changed", old=cache.period_prefix, new=prefix)
            cache.reset(prefix)

        pending: Dict[int, ObjectInfo] = {}
        for obj in objects:
            slot = self.slot_for(obj.key)
            if slot is None:
                continue
            if cache.hash_at(slot) == obj.content_hash:
                logger.debug("report_already_cached", key=obj.key, slot=slot)
                continue
            pending[slot] = obj

        results = await asyncio.gather(*(self._download(obj, slot) for slot, obj in pending.items()))
        return [report for report in results if report is not None]

    def describe(self) -> str:
        return f"daily reports '{self.report_prefix}-*' in {self.store.describe()}"


class QueryResultFetcher(ReportFetcher):
    """
    Runs a cost query for the current invoice month and serializes the rows.

    The digest of the serialized rows stands in for an object content hash,
    so an unchanged result is not parsed twice.
    """

    def __init__(self, run_query: Callable[[str], Awaitable[List[Dict[str, Any]]]], clock: Clock, name: str = "query"):
        self.run_query = run_query
        self.clock = clock
        self.name = name

    async def fetch(self, cache: ReportCache) -> List[RawReport]:
        invoice_month = self.clock.now().strftime("%Y%m")
        if cache.period_prefix != invoice_month:
            cache.reset(invoice_month)

        rows = await self.run_query(invoice_month)
        data = json.dumps(rows, sort_keys=True, default=str).encode("utf-8")
        digest = hashlib.sha256(data).hexdigest()

        if cache.hash_at(0) == digest:
            logger.debug("query_result_unchanged", name=self.name, invoice_month=invoice_month)
            return []

        return [RawReport(data=data, content_hash=digest, origin_key=f"{self.name}:{invoice_month}", slot=0)]

    def describe(self) -> str:
        return f"{self.name} for the current invoice month"
