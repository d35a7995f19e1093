"""
Billing Source

Per-provider orchestration of one query pass:

    IDLE -> FETCHING -> REDUCING -> RESOLVING -> RECONCILING -> IDLE

Providers only differ in how reports are fetched and parsed; reduction,
account resolution and counter reconciliation are shared. A failing stage
raises SourceQueryError and leaves every exported counter untouched.
Concurrent query() calls on one source run their passes one after another.
"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from prometheus_client import Counter

from billing_exporter.schemas.billing import Account, AggregatedElement, BillingLineItem, GroupingKey, RawReport
from billing_exporter.services.billing import reducer
from billing_exporter.services.billing.directory_cache import DirectoryCache
from billing_exporter.services.billing.fetcher import ReportCache, ReportFetcher
from billing_exporter.services.billing.reconciler import CounterState, Delta, reconcile
from billing_exporter.shared.core.exceptions import ReportParseError, SourceQueryError
from billing_exporter.shared.core.ops_metrics import COST_REGRESSIONS, SOURCE_QUERY_DURATION, SOURCE_QUERY_ERRORS

logger = structlog.get_logger()

COUNTER_LABELS = ["cloud", "currency", "account", "service", "path", "owner"]


class SourceState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    REDUCING = "reducing"
    RESOLVING = "resolving"
    RECONCILING = "reconciling"


class BillingSource(ABC):
    """
    Abstract Base Class for billing sources.

    Subclasses provide `parse()` and hand a ReportFetcher to the constructor;
    everything from reduction to counter updates happens here.
    """

    provider: str = ""
    # label the "account" dimension with the raw id instead of the resolved name
    label_account_by_id: bool = False

    def __init__(
        self,
        fetcher: ReportFetcher,
        directory: DirectoryCache,
        counter: Counter,
        window_size: int = 1,
    ):
        self.fetcher = fetcher
        self.directory = directory
        self.counter = counter
        self.cache = ReportCache(window_size)
        self.counter_state = CounterState(self.provider)
        self.status = SourceState.IDLE

        # whole passes are serialized so snapshots reconcile in fetch order
        self._pass_lock = asyncio.Lock()
        self._unreconciled = False

    @abstractmethod
    def parse(self, raw: RawReport) -> List[BillingLineItem]:
        """Turn one raw report into line items. Raises ReportParseError if unreadable."""

    @abstractmethod
    def describe(self) -> str:
        """Human readable description of where this source reads from."""

    def __str__(self) -> str:
        return self.describe()

    async def test(self) -> None:
        """Viability check at startup: one full query pass."""
        await self.query()

    async def query(self) -> None:
        """Fetch, reduce, resolve and reconcile once, applying counter deltas."""
        with SOURCE_QUERY_DURATION.labels(provider=self.provider).time():
            async with self._pass_lock:
                try:
                    await self._run_pass()
                finally:
                    self.status = SourceState.IDLE

    async def _run_pass(self) -> None:
        aggregated = await self._fetch_and_reduce()
        if aggregated is None:
            return

        self.status = SourceState.RESOLVING
        try:
            accounts = await self.directory.resolve_many(e.account_id for e in aggregated)
        except Exception as e:
            raise self._failure("resolve", e) from e

        self.status = SourceState.RECONCILING
        async with self.counter_state.lock:
            deltas = reconcile(aggregated, self.counter_state, on_regression=self._on_regression)
            self._apply(deltas, accounts)
            self._unreconciled = False

    async def _fetch_and_reduce(self) -> Optional[List[AggregatedElement]]:
        self.status = SourceState.FETCHING
        try:
            reports = await self.fetcher.fetch(self.cache)
        except Exception as e:
            raise self._failure("fetch", e) from e

        if not reports and not self._unreconciled:
            logger.debug("no_new_billing_reports", source=self.describe())
            return None

        parsed = self._parse_reports(reports)
        if reports and not parsed:
            raise self._failure("fetch", ReportParseError(f"none of {len(reports)} changed reports could be parsed"))

        self.status = SourceState.REDUCING
        for raw, items in parsed:
            self.cache.store(raw.slot, raw.content_hash, raw.origin_key, reducer.reduce(items))
        self._unreconciled = True

        return reducer.combine(self.cache.reports())

    def _parse_reports(self, reports: Sequence[RawReport]) -> List[Tuple[RawReport, List[BillingLineItem]]]:
        parsed = []
        for raw in reports:
            try:
                items = self.parse(raw)
            except ReportParseError as e:
                logger.warning("billing_report_unparsable", key=raw.origin_key, error=e.message)
                continue
            logger.debug("billing_report_parsed", key=raw.origin_key, line_items=len(items))
            parsed.append((raw, items))
        return parsed

    def _apply(self, deltas: List[Delta], accounts: Dict[str, Account]) -> None:
        for key, delta in deltas:
            account = accounts.get(key.account_id) or Account.placeholder(key.account_id)
            self.counter.labels(
                cloud=self.provider,
                currency=key.currency,
                account=key.account_id if self.label_account_by_id else account.name,
                service=key.service_name,
                path=account.path_label,
                owner=account.owner,
            ).inc(float(delta))
        logger.debug("counters_reconciled", source=self.describe(), updated=len(deltas))

    def _on_regression(self, key: GroupingKey, delta: Decimal) -> None:
        COST_REGRESSIONS.labels(provider=self.provider).inc()

    def _failure(self, stage: str, error: Exception) -> SourceQueryError:
        SOURCE_QUERY_ERRORS.labels(provider=self.provider, stage=stage).inc()
        logger.error("billing_source_stage_failed", source=self.describe(), stage=stage, error=str(error))
        return SourceQueryError(self.describe(), stage, str(error))
