"""
Billing Collector

Owns the exported `cloud_billing_monthly_costs` counter and the billing
sources that feed it. Registered with a prometheus registry; sources are
queried right before each exposition so the scrape sees fresh values.
"""

import asyncio
from typing import Iterable, List, Optional

import structlog
from prometheus_client import Counter
from prometheus_client.registry import Collector

from billing_exporter.services.billing.source import COUNTER_LABELS, BillingSource

logger = structlog.get_logger()


def monthly_costs_counter() -> Counter:
    """Unregistered counter; exposed through a BillingCollector."""
    return Counter(
        "cloud_billing_monthly_costs",
        "Billed costs of the current calendar month by cloud, account and service.",
        COUNTER_LABELS,
        registry=None,
    )


class BillingCollector(Collector):
    def __init__(self, counter: Optional[Counter] = None, query_timeout: Optional[float] = None):
        self.counter = counter or monthly_costs_counter()
        self.query_timeout = query_timeout
        self.sources: List[BillingSource] = []

    def describe(self):
        return self.counter.describe()

    def collect(self):
        return self.counter.collect()

    async def activate(self, candidates: Iterable[BillingSource]) -> List[BillingSource]:
        """
        Test every candidate source once and keep the working ones.
        A failing source is logged and dropped; it does not stop the others.
        """
        candidates = list(candidates)
        results = await asyncio.gather(*(self._test(source) for source in candidates))
        for source, ok in zip(candidates, results):
            if ok:
                self.sources.append(source)
        return self.sources

    async def _test(self, source: BillingSource) -> bool:
        try:
            await source.test()
        except Exception as e:
            logger.error("billing_source_unavailable", source=source.describe(), error=str(e))
            return False
        logger.info("billing_source_enabled", source=source.describe())
        return True

    async def query_all(self) -> None:
        """Query every source concurrently; failures are logged, never raised."""
        await asyncio.gather(*(self._query(source) for source in self.sources))

    async def _query(self, source: BillingSource) -> None:
        try:
            if self.query_timeout:
                await asyncio.wait_for(source.query(), timeout=self.query_timeout)
            else:
                await source.query()
        except asyncio.TimeoutError:
            logger.warning("billing_source_query_timeout", source=source.describe(), timeout=self.query_timeout)
        except Exception as e:
            logger.warning("billing_source_query_failed", source=source.describe(), error=str(e))
