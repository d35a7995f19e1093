"""
GCP Billing Sources

- GCPBillingSource: daily JSON export files "<prefix>-YYYY-MM-DD.json" in GCS
- GCPBigQueryBillingSource: the BigQuery billing export table

Both label accounts with the project id.
"""

from typing import List

from prometheus_client import Counter

from billing_exporter.schemas.billing import BillingLineItem, RawReport
from billing_exporter.services.billing.directory_cache import DirectoryCache
from billing_exporter.services.billing.fetcher import (
    DEFAULT_REPORTS_PER_MONTH,
    QueryResultFetcher,
    RollingWindowFetcher,
)
from billing_exporter.services.billing.parsers import parse_bigquery_rows, parse_gcp_json
from billing_exporter.services.billing.source import BillingSource
from billing_exporter.shared.adapters.base import ObjectStore
from billing_exporter.shared.adapters.gcp_bigquery import BigQueryBillingExport
from billing_exporter.shared.core.clock import Clock


class GCPBillingSource(BillingSource):
    provider = "gcp"
    label_account_by_id = True

    def __init__(
        self,
        store: ObjectStore,
        directory: DirectoryCache,
        counter: Counter,
        report_prefix: str,
        clock: Clock,
        reports_per_month: int = DEFAULT_REPORTS_PER_MONTH,
    ):
        self.store = store
        self.report_prefix = report_prefix
        fetcher = RollingWindowFetcher(store, report_prefix, clock, size=reports_per_month)
        super().__init__(fetcher, directory, counter, window_size=reports_per_month)

    def parse(self, raw: RawReport) -> List[BillingLineItem]:
        return parse_gcp_json(raw.data, raw.origin_key)

    def describe(self) -> str:
        return f"GCP Billing with prefix '{self.report_prefix}' in {self.store.describe()}"


class GCPBigQueryBillingSource(BillingSource):
    provider = "gcp"
    label_account_by_id = True

    def __init__(
        self,
        export: BigQueryBillingExport,
        directory: DirectoryCache,
        counter: Counter,
        clock: Clock,
    ):
        self.export = export
        fetcher = QueryResultFetcher(export.query_costs, clock, name=export.describe())
        super().__init__(fetcher, directory, counter, window_size=1)

    def parse(self, raw: RawReport) -> List[BillingLineItem]:
        return parse_bigquery_rows(raw.data, raw.origin_key)

    def describe(self) -> str:
        return f"GCP Billing export in {self.export.describe()}"
