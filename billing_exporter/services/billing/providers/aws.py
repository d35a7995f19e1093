"""
AWS Billing Source

Reads the monthly "<root-account-id>-aws-billing-csv-YYYY-MM.csv" report
that AWS delivers to the billing bucket. Accounts are labelled with their
Organizations name.
"""

from typing import Awaitable, Callable, List, Optional

from prometheus_client import Counter

from billing_exporter.schemas.billing import BillingLineItem, RawReport
from billing_exporter.services.billing.directory_cache import DirectoryCache
from billing_exporter.services.billing.fetcher import LatestObjectFetcher
from billing_exporter.services.billing.parsers import parse_aws_csv
from billing_exporter.services.billing.source import BillingSource
from billing_exporter.shared.adapters.base import ObjectStore


def aws_report_prefix(root_account_id: str) -> str:
    return f"{root_account_id}-aws-billing-csv-"


class AWSBillingSource(BillingSource):
    provider = "aws"

    def __init__(
        self,
        store: ObjectStore,
        directory: DirectoryCache,
        counter: Counter,
        root_account_id: Optional[str] = None,
        caller_account_id: Optional[Callable[[], Awaitable[str]]] = None,
    ):
        if root_account_id is None and caller_account_id is None:
            raise ValueError("either root_account_id or caller_account_id is required")
        self.store = store
        self.root_account_id = root_account_id
        self._caller_account_id = caller_account_id
        super().__init__(LatestObjectFetcher(store, self.report_prefix), directory, counter, window_size=1)

    async def report_prefix(self) -> str:
        if self.root_account_id is None:
            # credentials of the root (payer) account
            self.root_account_id = await self._caller_account_id()
        return aws_report_prefix(self.root_account_id)

    def parse(self, raw: RawReport) -> List[BillingLineItem]:
        return parse_aws_csv(raw.data, raw.origin_key)

    def describe(self) -> str:
        return f"AWS Billing on root account '{self.root_account_id or '?'}' in {self.store.describe()}"
