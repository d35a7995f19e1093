"""
Billing Source Factory

Builds the billing sources enabled by the settings: a source is enabled
when its bucket (or BigQuery table) is configured.
"""

from datetime import timedelta
from typing import List, Optional

import structlog
from prometheus_client import Counter

from billing_exporter.services.billing.directory_cache import DirectoryCache
from billing_exporter.services.billing.providers.aws import AWSBillingSource
from billing_exporter.services.billing.providers.gcp import GCPBigQueryBillingSource, GCPBillingSource
from billing_exporter.services.billing.source import BillingSource
from billing_exporter.shared.adapters.aws_organizations import OrganizationsDirectory
from billing_exporter.shared.adapters.aws_s3 import S3ObjectStore
from billing_exporter.shared.adapters.aws_utils import get_boto_session, get_caller_account_id
from billing_exporter.shared.adapters.gcp import GCSObjectStore, decode_base32_label
from billing_exporter.shared.adapters.gcp_bigquery import BigQueryBillingExport
from billing_exporter.shared.adapters.gcp_resource_manager import ResourceManagerDirectory
from billing_exporter.shared.core.clock import Clock, SystemClock
from billing_exporter.shared.core.config import Settings

logger = structlog.get_logger()


class BillingSourceFactory:
    def __init__(self, settings: Settings, counter: Counter, clock: Optional[Clock] = None):
        self.settings = settings
        self.counter = counter
        self.clock = clock or SystemClock()

    @property
    def directory_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.DIRECTORY_CACHE_TTL_SECONDS)

    def create_all(self) -> List[BillingSource]:
        sources: List[BillingSource] = []
        if self.settings.AWS_BILLING_BUCKET_NAME:
            sources.append(self.create_aws())
        if self.settings.GCP_BILLING_BUCKET_NAME:
            sources.append(self.create_gcp())
        if self.settings.GCP_BIGQUERY_TABLE:
            sources.append(self.create_gcp_bigquery())

        if not sources:
            logger.warning("no_billing_sources_configured")
        return sources

    def create_aws(self) -> AWSBillingSource:
        s = self.settings
        session = get_boto_session()
        directory = DirectoryCache(
            OrganizationsDirectory(region=s.AWS_BILLING_REGION, session=session, endpoint_url=s.AWS_ENDPOINT_URL),
            self.clock,
            ttl=self.directory_ttl,
            overrides=s.aws_account_map,
            owner_tag=s.AWS_OWNER_TAG,
            name_tag=s.AWS_NAME_TAG,
            provider="aws",
        )

        async def caller_account_id() -> str:
            return await get_caller_account_id(session, s.AWS_BILLING_REGION, s.AWS_ENDPOINT_URL)

        return AWSBillingSource(
            S3ObjectStore(s.AWS_BILLING_BUCKET_NAME, s.AWS_BILLING_REGION, session, s.AWS_ENDPOINT_URL),
            directory,
            self.counter,
            root_account_id=s.AWS_ROOT_ACCOUNT_ID,
            caller_account_id=caller_account_id,
        )

    def _gcp_directory(self) -> DirectoryCache:
        return DirectoryCache(
            ResourceManagerDirectory(),
            self.clock,
            ttl=self.directory_ttl,
            owner_tag=self.settings.GCP_OWNER_LABEL,
            owner_decoder=decode_base32_label,
            provider="gcp",
        )

    def create_gcp(self) -> GCPBillingSource:
        s = self.settings
        return GCPBillingSource(
            GCSObjectStore(s.GCP_BILLING_BUCKET_NAME),
            self._gcp_directory(),
            self.counter,
            report_prefix=s.GCP_REPORT_PREFIX,
            clock=self.clock,
            reports_per_month=s.REPORTS_PER_MONTH,
        )

    def create_gcp_bigquery(self) -> GCPBigQueryBillingSource:
        s = self.settings
        return GCPBigQueryBillingSource(
            BigQueryBillingExport(s.GCP_BIGQUERY_TABLE, project=s.GCP_BIGQUERY_PROJECT),
            self._gcp_directory(),
            self.counter,
            clock=self.clock,
        )
