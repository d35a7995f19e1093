from unittest.mock import patch

from billing_exporter.services.billing.factory import BillingSourceFactory
from billing_exporter.services.billing.providers.aws import AWSBillingSource
from billing_exporter.services.billing.providers.gcp import GCPBigQueryBillingSource, GCPBillingSource
from billing_exporter.shared.core.config import Settings


def test_no_sources_configured(counter):
    assert BillingSourceFactory(Settings(), counter).create_all() == []


def test_aws_source_from_settings(counter):
    settings = Settings(
        AWS_BILLING_BUCKET_NAME="billing-bucket",
        AWS_ROOT_ACCOUNT_ID="123456789012",
        AWS_ACCOUNT_MAP="111=acme-dev,222=acme-prod",
    )

    with patch("billing_exporter.shared.adapters.aws_utils.aioboto3.Session"):
        sources = BillingSourceFactory(settings, counter).create_all()

    assert len(sources) == 1
    source = sources[0]
    assert isinstance(source, AWSBillingSource)
    assert source.root_account_id == "123456789012"
    assert source.directory.overrides == {"111": "acme-dev", "222": "acme-prod"}
    assert source.directory.owner_tag == "owner"
    assert source.directory.name_tag == "project-id"
    assert "s3://billing-bucket" in source.describe()


def test_gcp_sources_from_settings(counter):
    settings = Settings(
        GCP_BILLING_BUCKET_NAME="gcp-billing",
        GCP_REPORT_PREFIX="acme-billing",
        GCP_BIGQUERY_TABLE="billing-project.billing_dataset.gcp_billing_export_v1",
        REPORTS_PER_MONTH=31,
    )

    sources = BillingSourceFactory(settings, counter).create_all()

    assert [type(s) for s in sources] == [GCPBillingSource, GCPBigQueryBillingSource]
    bucket, bigquery = sources
    assert bucket.cache.size == 31
    assert bucket.directory.owner_tag == "owner-base32"
    assert bucket.directory.owner_decoder is not None
    assert bigquery.export.table == "billing-project.billing_dataset.gcp_billing_export_v1"
    # each source owns its directory cache
    assert bucket.directory is not bigquery.directory
