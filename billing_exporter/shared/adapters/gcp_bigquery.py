"""
GCP BigQuery Billing Export

Sums the standard billing export table per project, service and currency
for one invoice month.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog
from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery

from billing_exporter.shared.adapters.gcp import gcp_retry
from billing_exporter.shared.core.config import BIGQUERY_TABLE_PATTERN
from billing_exporter.shared.core.exceptions import AdapterError, ConfigurationError

logger = structlog.get_logger()


class BigQueryBillingExport:
    def __init__(self, table: str, project: Optional[str] = None, client: Optional[bigquery.Client] = None):
        # The table path is interpolated into SQL, so it must be a plain resource id
        if not BIGQUERY_TABLE_PATTERN.match(table):
            logger.error("gcp_bq_invalid_table_path", table=table)
            raise ConfigurationError(f"Invalid BigQuery table path: '{table}'")
        self.table = table
        self.project = project
        self._client = client

    @property
    def client(self) -> bigquery.Client:
        if self._client is None:
            self._client = bigquery.Client(project=self.project)
        return self._client

    @gcp_retry
    def _run(self, invoice_month: str) -> List[Dict[str, Any]]:
        query = f"""
            SELECT
                project.id AS project_id,
                service.description AS service,
                currency,
                SUM(cost) AS cost
            FROM `{self.table}`
            WHERE invoice.month = @invoice_month
            GROUP BY project_id, service, currency
            ORDER BY project_id, service, currency
        """  # nosec: B608

        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("invoice_month", "STRING", invoice_month),
            ]
        )
        results = self.client.query(query, job_config=job_config).result()
        return [
            {
                "project_id": row.project_id,
                "service": row.service,
                "currency": row.currency,
                "cost": str(row.cost),
            }
            for row in results
        ]

    async def query_costs(self, invoice_month: str) -> List[Dict[str, Any]]:
        """Cost rows of an invoice month ("YYYYMM")."""
        try:
            rows = await asyncio.to_thread(self._run, invoice_month)
        except GoogleAPIError as e:
            logger.error("gcp_bq_query_failed", table=self.table, invoice_month=invoice_month, error=str(e))
            raise AdapterError(f"Error querying BigQuery billing export '{self.table}': {e}") from e

        logger.info("gcp_bq_costs_fetched", table=self.table, invoice_month=invoice_month, rows=len(rows))
        return rows

    def describe(self) -> str:
        return f"bq://{self.table}"
