"""
Billing Report Parsers

Converts raw report bytes into BillingLineItems:
- AWS Cost and Usage Report CSV (header-derived column positions)
- GCP billing export JSON (array of billing elements)
- GCP BigQuery export rows (serialized by the query fetcher)

Record-level problems are logged and skipped; only a report that cannot be
read at all raises ReportParseError.
"""

import io
import json
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

import pandas as pd
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from billing_exporter.schemas.billing import BillingLineItem
from billing_exporter.services.billing.reducer import derive_service_name
from billing_exporter.shared.core.exceptions import ReportParseError

logger = structlog.get_logger()

LINKED_LINE_ITEM = "LinkedLineItem"

CSV_COLUMNS = {
    "record_type": "RecordType",
    "account_id": "LinkedAccountId",
    "service": "ProductCode",
    "cost": "TotalCost",
    "currency": "CurrencyCode",
}


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a textual amount; None when it is not a finite number."""
    if not isinstance(value, str):
        return None
    try:
        amount = Decimal(value.strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def parse_aws_csv(data: bytes, origin_key: str = "") -> List[BillingLineItem]:
    """Parse the linked line items of an AWS billing CSV report."""

    def skip_bad_line(fields: List[str]) -> None:
        logger.warning("csv_bad_line_skipped", key=origin_key, fields=len(fields))
        return None

    try:
        df = pd.read_csv(
            io.BytesIO(data),
            dtype=str,
            keep_default_na=False,
            engine="python",
            on_bad_lines=skip_bad_line,
        )
    except pd.errors.EmptyDataError:
        logger.warning("csv_report_empty", key=origin_key)
        return []
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ReportParseError(f"Error parsing CSV billing report '{origin_key}': {e}", origin_key=origin_key)

    missing = [c for c in CSV_COLUMNS.values() if c not in df.columns]
    if missing:
        raise ReportParseError(
            f"CSV billing report '{origin_key}' is missing columns: {', '.join(missing)}",
            origin_key=origin_key,
            details={"missing_columns": missing},
        )

    rows = df[df[CSV_COLUMNS["record_type"]] == LINKED_LINE_ITEM]
    columns = [CSV_COLUMNS["account_id"], CSV_COLUMNS["service"], CSV_COLUMNS["cost"], CSV_COLUMNS["currency"]]

    items: List[BillingLineItem] = []
    for account_id, service, total_cost, currency in rows[columns].itertuples(index=False, name=None):
        # short rows are padded with NaN
        if not all(isinstance(v, str) for v in (account_id, service, currency)):
            logger.warning("csv_row_incomplete", key=origin_key)
            continue
        cost = parse_decimal(total_cost)
        if cost is None:
            logger.warning("csv_cost_unparsable", key=origin_key, account_id=account_id, value=str(total_cost))
            continue
        items.append(BillingLineItem(
            account_id=account_id,
            service_name=service,
            cost=cost,
            currency=currency,
        ))
    return items


class GCPMeasurement(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    measurement_id: str = Field("", alias="measurementId")
    sum: Optional[str] = None
    unit: Optional[str] = None


class GCPCost(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Optional[str] = None
    currency: str = ""
    value: Optional[float] = None


class GCPBillingElement(BaseModel):
    """One element of a GCP JSON billing export file."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_id: Optional[str] = Field(None, alias="projectId")
    project_name: Optional[str] = Field(None, alias="projectName")
    service_name: Optional[str] = Field(None, alias="serviceName")
    measurements: List[GCPMeasurement] = Field(default_factory=list)
    cost: GCPCost = Field(default_factory=GCPCost)

    @property
    def service(self) -> str:
        return derive_service_name(self.service_name, [m.measurement_id for m in self.measurements])

    def amount(self) -> Decimal:
        """cost.amount (string) when parsable, otherwise cost.value."""
        if self.cost.amount:
            value = parse_decimal(self.cost.amount)
            if value is not None:
                return value
            logger.warning("gcp_cost_amount_unparsable", project_id=self.project_id, amount=self.cost.amount)
        if self.cost.value is None:
            return Decimal("0")
        return Decimal(str(self.cost.value))


def _load_json_array(data: bytes, origin_key: str) -> List[Any]:
    try:
        payload = json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise ReportParseError(f"failed to parse report JSON '{origin_key}': {e}", origin_key=origin_key)
    if not isinstance(payload, list):
        raise ReportParseError(f"report JSON '{origin_key}' is not an array", origin_key=origin_key)
    return payload


def parse_gcp_json(data: bytes, origin_key: str = "") -> List[BillingLineItem]:
    """Parse a GCP JSON billing export file."""
    items: List[BillingLineItem] = []
    for index, raw in enumerate(_load_json_array(data, origin_key)):
        try:
            element = GCPBillingElement.model_validate(raw)
        except ValidationError as e:
            logger.warning("gcp_element_invalid", key=origin_key, index=index, error=str(e))
            continue
        items.append(BillingLineItem(
            account_id=element.project_id or "",
            service_name=element.service,
            cost=element.amount(),
            currency=element.cost.currency,
        ))
    return items


class BigQueryCostRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    project_id: Optional[str] = None
    service: Optional[str] = None
    currency: str = ""
    cost: Decimal


def parse_bigquery_rows(data: bytes, origin_key: str = "") -> List[BillingLineItem]:
    """Parse rows serialized by the BigQuery billing export fetcher."""
    items: List[BillingLineItem] = []
    for index, raw in enumerate(_load_json_array(data, origin_key)):
        try:
            row = BigQueryCostRow.model_validate(raw)
        except ValidationError as e:
            logger.warning("bigquery_row_invalid", key=origin_key, index=index, error=str(e))
            continue
        items.append(BillingLineItem(
            account_id=row.project_id or "",
            service_name=derive_service_name(row.service, []),
            cost=row.cost,
            currency=row.currency,
        ))
    return items
