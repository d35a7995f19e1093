"""
Report Reducer

Groups billing line items by (account, service, currency) and sums their
cost. Shared by every provider: CSV and JSON reports, bucket and warehouse
exports all end up here.
"""

from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from billing_exporter.schemas.billing import AggregatedElement, BillingLineItem, GroupingKey

MISC_SERVICE = "misc"

T = TypeVar("T")


def derive_service_name(service_name: Optional[str], measurement_ids: Sequence[str]) -> str:
    """
    Simplify a record's service key.

    The direct service identifier wins. Otherwise a single measurement id like
    "com.google.cloud/services/compute-engine/NetworkEgress" yields the token
    after "services"; a single id of another shape is used as-is. Zero or
    several measurements cannot be attributed and are labelled "misc".
    """
    if service_name:
        return service_name

    if len(measurement_ids) != 1:
        return MISC_SERVICE

    measurement_id = measurement_ids[0]
    parts = measurement_id.split("/")
    if len(parts) >= 3 and parts[1] == "services":
        return parts[2]

    return measurement_id or MISC_SERVICE


def _group(
    entries: Iterable[T],
    key_of: Callable[[T], GroupingKey],
    cost_of: Callable[[T], Decimal],
) -> List[AggregatedElement]:
    by_key: Dict[GroupingKey, AggregatedElement] = {}
    # dicts keep insertion order: output is first-seen key order
    for entry in entries:
        key = key_of(entry)
        element = by_key.get(key)
        if element is None:
            by_key[key] = AggregatedElement(
                account_id=key.account_id,
                service_name=key.service_name,
                currency=key.currency,
                cumulative_cost=cost_of(entry),
            )
        else:
            element.cumulative_cost += cost_of(entry)
    return list(by_key.values())


def reduce(items: Iterable[BillingLineItem]) -> List[AggregatedElement]:
    """Sum line items per grouping key, one element per key."""
    return _group(items, lambda i: i.key, lambda i: i.cost)


def combine(reports: Iterable[Sequence[AggregatedElement]]) -> List[AggregatedElement]:
    """Sum already reduced reports (e.g. the daily files of one month) per grouping key."""
    return _group(
        (element for report in reports for element in report),
        lambda e: e.key,
        lambda e: e.cumulative_cost,
    )
