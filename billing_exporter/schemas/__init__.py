"""Billing schemas."""

from .billing import (
    Account,
    AccountKind,
    AggregatedElement,
    BillingLineItem,
    GroupingKey,
    RawReport,
)

__all__ = ["Account", "AccountKind", "AggregatedElement", "BillingLineItem", "GroupingKey", "RawReport"]
