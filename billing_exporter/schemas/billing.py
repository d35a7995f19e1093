"""
Billing Record Model - Normalization Layer

Canonical representation of billing line items, their aggregation per
grouping key, and the account metadata used to label exported counters.
"""

from decimal import Decimal
from enum import Enum
from typing import NamedTuple, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class GroupingKey(NamedTuple):
    """(account, service, currency) tuple costs are aggregated by."""
    account_id: str
    service_name: str
    currency: str


class BillingLineItem(BaseModel):
    """One raw cost record parsed from a provider's billing export."""
    model_config = ConfigDict(frozen=True)

    account_id: str
    service_name: str
    cost: Decimal
    currency: str

    @property
    def key(self) -> GroupingKey:
        return GroupingKey(self.account_id, self.service_name, self.currency)


class AggregatedElement(BaseModel):
    """Summed cost of all line items sharing one grouping key in a report snapshot."""
    account_id: str
    service_name: str
    currency: str
    cumulative_cost: Decimal = Field(default=Decimal("0"))

    @property
    def key(self) -> GroupingKey:
        return GroupingKey(self.account_id, self.service_name, self.currency)


class AccountKind(str, Enum):
    PROJECT = "project"
    ORGANIZATIONAL_UNIT = "organizational_unit"
    ORGANIZATION = "organization"


class Account(BaseModel):
    """Resolved account or project metadata. Immutable once handed out."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    owner: str = ""
    path: Tuple[str, ...] = ()
    kind: AccountKind = AccountKind.PROJECT
    parent_id: Optional[str] = None

    @property
    def path_label(self) -> str:
        return "/".join(self.path)

    @classmethod
    def placeholder(cls, account_id: str) -> "Account":
        return cls(id=account_id, name=f"unknown-{account_id}")


class RawReport(BaseModel):
    """A downloaded report object, ready to be parsed."""
    data: bytes
    content_hash: str
    origin_key: str
    slot: int = 0
