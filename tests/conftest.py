import os
# Settings are read from the environment: pin them BEFORE any exporter imports
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
for _var in ("AWS_BILLING_BUCKET_NAME", "GCP_BILLING_BUCKET_NAME", "GCP_BIGQUERY_TABLE", "AWS_ACCOUNT_MAP"):
    os.environ.pop(_var, None)

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest
from prometheus_client import CollectorRegistry

from billing_exporter.schemas.billing import AccountKind
from billing_exporter.services.billing.collector import BillingCollector, monthly_costs_counter
from billing_exporter.shared.adapters.base import (
    DirectoryAccount,
    DirectoryNode,
    DirectoryService,
    ObjectInfo,
    ObjectStore,
)
from billing_exporter.shared.core.exceptions import AdapterError


class FakeClock:
    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


class FakeObjectStore(ObjectStore):
    """In-memory bucket. Content hash defaults to the md5 of the data."""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.failing_keys = set()
        self.fail_listing = False
        self.downloads: List[str] = []

    def put(self, key: str, data: bytes, content_hash: Optional[str] = None) -> None:
        self.objects[key] = (data, content_hash or hashlib.md5(data).hexdigest())

    async def list(self, prefix: str) -> List[ObjectInfo]:
        if self.fail_listing:
            raise AdapterError("bucket unavailable")
        return [
            ObjectInfo(key=key, content_hash=content_hash, size=len(data))
            for key, (data, content_hash) in sorted(self.objects.items())
            if key.startswith(prefix)
        ]

    async def get(self, key: str) -> bytes:
        self.downloads.append(key)
        if key in self.failing_keys:
            raise AdapterError(f"download of {key} failed")
        return self.objects[key][0]

    def describe(self) -> str:
        return "fake://bucket"


class FakeDirectory(DirectoryService):
    def __init__(self):
        self.accounts: List[DirectoryAccount] = []
        self.tags: Dict[str, Dict[str, str]] = {}
        self.parents: Dict[str, List[str]] = {}
        self.nodes: Dict[str, DirectoryNode] = {}
        self.parent_calls: List[str] = []
        self.list_calls = 0
        self.fail = False

    def add_account(self, account_id: str, name: str, parent_id: Optional[str] = None, **tags) -> None:
        self.accounts.append(DirectoryAccount(id=account_id, name=name, parent_id=parent_id))
        self.tags[account_id] = tags

    def add_node(self, node_id: str, name: str, kind: AccountKind, parent_id: Optional[str] = None) -> None:
        self.nodes[node_id] = DirectoryNode(id=node_id, name=name, kind=kind, parent_id=parent_id)

    async def list_accounts(self) -> List[DirectoryAccount]:
        self.list_calls += 1
        if self.fail:
            raise AdapterError("directory unavailable")
        return list(self.accounts)

    async def list_tags(self, account_id: str) -> Dict[str, str]:
        return dict(self.tags.get(account_id, {}))

    async def list_parents(self, node_id: str) -> List[str]:
        self.parent_calls.append(node_id)
        return list(self.parents.get(node_id, []))

    def classify(self, node_id: str) -> Optional[AccountKind]:
        node = self.nodes.get(node_id)
        return node.kind if node else None

    async def describe_organization(self, node_id: str) -> DirectoryNode:
        return self.nodes[node_id]

    async def describe_organizational_unit(self, node_id: str) -> DirectoryNode:
        return self.nodes[node_id]


@pytest.fixture
def clock():
    return FakeClock(datetime(2017, 1, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def counter():
    return monthly_costs_counter()


@pytest.fixture
def sample_value(counter):
    """Reads exported values of the monthly costs counter by label set."""
    registry = CollectorRegistry()
    registry.register(BillingCollector(counter))

    def read(**labels) -> Optional[float]:
        return registry.get_sample_value("cloud_billing_monthly_costs_total", labels)

    return read
