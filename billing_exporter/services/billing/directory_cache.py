"""
Directory Cache

Resolves account/project ids to display name, owner and ancestor path, using
a mapping refreshed from a directory service at most once per TTL.

Precedence when resolving:
1. Manual override mapping (id -> name)
2. Directory service data (tags may override the listed name)
3. Placeholder "unknown-<id>"
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from billing_exporter.schemas.billing import Account, AccountKind
from billing_exporter.shared.adapters.base import DirectoryAccount, DirectoryNode, DirectoryService
from billing_exporter.shared.core.clock import Clock
from billing_exporter.shared.core.exceptions import ExporterException
from billing_exporter.shared.core.ops_metrics import DIRECTORY_REFRESHES

logger = structlog.get_logger()

DEFAULT_TTL = timedelta(hours=1)
MAX_PATH_DEPTH = 16


class AncestorWalkError(ExporterException):
    """Raised when an account's ancestor path cannot be determined."""
    def __init__(self, message: str, account_id: str):
        super().__init__(message, code="ancestor_walk_error", details={"account_id": account_id})


class DirectoryCache:
    """
    TTL cache of account metadata, shared by concurrent resolve() calls.

    A single lock guards refreshes: while one runs, resolve() callers wait
    for it instead of reading the previous mapping.
    """

    def __init__(
        self,
        directory: DirectoryService,
        clock: Clock,
        ttl: timedelta = DEFAULT_TTL,
        overrides: Optional[Dict[str, str]] = None,
        owner_tag: Optional[str] = None,
        name_tag: Optional[str] = None,
        owner_decoder: Optional[Callable[[str], str]] = None,
        provider: str = "",
        max_depth: int = MAX_PATH_DEPTH,
    ):
        self.directory = directory
        self.clock = clock
        self.ttl = ttl
        self.overrides = dict(overrides or {})
        self.owner_tag = owner_tag
        self.name_tag = name_tag
        self.owner_decoder = owner_decoder
        self.provider = provider
        self.max_depth = max_depth

        self._lock = asyncio.Lock()
        self._accounts: Optional[Dict[str, Account]] = None
        self._last_update: Optional[datetime] = None

        for account_id, name in self.overrides.items():
            logger.debug("manual_account_mapping", account_id=account_id, account_name=name)

    @property
    def last_update(self) -> Optional[datetime]:
        return self._last_update

    def _is_stale(self, now: datetime) -> bool:
        if self._accounts is None or self._last_update is None:
            return True
        return now - self._last_update >= self.ttl

    async def resolve(self, account_id: str) -> Account:
        """Resolve one account. Never raises; falls back to stale or placeholder data."""
        async with self._lock:
            now = self.clock.now()
            if self._is_stale(now):
                await self._refresh(now)
            account = (self._accounts or {}).get(account_id)

        override = self.overrides.get(account_id)
        if override is not None:
            if account is None:
                return Account(id=account_id, name=override)
            return account.model_copy(update={"name": override})

        if account is None:
            return Account.placeholder(account_id)
        return account

    async def resolve_many(self, account_ids: Iterable[str]) -> Dict[str, Account]:
        unique = list(dict.fromkeys(account_ids))
        accounts = await asyncio.gather(*(self.resolve(account_id) for account_id in unique))
        return dict(zip(unique, accounts))

    async def _refresh(self, now: datetime) -> None:
        logger.debug("directory_refresh_started", provider=self.provider)
        try:
            listed = await self.directory.list_accounts()
        except Exception as e:
            # keep serving the previous mapping; retried on the next resolve
            logger.warning("directory_refresh_failed", provider=self.provider, error=str(e))
            DIRECTORY_REFRESHES.labels(provider=self.provider, status="failure").inc()
            return

        nodes: Dict[str, DirectoryNode] = {}
        accounts: Dict[str, Account] = {}
        for entry in listed:
            accounts[entry.id] = await self._build_account(entry, nodes)

        self._accounts = accounts
        self._last_update = now
        DIRECTORY_REFRESHES.labels(provider=self.provider, status="success").inc()

        for account in accounts.values():
            logger.debug(
                "account_mapping_from_directory",
                account_id=account.id,
                account_name=account.name,
                owner=account.owner,
                path=account.path_label,
            )
        logger.info("directory_refreshed", provider=self.provider, accounts=len(accounts))

    async def _build_account(self, entry: DirectoryAccount, nodes: Dict[str, DirectoryNode]) -> Account:
        tags = entry.tags
        if tags is None:
            try:
                tags = await self.directory.list_tags(entry.id)
            except Exception as e:
                logger.warning("account_tags_failed", account_id=entry.id, error=str(e))
                tags = {}

        name = entry.name
        owner = ""
        if self.name_tag and tags.get(self.name_tag):
            name = tags[self.name_tag]
        if self.owner_tag and self.owner_tag in tags:
            owner = tags[self.owner_tag]
            if self.owner_decoder is not None:
                owner = self.owner_decoder(owner)

        try:
            path = await self.ancestor_path(entry.id, entry.parent_id, nodes)
        except Exception as e:
            logger.warning("account_path_failed", account_id=entry.id, error=str(e))
            path = ()

        return Account(
            id=entry.id,
            name=name,
            owner=owner,
            path=path,
            kind=AccountKind.PROJECT,
            parent_id=entry.parent_id,
        )

    async def _describe(self, node_id: str) -> DirectoryNode:
        kind = self.directory.classify(node_id)
        if kind == AccountKind.ORGANIZATION:
            return await self.directory.describe_organization(node_id)
        if kind == AccountKind.ORGANIZATIONAL_UNIT:
            return await self.directory.describe_organizational_unit(node_id)
        raise AncestorWalkError(f"unknown parent id: {node_id}", account_id=node_id)

    async def ancestor_path(
        self,
        account_id: str,
        parent_id: Optional[str],
        nodes: Dict[str, DirectoryNode],
    ) -> Tuple[str, ...]:
        """
        Names of an account's ancestors, organization first.

        Walks parent links iteratively, memoizing described nodes and their
        listed parents in `nodes`.
        Stops at the organization or at a node without parents; a repeated
        node or a walk deeper than max_depth raises AncestorWalkError.
        """
        names: List[str] = []
        visited = {account_id}
        current_id = account_id

        for _ in range(self.max_depth):
            if parent_id is None:
                parents = await self.directory.list_parents(current_id)
                if not parents:
                    break
                if len(parents) != 1:
                    raise AncestorWalkError(f"expected a single parent of {current_id}, got {parents}", account_id)
                parent_id = parents[0]
                if current_id in nodes:
                    nodes[current_id] = nodes[current_id].model_copy(update={"parent_id": parent_id})

            if parent_id in visited:
                raise AncestorWalkError(f"parent cycle at {parent_id}", account_id)
            visited.add(parent_id)

            node = nodes.get(parent_id)
            if node is None:
                node = await self._describe(parent_id)
                nodes[parent_id] = node

            names.append(node.name)
            if node.kind == AccountKind.ORGANIZATION:
                break
            current_id, parent_id = node.id, node.parent_id
        else:
            raise AncestorWalkError(f"ancestor path deeper than {self.max_depth}", account_id)

        return tuple(reversed(names))
