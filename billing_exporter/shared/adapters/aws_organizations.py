"""
AWS Organizations Directory

Lists member accounts with their tags and walks parent links
(account -> organizational units -> root) to build account paths.
The root is shown under the domain of the management account email.
"""

from typing import Dict, List, Optional

import aioboto3
import structlog

from billing_exporter.schemas.billing import AccountKind
from billing_exporter.shared.adapters.aws_utils import AWS_ERRORS, client_kwargs, get_boto_session
from billing_exporter.shared.adapters.base import DirectoryAccount, DirectoryNode, DirectoryService
from billing_exporter.shared.core.exceptions import AdapterError

logger = structlog.get_logger()

ROOT_PREFIX = "r-"
OU_PREFIX = "ou-"


class OrganizationsDirectory(DirectoryService):
    def __init__(
        self,
        region: Optional[str] = None,
        session: Optional[aioboto3.Session] = None,
        endpoint_url: Optional[str] = None,
    ):
        self.region = region
        self.session = session or get_boto_session()
        self.endpoint_url = endpoint_url

    def _client(self):
        return self.session.client(**client_kwargs("organizations", self.region, self.endpoint_url))

    async def list_accounts(self) -> List[DirectoryAccount]:
        accounts: List[DirectoryAccount] = []
        try:
            async with self._client() as org:
                paginator = org.get_paginator("list_accounts")
                async for page in paginator.paginate():
                    for account in page.get("Accounts", []):
                        accounts.append(DirectoryAccount(id=account["Id"], name=account["Name"]))
        except AWS_ERRORS as e:
            raise AdapterError(f"Error listing AWS accounts: {e}") from e

        logger.debug("aws_accounts_listed", count=len(accounts))
        return accounts

    async def list_tags(self, account_id: str) -> Dict[str, str]:
        tags: Dict[str, str] = {}
        try:
            async with self._client() as org:
                paginator = org.get_paginator("list_tags_for_resource")
                async for page in paginator.paginate(ResourceId=account_id):
                    for tag in page.get("Tags", []):
                        tags[tag["Key"]] = tag["Value"]
        except AWS_ERRORS as e:
            raise AdapterError(f"Error listing tags of AWS account {account_id}: {e}") from e
        return tags

    async def list_parents(self, node_id: str) -> List[str]:
        parents: List[str] = []
        try:
            async with self._client() as org:
                paginator = org.get_paginator("list_parents")
                async for page in paginator.paginate(ChildId=node_id):
                    parents.extend(parent["Id"] for parent in page.get("Parents", []))
        except AWS_ERRORS as e:
            raise AdapterError(f"Error listing parents of {node_id}: {e}") from e
        return parents

    def classify(self, node_id: str) -> Optional[AccountKind]:
        if node_id.startswith(ROOT_PREFIX):
            return AccountKind.ORGANIZATION
        if node_id.startswith(OU_PREFIX):
            return AccountKind.ORGANIZATIONAL_UNIT
        return None

    async def describe_organization(self, node_id: str) -> DirectoryNode:
        try:
            async with self._client() as org:
                response = await org.describe_organization()
        except AWS_ERRORS as e:
            raise AdapterError(f"Error describing AWS organization: {e}") from e

        organization = response["Organization"]
        email = organization.get("MasterAccountEmail", "")
        # "billing@acme.example" -> "acme.example"
        name = email.split("@", 1)[1] if "@" in email else organization.get("Id", node_id)
        return DirectoryNode(id=node_id, name=name, kind=AccountKind.ORGANIZATION)

    async def describe_organizational_unit(self, node_id: str) -> DirectoryNode:
        try:
            async with self._client() as org:
                response = await org.describe_organizational_unit(OrganizationalUnitId=node_id)
        except AWS_ERRORS as e:
            raise AdapterError(f"Error describing organizational unit {node_id}: {e}") from e

        unit = response["OrganizationalUnit"]
        return DirectoryNode(id=unit["Id"], name=unit["Name"], kind=AccountKind.ORGANIZATIONAL_UNIT)
