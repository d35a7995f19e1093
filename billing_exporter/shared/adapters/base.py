from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from pydantic import BaseModel

from billing_exporter.schemas.billing import AccountKind


class ObjectInfo(BaseModel):
    """Listing entry of a report object."""
    key: str
    content_hash: str
    size: int = 0


class DirectoryAccount(BaseModel):
    """
    Account or project as listed by a directory service.
    tags is None when the listing does not carry them and list_tags() must be asked.
    """
    id: str
    name: str
    tags: Optional[Dict[str, str]] = None
    parent_id: Optional[str] = None


class DirectoryNode(BaseModel):
    """Organizational unit (folder) or organization."""
    id: str
    name: str
    kind: AccountKind
    parent_id: Optional[str] = None


class ObjectStore(ABC):
    """
    Abstract Base Class for billing report storage (S3, GCS).

    Only listing and whole-object download are needed by the fetchers.
    """

    @abstractmethod
    async def list(self, prefix: str) -> List[ObjectInfo]:
        """List every object under a key prefix, across all pages."""
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Download an object's body."""
        pass

    def describe(self) -> str:
        return self.__class__.__name__


class DirectoryService(ABC):
    """
    Abstract Base Class for organization directories (AWS Organizations,
    GCP Resource Manager).

    Standardizes the interface for:
    - Listing accounts/projects with their tags
    - Walking parent links up to the organization
    """

    @abstractmethod
    async def list_accounts(self) -> List[DirectoryAccount]:
        """List all known accounts, across all pages."""
        pass

    @abstractmethod
    async def list_tags(self, account_id: str) -> Dict[str, str]:
        """Tags (labels) attached to an account."""
        pass

    @abstractmethod
    async def list_parents(self, node_id: str) -> List[str]:
        """Ids of the direct parents of an account or organizational unit."""
        pass

    @abstractmethod
    def classify(self, node_id: str) -> Optional[AccountKind]:
        """Kind of a parent id, or None when the id is not recognised."""
        pass

    @abstractmethod
    async def describe_organization(self, node_id: str) -> DirectoryNode:
        pass

    @abstractmethod
    async def describe_organizational_unit(self, node_id: str) -> DirectoryNode:
        pass
