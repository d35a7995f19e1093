"""
GCP Resource Manager Directory

Lists projects with their labels and walks project -> folders -> organization.
Projects are keyed by project id, which is what billing exports carry.
"""

import asyncio
from typing import Dict, List, Optional

import structlog
from google.api_core.exceptions import GoogleAPIError
from google.cloud import resourcemanager_v3

from billing_exporter.schemas.billing import AccountKind
from billing_exporter.shared.adapters.base import DirectoryAccount, DirectoryNode, DirectoryService
from billing_exporter.shared.adapters.gcp import gcp_retry
from billing_exporter.shared.core.exceptions import AdapterError

logger = structlog.get_logger()

ORGANIZATION_PREFIX = "organizations/"
FOLDER_PREFIX = "folders/"


class ResourceManagerDirectory(DirectoryService):
    def __init__(
        self,
        projects_client: Optional[resourcemanager_v3.ProjectsClient] = None,
        folders_client: Optional[resourcemanager_v3.FoldersClient] = None,
        organizations_client: Optional[resourcemanager_v3.OrganizationsClient] = None,
    ):
        self._projects = projects_client
        self._folders = folders_client
        self._organizations = organizations_client

    @property
    def projects(self) -> resourcemanager_v3.ProjectsClient:
        if self._projects is None:
            self._projects = resourcemanager_v3.ProjectsClient()
        return self._projects

    @property
    def folders(self) -> resourcemanager_v3.FoldersClient:
        if self._folders is None:
            self._folders = resourcemanager_v3.FoldersClient()
        return self._folders

    @property
    def organizations(self) -> resourcemanager_v3.OrganizationsClient:
        if self._organizations is None:
            self._organizations = resourcemanager_v3.OrganizationsClient()
        return self._organizations

    @gcp_retry
    def _search_projects(self) -> List[DirectoryAccount]:
        return [
            DirectoryAccount(
                id=project.project_id,
                name=project.project_id,
                tags=dict(project.labels),
                parent_id=project.parent or None,
            )
            for project in self.projects.search_projects(request={})
        ]

    @gcp_retry
    def _get_project(self, project_id: str):
        return self.projects.get_project(name=f"projects/{project_id}")

    @gcp_retry
    def _get_folder(self, name: str):
        return self.folders.get_folder(name=name)

    @gcp_retry
    def _get_organization(self, name: str):
        return self.organizations.get_organization(name=name)

    async def list_accounts(self) -> List[DirectoryAccount]:
        try:
            projects = await asyncio.to_thread(self._search_projects)
        except GoogleAPIError as e:
            raise AdapterError(f"Error listing GCP projects: {e}") from e

        logger.debug("gcp_projects_listed", count=len(projects))
        return projects

    async def list_tags(self, account_id: str) -> Dict[str, str]:
        try:
            project = await asyncio.to_thread(self._get_project, account_id)
        except GoogleAPIError as e:
            raise AdapterError(f"Error reading labels of GCP project {account_id}: {e}") from e
        return dict(project.labels)

    async def list_parents(self, node_id: str) -> List[str]:
        try:
            if node_id.startswith(FOLDER_PREFIX):
                node = await asyncio.to_thread(self._get_folder, node_id)
            elif node_id.startswith(ORGANIZATION_PREFIX):
                return []
            else:
                node = await asyncio.to_thread(self._get_project, node_id)
        except GoogleAPIError as e:
            raise AdapterError(f"Error reading parent of {node_id}: {e}") from e
        return [node.parent] if node.parent else []

    def classify(self, node_id: str) -> Optional[AccountKind]:
        if node_id.startswith(ORGANIZATION_PREFIX):
            return AccountKind.ORGANIZATION
        if node_id.startswith(FOLDER_PREFIX):
            return AccountKind.ORGANIZATIONAL_UNIT
        return None

    async def describe_organization(self, node_id: str) -> DirectoryNode:
        try:
            organization = await asyncio.to_thread(self._get_organization, node_id)
        except GoogleAPIError as e:
            raise AdapterError(f"Error reading GCP organization {node_id}: {e}") from e
        return DirectoryNode(id=node_id, name=organization.display_name, kind=AccountKind.ORGANIZATION)

    async def describe_organizational_unit(self, node_id: str) -> DirectoryNode:
        try:
            folder = await asyncio.to_thread(self._get_folder, node_id)
        except GoogleAPIError as e:
            raise AdapterError(f"Error reading GCP folder {node_id}: {e}") from e
        return DirectoryNode(
            id=node_id,
            name=folder.display_name,
            kind=AccountKind.ORGANIZATIONAL_UNIT,
            parent_id=folder.parent or None,
        )
