"""
Work Item service for Azure DevOps operations
Reads parent work items and categories, creates and links child work items
"""
import asyncio
from typing import List, Dict, Any, Optional
from azure.devops.v7_1.work_item_tracking.models import JsonPatchOperation

from ..decorators import azure_devops_operation, validate_work_item_id
from ..constants import FieldNames, LinkTypes
from ..errors import AzureDevOpsError, WorkItemNotFoundError
from ..models import WorkItemTypeCategory


class WorkItemService:
    """Service for the work item calls a child task run makes"""

    def __init__(self, auth, project: str):
        """
        Initialize work item service

        Args:
            auth: AzureDevOpsAuth instance
            project: Azure DevOps project name
        """
        self.auth = auth
        self.project = project
        self._wit_client = None

    @property
    def wit_client(self):
        """Lazy load work item tracking client"""
        if not self._wit_client:
            self._wit_client = self.auth.get_client('work_item_tracking')
        return self._wit_client

    @validate_work_item_id
    @azure_devops_operation()
    async def get_work_item(
        self,
        work_item_id: int,
        fields: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Get the field values of a work item

        Args:
            work_item_id: Work item ID
            fields: Field reference names to read (default: every field)

        Returns:
            Field map keyed by reference name, always including System.Id

        Raises:
            WorkItemNotFoundError: If the work item does not exist
        """
        # The API rejects a field list combined with an expand
        work_item = await asyncio.to_thread(
            self.wit_client.get_work_item,
            id=work_item_id,
            project=self.project,
            fields=fields or None,
            expand=None if fields else 'Fields'
        )

        if work_item is None:
            raise WorkItemNotFoundError(work_item_id)
        if work_item.fields is None:
            raise AzureDevOpsError(message=f"Failed to load fields of work item {work_item_id}")

        result = dict(work_item.fields)
        result[FieldNames.ID] = work_item.id or work_item_id
        return result

    @azure_devops_operation()
    async def get_work_item_type_categories(self) -> List[WorkItemTypeCategory]:
        """
        Get every work item type category of the project

        Returns:
            Categories with the names of their work item types
        """
        categories = await asyncio.to_thread(
            self.wit_client.get_work_item_type_categories,
            project=self.project
        )
        return [self._format_category(c) for c in (categories or [])]

    @azure_devops_operation()
    async def get_work_item_type_category(self, reference_name: str) -> WorkItemTypeCategory:
        """
        Get one work item type category

        Args:
            reference_name: Category reference name (e.g. Microsoft.TaskCategory)

        Returns:
            The category with the names of its work item types
        """
        category = await asyncio.to_thread(
            self.wit_client.get_work_item_type_category,
            project=self.project,
            category=reference_name
        )
        return self._format_category(category)

    @azure_devops_operation()
    async def create_work_item(
        self,
        work_item_type: str,
        document: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Create a work item from a JSON Patch document

        Args:
            work_item_type: Type of the new work item (e.g. Task)
            document: List of {"op", "path", "value"} operations

        Returns:
            {'id': ..., 'url': ...} of the created work item
        """
        patch_document = [
            JsonPatchOperation(op=op['op'], path=op['path'], value=op.get('value'))
            for op in document
        ]

        created_item = await asyncio.to_thread(
            self.wit_client.create_work_item,
            document=patch_document,
            project=self.project,
            type=work_item_type
        )

        return {
            'id': created_item.id,
            'url': created_item.url or self.work_item_url(created_item.id)
        }

    @validate_work_item_id
    @azure_devops_operation()
    async def add_child_link(self, parent_id: int, child_url: str) -> None:
        """
        Append a hierarchy link from a parent to a child work item

        Args:
            parent_id: Parent work item ID
            child_url: API URL of the child work item
        """
        patches = [
            JsonPatchOperation(
                op="add",
                path="/relations/-",
                value=self.child_relation(child_url)
            )
        ]

        await asyncio.to_thread(
            self.wit_client.update_work_item,
            document=patches,
            id=parent_id,
            project=self.project
        )

    def work_item_url(self, work_item_id: int) -> str:
        """API URL of a work item in this project"""
        base = self.auth.organization_url.rstrip('/')
        return f"{base}/{self.project}/_apis/wit/workItems/{work_item_id}"

    @staticmethod
    def child_relation(child_url: str) -> Dict[str, Any]:
        """Relation value linking a parent to a child"""
        return {
            "rel": LinkTypes.HIERARCHY_FORWARD,
            "url": child_url,
            "attributes": {"isLocked": False}
        }

    @staticmethod
    def _format_category(category) -> WorkItemTypeCategory:
        """Format a category for the orchestrator"""
        return WorkItemTypeCategory(
            name=category.name,
            reference_name=category.reference_name,
            work_item_types=[t.name for t in (category.work_item_types or [])]
        )
