"""
Integration tests against a real Azure DevOps organization.

Read-only: templates are matched and child documents planned, nothing is
created. Requires AZURE_DEVOPS_ORG_URL, AZURE_DEVOPS_PROJECT, credentials
and AZURE_DEVOPS_TEST_WORK_ITEM. Run with: pytest -m integration
"""

import os
import pytest
import pytest_asyncio
from create_child_tasks.auth import AzureDevOpsAuth
from create_child_tasks.models import RunStatus
from create_child_tasks.service_manager import ServiceManager

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not (os.getenv("AZURE_DEVOPS_ORG_URL") and os.getenv("AZURE_DEVOPS_PROJECT")),
        reason="AZURE_DEVOPS_ORG_URL and AZURE_DEVOPS_PROJECT not set"
    ),
]


@pytest_asyncio.fixture
async def real_service_manager():
    """ServiceManager over a real authenticated connection."""
    auth = AzureDevOpsAuth(os.getenv("AZURE_DEVOPS_ORG_URL"))
    await auth.initialize()
    yield ServiceManager(
        auth,
        default_project=os.getenv("AZURE_DEVOPS_PROJECT"),
        default_team=os.getenv("AZURE_DEVOPS_TEAM")
    )
    await auth.close()


class TestRealOrganization:
    """Read-only calls against the configured project."""

    @pytest.mark.asyncio
    async def test_team_settings_and_categories(self, real_service_manager):
        """Team settings and categories can be read."""
        team_service = real_service_manager.get_team_service()
        workitem_service = real_service_manager.get_workitem_service()

        settings = await team_service.get_team_settings()
        categories = await workitem_service.get_work_item_type_categories()

        assert settings.bugs_behavior is not None
        assert any(c.reference_name == "Microsoft.TaskCategory" for c in categories)

    @pytest.mark.asyncio
    async def test_plan_children(self, real_service_manager):
        """Planning a run for a real parent writes nothing."""
        work_item_id = os.getenv("AZURE_DEVOPS_TEST_WORK_ITEM")
        if not work_item_id:
            pytest.skip("AZURE_DEVOPS_TEST_WORK_ITEM not set")

        orchestrator = await real_service_manager.get_orchestrator()
        result = await orchestrator.plan(int(work_item_id))

        assert result.status is not RunStatus.FAILED
        assert len(result.planned) <= len(result.matched_templates)
        for plan in result.planned:
            assert any(op["path"] == "/fields/System.Title" for op in plan.document)
