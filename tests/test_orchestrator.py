"""
Unit tests for the child task orchestrator.

Services are replaced with AsyncMocks; the tests cover child type
resolution, template selection and order, sequential creation with
per-template failures, the no-op outcomes and batch runs.
"""

import json
import logging
import pytest
from unittest.mock import AsyncMock, Mock
from create_child_tasks.constants import Categories
from create_child_tasks.errors import (
    ChildCreationError,
    TemplateNotFoundError,
    TransientError,
    WorkItemNotFoundError,
)
from create_child_tasks.models import (
    ActionContext,
    BugsBehavior,
    CreatedChild,
    RunContext,
    RunStatus,
    TeamSettings,
    Template,
    TemplateReference,
    WorkItemTypeCategory,
)
from create_child_tasks.orchestrator import (
    ChildTaskOrchestrator,
    resolve_child_categories,
    sort_templates,
)
from create_child_tasks.services.writers import ItemWriter
from create_child_tasks.validation import ValidationError


CATEGORIES = {
    Categories.EPIC: WorkItemTypeCategory("Epic Category", Categories.EPIC, ["Epic"]),
    Categories.FEATURE: WorkItemTypeCategory("Feature Category", Categories.FEATURE, ["Feature"]),
    Categories.REQUIREMENT: WorkItemTypeCategory(
        "Requirement Category", Categories.REQUIREMENT, ["Product Backlog Item"]
    ),
    Categories.TASK: WorkItemTypeCategory("Task Category", Categories.TASK, ["Task"]),
    Categories.BUG: WorkItemTypeCategory("Bug Category", Categories.BUG, ["Bug"]),
}


def rules(**fields):
    """Description with a single applywhen rule."""
    return json.dumps({"applywhen": [fields]})


def reference(template_id, name, description, work_item_type="Task"):
    """Template reference."""
    return TemplateReference(template_id, name, description, work_item_type)


def detail(ref, fields=None):
    """Full template for a reference."""
    return Template(ref.id, ref.name, ref.description, ref.work_item_type_name, fields or {})


class RecordingWriter(ItemWriter):
    """Writer that records calls instead of talking to a service."""

    def __init__(self, fail_on=()):
        super().__init__(workitem_service=Mock())
        self.fail_on = set(fail_on)
        self.calls = []
        self.finished = 0

    async def create_child(self, parent_id, template, document):
        self.calls.append((parent_id, template.name, document))
        if template.name in self.fail_on:
            raise ChildCreationError(template.name, template.id, "create", TransientError(503))
        return CreatedChild(
            id=1000 + len(self.calls),
            url=f"https://dev.azure.com/org/_apis/wit/workItems/{1000 + len(self.calls)}",
            template_id=template.id,
            template_name=template.name,
            work_item_type=template.work_item_type_name,
        )

    async def link_child(self, parent_id, child):
        pass

    async def finish(self):
        self.finished += 1


@pytest.fixture
def parent():
    """Approved product backlog item."""
    return {
        "System.Id": 42,
        "System.WorkItemType": "Product Backlog Item",
        "System.State": "Approved",
        "System.Title": "Checkout redesign",
        "System.AreaPath": "Fabrikam\\Web",
        "System.IterationPath": "Fabrikam\\Sprint 4",
        "System.Tags": "Security; Backend",
    }


@pytest.fixture
def templates():
    """Team templates: three apply to the parent, one does not."""
    return [
        reference("t-review", "review", rules(**{"System.State": "Approved"})),
        reference("t-build", "Build", "[Product Backlog Item]"),
        reference("t-sec", "Security check", rules(**{"System.Tags": ["security"]})),
        reference("t-bug", "Bug triage", "[Bug]"),
    ]


@pytest.fixture
def workitem_service(parent):
    """Work item service with the process categories."""
    service = Mock()
    service.get_work_item = AsyncMock(side_effect=lambda work_item_id, fields=None: {**parent, "System.Id": work_item_id})
    service.get_work_item_type_categories = AsyncMock(return_value=list(CATEGORIES.values()))
    service.get_work_item_type_category = AsyncMock(side_effect=lambda ref: CATEGORIES[ref])
    return service


@pytest.fixture
def team_service(templates):
    """Team service returning the template fixtures."""
    service = Mock()
    service.get_team_settings = AsyncMock(return_value=TeamSettings())
    service.get_templates = AsyncMock(return_value=templates)
    service.get_template = AsyncMock(
        side_effect=lambda template_id: detail(next(t for t in templates if t.id == template_id))
    )
    return service


@pytest.fixture
def orchestrator(workitem_service, team_service):
    """Orchestrator with a notify hook."""
    context = RunContext("https://dev.azure.com/org", "Fabrikam", "Web", "sam@fabrikam.com")
    return ChildTaskOrchestrator(workitem_service, team_service, context, notify=AsyncMock())


class TestResolveChildCategories:
    """Test resolve_child_categories()."""

    @pytest.mark.parametrize("parent_category,behavior,expected", [
        (Categories.EPIC, BugsBehavior.OFF, [Categories.FEATURE]),
        (Categories.FEATURE, BugsBehavior.OFF, [Categories.REQUIREMENT]),
        (Categories.FEATURE, BugsBehavior.AS_REQUIREMENTS, [Categories.REQUIREMENT, Categories.BUG]),
        (Categories.FEATURE, BugsBehavior.AS_TASKS, [Categories.REQUIREMENT]),
        (Categories.REQUIREMENT, BugsBehavior.OFF, [Categories.TASK]),
        (Categories.REQUIREMENT, BugsBehavior.AS_TASKS, [Categories.TASK, Categories.BUG]),
        (Categories.TASK, BugsBehavior.OFF, [Categories.TASK]),
        (Categories.BUG, BugsBehavior.AS_REQUIREMENTS, [Categories.TASK]),
        (Categories.BUG, BugsBehavior.OFF, [Categories.TASK]),
        ("Microsoft.HiddenCategory", BugsBehavior.OFF, []),
        (None, BugsBehavior.OFF, []),
    ])
    def test_table(self, parent_category, behavior, expected):
        """Child categories per parent category and bugs behavior."""
        assert resolve_child_categories(parent_category, behavior) == expected

    def test_table_is_not_mutated(self):
        """Appending the bug category does not change the shared table."""
        resolve_child_categories(Categories.REQUIREMENT, BugsBehavior.AS_TASKS)
        assert resolve_child_categories(Categories.REQUIREMENT, BugsBehavior.OFF) == [Categories.TASK]


class TestSortTemplates:
    """Test sort_templates()."""

    def test_case_insensitive(self):
        """Names sort ascending ignoring case."""
        names = [t.name for t in sort_templates([
            reference("1", "beta", ""), reference("2", "Alpha", ""), reference("3", "alpha 2", "")
        ])]
        assert names == ["Alpha", "alpha 2", "beta"]


class TestAddTasks:
    """Test add_tasks()."""

    @pytest.mark.asyncio
    async def test_creates_applicable_templates_in_name_order(self, orchestrator):
        """Only matching templates, sorted by name."""
        writer = RecordingWriter()

        result = await orchestrator.add_tasks(42, writer)

        assert result.status is RunStatus.COMPLETED
        assert result.child_types == ["Task"]
        assert result.matched_templates == ["Build", "review", "Security check"]
        assert [name for _, name, _ in writer.calls] == ["Build", "review", "Security check"]
        assert [c.template_name for c in result.created] == ["Build", "review", "Security check"]
        assert writer.finished == 1

    @pytest.mark.asyncio
    async def test_patch_document_built_from_parent(self, orchestrator, team_service, templates):
        """Each child gets the synthesized document."""
        team_service.get_template.side_effect = lambda template_id: detail(
            next(t for t in templates if t.id == template_id),
            {"System.Title": "{System.Title}: review", "System.AssignedTo": "@me"}
        )
        writer = RecordingWriter()

        await orchestrator.add_tasks(42, writer)

        _, _, document = writer.calls[0]
        values = {op["path"]: op["value"] for op in document}
        assert values["/fields/System.Title"] == "Checkout redesign: review"
        assert values["/fields/System.AssignedTo"] == "sam@fabrikam.com"
        assert values["/fields/System.AreaPath"] == "Fabrikam\\Web"

    @pytest.mark.asyncio
    async def test_failed_child_does_not_stop_run(self, orchestrator, caplog):
        """A failing template is logged and the rest are still created."""
        writer = RecordingWriter(fail_on={"review"})

        with caplog.at_level(logging.ERROR, logger="create_child_tasks.orchestrator"):
            result = await orchestrator.add_tasks(42, writer)

        assert result.status is RunStatus.COMPLETED
        assert [c.template_name for c in result.created] == ["Build", "Security check"]
        assert len(result.failures) == 1
        assert result.failures[0]["template_name"] == "review"
        assert result.failures[0]["stage"] == "create"
        assert 'Failed to create child from template "review"' in caplog.text
        assert writer.finished == 1

    @pytest.mark.asyncio
    async def test_failed_detail_fetch_drops_template(self, orchestrator, team_service, templates):
        """A template whose details cannot be read is skipped."""
        def get_template(template_id):
            if template_id == "t-build":
                raise TemplateNotFoundError(template_id)
            return detail(next(t for t in templates if t.id == template_id))
        team_service.get_template.side_effect = get_template
        writer = RecordingWriter()

        result = await orchestrator.add_tasks(42, writer)

        assert [name for _, name, _ in writer.calls] == ["review", "Security check"]
        assert result.failures[0]["template_id"] == "t-build"
        assert result.failures[0]["stage"] == "fetch"

    @pytest.mark.asyncio
    async def test_missing_template_type_taken_from_reference(self, orchestrator, team_service, templates):
        """Details without a type keep the type from the list call."""
        def get_template(template_id):
            template = detail(next(t for t in templates if t.id == template_id))
            template.work_item_type_name = None
            return template
        team_service.get_template.side_effect = get_template
        writer = RecordingWriter()

        result = await orchestrator.add_tasks(42, writer)

        assert all(c.work_item_type == "Task" for c in result.created)

    @pytest.mark.asyncio
    async def test_no_child_types(self, orchestrator, workitem_service):
        """A parent outside every category is a no-op."""
        workitem_service.get_work_item.side_effect = None
        workitem_service.get_work_item.return_value = {"System.Id": 7, "System.WorkItemType": "Impediment"}
        writer = RecordingWriter()

        result = await orchestrator.add_tasks(7, writer)

        assert result.status is RunStatus.NO_CHILD_TYPES
        assert writer.calls == []
        assert writer.finished == 0
        orchestrator.team_service.get_templates.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_templates_notifies_user(self, orchestrator, team_service):
        """No templates of the child types shows a message."""
        team_service.get_templates.return_value = []

        result = await orchestrator.add_tasks(42, RecordingWriter())

        assert result.status is RunStatus.NO_TEMPLATES
        assert "No templates found of type: Task" in result.message
        orchestrator.notify.assert_awaited_once_with(result.message)

    @pytest.mark.asyncio
    async def test_no_matching_templates(self, orchestrator, team_service):
        """Templates exist but none apply."""
        team_service.get_templates.return_value = [reference("t-bug", "Bug triage", "[Bug]")]
        writer = RecordingWriter()

        result = await orchestrator.add_tasks(42, writer)

        assert result.status is RunStatus.NO_MATCHING_TEMPLATES
        assert writer.calls == []
        team_service.get_template.assert_not_called()
        orchestrator.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bugs_as_tasks_adds_bug_templates(self, orchestrator, team_service, workitem_service):
        """Bug templates are candidates when bugs behave as tasks."""
        team_service.get_team_settings.return_value = TeamSettings(bugs_behavior=BugsBehavior.AS_TASKS)

        result = await orchestrator.add_tasks(42, RecordingWriter())

        assert result.child_types == ["Task", "Bug"]
        team_service.get_templates.assert_awaited_once_with(["Task", "Bug"])

    @pytest.mark.asyncio
    async def test_team_settings_failure_uses_defaults(self, orchestrator, team_service, caplog):
        """Unreadable team settings do not stop the run."""
        team_service.get_team_settings.side_effect = TransientError(503)

        with caplog.at_level(logging.WARNING, logger="create_child_tasks.orchestrator"):
            result = await orchestrator.add_tasks(42, RecordingWriter())

        assert result.status is RunStatus.COMPLETED
        assert "Could not read team settings" in caplog.text

    @pytest.mark.asyncio
    async def test_parent_fetch_failure_raises(self, orchestrator, workitem_service):
        """A parent that cannot be read fails the run."""
        workitem_service.get_work_item.side_effect = WorkItemNotFoundError(42)

        with pytest.raises(WorkItemNotFoundError):
            await orchestrator.add_tasks(42, RecordingWriter())

    @pytest.mark.asyncio
    async def test_invalid_parent_id(self, orchestrator):
        """Parent ids must be positive integers."""
        with pytest.raises(ValidationError):
            await orchestrator.add_tasks(0, RecordingWriter())


class TestPlan:
    """Test plan()."""

    @pytest.mark.asyncio
    async def test_plan_does_not_write(self, orchestrator, workitem_service):
        """A dry run returns documents and creates nothing."""
        result = await orchestrator.plan(42)

        assert [p.template_name for p in result.planned] == ["Build", "review", "Security check"]
        assert result.created == []
        assert workitem_service.create_work_item.call_count == 0
        first = {op["path"]: op["value"] for op in result.planned[0].document}
        assert first["/fields/System.Title"] == "Checkout redesign"

    @pytest.mark.asyncio
    async def test_plan_inherits_fields_outside_the_filter_set(
        self, orchestrator, workitem_service, team_service, templates, parent
    ):
        """Priority and custom fields of the parent reach the child document."""
        workitem_service.get_work_item.side_effect = lambda work_item_id, fields=None: {
            **parent, "Microsoft.VSTS.Common.Priority": 1, "Custom.Team": "Red"
        }
        team_service.get_template.side_effect = lambda template_id: detail(
            next(t for t in templates if t.id == template_id),
            {"Microsoft.VSTS.Common.Priority": "", "System.Description": "Owned by {Custom.Team}"}
        )

        result = await orchestrator.plan(42)

        workitem_service.get_work_item.assert_called_with(42)
        values = {op["path"]: op["value"] for op in result.planned[0].document}
        assert values["/fields/Microsoft.VSTS.Common.Priority"] == 1
        assert values["/fields/System.Description"] == "Owned by Red"

    @pytest.mark.asyncio
    async def test_plan_no_templates(self, orchestrator, team_service):
        """Dry runs report the same no-op statuses."""
        team_service.get_templates.return_value = []

        result = await orchestrator.plan(42)

        assert result.status is RunStatus.NO_TEMPLATES
        assert result.planned == []


class TestRun:
    """Test run() for form and grid contexts."""

    @pytest.mark.asyncio
    async def test_grid_runs_each_parent(self, orchestrator, workitem_service):
        """Every selected id gets its own run."""
        workitem_service.create_work_item = AsyncMock(side_effect=[
            {"id": n, "url": f"https://dev.azure.com/org/_apis/wit/workItems/{n}"} for n in range(100, 106)
        ])
        workitem_service.add_child_link = AsyncMock()
        reload_view = Mock()

        results = await orchestrator.run(ActionContext(work_item_ids=[42, 43, 42]), reload_view=reload_view)

        assert [r.parent_id for r in results] == [42, 43]
        assert all(len(r.created) == 3 for r in results)
        assert workitem_service.add_child_link.await_count == 6
        assert reload_view.call_count == 2

    @pytest.mark.asyncio
    async def test_grid_failure_isolated_per_parent(self, orchestrator, workitem_service, parent):
        """A parent that cannot be read does not stop the others."""
        def get_work_item(work_item_id, fields=None):
            if work_item_id == 13:
                raise WorkItemNotFoundError(13)
            return {**parent, "System.Id": work_item_id}
        workitem_service.get_work_item.side_effect = get_work_item
        workitem_service.create_work_item = AsyncMock(return_value={"id": 500, "url": "u"})
        workitem_service.add_child_link = AsyncMock()

        results = await orchestrator.run(ActionContext(work_item_ids=[13, 42]))

        assert results[0].status is RunStatus.FAILED
        assert "13" in results[0].message
        assert results[1].status is RunStatus.COMPLETED
        orchestrator.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_form_context_links_through_form(self, orchestrator, workitem_service):
        """With an open form, links go through the form and it is saved once."""
        workitem_service.create_work_item = AsyncMock(return_value={"id": 500, "url": "https://x/500"})
        workitem_service.add_child_link = AsyncMock()
        form = Mock()
        form.get_id = AsyncMock(return_value=42)
        form.add_work_item_relations = AsyncMock()
        form.save = AsyncMock()

        results = await orchestrator.run(ActionContext(form=form))

        assert results[0].parent_id == 42
        assert form.add_work_item_relations.await_count == 3
        form.save.assert_awaited_once()
        workitem_service.add_child_link.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_selection(self, orchestrator):
        """A grid action needs at least one id."""
        with pytest.raises(ValidationError):
            await orchestrator.run(ActionContext())
