"""
Unit tests for item writers.

Tests the REST and form conventions for creating and linking children.
"""

import pytest
from unittest.mock import AsyncMock, Mock
from create_child_tasks.errors import ChildCreationError, ConflictError, TransientError
from create_child_tasks.models import Template
from create_child_tasks.services.writers import FormItemWriter, RestItemWriter, select_writer


@pytest.fixture
def template():
    """Task template."""
    return Template(id="t1", name="Review", work_item_type_name="Task", fields={})


@pytest.fixture
def workitem_service():
    """Work item service that creates item 500."""
    service = Mock()
    service.create_work_item = AsyncMock(return_value={"id": 500, "url": "https://dev.azure.com/org/_apis/wit/workItems/500"})
    service.add_child_link = AsyncMock()
    service.work_item_url = Mock(side_effect=lambda wid: f"https://dev.azure.com/org/P/_apis/wit/workItems/{wid}")
    return service


@pytest.fixture
def form():
    """Open work item form."""
    form = Mock()
    form.get_id = AsyncMock(return_value=42)
    form.add_work_item_relations = AsyncMock()
    form.save = AsyncMock()
    return form


DOCUMENT = [{"op": "add", "path": "/fields/System.Title", "value": "Review"}]


class TestRestItemWriter:
    """Test RestItemWriter."""

    @pytest.mark.asyncio
    async def test_create_and_link(self, workitem_service, template):
        """Creates with the template's type and links via REST."""
        writer = RestItemWriter(workitem_service)

        child = await writer.create_child(42, template, DOCUMENT)

        workitem_service.create_work_item.assert_awaited_once_with("Task", DOCUMENT)
        workitem_service.add_child_link.assert_awaited_once_with(
            42, "https://dev.azure.com/org/_apis/wit/workItems/500"
        )
        assert child.id == 500
        assert child.template_name == "Review"

    @pytest.mark.asyncio
    async def test_missing_url_built_from_id(self, workitem_service, template):
        """A create response without url falls back to the API url."""
        workitem_service.create_work_item.return_value = {"id": 501, "url": None}

        await RestItemWriter(workitem_service).create_child(42, template, DOCUMENT)

        workitem_service.add_child_link.assert_awaited_once_with(
            42, "https://dev.azure.com/org/P/_apis/wit/workItems/501"
        )

    @pytest.mark.asyncio
    async def test_create_failure(self, workitem_service, template):
        """Create errors become ChildCreationError and nothing is linked."""
        workitem_service.create_work_item.side_effect = TransientError(503)

        with pytest.raises(ChildCreationError) as exc_info:
            await RestItemWriter(workitem_service).create_child(42, template, DOCUMENT)

        assert exc_info.value.stage == "create"
        assert exc_info.value.template_name == "Review"
        assert exc_info.value.status_code == 503
        workitem_service.add_child_link.assert_not_called()

    @pytest.mark.asyncio
    async def test_link_failure(self, workitem_service, template):
        """Link errors carry the link stage."""
        workitem_service.add_child_link.side_effect = ConflictError()

        with pytest.raises(ChildCreationError) as exc_info:
            await RestItemWriter(workitem_service).create_child(42, template, DOCUMENT)

        assert exc_info.value.stage == "link"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_finish_reloads_view(self, workitem_service):
        """Async and plain reload hooks are both called once."""
        async_reload = AsyncMock()
        await RestItemWriter(workitem_service, async_reload).finish()
        async_reload.assert_awaited_once()

        plain_reload = Mock(return_value=None)
        await RestItemWriter(workitem_service, plain_reload).finish()
        plain_reload.assert_called_once()

    @pytest.mark.asyncio
    async def test_finish_without_hook(self, workitem_service):
        """No hook, nothing to do."""
        await RestItemWriter(workitem_service).finish()


class TestFormItemWriter:
    """Test FormItemWriter."""

    @pytest.mark.asyncio
    async def test_links_through_form(self, workitem_service, form, template):
        """The relation is added to the open form, not via REST."""
        writer = FormItemWriter(workitem_service, form)

        await writer.create_child(42, template, DOCUMENT)

        form.add_work_item_relations.assert_awaited_once_with([{
            "rel": "System.LinkTypes.Hierarchy-Forward",
            "url": "https://dev.azure.com/org/_apis/wit/workItems/500",
            "attributes": {"isLocked": False},
        }])
        workitem_service.add_child_link.assert_not_called()
        form.save.assert_not_called()

    @pytest.mark.asyncio
    async def test_saves_once_at_finish(self, workitem_service, form, template):
        """The form is saved once after all children."""
        writer = FormItemWriter(workitem_service, form)
        await writer.create_child(42, template, DOCUMENT)
        await writer.create_child(42, template, DOCUMENT)

        await writer.finish()

        form.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_save_without_links(self, workitem_service, form):
        """Nothing linked, nothing saved."""
        await FormItemWriter(workitem_service, form).finish()
        form.save.assert_not_called()


class TestSelectWriter:
    """Test select_writer()."""

    def test_form(self, workitem_service, form):
        """Open form selects the form writer."""
        assert isinstance(select_writer(workitem_service, form=form), FormItemWriter)

    def test_rest(self, workitem_service):
        """No form selects the REST writer."""
        writer = select_writer(workitem_service, reload_view=Mock())
        assert isinstance(writer, RestItemWriter)
        assert writer.reload_view is not None
