"""
Item writers: how a run creates children and links them to the parent.

Two conventions exist. With the parent open in a work item form, children
are created through REST and linked through the form, which is saved once
at the end so the open form does not go stale. From a grid or batch
selection, children are created and linked through REST and the view is
reloaded once at the end. A writer is picked once per run.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from ..errors import ChildCreationError
from ..models import CreatedChild, Template
from .workitem_service import WorkItemService

logger = logging.getLogger(__name__)


class WorkItemForm(Protocol):
    """Open work item form supplied by the host."""

    async def get_id(self) -> int: ...

    async def add_work_item_relations(self, relations: List[Dict[str, Any]]) -> None: ...

    async def save(self) -> None: ...


class ItemWriter(ABC):
    """Creates one child work item and links it to its parent."""

    def __init__(self, workitem_service: WorkItemService):
        self.workitem_service = workitem_service

    async def create_child(
        self,
        parent_id: int,
        template: Template,
        document: List[Dict[str, Any]]
    ) -> CreatedChild:
        """
        Create a child from a patch document and link it to the parent.

        Raises:
            ChildCreationError: If the create or link step fails
        """
        try:
            created = await self.workitem_service.create_work_item(
                template.work_item_type_name,
                document
            )
        except Exception as e:
            raise ChildCreationError(template.name, template.id, "create", e) from e

        child = CreatedChild(
            id=created['id'],
            url=created.get('url'),
            template_id=template.id,
            template_name=template.name,
            work_item_type=template.work_item_type_name
        )
        logger.debug(f"Created child {child.id} from template {template.name}")

        try:
            await self.link_child(parent_id, child)
        except Exception as e:
            raise ChildCreationError(template.name, template.id, "link", e) from e

        return child

    @abstractmethod
    async def link_child(self, parent_id: int, child: CreatedChild) -> None:
        """Add the hierarchy relation from the parent to a new child."""

    async def finish(self) -> None:
        """Called once after every template of the run was processed."""


class RestItemWriter(ItemWriter):
    """Links through REST; reloads the host view once at the end."""

    def __init__(
        self,
        workitem_service: WorkItemService,
        reload_view: Optional[Callable[[], Any]] = None
    ):
        super().__init__(workitem_service)
        self.reload_view = reload_view

    async def link_child(self, parent_id: int, child: CreatedChild) -> None:
        url = child.url or self.workitem_service.work_item_url(child.id)
        await self.workitem_service.add_child_link(parent_id, url)
        logger.debug(f"Linked child {child.id} to parent {parent_id} via REST")

    async def finish(self) -> None:
        if self.reload_view is None:
            return
        result = self.reload_view()
        if inspect.isawaitable(result):
            await result


class FormItemWriter(ItemWriter):
    """Links through the open work item form; saves the form at the end."""

    def __init__(self, workitem_service: WorkItemService, form: WorkItemForm):
        super().__init__(workitem_service)
        self.form = form
        self._linked = 0

    async def link_child(self, parent_id: int, child: CreatedChild) -> None:
        url = child.url or self.workitem_service.work_item_url(child.id)
        await self.form.add_work_item_relations([WorkItemService.child_relation(url)])
        self._linked += 1
        logger.debug(f"Linked child {child.id} to parent {parent_id} via form")

    async def finish(self) -> None:
        if not self._linked:
            return
        await self.form.save()
        logger.debug(f"Form saved after adding {self._linked} relations")


def select_writer(
    workitem_service: WorkItemService,
    form: Optional[WorkItemForm] = None,
    reload_view: Optional[Callable[[], Awaitable[Any]]] = None
) -> ItemWriter:
    """Form writer when a form is open, REST writer otherwise."""
    if form is not None:
        return FormItemWriter(workitem_service, form)
    return RestItemWriter(workitem_service, reload_view)
