"""
Child task orchestration.

One run per parent work item:

    fetch parent -> resolve child types -> fetch templates -> keep applicable
    -> sort by name -> fetch details -> for each: build, create, link
    -> save form or reload view

Template details are read concurrently. Children are created and linked one
at a time because every link appends to the same parent's relation list.
A failure on one child is logged and the run moves on to the next template.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from .applicability import is_template_applicable
from .constants import CHILD_CATEGORIES, Categories, FieldNames
from .decorators import PerformanceMonitor
from .errors import ChildCreationError
from .log_sanitizer import format_error, safe_log_error
from .models import (
    ActionContext,
    BugsBehavior,
    ChildTaskPlan,
    RunContext,
    RunResult,
    RunStatus,
    TeamSettings,
    Template,
    TemplateReference,
)
from .normalizer import FieldNormalizer
from .services.team_service import TeamService
from .services.workitem_service import WorkItemService
from .services.writers import ItemWriter, select_writer
from .synthesizer import create_work_item_from_template
from .validation import validate_work_item_id, validate_work_item_ids

logger = logging.getLogger(__name__)

Notifier = Callable[[str], Awaitable[None]]


def resolve_child_categories(
    category_reference_name: Optional[str],
    bugs_behavior: BugsBehavior = BugsBehavior.OFF
) -> List[str]:
    """
    Categories whose work item types may be created under a parent.

    Bugs join the Requirement level when they behave as requirements and
    the Task level when they behave as tasks.

    Args:
        category_reference_name: Parent's category (e.g. Microsoft.FeatureCategory)
        bugs_behavior: Team bugs behavior

    Returns:
        Child category reference names; empty when the parent category has none
    """
    children = list(CHILD_CATEGORIES.get(category_reference_name, []))

    if category_reference_name == Categories.FEATURE and bugs_behavior is BugsBehavior.AS_REQUIREMENTS:
        children.append(Categories.BUG)
    elif category_reference_name == Categories.REQUIREMENT and bugs_behavior is BugsBehavior.AS_TASKS:
        children.append(Categories.BUG)

    return children


def sort_templates(templates: List[Any]) -> List[Any]:
    """Order templates by name, ignoring case."""
    return sorted(templates, key=lambda t: (t.name or '').lower())


@dataclass
class _PreparedRun:
    """Everything a run knows before it starts writing."""
    result: RunResult
    parent: Optional[dict] = None
    team_settings: TeamSettings = field(default_factory=TeamSettings)
    templates: List[Template] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.result.status is RunStatus.COMPLETED


class ChildTaskOrchestrator:
    """
    Creates child work items for parents from the team's templates.

    Example:
        orchestrator = ChildTaskOrchestrator(workitem_service, team_service, context)
        results = await orchestrator.run(ActionContext(work_item_ids=[42, 43]))
    """

    def __init__(
        self,
        workitem_service: WorkItemService,
        team_service: TeamService,
        context: RunContext,
        notify: Optional[Notifier] = None
    ):
        """
        Args:
            workitem_service: Work item reads and writes for the project
            team_service: Team settings and templates for the team
            context: Project, team and invoking user
            notify: Async callback for messages the user must see
        """
        self.workitem_service = workitem_service
        self.team_service = team_service
        self.context = context
        self.notify = notify

    async def run(
        self,
        action: ActionContext,
        reload_view: Optional[Callable[[], Any]] = None
    ) -> List[RunResult]:
        """
        Handle one host action invocation.

        A form context runs once for the open work item. A grid context runs
        once per selected id; a failure on one id does not stop the others.

        Args:
            action: Invocation context (open form or selected ids)
            reload_view: Hook called after each REST run to refresh the view

        Returns:
            One RunResult per parent id
        """
        if action.form is not None:
            parent_id = action.id if action.id is not None else await action.form.get_id()
            parent_id = validate_work_item_id(parent_id)
            writer = select_writer(self.workitem_service, form=action.form)
            return [await self._run_one(parent_id, writer)]

        results = []
        for parent_id in validate_work_item_ids(action.parent_ids):
            writer = select_writer(self.workitem_service, reload_view=reload_view)
            results.append(await self._run_one(parent_id, writer))
        return results

    async def _run_one(self, parent_id: int, writer: ItemWriter) -> RunResult:
        try:
            return await self.add_tasks(parent_id, writer)
        except Exception as e:
            logger.error(safe_log_error(e, f"Child task run failed for work item {parent_id}"))
            message = f"Could not create child tasks for work item {parent_id}: {format_error(e)}"
            await self._notify(message)
            return RunResult(parent_id=parent_id, status=RunStatus.FAILED, message=message)

    async def add_tasks(self, parent_id: int, writer: ItemWriter) -> RunResult:
        """
        Create every applicable child of one parent.

        Args:
            parent_id: Parent work item ID
            writer: Create/link convention for this run

        Returns:
            RunResult with the created children and per-template failures

        Raises:
            AzureDevOpsError: If the parent or its type categories cannot be read
        """
        prepared = await self._prepare(parent_id)
        result = prepared.result
        if not prepared.ready:
            return result

        async with PerformanceMonitor(f"Child creation completed ({len(prepared.templates)})"):
            for template in prepared.templates:
                try:
                    document = create_work_item_from_template(
                        prepared.parent,
                        template,
                        prepared.team_settings,
                        self.context.current_user
                    )
                    child = await writer.create_child(parent_id, template, document)
                    result.created.append(child)
                except ChildCreationError as e:
                    logger.error(
                        f'Failed to create child from template "{template.name}": '
                        f'{format_error(e.original_error or e)}'
                    )
                    result.failures.append(self._failure(template, e.stage, e))
                except Exception as e:
                    logger.error(f'Failed to build child from template "{template.name}": {format_error(e)}')
                    result.failures.append(self._failure(template, "build", e))

            try:
                await writer.finish()
            except Exception as e:
                logger.error(safe_log_error(e, "Failed to finish child task run"))
                result.failures.append({'template_id': None, 'template_name': None,
                                        'stage': 'finish', 'error': format_error(e)})

        logger.info(
            f"Created {len(result.created)} of {len(prepared.templates)} child work items "
            f"for work item {parent_id}"
        )
        return result

    async def plan(self, parent_id: int) -> RunResult:
        """
        Work out what add_tasks would create, without writing anything.

        Args:
            parent_id: Parent work item ID

        Returns:
            RunResult whose planned list holds one patch document per template
        """
        prepared = await self._prepare(parent_id)
        result = prepared.result
        if not prepared.ready:
            return result

        for template in prepared.templates:
            result.planned.append(ChildTaskPlan(
                template_id=template.id,
                template_name=template.name,
                work_item_type=template.work_item_type_name,
                document=create_work_item_from_template(
                    prepared.parent,
                    template,
                    prepared.team_settings,
                    self.context.current_user
                )
            ))
        return result

    async def _prepare(self, parent_id: int) -> _PreparedRun:
        """Run every read-only step up to template details."""
        parent_id = validate_work_item_id(parent_id)
        normalizer = FieldNormalizer()

        team_settings = await self._load_team_settings()

        async with PerformanceMonitor("Fetched current work item"):
            parent = await self.workitem_service.get_work_item(parent_id)

        async with PerformanceMonitor("Resolved valid child types"):
            child_types = await self.resolve_child_types(parent, team_settings)

        result = RunResult(parent_id=parent_id, status=RunStatus.COMPLETED, child_types=child_types)
        prepared = _PreparedRun(result=result, parent=parent, team_settings=team_settings)

        if not child_types:
            result.status = RunStatus.NO_CHILD_TYPES
            result.message = (
                f"Work item type {parent.get(FieldNames.WORK_ITEM_TYPE)} has no child types "
                f"to create."
            )
            logger.info(result.message)
            return prepared

        async with PerformanceMonitor("Templates fetched"):
            references = await self.team_service.get_templates(child_types)

        if not references:
            result.status = RunStatus.NO_TEMPLATES
            result.message = (
                f"No templates found of type: {','.join(child_types)}. "
                f"Please add templates for this project team."
            )
            logger.warning(result.message)
            await self._notify(result.message)
            return prepared

        async with PerformanceMonitor("Templates prefiltered"):
            candidates = self.filter_applicable(parent, references, normalizer)

        if not candidates:
            result.status = RunStatus.NO_MATCHING_TEMPLATES
            result.message = "No templates matched. Please check your template descriptions and rules."
            logger.warning(result.message)
            return prepared

        candidates = sort_templates(candidates)
        result.matched_templates = [c.name for c in candidates]

        async with PerformanceMonitor(f"Template details fetched ({len(candidates)})"):
            prepared.templates = await self._fetch_details(candidates, result)

        return prepared

    async def resolve_child_types(self, parent: dict, team_settings: TeamSettings) -> List[str]:
        """
        Work item type names allowed as children of a parent.

        Args:
            parent: Parent work item fields
            team_settings: Team settings (bugs behavior)

        Returns:
            Type names in category order without duplicates; empty when the
            parent's category is unknown or has no child categories
        """
        work_item_type = parent.get(FieldNames.WORK_ITEM_TYPE)
        categories = await self.workitem_service.get_work_item_type_categories()

        category = next((c for c in categories if c.contains(work_item_type)), None)
        if category is None:
            logger.info(f"No category found for work item type {work_item_type}")
            return []

        child_refs = resolve_child_categories(category.reference_name, team_settings.bugs_behavior)
        if not child_refs:
            logger.info(f"Category {category.reference_name} has no child categories")
            return []

        child_categories = await asyncio.gather(
            *(self.workitem_service.get_work_item_type_category(ref) for ref in child_refs)
        )

        child_types: List[str] = []
        for child_category in child_categories:
            for type_name in child_category.work_item_types:
                if type_name not in child_types:
                    child_types.append(type_name)
        return child_types

    @staticmethod
    def filter_applicable(
        parent: dict,
        templates: List[TemplateReference],
        normalizer: Optional[FieldNormalizer] = None
    ) -> List[TemplateReference]:
        """Templates whose description rules accept the parent."""
        if normalizer is None:
            normalizer = FieldNormalizer()

        candidates = []
        for template in templates:
            try:
                if is_template_applicable(parent, template, normalizer):
                    candidates.append(template)
            except Exception as e:
                logger.warning(f'Skipping template "{template.name}": {format_error(e)}')
        return candidates

    async def _load_team_settings(self) -> TeamSettings:
        async with PerformanceMonitor("Team settings resolved"):
            try:
                return await self.team_service.get_team_settings()
            except Exception as e:
                logger.warning(safe_log_error(e, "Could not read team settings; using defaults"))
                return TeamSettings()

    async def _fetch_details(
        self,
        references: List[TemplateReference],
        result: RunResult
    ) -> List[Template]:
        details = await asyncio.gather(
            *(self.team_service.get_template(r.id) for r in references),
            return_exceptions=True
        )

        templates: List[Template] = []
        for reference, detail in zip(references, details):
            if isinstance(detail, BaseException):
                logger.warning(f'Could not load template "{reference.name}": {format_error(detail)}')
                result.failures.append(self._failure(reference, "fetch", detail))
                continue
            if not detail.work_item_type_name:
                detail.work_item_type_name = reference.work_item_type_name
            templates.append(detail)
        return templates

    async def _notify(self, message: str) -> None:
        if self.notify is None:
            return
        try:
            await self.notify(message)
        except Exception as e:
            logger.warning(safe_log_error(e, "Could not show message"))

    @staticmethod
    def _failure(template: Any, stage: str, error: BaseException) -> dict:
        return {
            'template_id': getattr(template, 'id', None),
            'template_name': getattr(template, 'name', None),
            'stage': stage,
            'error': format_error(error),
        }
