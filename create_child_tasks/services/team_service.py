"""
Team service for Azure DevOps operations
Reads team settings and the team's work item templates
"""
import asyncio
import logging
from typing import List, Optional
from azure.devops.v7_1.work.models import TeamContext

from ..decorators import azure_devops_operation
from ..errors import TemplateNotFoundError, WorkItemNotFoundError
from ..log_sanitizer import format_error
from ..models import BugsBehavior, TeamSettings, Template, TemplateReference

logger = logging.getLogger(__name__)


class TeamService:
    """Service for team settings and team templates"""

    def __init__(self, auth, project: str, team: Optional[str] = None):
        """
        Initialize team service

        Args:
            auth: AzureDevOpsAuth instance
            project: Azure DevOps project name
            team: Team name, or None for the project's default team
        """
        self.auth = auth
        self.project = project
        self.team = team
        self._team_context: Optional[TeamContext] = None
        self._work_client = None
        self._core_client = None
        self._wit_client = None

    @property
    def work_client(self):
        """Lazy load work client"""
        if not self._work_client:
            self._work_client = self.auth.get_client('work')
        return self._work_client

    @property
    def core_client(self):
        """Lazy load core client"""
        if not self._core_client:
            self._core_client = self.auth.get_client('core')
        return self._core_client

    @property
    def wit_client(self):
        """Lazy load work item tracking client"""
        if not self._wit_client:
            self._wit_client = self.auth.get_client('work_item_tracking')
        return self._wit_client

    @azure_devops_operation()
    async def get_team_settings(self) -> TeamSettings:
        """
        Get the team's backlog settings

        Returns:
            Bugs behavior, backlog iteration name and default iteration path
        """
        team = await self._get_team()

        settings = await asyncio.to_thread(
            self.work_client.get_team_settings,
            team_context=team
        )

        backlog_iteration = getattr(settings, 'backlog_iteration', None)
        default_iteration = getattr(settings, 'default_iteration', None)

        return TeamSettings(
            bugs_behavior=BugsBehavior.parse(getattr(settings, 'bugs_behavior', None)),
            backlog_iteration_name=getattr(backlog_iteration, 'name', None),
            default_iteration_path=getattr(default_iteration, 'path', None)
        )

    async def get_templates(self, work_item_types: List[str]) -> List[TemplateReference]:
        """
        Get the team's templates for several work item types

        Types are queried concurrently; results keep the order of
        work_item_types. A type whose templates cannot be read contributes
        none and is logged.

        Args:
            work_item_types: Work item type names

        Returns:
            Template references (id, name, description, type)
        """
        if not work_item_types:
            return []

        per_type = await asyncio.gather(
            *(self._get_templates_for_type(t) for t in work_item_types),
            return_exceptions=True
        )

        references: List[TemplateReference] = []
        for work_item_type, templates in zip(work_item_types, per_type):
            if isinstance(templates, BaseException):
                logger.warning(
                    f"Could not read {work_item_type} templates of project {self.project}: "
                    f"{format_error(templates)}"
                )
                continue
            references.extend(templates)
        return references

    @azure_devops_operation()
    async def _get_templates_for_type(self, work_item_type: str) -> List[TemplateReference]:
        team = await self._get_team()

        templates = await asyncio.to_thread(
            self.wit_client.get_templates,
            team_context=team,
            workitemtypename=work_item_type
        )

        return [
            TemplateReference(
                id=t.id,
                name=t.name,
                description=t.description,
                work_item_type_name=t.work_item_type_name or work_item_type
            )
            for t in (templates or [])
        ]

    async def get_template(self, template_id: str) -> Template:
        """
        Get a template with its field values

        Args:
            template_id: Template ID

        Returns:
            Full template

        Raises:
            TemplateNotFoundError: If the template no longer exists
        """
        try:
            return await self._get_template(template_id)
        except WorkItemNotFoundError as e:
            raise TemplateNotFoundError(template_id, original_error=e) from e

    @azure_devops_operation()
    async def _get_template(self, template_id: str) -> Template:
        team = await self._get_team()

        template = await asyncio.to_thread(
            self.wit_client.get_template,
            team_context=team,
            template_id=template_id
        )

        return Template(
            id=template.id,
            name=template.name,
            description=template.description,
            work_item_type_name=template.work_item_type_name,
            fields=dict(template.fields or {})
        )

    async def _get_team(self) -> TeamContext:
        """
        Get team context

        Uses the configured team, else the project's default team, else the
        first team of the project.

        Returns:
            Team context object
        """
        if self._team_context is not None:
            return self._team_context

        team_name = self.team
        if not team_name:
            project = await asyncio.to_thread(self.core_client.get_project, self.project)
            default_team = getattr(project, 'default_team', None)
            team_name = getattr(default_team, 'name', None)

        if not team_name:
            teams = await asyncio.to_thread(self.core_client.get_teams, self.project)
            if not teams:
                raise ValueError(f"No teams found in project {self.project}")
            team_name = teams[0].name

        logger.debug(f"Using team {team_name} of project {self.project}")
        self._team_context = TeamContext(project=self.project, team=team_name)
        return self._team_context
