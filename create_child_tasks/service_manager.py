"""
Service registry shared by all MCP tool calls
Holds one work item service per project and one team service per (project, team)
"""
from typing import Dict, List, Optional, Tuple
from .services.team_service import TeamService
from .services.workitem_service import WorkItemService
from .auth import AzureDevOpsAuth
from .models import RunContext
from .orchestrator import ChildTaskOrchestrator, Notifier
from .validation import ValidationError, validate_project_name


class ServiceManager:
    """
    Hands out services and orchestrators for any project of the organization

    Services are created on first use and reused afterwards; they hold SDK
    clients only. Each orchestrator is built for a single run.

    Example:
        auth = AzureDevOpsAuth(org_url)
        await auth.initialize()

        manager = ServiceManager(auth, default_project="Fabrikam")
        orchestrator = await manager.get_orchestrator(team="Fabrikam Team")
        results = await orchestrator.run(ActionContext(work_item_ids=[42]))
    """

    def __init__(
        self,
        auth: AzureDevOpsAuth,
        default_project: Optional[str] = None,
        default_team: Optional[str] = None
    ):
        """
        Args:
            auth: AzureDevOpsAuth after initialize()
            default_project: Project used when a call names none
            default_team: Team used when a call names none
        """
        if not auth or not auth.connection:
            raise ValueError(
                "ServiceManager requires an initialized AzureDevOpsAuth instance. "
                "Call auth.initialize() before creating ServiceManager."
            )

        self.auth = auth
        self.default_project = default_project
        self.default_team = default_team

        self._workitem_services: Dict[str, WorkItemService] = {}
        self._team_services: Dict[Tuple[str, Optional[str]], TeamService] = {}

        # Statistics
        self._service_creation_count = 0
        self._cache_hit_count = 0
        self._orchestrator_count = 0

    def get_workitem_service(self, project: Optional[str] = None) -> WorkItemService:
        """
        Work item service of a project, created on first use

        Args:
            project: Azure DevOps project name. If None, uses default_project.

        Raises:
            ValidationError: If no project specified and no default set
        """
        project = self._resolve_project(project)

        if project in self._workitem_services:
            self._cache_hit_count += 1
            return self._workitem_services[project]

        service = WorkItemService(self.auth, project)
        self._workitem_services[project] = service
        self._service_creation_count += 1

        return service

    def get_team_service(
        self,
        project: Optional[str] = None,
        team: Optional[str] = None
    ) -> TeamService:
        """
        Team service of a project team, created on first use

        Args:
            project: Azure DevOps project name. If None, uses default_project.
            team: Team name. If None, uses default_team, then the project's default team.

        Returns:
            TeamService instance for the team
        """
        project = self._resolve_project(project)
        team = (team or '').strip() or self.default_team
        key = (project, team)

        if key in self._team_services:
            self._cache_hit_count += 1
            return self._team_services[key]

        service = TeamService(self.auth, project, team)
        self._team_services[key] = service
        self._service_creation_count += 1

        return service

    async def get_orchestrator(
        self,
        project: Optional[str] = None,
        team: Optional[str] = None,
        notify: Optional[Notifier] = None
    ) -> ChildTaskOrchestrator:
        """
        Build an orchestrator for one run

        Args:
            project: Azure DevOps project name. If None, uses default_project.
            team: Team name owning the templates
            notify: Async callback for user-visible messages

        Returns:
            ChildTaskOrchestrator bound to the project, team and current user
        """
        workitem_service = self.get_workitem_service(project)
        team_service = self.get_team_service(workitem_service.project, team)

        context = RunContext(
            organization_url=self.auth.organization_url,
            project=workitem_service.project,
            team=team_service.team,
            current_user=await self.auth.get_current_user()
        )
        self._orchestrator_count += 1

        return ChildTaskOrchestrator(workitem_service, team_service, context, notify=notify)

    def _resolve_project(self, project: Optional[str]) -> str:
        """
        Explicit project name, else the default project

        Raises:
            ValidationError: If no project specified and no default
        """
        if project and project.strip():
            return validate_project_name(project)

        if self.default_project:
            return self.default_project

        raise ValidationError(
            "Project name is required. Either specify project parameter or set "
            "AZURE_DEVOPS_PROJECT environment variable as default."
        )

    def get_loaded_projects(self) -> List[str]:
        """Sorted names of projects that currently have a service"""
        team_projects = {project for project, _ in self._team_services}
        return sorted(set(self._workitem_services) | team_projects)

    def clear_project_services(self, project: str) -> None:
        """Drop the work item and team services of one project"""
        self._workitem_services.pop(project, None)
        for key in [k for k in self._team_services if k[0] == project]:
            del self._team_services[key]

    def clear_all_services(self) -> None:
        """Drop every service; counters are kept"""
        self._workitem_services.clear()
        self._team_services.clear()

    def get_statistics(self) -> Dict[str, object]:
        """
        Usage counters for the get_service_statistics tool

        service_creations counts services ever created, including cleared ones;
        cache_hits counts lookups answered by an existing service.
        """
        lookups = self._service_creation_count + self._cache_hit_count
        hit_rate = 100.0 * self._cache_hit_count / lookups if lookups else 0.0
        live = len(self._workitem_services) + len(self._team_services)

        return {
            "loaded_projects": len(self.get_loaded_projects()),
            "workitem_services": len(self._workitem_services),
            "team_services": len(self._team_services),
            "total_services": live,
            "service_creations": self._service_creation_count,
            "cache_hits": self._cache_hit_count,
            "cache_hit_rate_percent": round(hit_rate, 2),
            "orchestrators_created": self._orchestrator_count,
            "default_project": self.default_project,
            "default_team": self.default_team
        }

    def __repr__(self) -> str:
        projects = len(self.get_loaded_projects())
        services = len(self._workitem_services) + len(self._team_services)
        return f"ServiceManager(projects={projects}, services={services}, default='{self.default_project}')"
