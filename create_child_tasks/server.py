"""
Create Child Tasks MCP Server
Creates child work items for Azure DevOps parents from the team's work item templates
"""
from fastmcp import FastMCP, Context
from typing import Optional, List, Dict, Any
import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from .auth import AzureDevOpsAuth
from .config import Settings, configure_logging
from .constants import EXTENSION_NAME
from .models import ActionContext, TemplateReference
from .applicability import is_template_applicable, parse_bracket_types
from .extractor import extract_embedded_json
from .service_manager import ServiceManager
from .validation import validate_work_item_id

logger = logging.getLogger(__name__)

# Global state for authentication and service manager
# Initialized during lifespan startup
_auth = None
_service_manager = None


@asynccontextmanager
async def lifespan(app):
    """Initialize services on startup"""
    global _auth, _service_manager

    settings = Settings.from_env()
    configure_logging(settings.log_mode)

    _auth = AzureDevOpsAuth(settings.organization_url)
    await _auth.initialize()

    _service_manager = ServiceManager(
        _auth,
        default_project=settings.project,
        default_team=settings.team
    )

    yield  # Server runs

    await _auth.close()


# Initialize FastMCP server with lifespan
mcp = FastMCP(
    name=EXTENSION_NAME,
    lifespan=lifespan
)


def _notifier(ctx: Optional[Context]):
    """Forward user-visible messages to the MCP client"""
    if ctx is None:
        return None

    async def notify(message: str) -> None:
        await ctx.warning(message)

    return notify


# ============================================================================
# TOOLS
# ============================================================================

@mcp.tool()
async def create_child_tasks(
    work_item_ids: List[int],
    project: Optional[str] = None,
    team: Optional[str] = None,
    ctx: Context = None
) -> List[Dict[str, Any]]:
    """
    Create child work items from the team's templates for each parent.

    Each template whose description rules match the parent produces one child,
    linked to the parent. Parents are processed one after another; a failure
    on one parent does not stop the others.

    Args:
        work_item_ids: Parent work item IDs
        project: Azure DevOps project name. If None, uses default project.
        team: Team owning the templates. If None, uses the default team.

    Returns:
        One result per parent: status, matched templates, created children, failures
    """
    orchestrator = await _service_manager.get_orchestrator(project, team, notify=_notifier(ctx))
    await ctx.info(
        f"Creating child tasks for {len(work_item_ids)} work item(s) "
        f"in project: {orchestrator.context.project}..."
    )

    results = await orchestrator.run(ActionContext(work_item_ids=work_item_ids))

    created = sum(len(r.created) for r in results)
    await ctx.info(f"Created {created} child work item(s)")
    return [r.to_dict() for r in results]


@mcp.tool()
async def preview_child_tasks(
    work_item_id: int,
    project: Optional[str] = None,
    team: Optional[str] = None,
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Show which templates match a parent and the fields each child would get.

    Nothing is created.

    Args:
        work_item_id: Parent work item ID
        project: Azure DevOps project name. If None, uses default project.
        team: Team owning the templates. If None, uses the default team.

    Returns:
        Run status, matched templates and one JSON Patch document per child
    """
    work_item_id = validate_work_item_id(work_item_id)
    orchestrator = await _service_manager.get_orchestrator(project, team)
    await ctx.info(f"Previewing child tasks for work item {work_item_id}...")

    result = await orchestrator.plan(work_item_id)

    await ctx.info(f"{len(result.planned)} template(s) would be applied")
    return result.to_dict()


@mcp.tool()
async def check_template_applicability(
    description: str,
    parent_fields: Dict[str, Any],
    ctx: Context = None
) -> Dict[str, Any]:
    """
    Check a template description's rules against sample parent fields.

    Helps template authors verify their applywhen JSON or [Type, ...] list
    without creating anything.

    Args:
        description: Template description text
        parent_fields: Parent field values keyed by reference name
                      (e.g. {"System.WorkItemType": "Bug", "System.Tags": "a; b"})

    Returns:
        Which rule syntax was found and whether the template applies
    """
    extracted = extract_embedded_json(description, "check")
    has_rules = isinstance(extracted, dict) and isinstance(extracted.get('applywhen'), list)

    template = TemplateReference(id="check", name="check", description=description)
    applicable = is_template_applicable(parent_fields, template)

    return {
        "mode": "applywhen" if has_rules else "brackets",
        "rules": extracted.get('applywhen') if has_rules else None,
        "bracket_types": None if has_rules else parse_bracket_types(description),
        "applicable": applicable
    }


# ============================================================================
# MONITORING TOOLS (Health and Statistics)
# ============================================================================

@mcp.tool()
async def health_check(ctx: Context = None) -> Dict[str, Any]:
    """
    Get server health status for monitoring.

    Returns:
        Dictionary with health status and authentication info
    """
    try:
        auth_info = _auth.get_auth_info() if _auth else None

        return {
            "status": "healthy",
            "service": EXTENSION_NAME,
            "authenticated": auth_info.get("authenticated") if auth_info else False,
            "auth_method": auth_info.get("method") if auth_info else None,
            "organization": auth_info.get("organization_url") if auth_info else None,
            "auth_failures": auth_info.get("failures") if auth_info else 0
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }


@mcp.tool()
async def get_service_statistics(ctx: Context = None) -> Dict[str, Any]:
    """
    Get service manager statistics.

    Returns:
        Dictionary with service manager stats and loaded projects
    """
    try:
        if not _service_manager:
            return {"error": "Service manager not initialized"}

        return {
            "service_manager": _service_manager.get_statistics(),
            "loaded_projects": _service_manager.get_loaded_projects(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        return {"error": str(e)}


def main():
    """Run the server with the configured transport"""
    settings = Settings.from_env()
    configure_logging(settings.log_mode)

    if settings.transport == "stdio":
        logger.info("Starting MCP server in STDIO mode")
        mcp.run()
    elif settings.transport == "sse":
        logger.info(f"Starting MCP server with SSE on port {settings.port}")
        mcp.run(transport="sse", port=settings.port, host="0.0.0.0")
    else:
        logger.info(f"Starting MCP server with HTTP streaming on port {settings.port}")
        mcp.run(transport="streamable-http", port=settings.port, host="0.0.0.0")


if __name__ == "__main__":
    main()
