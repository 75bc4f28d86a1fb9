"""
Data models for child task creation
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any


class BugsBehavior(str, Enum):
    """Team setting for where Bugs sit in the backlog hierarchy"""
    OFF = "Off"
    AS_TASKS = "AsTasks"
    AS_REQUIREMENTS = "AsRequirements"

    @classmethod
    def parse(cls, value: Any) -> 'BugsBehavior':
        """Parse the service value case-insensitively; unknown values mean Off"""
        if isinstance(value, BugsBehavior):
            return value
        text = str(getattr(value, 'value', value) or '').strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.OFF


class RunStatus(str, Enum):
    """Outcome of one orchestration run for a parent work item"""
    COMPLETED = "completed"
    NO_CHILD_TYPES = "no_child_types"
    NO_TEMPLATES = "no_templates"
    NO_MATCHING_TEMPLATES = "no_matching_templates"
    FAILED = "failed"


@dataclass
class TemplateReference:
    """Template entry from the team template list (no field values)"""
    id: str
    name: str
    description: Optional[str] = None
    work_item_type_name: Optional[str] = None


@dataclass
class Template:
    """Full team template; description doubles as its applicability rules"""
    id: str
    name: str
    description: Optional[str] = None
    work_item_type_name: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TeamSettings:
    """Backlog settings of the team that owns the templates"""
    bugs_behavior: BugsBehavior = BugsBehavior.OFF
    backlog_iteration_name: Optional[str] = None
    default_iteration_path: Optional[str] = None


@dataclass
class WorkItemTypeCategory:
    """Process category and the work item type names it contains"""
    name: str
    reference_name: str
    work_item_types: List[str] = field(default_factory=list)

    def contains(self, work_item_type: Optional[str]) -> bool:
        return work_item_type is not None and work_item_type in self.work_item_types


@dataclass
class RunContext:
    """
    Project and team a run operates in, plus the invoking user.

    current_user is the unique name written for the @me token.
    """
    organization_url: str
    project: str
    team: Optional[str] = None
    current_user: Optional[str] = None


@dataclass
class ActionContext:
    """
    What the host action was invoked on.

    Either a single open work item (form) or a selection of ids (grid).
    """
    id: Optional[int] = None
    work_item_ids: List[int] = field(default_factory=list)
    form: Optional[Any] = None

    @property
    def parent_ids(self) -> List[int]:
        if self.work_item_ids:
            return list(self.work_item_ids)
        if self.id is not None:
            return [self.id]
        return []


@dataclass
class CreatedChild:
    """Child work item created from a template"""
    id: int
    url: Optional[str]
    template_id: str
    template_name: str
    work_item_type: Optional[str] = None


@dataclass
class ChildTaskPlan:
    """Patch document that would be sent for one matched template"""
    template_id: str
    template_name: str
    work_item_type: Optional[str]
    document: List[Dict[str, Any]]


@dataclass
class RunResult:
    """Summary of one run for one parent work item"""
    parent_id: int
    status: RunStatus
    child_types: List[str] = field(default_factory=list)
    matched_templates: List[str] = field(default_factory=list)
    created: List[CreatedChild] = field(default_factory=list)
    planned: List[ChildTaskPlan] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is not RunStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['status'] = self.status.value
        result['success'] = self.success
        return result
