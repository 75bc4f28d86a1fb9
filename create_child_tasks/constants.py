"""
Constants and field definitions for child task creation.

Defines the field names, categories, link types and reserved template tokens
used when matching templates and building child work items.
"""

from typing import Dict, List


# ============================================================================
# Field Reference Names
# ============================================================================

class FieldNames:
    """Azure DevOps field reference names."""

    ID = "System.Id"
    TITLE = "System.Title"
    WORK_ITEM_TYPE = "System.WorkItemType"
    STATE = "System.State"
    AREA_PATH = "System.AreaPath"
    ITERATION_PATH = "System.IterationPath"
    BOARD_COLUMN = "System.BoardColumn"
    BOARD_LANE = "System.BoardLane"
    TAGS = "System.Tags"
    ASSIGNED_TO = "System.AssignedTo"

    # Template-only field: work item templates store added tags here
    TAGS_ADD = "System.Tags-Add"


# ============================================================================
# Field Sets
# ============================================================================

# Scalar fields lower-cased by the normalizer
NORMALIZED_SCALAR_FIELDS: List[str] = [
    FieldNames.WORK_ITEM_TYPE,
    FieldNames.STATE,
    FieldNames.AREA_PATH,
    FieldNames.ITERATION_PATH,
    FieldNames.BOARD_COLUMN,
    FieldNames.BOARD_LANE,
    FieldNames.TITLE,
]

# Fields recognized in an applywhen rule, cheapest comparisons first
FILTER_FIELDS: List[str] = [
    *NORMALIZED_SCALAR_FIELDS,
    FieldNames.TAGS,
]


# ============================================================================
# Template Tokens
# ============================================================================

class SpecialTokens:
    """Reserved template field values resolved when a child is built."""

    ME = "@me"
    CURRENT_ITERATION = "@currentiteration"

    ALL = {ME, CURRENT_ITERATION}


# ============================================================================
# Work Item Type Categories
# ============================================================================

class Categories:
    """Process category reference names."""

    EPIC = "Microsoft.EpicCategory"
    FEATURE = "Microsoft.FeatureCategory"
    REQUIREMENT = "Microsoft.RequirementCategory"
    TASK = "Microsoft.TaskCategory"
    BUG = "Microsoft.BugCategory"


# Parent category -> categories whose types may be created as children
CHILD_CATEGORIES: Dict[str, List[str]] = {
    Categories.EPIC: [Categories.FEATURE],
    Categories.FEATURE: [Categories.REQUIREMENT],
    Categories.REQUIREMENT: [Categories.TASK],
    Categories.TASK: [Categories.TASK],
    Categories.BUG: [Categories.TASK],
}


# ============================================================================
# Link Types
# ============================================================================

class LinkTypes:
    """Work item link types."""

    HIERARCHY_FORWARD = "System.LinkTypes.Hierarchy-Forward"


# ============================================================================
# Limits
# ============================================================================

class Timeouts:
    """Bounded waits for host API calls, in seconds."""

    CLIENT_SECONDS = 8


class ExtractionLimits:
    """Safety bounds for embedded JSON extraction."""

    MAX_PARSE_ATTEMPTS = 100


# Title used for user-facing messages and log prefixes
EXTENSION_NAME = "Create Child Tasks"


# ============================================================================
# Helper Functions
# ============================================================================

def field_path(field_name: str) -> str:
    """
    Build the JSON Patch path for a work item field.

    Args:
        field_name: Field reference name (e.g. "System.Title")

    Returns:
        Patch path (e.g. "/fields/System.Title")
    """
    return f"/fields/{field_name}"
