"""
Input validation for child task runs and template filter rules.

Filter rules are authored by hand inside template descriptions, so every
rule is checked against the shapes the matcher understands before it is
evaluated. Invocation arguments (work item ids, project names) are checked
before any host API call is made.
"""

from typing import Any, Iterable, List, Optional

from .constants import FILTER_FIELDS


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


# JSON scalar types accepted as a filter value
SCALAR_TYPES = (str, int, float, bool)


class WorkItemIdValidator:
    """Validator for work item ids."""

    @staticmethod
    def validate(work_item_id: Any) -> int:
        """
        Validate a single work item id.

        Args:
            work_item_id: The id to validate

        Returns:
            The validated id

        Raises:
            ValidationError: If the id is not a positive integer
        """
        if isinstance(work_item_id, bool) or not isinstance(work_item_id, int):
            raise ValidationError(
                f"Invalid work item ID: {work_item_id!r}. Must be a positive integer."
            )
        if work_item_id <= 0:
            raise ValidationError(
                f"Invalid work item ID: {work_item_id}. Must be a positive integer."
            )
        return work_item_id


class FilterRuleValidator:
    """Validator for one element of an applywhen array."""

    @staticmethod
    def validate(rule: Any) -> dict:
        """
        Validate the overall shape of a filter rule.

        Args:
            rule: One parsed applywhen element

        Returns:
            The rule (unchanged)

        Raises:
            ValidationError: If the rule is not a JSON object
        """
        if not isinstance(rule, dict):
            raise ValidationError(
                f"Filter rule must be an object, got {type(rule).__name__}"
            )
        return rule

    @staticmethod
    def validate_value(field_name: str, value: Any) -> Any:
        """
        Validate the expected value(s) given for one recognized field.

        Args:
            field_name: Field reference name (one of FILTER_FIELDS)
            value: Scalar, list of scalars, or None

        Returns:
            The value (unchanged)

        Raises:
            ValidationError: If the value is an object or a nested list
        """
        if value is None or isinstance(value, SCALAR_TYPES):
            return value

        if isinstance(value, list):
            for element in value:
                if element is not None and not isinstance(element, SCALAR_TYPES):
                    raise ValidationError(
                        f"Filter values for {field_name} must be scalars, "
                        f"got {type(element).__name__} in list"
                    )
            return value

        raise ValidationError(
            f"Filter value for {field_name} must be a scalar or a list, "
            f"got {type(value).__name__}"
        )


# Convenience functions

def validate_work_item_id(work_item_id: Any) -> int:
    """Validate a work item id."""
    return WorkItemIdValidator.validate(work_item_id)


def validate_work_item_ids(work_item_ids: Optional[Iterable[Any]]) -> List[int]:
    """
    Validate a batch of parent ids from a grid selection.

    Duplicates are dropped, keeping the first occurrence.

    Raises:
        ValidationError: If the batch is empty or any id is invalid
    """
    if not work_item_ids:
        raise ValidationError("At least one work item ID is required")

    result: List[int] = []
    for work_item_id in work_item_ids:
        validated = WorkItemIdValidator.validate(work_item_id)
        if validated not in result:
            result.append(validated)
    return result


def validate_project_name(project: Optional[str]) -> str:
    """
    Validate and normalize a project name.

    Raises:
        ValidationError: If the name is empty
    """
    if not project or not project.strip():
        raise ValidationError("Project name cannot be empty")
    return project.strip()


def validate_filter_rule(rule: Any) -> dict:
    """
    Validate a filter rule and every recognized field value in it.

    Unrecognized keys are left alone; the matcher ignores them.

    Raises:
        ValidationError: If the rule or one of its values is malformed
    """
    FilterRuleValidator.validate(rule)
    for field_name in FILTER_FIELDS:
        if field_name in rule:
            FilterRuleValidator.validate_value(field_name, rule[field_name])
    return rule
