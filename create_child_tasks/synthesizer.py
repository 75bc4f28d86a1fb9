"""
Builds the JSON Patch document for a child work item from a template.

Operations are emitted in a fixed order:

1. Template fields, except tags and the @me / @currentiteration tokens.
   An empty value copies the parent's value; any other value is used with
   {Parent.Field} placeholders replaced by the parent's values.
2. Title, then AreaPath, copied from the parent when the template has none.
3. IterationPath copied from the parent when the template has none, or
   resolved from team settings for @currentiteration.
4. AssignedTo for @me.
5. System.Tags from the template's System.Tags-Add.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from .constants import FieldNames, SpecialTokens, field_path
from .models import Template, TeamSettings

logger = logging.getLogger(__name__)

# Text between '{' and the next '}'
_PLACEHOLDER = re.compile(r'[^{}]+(?=\})')

PatchOperation = Dict[str, Any]


def _add(field_name: str, value: Any) -> PatchOperation:
    return {"op": "add", "path": field_path(field_name), "value": value}


def _is_token(value: Any, token: str) -> bool:
    return isinstance(value, str) and value.lower() == token


def _placeholder_text(value: Any) -> str:
    """String substituted for a parent field; identities use their display name."""
    if value is None:
        return ''
    if isinstance(value, dict):
        return str(value.get('displayName') or value.get('uniqueName') or '')
    display_name = getattr(value, 'display_name', None)
    if display_name:
        return str(display_name)
    return str(value)


def replace_parent_placeholders(value: str, parent: Mapping[str, Any]) -> str:
    """
    Replace {Field.Name} placeholders with the parent's values.

    A placeholder naming a field the parent does not have is removed.

    Args:
        value: Template field value
        parent: Parent work item fields

    Returns:
        Value with placeholders substituted
    """
    for field_name in _PLACEHOLDER.findall(value):
        value = value.replace(
            '{' + field_name + '}',
            _placeholder_text(parent.get(field_name)),
            1
        )
    return value


def _is_copied_field(field_name: str, value: Any) -> bool:
    if FieldNames.TAGS in field_name:
        return False
    if _is_token(value, SpecialTokens.ME) or _is_token(value, SpecialTokens.CURRENT_ITERATION):
        return False
    return True


def _resolve_current_iteration(
    parent: Mapping[str, Any],
    team_settings: Optional[TeamSettings],
    template_name: str
) -> Any:
    if team_settings is not None and team_settings.default_iteration_path:
        logger.info(
            f'Creating work item (template: {template_name}) with team default iteration path.'
        )
        return (team_settings.backlog_iteration_name or '') + team_settings.default_iteration_path

    logger.warning(
        f'No default or current iteration path defined in team settings for template '
        f'{template_name}. Falling back to parent iteration path.'
    )
    return parent.get(FieldNames.ITERATION_PATH)


def create_work_item_from_template(
    parent: Mapping[str, Any],
    template: Template,
    team_settings: Optional[TeamSettings] = None,
    current_user: Optional[str] = None
) -> List[PatchOperation]:
    """
    Build the patch operations for a new child work item.

    Args:
        parent: Parent work item fields
        template: Full template (with field values)
        team_settings: Settings of the template's team, for @currentiteration
        current_user: Unique name of the invoking user, for @me

    Returns:
        Ordered list of {"op": "add", "path": "/fields/...", "value": ...}
    """
    fields = template.fields or {}
    document: List[PatchOperation] = []

    for field_name, value in fields.items():
        if value is None or not _is_copied_field(field_name, value):
            continue

        if value == '':
            if parent.get(field_name) is not None:
                document.append(_add(field_name, parent[field_name]))
        elif isinstance(value, str):
            document.append(_add(field_name, replace_parent_placeholders(value, parent)))
        else:
            document.append(_add(field_name, value))

    for inherited in (FieldNames.TITLE, FieldNames.AREA_PATH):
        if fields.get(inherited) is None and parent.get(inherited) is not None:
            document.append(_add(inherited, parent[inherited]))

    iteration = fields.get(FieldNames.ITERATION_PATH)
    if iteration is None:
        if parent.get(FieldNames.ITERATION_PATH) is not None:
            document.append(_add(FieldNames.ITERATION_PATH, parent[FieldNames.ITERATION_PATH]))
    elif _is_token(iteration, SpecialTokens.CURRENT_ITERATION):
        resolved = _resolve_current_iteration(parent, team_settings, template.name)
        if resolved is not None:
            document.append(_add(FieldNames.ITERATION_PATH, resolved))

    if _is_token(fields.get(FieldNames.ASSIGNED_TO), SpecialTokens.ME):
        if current_user:
            document.append(_add(FieldNames.ASSIGNED_TO, current_user))
        else:
            logger.warning(
                f'Template {template.name} assigns @me but the current user is unknown; '
                f'leaving the child unassigned.'
            )

    tags = fields.get(FieldNames.TAGS_ADD)
    if tags is not None:
        document.append(_add(FieldNames.TAGS, tags))

    return document
