"""
Decides whether a template applies to a parent work item.

A template description carries its rules in one of two forms:

1. JSON, anywhere in the text:
   {"applywhen": [{"System.State": "Approved", "System.Tags": ["Blah"]}, ...]}
   Rules combine with OR; the fields inside one rule combine with AND.
2. A bracket list of parent types: "[Product Backlog Item, Bug]".

A description with neither form never applies.
"""

import logging
import re
from typing import Any, List, Mapping, Optional

from .constants import FieldNames
from .extractor import extract_embedded_json
from .filters import FilterRule
from .normalizer import FieldNormalizer
from .validation import ValidationError

logger = logging.getLogger(__name__)

# Text between '[' and the next ']'
_BRACKET_CONTENT = re.compile(r'[^\[\]]+(?=\])')


def parse_bracket_types(description: Optional[str]) -> List[str]:
    """
    Read the parent type names of a bracket-list description.

    Args:
        description: Template description

    Returns:
        Trimmed, non-empty type names in order of appearance
    """
    if not description:
        return []

    types: List[str] = []
    for group in _BRACKET_CONTENT.findall(description):
        for token in group.split(','):
            token = token.strip()
            if token:
                types.append(token)
    return types


def _matches_bracket_types(parent: Mapping[str, Any], description: Optional[str]) -> bool:
    parent_type = parent.get(FieldNames.WORK_ITEM_TYPE)
    if parent_type is None:
        return False
    parent_type = str(parent_type).lower()
    return any(t.lower() == parent_type for t in parse_bracket_types(description))


def _matches_any_rule(
    parent: Mapping[str, Any],
    rules: List[Any],
    template_name: str,
    normalizer: FieldNormalizer
) -> bool:
    item = normalizer.normalize(parent)

    for index, raw_rule in enumerate(rules):
        try:
            rule = FilterRule.parse(raw_rule)
            if rule.matches(item):
                return True
        except ValidationError as e:
            logger.warning(
                f'Skipping malformed rule {index} of template "{template_name}": {e}'
            )
        except Exception as e:
            logger.warning(
                f'Rule {index} of template "{template_name}" could not be evaluated: {e}'
            )
    return False


def is_template_applicable(
    parent: Mapping[str, Any],
    template: Any,
    normalizer: Optional[FieldNormalizer] = None
) -> bool:
    """
    Check a template's description rules against a parent work item.

    Args:
        parent: Parent work item fields
        template: Template or TemplateReference (anything with description and name)
        normalizer: Normalizer of the current run (a throwaway one if omitted)

    Returns:
        True if the template should produce a child for this parent
    """
    description = getattr(template, 'description', None)
    name = getattr(template, 'name', None) or '<unnamed>'

    extracted = extract_embedded_json(description, name)
    if isinstance(extracted, dict) and isinstance(extracted.get('applywhen'), list):
        if normalizer is None:
            normalizer = FieldNormalizer()
        return _matches_any_rule(parent, extracted['applywhen'], name, normalizer)

    return _matches_bracket_types(parent, description)
