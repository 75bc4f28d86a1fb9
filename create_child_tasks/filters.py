"""
Filter rules from a template's applywhen array and per-field matching.

Each rule is parsed once into a FilterRule whose criteria hold the accepted
values already lower-cased. Matching semantics per field:

- System.Title: wildcard (`*`) match, case-insensitive; a list means any
  pattern may match
- System.Tags: every rule tag must be on the item (AND). Use several rules
  to express "any of these tags"
- any other field given a list: the item value must equal one of them
- any other field given a scalar: the item value must equal it, and a
  missing item value never matches
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from .constants import FieldNames, FILTER_FIELDS
from .normalizer import FieldNormalizer, NormalizedWorkItem, split_tags, to_lower_string
from .validation import validate_filter_rule
from .wildcard import matches


class MatchKind(str, Enum):
    """How a criterion compares against the item value."""

    WILDCARD = "wildcard"
    ALL_TAGS = "all_tags"
    ANY_OF = "any_of"
    EXACT = "exact"


@dataclass(frozen=True)
class FieldCriterion:
    """
    Accepted values for one field of a rule.

    Attributes:
        field_name: Field reference name
        kind: Comparison used for this field
        values: Lower-cased accepted values (tags for ALL_TAGS, raw patterns for WILDCARD)
    """
    field_name: str
    kind: MatchKind
    values: FrozenSet[str]

    @classmethod
    def build(cls, field_name: str, raw_value: Any) -> 'FieldCriterion':
        """Build a criterion from a validated rule value."""
        if field_name == FieldNames.TAGS:
            return cls(field_name, MatchKind.ALL_TAGS, split_tags(raw_value))

        if field_name == FieldNames.TITLE:
            patterns = raw_value if isinstance(raw_value, list) else [raw_value]
            return cls(
                field_name,
                MatchKind.WILDCARD,
                frozenset('' if p is None else str(p) for p in patterns)
            )

        if isinstance(raw_value, list):
            return cls(
                field_name,
                MatchKind.ANY_OF,
                frozenset(to_lower_string(v) for v in raw_value)
            )

        return cls(field_name, MatchKind.EXACT, frozenset([to_lower_string(raw_value)]))

    def matches(self, item: NormalizedWorkItem) -> bool:
        """Check this criterion against a normalized work item."""
        if self.kind is MatchKind.ALL_TAGS:
            return self.values <= item.tags

        current = item.value(self.field_name)

        if self.kind is MatchKind.WILDCARD:
            return any(matches(current, pattern) for pattern in self.values)

        if self.kind is MatchKind.ANY_OF:
            return current in self.values

        if not item.has(self.field_name):
            return False
        return current in self.values


@dataclass(frozen=True)
class FilterRule:
    """
    One applywhen element: all of its criteria must match (AND).

    Criteria are kept in FILTER_FIELDS order so cheap scalar comparisons run
    before wildcard and tag work.
    """
    criteria: Tuple[FieldCriterion, ...]

    @classmethod
    def parse(cls, raw: Any) -> 'FilterRule':
        """
        Parse and validate a raw applywhen element.

        Fields whose value is null are unconstrained; unrecognized keys are
        ignored.

        Raises:
            ValidationError: If the element or one of its values is malformed
        """
        validate_filter_rule(raw)
        criteria = tuple(
            FieldCriterion.build(field_name, raw[field_name])
            for field_name in FILTER_FIELDS
            if raw.get(field_name) is not None
        )
        return cls(criteria)

    def criterion(self, field_name: str) -> Optional[FieldCriterion]:
        """Criterion for a field, None when the rule does not constrain it."""
        for criterion in self.criteria:
            if criterion.field_name == field_name:
                return criterion
        return None

    @property
    def fields(self) -> Tuple[str, ...]:
        """Constrained field names, in evaluation order."""
        return tuple(c.field_name for c in self.criteria)

    def matches(self, item: NormalizedWorkItem) -> bool:
        """Check every criterion, stopping at the first mismatch."""
        for criterion in self.criteria:
            if not criterion.matches(item):
                return False
        return True


def match_field(
    field_name: str,
    item: Mapping[str, Any],
    rule: Union[FilterRule, Dict[str, Any]],
    normalizer: Optional[FieldNormalizer] = None
) -> bool:
    """
    Compare one field of a work item against one rule.

    Args:
        field_name: Field reference name (e.g. "System.State")
        item: Work item fields
        rule: Parsed FilterRule or a raw applywhen element
        normalizer: Normalizer of the current run (a throwaway one if omitted)

    Returns:
        True if the rule does not constrain the field or the value matches

    Raises:
        ValidationError: If a raw rule is malformed
    """
    if not isinstance(rule, FilterRule):
        rule = FilterRule.parse(rule)

    criterion = rule.criterion(field_name)
    if criterion is None:
        return True

    if normalizer is None:
        normalizer = FieldNormalizer()
    return criterion.matches(normalizer.normalize(item))


def match_rule(
    item: Mapping[str, Any],
    rule: Union[FilterRule, Dict[str, Any]],
    normalizer: Optional[FieldNormalizer] = None
) -> bool:
    """
    Check whether a work item satisfies every field of one rule.

    Raises:
        ValidationError: If a raw rule is malformed
    """
    if not isinstance(rule, FilterRule):
        rule = FilterRule.parse(rule)

    if normalizer is None:
        normalizer = FieldNormalizer()
    return rule.matches(normalizer.normalize(item))
