"""
Lookup-friendly projections of a work item's fields.

A template matching pass evaluates the same parent against every rule of
every candidate template, so the lower-cased projections are computed once
per item and kept in a side table owned by the normalizer. Items are never
mutated. A normalizer belongs to a single run; create a new one per run.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Tuple

from .constants import FieldNames, NORMALIZED_SCALAR_FIELDS

# Tags are stored as one ';'-joined string; ',' and newlines are tolerated
_TAG_DELIMITERS = re.compile(r'[;,\n]+')
_WHITESPACE = re.compile(r'\s+')


def to_lower_string(value: Any) -> str:
    """Lower-cased string form of a field value, '' when absent."""
    if value is None:
        return ''
    return str(value).lower()


def split_tags(raw: Any) -> FrozenSet[str]:
    """
    Split a tag value into a set of lower-cased tag tokens.

    Accepts a delimited string or a list of tags. Unicode spaces are
    collapsed, tokens are trimmed and empty tokens dropped.

    Args:
        raw: Tag value as stored on a work item or written in a rule

    Returns:
        Set of lower-cased tags
    """
    if raw is None:
        return frozenset()

    if isinstance(raw, (list, tuple, set, frozenset)):
        tokens = ['' if item is None else str(item) for item in raw]
    else:
        tokens = _TAG_DELIMITERS.split(str(raw))

    result = set()
    for token in tokens:
        cleaned = _WHITESPACE.sub(' ', token).strip().lower()
        if cleaned:
            result.add(cleaned)
    return frozenset(result)


@dataclass(frozen=True)
class NormalizedWorkItem:
    """Lower-cased scalar fields and tag set of one work item."""

    lower: Dict[str, str] = field(default_factory=dict)
    present: FrozenSet[str] = frozenset()
    tags: FrozenSet[str] = frozenset()

    def value(self, field_name: str) -> str:
        """Normalized value of a scalar field, '' when absent."""
        return self.lower.get(field_name, '')

    def has(self, field_name: str) -> bool:
        """Whether the item carries a non-null value for a scalar field."""
        return field_name in self.present


class FieldNormalizer:
    """
    Computes and memoizes NormalizedWorkItem views, keyed by item identity.

    The table holds a reference to each item so an id() cannot be reused by
    a different object while the normalizer is alive.
    """

    def __init__(self):
        self._entries: Dict[int, Tuple[Mapping[str, Any], NormalizedWorkItem]] = {}
        self.computations = 0

    def normalize(self, item: Mapping[str, Any]) -> NormalizedWorkItem:
        """
        Get the normalized view of a work item field map.

        Args:
            item: Work item fields keyed by reference name

        Returns:
            Cached or freshly computed NormalizedWorkItem
        """
        entry = self._entries.get(id(item))
        if entry is not None and entry[0] is item:
            return entry[1]

        normalized = NormalizedWorkItem(
            lower={name: to_lower_string(item.get(name)) for name in NORMALIZED_SCALAR_FIELDS},
            present=frozenset(name for name in NORMALIZED_SCALAR_FIELDS if item.get(name) is not None),
            tags=split_tags(item.get(FieldNames.TAGS)),
        )
        self._entries[id(item)] = (item, normalized)
        self.computations += 1
        return normalized

    def clear(self):
        """Drop all cached views."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
