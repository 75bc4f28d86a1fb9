"""
Case-insensitive wildcard matching for template title filters.

Only `*` is special: it matches any run of characters (including none).
Everything else is compared literally, ignoring case, against the whole value.
"""

import re
from functools import lru_cache
from typing import Any, Pattern


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> Pattern[str]:
    """
    Compile a wildcard pattern to an anchored, case-insensitive regex.

    Args:
        pattern: Pattern using `*` as the only wildcard

    Returns:
        Compiled regular expression
    """
    body = '.*'.join(re.escape(segment) for segment in pattern.split('*'))
    return re.compile(f'^{body}$', re.IGNORECASE)


def matches(value: Any, pattern: Any) -> bool:
    """
    Check whether a value matches a wildcard pattern.

    None on either side is treated as the empty string, so `*` matches a
    missing value but `x*` does not.

    Args:
        value: Value to test
        pattern: Wildcard pattern

    Returns:
        True if the whole value matches the pattern
    """
    value_str = '' if value is None else str(value)
    pattern_str = '' if pattern is None else str(pattern)
    return compile_pattern(pattern_str).fullmatch(value_str) is not None
