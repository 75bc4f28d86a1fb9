"""
Embedded JSON extraction from template descriptions.

Template authors type their applywhen rules straight into the description
field, often surrounded by notes or pasted with stray braces. The extractor
finds the first substring that parses as a JSON object and gives up quietly
when there is none.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .constants import ExtractionLimits

logger = logging.getLogger(__name__)


def _brace_positions(text: str):
    """Indexes of every '{' (left to right) and every '}' (right to left)."""
    opens: List[int] = []
    closes: List[int] = []
    for index, char in enumerate(text):
        if char == '{':
            opens.append(index)
        elif char == '}':
            closes.append(index)
    closes.reverse()
    return opens, closes


def extract_embedded_json(
    text: Optional[str],
    label: Optional[str] = None,
    max_attempts: int = ExtractionLimits.MAX_PARSE_ATTEMPTS
) -> Optional[Dict[str, Any]]:
    """
    Find and parse the first JSON object embedded in free-form text.

    The whole trimmed text is tried first. Otherwise candidate spans are
    tried from each '{' (left to right) to each later '}' (right to left),
    so the widest span from the earliest opener wins. Braces inside string
    values are ordinary characters to the parser, so no span is ruled out
    before it is parsed.

    Args:
        text: Description text (may be None or empty)
        label: Name used in diagnostics, usually the template name
        max_attempts: Cap on candidate spans parsed before giving up

    Returns:
        Parsed object, or None when no candidate parses
    """
    if not text:
        return None

    label = label or '<unnamed>'
    last_error: Optional[str] = None

    trimmed = text.strip()
    if len(trimmed) > 1 and trimmed[0] == '{' and trimmed[-1] == '}':
        try:
            return json.loads(trimmed)
        except ValueError as e:
            last_error = str(e)

    opens, closes = _brace_positions(text)
    if not opens or not closes:
        return None

    attempts = 0
    for start in opens:
        for end in closes:
            if end <= start:
                break

            attempts += 1
            try:
                return json.loads(text[start:end + 1])
            except ValueError as e:
                last_error = str(e)
            if attempts >= max_attempts:
                logger.warning(
                    f'Failed to parse JSON for template "{label}" after '
                    f'{attempts} attempts (cap). Last error: {last_error}'
                )
                return None

    if attempts > 0:
        logger.warning(
            f'Failed to parse JSON for template "{label}" after '
            f'{attempts} attempts. Last error: {last_error}'
        )
    return None
