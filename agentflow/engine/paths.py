"""JSONPath-style references into run state.

Chain mappings and ``$``-references inside expressions address the run
state with a small JSONPath subset: ``$``, dotted member access
(``$.step1.output.topic``) and integer indexing (``$.items[0]``).
``$name`` is shorthand for ``$.name`` (``$score > 5``).
A path that does not resolve yields ``None`` instead of raising.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any, List

from jsonpath_ng import parse as jsonpath_parse

logger = logging.getLogger(__name__)

# $ or $name followed by any number of .member or [index] segments
PATH_PATTERN = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?(?:\.[A-Za-z_][A-Za-z0-9_]*|\[\d+\])*")


@lru_cache(maxsize=512)
def _compile(path: str):
    return jsonpath_parse(path)


def is_path(value: Any) -> bool:
    """True if value is a string that starts with a ``$`` reference."""
    return isinstance(value, str) and value.strip().startswith("$")


def find_paths(expression: str) -> List[str]:
    """Return every ``$`` reference in an expression, in order of appearance."""
    return PATH_PATTERN.findall(expression)


def resolve_path(path: str, document: Any) -> Any:
    """Resolve a single path against a document.

    Args:
        path: Path expression such as ``$.input.topic``
        document: Dict (or list) to resolve against

    Returns:
        The first matched value, or None if nothing matches
    """
    path = path.strip()
    if path == "$":
        return document
    if path[1:2].isalpha() or path[1:2] == "_":
        path = "$." + path[1:]
    try:
        matches = _compile(path).find(document)
    except Exception as e:
        logger.warning(f"Path '{path}' could not be resolved: {e}")
        return None
    if not matches:
        return None
    return matches[0].value
