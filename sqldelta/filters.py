"""
filters
=======

Table selection for schema diffs and dumps.

A pattern is either a SQL LIKE pattern (``%`` any run, ``_`` one character)
or, with a ``re:`` prefix, a regular expression searched anywhere in the
table name. Both ignore case unless ``case_sensitive`` is set::

    table_filter:
      include: ["FACT_%", "DIM_%"]
      exclude: ["TMP_%", "re:_BAK\\d+$"]
"""

from __future__ import annotations

import fnmatch
import re
from typing import Iterable, List, Pattern, Sequence

REGEX_PREFIX = "re:"


def sql_like_to_fnmatch(pattern: str) -> str:
    return pattern.replace("%", "*").replace("_", "?")


def compile_pattern(pattern: str, case_sensitive: bool = False) -> Pattern[str]:
    """Compile one include/exclude pattern into a regex.

    LIKE patterns are anchored at both ends; ``re:`` patterns are not.
    """
    flags = 0 if case_sensitive else re.IGNORECASE
    if pattern.startswith(REGEX_PREFIX):
        return re.compile(pattern[len(REGEX_PREFIX):], flags)
    return re.compile(r"\A" + fnmatch.translate(sql_like_to_fnmatch(pattern)), flags)


def matches_pattern(name: str, pattern: str, case_sensitive: bool = False) -> bool:
    return compile_pattern(pattern, case_sensitive).search(name) is not None


def _matches_any(name: str, patterns: Iterable[Pattern[str]]) -> bool:
    return any(p.search(name) for p in patterns)


def filter_tables(
    tables: Sequence[str],
    include: Sequence[str],
    exclude: Sequence[str],
    case_sensitive: bool = False,
) -> List[str]:
    """Return the sorted, de-duplicated table names selected by the patterns.

    A table is kept when it matches at least one include pattern (or there
    are none) and no exclude pattern.
    """
    keep = [compile_pattern(p, case_sensitive) for p in include]
    drop = [compile_pattern(p, case_sensitive) for p in exclude]
    return sorted(
        {t for t in tables if (not keep or _matches_any(t, keep)) and not _matches_any(t, drop)}
    )
