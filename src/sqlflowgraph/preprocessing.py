"""
Dialect preprocessing transforms.

Each transform is a pure function of the SQL text (and dialect) that
returns the rewritten text, or None when it has nothing to change. The
rewrites only keep structure intact; they let the grammar parser accept
syntax it would otherwise reject.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .config import Dialect
from .sql_text import find_matching_paren, mask_strings_and_comments, split_top_level_commas

logger = logging.getLogger(__name__)

# ============================================================================
# Nested CTE hoisting
# ============================================================================

_PAREN_WITH = re.compile(r"\(\s*WITH\b", re.IGNORECASE)
_CTE_BODY_OPEN = re.compile(r"\bAS\s*$", re.IGNORECASE)
_WITH_PREFIX = re.compile(r"\s*WITH\s+", re.IGNORECASE)
_STATEMENT_START = re.compile(r"(SELECT|INSERT|UPDATE|DELETE|MERGE)\b", re.IGNORECASE)
_MAX_HOIST_ITERATIONS = 20


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _extract_cte_block(sql: str, masked: str, with_start: int) -> Optional[Tuple[str, int]]:
    """
    Read `WITH a AS (...), b AS (...)` starting at `with_start`.

    Returns:
        (cte block text, offset of the statement that follows it), or None
        if the text is not a well-formed CTE list
    """
    prefix = _WITH_PREFIX.match(masked, with_start)
    if not prefix:
        return None
    pos = prefix.end()

    while pos < len(masked):
        pos = _skip_whitespace(masked, pos)
        name_start = pos
        if pos < len(sql) and sql[pos] in ('"', "`", "["):
            close_char = "]" if sql[pos] == "[" else sql[pos]
            end = sql.find(close_char, pos + 1)
            pos = len(sql) if end == -1 else end + 1
        else:
            while pos < len(sql) and (sql[pos].isalnum() or sql[pos] == "_"):
                pos += 1
        if pos == name_start:
            return None

        pos = _skip_whitespace(masked, pos)
        if masked[pos : pos + 2].upper() != "AS":
            return None
        pos = _skip_whitespace(masked, pos + 2)
        if pos >= len(sql) or sql[pos] != "(":
            return None
        body_close = find_matching_paren(sql, pos)
        if body_close == -1:
            return None
        pos = _skip_whitespace(masked, body_close + 1)
        if pos < len(sql) and sql[pos] == ",":
            pos += 1
            continue
        break

    cte_block = sql[with_start:pos].strip()
    statement_start = _skip_whitespace(masked, pos)
    if not _STATEMENT_START.match(masked, statement_start):
        return None
    return cte_block, statement_start


def _find_top_level_cte_end(masked: str) -> int:
    """Offset just past the last CTE body of a top-level WITH clause, or -1"""
    prefix = _WITH_PREFIX.match(masked)
    if not prefix:
        return -1
    pos = prefix.end()
    while pos < len(masked):
        pos = _skip_whitespace(masked, pos)
        while pos < len(masked) and (masked[pos].isalnum() or masked[pos] == "_"):
            pos += 1
        pos = _skip_whitespace(masked, pos)
        if masked[pos : pos + 2].upper() != "AS":
            return -1
        pos = _skip_whitespace(masked, pos + 2)
        if pos >= len(masked) or masked[pos] != "(":
            return -1
        close = find_matching_paren(masked, pos)
        if close == -1:
            return -1
        pos = _skip_whitespace(masked, close + 1)
        if pos < len(masked) and masked[pos] == ",":
            pos += 1
            continue
        break
    return pos


def _hoist_one_nested_cte(sql: str, masked: str) -> Optional[str]:
    for match in _PAREN_WITH.finditer(masked):
        open_paren = match.start()
        if not masked[:open_paren].strip():
            continue
        # A WITH opening a CTE body parses as is
        if _CTE_BODY_OPEN.search(masked[:open_paren]):
            continue

        extracted = _extract_cte_block(sql, masked, open_paren + 1)
        if extracted is None:
            continue
        cte_block, inner_start = extracted
        close_paren = find_matching_paren(masked, open_paren)
        if close_paren == -1:
            continue

        inner_statement = sql[inner_start:close_paren].strip()
        rewritten = sql[: open_paren + 1] + "\n" + inner_statement + "\n" + sql[close_paren:]

        if _WITH_PREFIX.match(masked):
            merge_point = _find_top_level_cte_end(mask_strings_and_comments(rewritten))
            if merge_point == -1:
                continue
            cte_list = _WITH_PREFIX.sub("", cte_block, count=1)
            return rewritten[:merge_point].rstrip() + ",\n" + cte_list + "\n" + rewritten[merge_point:]
        return cte_block + "\n" + rewritten
    return None


def hoist_nested_ctes(sql: str) -> Optional[str]:
    """
    Move `WITH` blocks nested inside subqueries to the top level.

    `FROM (WITH c AS (...) SELECT ...) t` becomes
    `WITH c AS (...) SELECT ... FROM (SELECT ...) t`.
    A WITH opening a CTE body is left in place.

    Returns:
        Rewritten SQL, or None if nothing was nested
    """
    current = sql
    hoisted = False
    for _ in range(_MAX_HOIST_ITERATIONS):
        result = _hoist_one_nested_cte(current, mask_strings_and_comments(current))
        if result is None:
            break
        current = result
        hoisted = True
    return current if hoisted else None


# ============================================================================
# GROUPING SETS flattening
# ============================================================================

_GROUP_BY = re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE)
_GROUPING_SETS = re.compile(r"\bGROUPING\s+SETS\s*\(", re.IGNORECASE)
_GROUP_BY_TERMINATORS = ("HAVING", "QUALIFY", "WINDOW", "LIMIT", "FETCH", "OFFSET", "UNION", "INTERSECT", "EXCEPT", "ORDER BY")


def _keyword_at(upper: str, pos: int, keyword: str) -> bool:
    if not upper.startswith(keyword, pos):
        return False
    after = pos + len(keyword)
    return after >= len(upper) or not (upper[after].isalnum() or upper[after] in "_$")


def _find_clause_end(masked: str, start: int, terminators) -> int:
    upper = masked.upper()
    depth = 0
    i = start
    while i < len(masked):
        ch = masked[i]
        if ch == "(":
            depth += 1
        elif ch == ")":
            if depth == 0:
                return i
            depth -= 1
        elif ch == ";" and depth == 0:
            return i
        elif depth == 0 and ch.isspace():
            keyword_start = _skip_whitespace(masked, i)
            if keyword_start >= len(masked):
                return len(masked)
            if any(_keyword_at(upper, keyword_start, kw) for kw in terminators):
                return i
            i = keyword_start
            continue
        i += 1
    return len(masked)


def _normalize_expression(expression: str) -> str:
    return re.sub(r"\s+", " ", expression).strip().lower()


def _grouping_set_columns(body: str) -> List[str]:
    columns = []
    seen = set()
    for item in split_top_level_commas(body):
        item = item.strip()
        if not item:
            continue
        values = split_top_level_commas(item[1:-1]) if item.startswith("(") and item.endswith(")") else [item]
        for value in values:
            value = value.strip()
            key = _normalize_expression(value)
            if value and key not in seen:
                seen.add(key)
                columns.append(value)
    return columns


def _rewrite_group_by_clause(clause_sql: str, clause_masked: str) -> Optional[str]:
    fragments = []
    grouping_columns: List[str] = []
    cursor = 0
    changed = False
    for match in _GROUPING_SETS.finditer(clause_masked):
        if match.start() < cursor:
            continue
        open_paren = match.end() - 1
        close_paren = find_matching_paren(clause_masked, open_paren)
        if close_paren == -1:
            continue
        changed = True
        fragments.append(clause_sql[cursor : match.start()])
        grouping_columns.extend(_grouping_set_columns(clause_sql[open_paren + 1 : close_paren]))
        cursor = close_paren + 1
    if not changed:
        return None
    fragments.append(clause_sql[cursor:])

    parts = [part.strip() for fragment in fragments for part in split_top_level_commas(fragment)]
    parts.extend(grouping_columns)
    deduped = []
    seen = set()
    for part in parts:
        key = _normalize_expression(part)
        if part and key not in seen:
            seen.add(key)
            deduped.append(part)
    return ", ".join(deduped)


def rewrite_grouping_sets(sql: str) -> Optional[str]:
    """
    Flatten `GROUP BY GROUPING SETS ((a, b), (a))` into `GROUP BY a, b`.

    Returns:
        Rewritten SQL, or None if there is no GROUPING SETS clause
    """
    masked = mask_strings_and_comments(sql)
    rewrites = []
    for match in _GROUP_BY.finditer(masked):
        if rewrites and match.start() < rewrites[-1][1]:
            continue
        clause_start = match.end()
        clause_end = _find_clause_end(masked, clause_start, _GROUP_BY_TERMINATORS)
        rewritten = _rewrite_group_by_clause(sql[clause_start:clause_end], masked[clause_start:clause_end])
        if rewritten is None:
            continue
        replacement = f"GROUP BY {rewritten}" if rewritten else ""
        rewrites.append((match.start(), clause_end, replacement))
    return _apply_rewrites(sql, rewrites)


# ============================================================================
# Path bounding, dialect-only clauses and set-operator synonyms
# ============================================================================

_DEEP_PATH = re.compile(r"\b([A-Za-z0-9_][\w$]*)((?::(?!:)[A-Za-z0-9_][\w$]*){3,})")


def collapse_snowflake_paths(sql: str, dialect: Dialect) -> Optional[str]:
    """Bound Snowflake path chains `v:a:b:c:d` to three segments `v:a:b`."""
    if dialect != Dialect.SNOWFLAKE:
        return None
    masked = mask_strings_and_comments(sql)
    rewrites = []
    for match in _DEEP_PATH.finditer(masked):
        path_text = sql[match.start() : match.end()]
        segments = path_text.split(":")
        if segments[0].strip().isdigit() or len(segments) < 4:
            continue
        rewrites.append((match.start(), match.end(), ":".join(segments[:3])))
    return _apply_rewrites(sql, rewrites)


_AT_TIME_ZONE = re.compile(r"\bAT\s+TIME\s+ZONE\b", re.IGNORECASE)
_OUTER_JOIN_OPERATOR = re.compile(r"\(\+\)")
_HIERARCHICAL_CLAUSE = re.compile(r"\b(START\s+WITH|CONNECT\s+BY|ORDER\s+SIBLINGS\s+BY)\b", re.IGNORECASE)
_HIERARCHICAL_TERMINATORS = (
    "SELECT",
    "FROM",
    "WHERE",
    "GROUP BY",
    "HAVING",
    "ORDER BY",
    "UNION",
    "INTERSECT",
    "EXCEPT",
    "MINUS",
    "FETCH",
    "LIMIT",
    "OFFSET",
    "START WITH",
    "CONNECT BY",
    "ORDER SIBLINGS BY",
)


def _literal_end(sql: str, pos: int) -> int:
    """Offset just past the quoted literal or identifier word starting at `pos`"""
    if pos < len(sql) and sql[pos] == "'":
        pos += 1
        while pos < len(sql):
            if sql.startswith("''", pos):
                pos += 2
                continue
            if sql[pos] == "'":
                return pos + 1
            pos += 1
        return pos
    while pos < len(sql) and (sql[pos].isalnum() or sql[pos] == "_"):
        pos += 1
    return pos


def strip_dialect_clauses(sql: str, dialect: Dialect) -> Optional[str]:
    """
    Remove dialect-only clauses that do not change the statement's shape.

    PostgreSQL: `AT TIME ZONE 'tz'`. Oracle: the `(+)` outer-join marker and
    hierarchical `START WITH` / `CONNECT BY` / `ORDER SIBLINGS BY` clauses.
    """
    if dialect == Dialect.POSTGRESQL:
        masked = mask_strings_and_comments(sql)
        rewrites = []
        for match in _AT_TIME_ZONE.finditer(masked):
            end = _literal_end(sql, _skip_whitespace(sql, match.end()))
            rewrites.append((match.start(), end, ""))
        return _apply_rewrites(sql, rewrites)

    if dialect == Dialect.ORACLE:
        result = _OUTER_JOIN_OPERATOR.sub("", sql)
        masked = mask_strings_and_comments(result)
        rewrites: List[Tuple[int, int, str]] = []
        for match in _HIERARCHICAL_CLAUSE.finditer(masked):
            end = _find_clause_end(masked, match.end(), _HIERARCHICAL_TERMINATORS)
            if rewrites and match.start() < rewrites[-1][1]:
                start, prev_end, _ = rewrites[-1]
                rewrites[-1] = (start, max(prev_end, end), "")
                continue
            rewrites.append((match.start(), end, ""))
        rewritten = _apply_rewrites(result, rewrites)
        if rewritten is not None:
            return rewritten
        return result if result != sql else None

    return None


_MINUS = re.compile(r"\bMINUS\b", re.IGNORECASE)


def rewrite_set_operator_synonyms(sql: str) -> Optional[str]:
    """Rewrite the `MINUS` set operator to its standard spelling `EXCEPT`."""
    masked = mask_strings_and_comments(sql)
    rewrites = [(m.start(), m.end(), "EXCEPT") for m in _MINUS.finditer(masked)]
    return _apply_rewrites(sql, rewrites)


def _apply_rewrites(sql: str, rewrites: List[Tuple[int, int, str]]) -> Optional[str]:
    if not rewrites:
        return None
    result = sql
    for start, end, replacement in reversed(rewrites):
        result = result[:start] + replacement + result[end:]
    return result


# ============================================================================
# Pipeline
# ============================================================================

# Dialects whose grammar has no GROUPING SETS support
GROUPING_SETS_UNSUPPORTED = (Dialect.MYSQL, Dialect.MARIADB, Dialect.SQLITE)


@dataclass
class Preprocessor:
    """A named preprocessing transform and the hint it reports when applied"""

    name: str
    transform: Callable[[str, Dialect], Optional[str]]
    message: str
    suggestion: str


PREPROCESSORS: List[Preprocessor] = [
    Preprocessor(
        name="hoist_nested_ctes",
        transform=lambda sql, dialect: hoist_nested_ctes(sql),
        message="Hoisted nested CTE(s) from subquery to top level for parser compatibility",
        suggestion=(
            "Nested WITH inside FROM (...) is valid in some dialects but unsupported by the parser. "
            "The query was automatically rewritten."
        ),
    ),
    Preprocessor(
        name="rewrite_grouping_sets",
        transform=lambda sql, dialect: rewrite_grouping_sets(sql) if dialect in GROUPING_SETS_UNSUPPORTED else None,
        message="Flattened GROUPING SETS into a plain GROUP BY for parser compatibility",
        suggestion="The grouping columns are kept; individual grouping sets are not shown separately.",
    ),
    Preprocessor(
        name="collapse_snowflake_paths",
        transform=collapse_snowflake_paths,
        message="Shortened deep semi-structured path expressions for parser compatibility",
        suggestion="Paths with more than three segments are truncated for visualization only.",
    ),
    Preprocessor(
        name="strip_dialect_clauses",
        transform=strip_dialect_clauses,
        message="Removed dialect-only clauses that do not affect query structure",
        suggestion="Clauses such as AT TIME ZONE or CONNECT BY are not shown in the flow graph.",
    ),
    Preprocessor(
        name="rewrite_set_operator_synonyms",
        transform=lambda sql, dialect: rewrite_set_operator_synonyms(sql),
        message="Rewrote MINUS as EXCEPT for parser compatibility",
        suggestion="MINUS and EXCEPT are equivalent set operators.",
    ),
]


def preprocess_sql(sql: str, dialect: Dialect) -> Tuple[str, List[Preprocessor]]:
    """
    Run every preprocessing transform in order.

    Returns:
        (rewritten SQL, transforms that changed the text)
    """
    applied = []
    for preprocessor in PREPROCESSORS:
        rewritten = preprocessor.transform(sql, dialect)
        if rewritten is None or rewritten == sql:
            continue
        logger.debug("Preprocessor %s rewrote statement for %s", preprocessor.name, dialect.value)
        sql = rewritten
        applied.append(preprocessor)
    return sql, applied


__all__ = [
    "hoist_nested_ctes",
    "rewrite_grouping_sets",
    "collapse_snowflake_paths",
    "strip_dialect_clauses",
    "rewrite_set_operator_synonyms",
    "Preprocessor",
    "PREPROCESSORS",
    "GROUPING_SETS_UNSUPPORTED",
    "preprocess_sql",
]
