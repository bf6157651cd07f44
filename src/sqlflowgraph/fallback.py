"""
Regex-based fallback extractor.

Used when the grammar parser rejects a statement (after the dialect retry)
or takes longer than the parse timeout. Recovers CTE names, table
references, FROM -> JOIN chains and MERGE targets from the raw text so the
caller still gets a renderable, partial graph.
"""

import logging
import re
from typing import Dict, List, Optional

from .config import Dialect
from .metrics import fallback_complexity
from .models import (
    FlowEdge,
    FlowNode,
    HintCategory,
    HintSeverity,
    HintType,
    NodeType,
    ParseResult,
    ParserContext,
    TableCategory,
)
from .sql_text import find_matching_paren, normalize_whitespace, strip_sql_comments

logger = logging.getLogger(__name__)

_IDENTIFIER = r"(?:`[^`]+`|\"[^\"]+\"|\[[^\]]+\]|[\w$]+)"
_QUALIFIED = rf"{_IDENTIFIER}(?:\.{_IDENTIFIER})*"
_QUOTES = re.compile(r"[`\"\[\]]")

_COLUMN_LIST = r"(?:\s*\([^)]*\))?"
_FIRST_CTE = re.compile(rf"\bWITH\s+(?:RECURSIVE\s+)?({_IDENTIFIER}){_COLUMN_LIST}\s+AS\s*\(", re.IGNORECASE)
_NEXT_CTE = re.compile(rf"\s*,\s*({_IDENTIFIER}){_COLUMN_LIST}\s+AS\s*\(", re.IGNORECASE)

_TABLE_PATTERNS = [
    re.compile(rf"\bFROM\s+({_QUALIFIED})", re.IGNORECASE),
    re.compile(rf"\bJOIN\s+({_QUALIFIED})", re.IGNORECASE),
    re.compile(rf"\bINTO\s+({_QUALIFIED})", re.IGNORECASE),
    re.compile(rf"\bUPDATE\s+(?!SET\b)({_QUALIFIED})", re.IGNORECASE),
    re.compile(rf"\bMERGE\s+INTO\s+({_QUALIFIED})", re.IGNORECASE),
    re.compile(rf"\bUSING\s+({_QUALIFIED})", re.IGNORECASE),
]
_TABLE_REF = re.compile(rf"\b(FROM|JOIN)\s+({_QUALIFIED})", re.IGNORECASE)

# Words the table patterns can capture that are never table names
_NOT_TABLES = {"select", "set", "values", "lateral", "unnest", "table", "only", "dual"}

_MERGE_SUGGESTIONS = {
    Dialect.POSTGRESQL: (
        "Consider using INSERT ... ON CONFLICT DO UPDATE for PostgreSQL upserts, which is more widely supported."
    ),
    Dialect.MYSQL: (
        "Consider using INSERT ... ON DUPLICATE KEY UPDATE for MySQL upserts, which is more widely supported."
    ),
    Dialect.TRANSACTSQL: (
        "MERGE is fully supported in TransactSQL. This visualization is approximate due to parse limitations."
    ),
}


def normalize_object_name(raw: str) -> str:
    """`[db].schema."Orders"` -> `Orders`"""
    parts = [_QUOTES.sub("", part) for part in raw.split(".")]
    parts = [part for part in parts if part]
    return parts[-1] if parts else _QUOTES.sub("", raw)


def extract_cte_bodies(text: str) -> Dict[str, str]:
    """CTE name -> body text, in declaration order"""
    bodies: Dict[str, str] = {}
    first = _FIRST_CTE.search(text)
    if first is None:
        return bodies

    open_pos = first.end() - 1
    close_pos = find_matching_paren(text, open_pos)
    bodies[normalize_object_name(first.group(1))] = text[open_pos + 1 : close_pos] if close_pos >= 0 else ""

    position = close_pos + 1 if close_pos >= 0 else first.end()
    while True:
        match = _NEXT_CTE.match(text, position)
        if match is None:
            break
        open_pos = match.end() - 1
        close_pos = find_matching_paren(text, open_pos)
        if close_pos < 0:
            bodies[normalize_object_name(match.group(1))] = ""
            break
        bodies[normalize_object_name(match.group(1))] = text[open_pos + 1 : close_pos]
        position = close_pos + 1
    return bodies


def extract_table_names(text: str) -> List[str]:
    """Distinct table names after FROM/JOIN/INTO/UPDATE/MERGE INTO/USING, schema stripped"""
    names: List[str] = []
    seen = set()
    for pattern in _TABLE_PATTERNS:
        for match in pattern.finditer(text):
            name = normalize_object_name(match.group(1))
            if not name or name.lower() in _NOT_TABLES or name.lower() in seen:
                continue
            seen.add(name.lower())
            names.append(name)
    return names


def _statement_type(text: str) -> str:
    upper = text.strip().upper()
    for keyword in ("SELECT", "WITH", "INSERT", "UPDATE", "DELETE", "MERGE", "CREATE", "ALTER", "DROP"):
        if upper.startswith(keyword):
            return "SELECT" if keyword == "WITH" else keyword
    return "UNKNOWN"


def _merge_description(text: str) -> str:
    parts = []
    for match in re.finditer(r"WHEN\s+MATCHED\s+(?:AND\s+.+?\s+)?THEN\s+(\w+)", text, re.IGNORECASE | re.DOTALL):
        parts.append(f"MATCHED -> {match.group(1).upper()}")
    for match in re.finditer(r"WHEN\s+NOT\s+MATCHED\s+(?:BY\s+\w+\s+)?(?:AND\s+.+?\s+)?THEN\s+(\w+)", text, re.IGNORECASE | re.DOTALL):
        parts.append(f"NOT MATCHED -> {match.group(1).upper()}")

    set_match = re.search(r"UPDATE\s+SET\s+(.+?)(?=\bWHEN\b|\bINSERT\b|$)", text, re.IGNORECASE | re.DOTALL)
    if set_match:
        columns = []
        for assignment in set_match.group(1).split(","):
            column = re.match(r"\s*(?:\w+\.)?(\w+)\s*=", assignment)
            if column:
                columns.append(column.group(1))
        if columns:
            parts.append(f"SET: {', '.join(columns)}")

    insert_match = re.search(r"\bINSERT\s*\(([^)]+)\)", text, re.IGNORECASE)
    if insert_match:
        parts.append(f"INSERT: {', '.join(c.strip() for c in insert_match.group(1).split(','))}")
    return " | ".join(parts)


def regex_fallback_parse(sql: str, dialect: Dialect, ctx: Optional[ParserContext] = None) -> ParseResult:
    """
    Best-effort graph for SQL the grammar parser could not handle.

    Args:
        sql: Statement text
        dialect: Dialect the statement was meant for (used in hints)
        ctx: Context whose hints (timeout, retry, ...) should be kept

    Returns:
        A ParseResult with partial=True
    """
    ctx = ctx or ParserContext(dialect=dialect)
    text = strip_sql_comments(sql)
    nodes: List[FlowNode] = []
    edges: List[FlowEdge] = []
    node_ids: Dict[str, str] = {}

    def add_edge(source: str, target: str, clause: str, clause_type: str):
        edges.append(FlowEdge(id=ctx.gen_id("e"), source=source, target=target, sql_clause=clause, clause_type=clause_type))

    cte_bodies = extract_cte_bodies(text)
    for name in cte_bodies:
        node = FlowNode(
            id=ctx.gen_id("cte"),
            type=NodeType.TABLE,
            label=name,
            description="CTE (detected by fallback parser)",
            details=["Common Table Expression"],
            table_category=TableCategory.CTE_REFERENCE,
        )
        nodes.append(node)
        node_ids[name.lower()] = node.id
    ctx.stats.ctes = len(cte_bodies)

    for name in extract_table_names(text):
        if name.lower() in node_ids:
            continue
        node = FlowNode(
            id=ctx.gen_id("table"),
            type=NodeType.TABLE,
            label=name,
            description="Table (detected by fallback parser)",
            details=["Partial visualization - parsing failed"],
            table_category=TableCategory.PHYSICAL,
            access_mode="read",
        )
        nodes.append(node)
        node_ids[name.lower()] = node.id
        ctx.track_table(name)

    chain_previous: Optional[str] = None
    for match in _TABLE_REF.finditer(text):
        keyword = match.group(1).upper()
        table = normalize_object_name(match.group(2)).lower()
        if keyword == "FROM":
            chain_previous = table
        elif chain_previous in node_ids and table in node_ids:
            add_edge(node_ids[chain_previous], node_ids[table], "JOIN", "join")
            ctx.stats.joins += 1
            chain_previous = table

    for name, body in cte_bodies.items():
        for match in _TABLE_REF.finditer(body):
            source = normalize_object_name(match.group(2)).lower()
            if source in node_ids and source != name.lower():
                add_edge(node_ids[source], node_ids[name.lower()], "CTE reference", "flow")

    statement_type = _statement_type(text)
    if statement_type == "MERGE":
        target = re.search(rf"MERGE\s+INTO\s+({_QUALIFIED})", text, re.IGNORECASE)
        source = re.search(rf"USING\s+({_QUALIFIED})", text, re.IGNORECASE)
        if target and source:
            target_name = normalize_object_name(target.group(1))
            merge = FlowNode(
                id=ctx.gen_id("merge"),
                type=NodeType.RESULT,
                label=f"MERGE INTO {target_name}",
                description=_merge_description(text),
                access_mode="write",
                operation_type="MERGE",
            )
            nodes.append(merge)
            target_id = node_ids.get(target_name.lower())
            source_id = node_ids.get(normalize_object_name(source.group(1)).lower())
            if target_id:
                add_edge(target_id, merge.id, "INTO", "merge_target")
            if source_id:
                add_edge(source_id, merge.id, "USING", "merge_source")
        ctx.add_hint(
            HintType.INFO,
            "MERGE statement detected (using fallback parser)",
            _MERGE_SUGGESTIONS.get(
                dialect,
                "MERGE syntax varies by dialect. This visualization shows approximate table relationships.",
            ),
        )

    stats = ctx.stats
    stats.subqueries = len(re.findall(r"\(\s*SELECT\b", text, re.IGNORECASE))
    stats.aggregations = len(re.findall(r"\b(?:COUNT|SUM|AVG|MIN|MAX|GROUP_CONCAT)\b", text, re.IGNORECASE))
    stats.window_functions = len(re.findall(r"\bOVER\s*\(", text, re.IGNORECASE))
    stats.unions = len(re.findall(r"\bUNION\b", text, re.IGNORECASE))
    stats.conditions = len(re.findall(r"\b(?:WHERE|HAVING)\b", text, re.IGNORECASE))
    fallback_complexity(stats)

    ctx.add_hint(
        HintType.WARNING,
        "Partial visualization - SQL parser could not parse this query",
        f"Showing best-effort approximation with {len(nodes)} table(s) detected. "
        f"This query may use syntax not supported by the {dialect.value} dialect parser.",
        HintCategory.BEST_PRACTICE,
        HintSeverity.MEDIUM,
    )
    logger.debug("Fallback extracted %d node(s) from: %s", len(nodes), normalize_whitespace(sql)[:80])

    return ParseResult(
        nodes=nodes,
        edges=edges,
        stats=stats,
        hints=ctx.hints,
        table_usage=dict(ctx.table_usage),
        sql=sql,
        partial=True,
        dialect=dialect,
        statement_type=statement_type,
    )


__all__ = [
    "normalize_object_name",
    "extract_cte_bodies",
    "extract_table_names",
    "regex_fallback_parse",
]
