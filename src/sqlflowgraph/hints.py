"""
Presence and advanced quality hints.

Presence rules look only at the statement's counters and flags (SELECT *,
missing LIMIT / WHERE, join and subquery counts, Cartesian products).
Advanced rules inspect the flow graph and the SQL text for unused CTEs,
duplicate subqueries, dead columns and repeated table scans.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import (
    FlowNode,
    HintCategory,
    HintSeverity,
    HintType,
    NodeType,
    ParserContext,
    TableCategory,
    TransformationKind,
    walk_nodes,
)
from .sql_text import find_matching_paren, mask_strings_and_comments, normalize_whitespace

logger = logging.getLogger(__name__)

MAX_JOINS = 5
MAX_SUBQUERIES = 3


def cte_name(node: FlowNode) -> str:
    """`WITH [RECURSIVE] name` label -> name"""
    return node.label.split()[-1]


# ============================================================================
# Presence hints
# ============================================================================


def generate_presence_hints(ctx: ParserContext, statement_kind: str, has_where: bool):
    stats = ctx.stats

    if ctx.has_select_star:
        ctx.add_hint(
            HintType.WARNING,
            "SELECT * detected",
            "Specify only needed columns to reduce data transfer and improve performance",
            severity=HintSeverity.MEDIUM,
        )

    if statement_kind == "select" and ctx.has_no_limit and stats.tables > 0:
        ctx.add_hint(
            HintType.INFO,
            "No LIMIT clause",
            "Consider adding LIMIT to prevent fetching large result sets",
        )

    if statement_kind in ("update", "delete") and not has_where:
        ctx.add_hint(
            HintType.ERROR,
            f"{statement_kind.upper()} without WHERE clause",
            "This will affect ALL rows in the table. Add a WHERE clause to limit scope",
            severity=HintSeverity.HIGH,
        )

    if stats.joins > MAX_JOINS:
        ctx.add_hint(
            HintType.WARNING,
            f"High number of JOINs ({stats.joins})",
            "Consider breaking into smaller queries or using CTEs for clarity",
            severity=HintSeverity.MEDIUM,
        )

    if stats.subqueries > MAX_SUBQUERIES:
        ctx.add_hint(
            HintType.WARNING,
            f"Multiple subqueries detected ({stats.subqueries})",
            "Consider using CTEs (WITH clause) for better readability",
            severity=HintSeverity.MEDIUM,
        )

    # Comma-separated FROM items are joins without a join condition
    explicit_joins = stats.joins - ctx.implicit_joins
    if stats.tables > 1 and explicit_joins == 0 and stats.conditions == 0:
        ctx.add_hint(
            HintType.ERROR,
            "Possible Cartesian product",
            "Multiple tables without JOIN conditions will produce all row combinations",
            HintCategory.PERFORMANCE,
            HintSeverity.HIGH,
        )


# ============================================================================
# Unused CTEs
# ============================================================================


def detect_unused_ctes(ctx: ParserContext, nodes: List[FlowNode]):
    """Flag CTEs that no other part of the statement reads"""
    referenced = set()
    for node in nodes:
        if node.type == NodeType.CTE:
            # A recursive CTE reading itself does not count as a use
            owner = cte_name(node).lower()
            candidates = walk_nodes(node.children or [])
        else:
            owner = None
            candidates = walk_nodes([node])
        for inner in candidates:
            if inner.table_category == TableCategory.CTE_REFERENCE and inner.label.lower() != owner:
                referenced.add(inner.label.lower())

    for node in nodes:
        if node.type != NodeType.CTE or cte_name(node).lower() in referenced:
            continue
        node.add_warning("unused", "medium", "This CTE is never referenced in the query")
        ctx.add_hint(
            HintType.WARNING,
            f'Unused CTE: "{node.label}"',
            "Remove this CTE as it is not used anywhere in the query",
            HintCategory.QUALITY,
            HintSeverity.MEDIUM,
            node_id=node.id,
        )


# ============================================================================
# Duplicate subqueries
# ============================================================================

_SUBQUERY_OPEN = re.compile(r"\(\s*select\b", re.IGNORECASE)
_CTE_BODY_PREFIX = re.compile(r"\bas\s*$", re.IGNORECASE)
_FROM_PREFIX = re.compile(r"\b(from|join|lateral)\s*$", re.IGNORECASE)
_ALIAS_AFTER_TABLE = re.compile(
    r"\b(from|join)\s+([\w.]+)\s+(?:as\s+)?"
    r"(?!(?:where|join|on|group|order|limit|inner|left|right|full|cross|union|having|using|natural|window)\b)"
    r"[a-z_]\w*"
)
_FROM_TABLE = re.compile(r"\bfrom\s+([\w.]+)")
_AGGREGATE_CALL = re.compile(r"\b(avg|count|sum|max|min)\s*\(")


@dataclass
class TextSubquery:
    """A parenthesized SELECT found in the raw SQL text"""

    text: str
    signature: str
    location: str  # from, where, having, select
    from_table: Optional[str]
    has_where: bool
    aggregate: Optional[str]


def _subquery_location(prefix: str) -> str:
    if _FROM_PREFIX.search(prefix):
        return "from"
    window = prefix[-100:].lower()
    if re.search(r"\bhaving\b", window):
        return "having"
    if re.search(r"\b(where|on)\b", window):
        return "where"
    if re.search(r"\bselect\b", window):
        return "select"
    return "where"


def subquery_signature(body: str) -> str:
    """Whitespace-collapsed, lower-cased body with table aliases dropped"""
    signature = normalize_whitespace(body).lower()
    return _ALIAS_AFTER_TABLE.sub(r"\1 \2", signature)


def find_text_subqueries(sql: str) -> List[TextSubquery]:
    """
    Parenthesized SELECTs in raw SQL text, CTE bodies excluded.

    Parentheses are balanced with string literals and comments skipped.
    """
    masked = mask_strings_and_comments(sql)
    found = []
    for match in _SUBQUERY_OPEN.finditer(masked):
        open_pos = match.start()
        prefix = masked[:open_pos]
        if _CTE_BODY_PREFIX.search(prefix):
            continue
        close_pos = find_matching_paren(sql, open_pos)
        if close_pos < 0:
            continue
        if not re.search(r"\bfrom\b", masked[open_pos:close_pos], re.IGNORECASE):
            continue
        body = sql[open_pos + 1 : close_pos]
        signature = subquery_signature(body)
        from_match = _FROM_TABLE.search(signature)
        aggregate = _AGGREGATE_CALL.search(signature)
        found.append(
            TextSubquery(
                text=body.strip(),
                signature=signature,
                location=_subquery_location(prefix),
                from_table=from_match.group(1).split(".")[-1] if from_match else None,
                has_where=bool(re.search(r"\bwhere\b", signature)),
                aggregate=aggregate.group(1) if aggregate else None,
            )
        )
    return found


def _group_subqueries(subqueries: List[TextSubquery]) -> List[Tuple[str, List[int]]]:
    """[(kind, member indexes)] for identical, then similar, subquery groups"""
    groups: List[Tuple[str, List[int]]] = []
    processed = set()

    exact: Dict[str, List[int]] = defaultdict(list)
    for index, subquery in enumerate(subqueries):
        if len(subquery.signature) > 15:
            exact[subquery.signature].append(index)
    for members in exact.values():
        if len(members) > 1:
            groups.append(("identical", members))
            processed.update(members)

    similar: Dict[Tuple, List[int]] = defaultdict(list)
    for index, subquery in enumerate(subqueries):
        if index in processed or subquery.from_table is None:
            continue
        similar[(subquery.from_table, subquery.has_where, subquery.aggregate)].append(index)
    for members in similar.values():
        if len(members) > 1:
            groups.append(("similar", members))
    return groups


def _warn_once(node: Optional[FlowNode], message: str):
    if node is not None and all(w.message != message for w in node.warnings):
        node.add_warning("complex", "low", message)


def detect_duplicate_subqueries(ctx: ParserContext, nodes: List[FlowNode], sql: str):
    subqueries = find_text_subqueries(sql)
    if len(subqueries) < 2:
        return

    derived_nodes = [node for node in nodes if node.type == NodeType.SUBQUERY]
    from_positions = [index for index, sq in enumerate(subqueries) if sq.location == "from"]
    clause_nodes = {
        "where": next((n for n in nodes if n.type == NodeType.FILTER and n.label == "WHERE"), None),
        "having": next((n for n in nodes if n.type == NodeType.FILTER and n.label == "HAVING"), None),
        "select": next((n for n in nodes if n.type == NodeType.SELECT), None),
    }

    for kind, members in _group_subqueries(subqueries):
        count = len(members)
        for index in members:
            subquery = subqueries[index]
            if subquery.location == "from":
                position = from_positions.index(index)
                node = derived_nodes[position] if position < len(derived_nodes) else None
                _warn_once(node, f"Similar subquery ({count} duplicates detected)")
            else:
                node = clause_nodes.get(subquery.location)
                _warn_once(node, f"Duplicate subquery in {subquery.location.upper()} ({count} similar found)")

        tables = sorted({subqueries[i].from_table for i in members if subqueries[i].from_table})
        hint = ctx.add_hint(
            HintType.INFO,
            f"{count} {kind} subqueries detected",
            "Consider extracting to a CTE to avoid duplication and improve maintainability",
            HintCategory.QUALITY,
            HintSeverity.LOW,
        )
        hint.related_tables = tables
        logger.debug("Found %d %s subqueries over %s", count, kind, tables)


# ============================================================================
# Dead columns
# ============================================================================


_CLAUSE_TEXT = re.compile(
    r"\b(?:where|group\s+by|order\s+by|having|on)\b(.+?)"
    r"(?=\b(?:where|group\s+by|order\s+by|having|limit|union|join|select|from|on|window|qualify)\b|;|$)",
    re.DOTALL,
)


def filter_clause_texts(sql: str) -> List[str]:
    """WHERE, GROUP BY, ORDER BY, HAVING and JOIN ... ON bodies, lower-cased"""
    text = mask_strings_and_comments(sql).lower()
    return [match.group(1) for match in _CLAUSE_TEXT.finditer(text)]


def detect_dead_columns(ctx: ParserContext, nodes: List[FlowNode], sql: str):
    """
    Columns produced inside CTE / subquery bodies that no filter, grouping,
    ordering or join condition reads.

    A column is live when its name or its source column appears as a word
    in one of the clause bodies. Star projections are never reported.
    """
    clauses = filter_clause_texts(sql)

    for node in walk_nodes(nodes):
        if node.type != NodeType.SELECT or not node.parent_id or not node.columns:
            continue
        dead = []
        for column in node.columns:
            if column.transformation == TransformationKind.DIRECT:
                continue
            variants = {column.name.lower()}
            if column.source_column:
                variants.add(column.source_column.lower())
            patterns = [re.compile(rf"(?<!\w){re.escape(variant)}(?!\w)") for variant in variants]
            if any(pattern.search(clause) for pattern in patterns for clause in clauses):
                continue
            dead.append(column.name)
            node.add_warning(
                "dead-column",
                "low",
                f'Column "{column.name}" is not used in WHERE/ORDER BY/GROUP BY/HAVING/JOIN clauses',
            )

        if not dead:
            continue
        listed = ", ".join(dead[:3])
        more = f" and {len(dead) - 3} more" if len(dead) > 3 else ""
        ctx.add_hint(
            HintType.INFO,
            f"{len(dead)} dead column{'s' if len(dead) > 1 else ''} detected: {listed}{more}",
            "Remove unused columns from SELECT clause to improve query clarity and reduce data transfer",
            HintCategory.QUALITY,
            HintSeverity.LOW,
            node_id=node.parent_id,
        )


# ============================================================================
# Repeated table scans
# ============================================================================


def detect_repeated_table_scans(ctx: ParserContext, nodes: List[FlowNode]):
    usages: Dict[str, List[FlowNode]] = defaultdict(list)
    for node in walk_nodes(nodes):
        if node.type == NodeType.TABLE and node.table_category == TableCategory.PHYSICAL and node.access_mode != "write":
            usages[node.label.lower()].append(node)

    for table, members in usages.items():
        if len(members) < 2:
            continue
        label = members[0].label
        for node in members:
            node.add_warning("repeated-scan", "medium", f'Table "{label}" is scanned {len(members)} times')
        hint = ctx.add_hint(
            HintType.WARNING,
            f'Table "{label}" scanned {len(members)} times',
            "Consider using a CTE or subquery to scan the table once",
            HintCategory.PERFORMANCE,
            HintSeverity.MEDIUM,
        )
        hint.related_tables = [table]


def detect_advanced_issues(ctx: ParserContext, nodes: List[FlowNode], sql: str):
    detect_unused_ctes(ctx, nodes)
    detect_duplicate_subqueries(ctx, nodes, sql)
    detect_dead_columns(ctx, nodes, sql)
    detect_repeated_table_scans(ctx, nodes)


__all__ = [
    "cte_name",
    "generate_presence_hints",
    "detect_unused_ctes",
    "TextSubquery",
    "find_text_subqueries",
    "subquery_signature",
    "detect_duplicate_subqueries",
    "detect_dead_columns",
    "detect_repeated_table_scans",
    "detect_advanced_issues",
]
