"""
Structural performance rules.

Runs over the primary SELECT and the flow graph after the presence and
advanced rules: filter pushdown, join order, repeated scans (merged with
duplicate-subquery findings), subquery-to-JOIN rewrites, index/clustering
candidates, non-sargable predicates and aggregate usage.
"""

import logging
from typing import Dict, List, Optional, Set

from sqlglot import exp

from .adapter import SelectStatement, normalize_query
from .expressions import (
    column_display_name,
    column_references,
    contains_aggregate,
    find_subqueries,
    function_arguments,
    is_function_call,
    iter_local_nodes,
    unwrap_subquery,
)
from .function_registry import function_name, is_aggregate_call
from .models import (
    FlowEdge,
    FlowNode,
    HintCategory,
    HintSeverity,
    HintType,
    IndexSuggestion,
    NodeType,
    OptimizationHint,
    ParserContext,
)

logger = logging.getLogger(__name__)

MAX_GROUP_BY_COLUMNS = 5

_SEVERITY_PENALTY = {
    HintSeverity.HIGH: 15,
    HintSeverity.MEDIUM: 8,
    HintSeverity.LOW: 3,
}


# ============================================================================
# Graph rules
# ============================================================================


def _trace_source_tables(node_id: str, nodes_by_id: Dict[str, FlowNode], incoming: Dict[str, List[str]]) -> List[str]:
    tables: List[str] = []
    visited: Set[str] = set()
    stack = [node_id]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        node = nodes_by_id.get(current)
        if node is None:
            continue
        if node.type == NodeType.TABLE:
            tables.append(node.label)
            continue
        stack.extend(incoming.get(current, []))
    return tables


def detect_filter_pushdown(ctx: ParserContext, nodes: List[FlowNode], edges: List[FlowEdge]):
    """A filter after a JOIN that only touches one source table could run before the JOIN"""
    nodes_by_id = {node.id: node for node in nodes}
    incoming: Dict[str, List[str]] = {}
    for edge in edges:
        incoming.setdefault(edge.target, []).append(edge.source)

    for node in nodes:
        if node.type != NodeType.FILTER or not node.details:
            continue
        after_join = any(
            nodes_by_id.get(source) is not None and nodes_by_id[source].type == NodeType.JOIN
            for source in incoming.get(node.id, [])
        )
        if not after_join:
            continue
        tables = _trace_source_tables(node.id, nodes_by_id, incoming)
        if len(tables) != 1:
            continue
        ctx.add_hint(
            HintType.WARNING,
            f"Filter on {tables[0]} could be applied before JOIN",
            "Move filter to a subquery or apply earlier in execution to reduce intermediate result size",
            HintCategory.PERFORMANCE,
            HintSeverity.MEDIUM,
            node_id=node.id,
        )
        node.add_warning("filter-pushdown", "medium", "Filter could be pushed down before JOIN")


def analyze_join_order(ctx: ParserContext, nodes: List[FlowNode]):
    joins = [node for node in nodes if node.type == NodeType.JOIN]
    tables = [node for node in nodes if node.type == NodeType.TABLE]

    filtered_tables = set()
    for node in nodes:
        if node.type != NodeType.FILTER or not node.details:
            continue
        text = " ".join(node.details).lower()
        for table in tables:
            if table.label.lower() in text:
                filtered_tables.add(table.label.lower())

    early_cross = next(
        (node for index, node in enumerate(joins) if node.join_type == "CROSS" and index < len(joins) - 1),
        None,
    )
    if early_cross is not None:
        ctx.add_hint(
            HintType.WARNING,
            "CROSS JOIN appears before other JOINs",
            "CROSS JOINs should be as late as possible to avoid Cartesian explosion",
            HintCategory.PERFORMANCE,
            HintSeverity.HIGH,
            node_id=early_cross.id,
        )
        early_cross.add_warning("join-order", "high", "CROSS JOIN should be later in join order")

    if filtered_tables and len(joins) > 1:
        ctx.add_hint(
            HintType.INFO,
            "Tables with WHERE filters detected",
            "Consider joining filtered tables first to reduce intermediate result size",
            HintCategory.PERFORMANCE,
            HintSeverity.LOW,
        )


def _is_repeated_scan_hint(hint: OptimizationHint, table: str) -> bool:
    return hint.category == HintCategory.PERFORMANCE and table in hint.related_tables and "scanned" in hint.message


def _is_duplicate_subquery_hint(hint: OptimizationHint, table: str) -> bool:
    return hint.category == HintCategory.QUALITY and table in hint.related_tables and "subqueries detected" in hint.message


def detect_repeated_scans(ctx: ParserContext):
    """
    One repeated-scan finding per table referenced more than once.

    When duplicate subqueries explain the repeated scans, both findings
    (and any graph-level scan finding for the same table) are replaced by
    one merged hint.
    """
    for table, count in ctx.table_usage.items():
        if count < 2:
            continue
        severity = HintSeverity.HIGH if count > 2 else HintSeverity.MEDIUM
        duplicates = [hint for hint in ctx.hints if _is_duplicate_subquery_hint(hint, table)]
        scans = [hint for hint in ctx.hints if _is_repeated_scan_hint(hint, table)]

        if duplicates:
            superseded = {id(hint) for hint in duplicates + scans}
            ctx.hints = [hint for hint in ctx.hints if id(hint) not in superseded]
            merged = ctx.add_hint(
                HintType.WARNING,
                f"Table '{table}' is scanned {count} times via duplicate subqueries",
                "Extract the repeated subqueries into a single CTE to scan once and reuse. "
                "This improves both performance and maintainability.",
                HintCategory.PERFORMANCE,
                severity,
            )
            merged.related_tables = [table]
            logger.debug("Merged %d finding(s) for table %s", len(superseded), table)
        elif not scans:
            hint = ctx.add_hint(
                HintType.WARNING,
                f"Table '{table}' is accessed {count} times",
                "Consider using a CTE to scan the table once and reuse the result",
                HintCategory.PERFORMANCE,
                severity,
            )
            hint.related_tables = [table]


# ============================================================================
# SELECT rules
# ============================================================================


def detect_having_without_aggregate(ctx: ParserContext, select: SelectStatement):
    if select.having is not None and not contains_aggregate(select.having, ctx.dialect):
        ctx.add_hint(
            HintType.INFO,
            "HAVING clause without aggregate functions",
            "Consider moving this condition to WHERE clause for better performance",
            HintCategory.PERFORMANCE,
            HintSeverity.MEDIUM,
        )


def detect_subquery_conversions(ctx: ParserContext, select: SelectStatement):
    where = select.where
    for node in iter_local_nodes(where):
        if isinstance(node, exp.In) and node.args.get("query") is not None:
            if isinstance(node.parent, exp.Not):
                ctx.add_hint(
                    HintType.WARNING,
                    "NOT IN with subquery may have unexpected NULL behavior",
                    "Consider using NOT EXISTS or LEFT JOIN ... WHERE ... IS NULL for correct NULL handling",
                    HintCategory.QUALITY,
                    HintSeverity.HIGH,
                )
                continue
            inner = normalize_query(unwrap_subquery(node.args["query"]))
            if inner.sources and len(inner.projections) == 1:
                table = inner.sources[0].name
                left = node.this.name if isinstance(node.this, exp.Column) else "column"
                projected = inner.projections[0].expression
                right = projected.name if isinstance(projected, exp.Column) else "column"
                ctx.add_hint(
                    HintType.INFO,
                    "IN subquery could be converted to JOIN",
                    f"Consider: JOIN {table} ON {left} = {right}",
                    HintCategory.PERFORMANCE,
                    HintSeverity.MEDIUM,
                )
        elif isinstance(node, exp.Exists) and not isinstance(node.parent, exp.Not):
            inner = normalize_query(unwrap_subquery(node.this))
            if inner.where is not None:
                ctx.add_hint(
                    HintType.INFO,
                    "EXISTS subquery could be converted to JOIN",
                    "Consider converting to INNER JOIN with the same condition for better performance",
                    HintCategory.PERFORMANCE,
                    HintSeverity.MEDIUM,
                )

    for item in select.projections:
        if isinstance(item.expression, exp.Subquery) or find_subqueries(item.expression):
            ctx.add_hint(
                HintType.INFO,
                "Scalar subquery in SELECT list",
                "Consider using LEFT JOIN instead to avoid executing subquery for each row",
                HintCategory.PERFORMANCE,
                HintSeverity.MEDIUM,
            )


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


def generate_index_hints(ctx: ParserContext, select: SelectStatement) -> List[IndexSuggestion]:
    """Per-purpose index candidates plus one consolidated vendor-neutral hint"""
    by_purpose = {
        "filter": _unique([column_display_name(c) for c in column_references(select.where)]),
        "join": _unique(
            [column_display_name(c) for source in select.sources for c in column_references(source.condition)]
        ),
        "sort": _unique(
            [
                column_display_name(item.this)
                for item in (select.order_by.expressions if select.order_by is not None else [])
                if isinstance(item, exp.Ordered) and isinstance(item.this, exp.Column)
            ]
        ),
        "group": _unique([column_display_name(e) for e in select.group_by if isinstance(e, exp.Column)]),
    }
    clause_names = {"filter": "WHERE", "join": "JOIN", "sort": "ORDER BY", "group": "GROUP BY"}

    suggestions = []
    details = []
    all_columns: List[str] = []
    for reason, columns in by_purpose.items():
        if not columns:
            continue
        all_columns.extend(columns)
        details.append(f"{reason}: {', '.join(columns)}")
        suggestions.append(
            IndexSuggestion(
                columns=columns,
                index_type="composite" if reason == "filter" and len(columns) > 1 else "btree",
                reason=reason,
                message=f"Columns used in {clause_names[reason]}: {', '.join(columns)}",
                suggestion=f"Consider indexing for {reason} optimization",
            )
        )

    if all_columns:
        ctx.add_hint(
            HintType.INFO,
            f"Columns that may benefit from indexing/clustering: {', '.join(_unique(all_columns))}",
            f"Usage: {'; '.join(details)}. Check your database's optimization options "
            "(indexes, clustering keys, sort keys).",
            HintCategory.PERFORMANCE,
            HintSeverity.LOW,
        )
    return suggestions


def _qualifiers(node: Optional[exp.Expression]) -> Set[str]:
    return {column.table.lower() for column in column_references(node) if column.table}


def detect_non_sargable(ctx: ParserContext, select: SelectStatement):
    """Predicates in WHERE that keep the engine from using an index"""
    for node in iter_local_nodes(select.where):
        if is_function_call(node) and not is_aggregate_call(node, ctx.dialect):
            args = function_arguments(node)
            if len(args) == 1 and isinstance(args[0], exp.Column):
                name = function_name(node)
                column = column_display_name(args[0])
                if name in ("YEAR", "MONTH", "DAY"):
                    ctx.add_hint(
                        HintType.WARNING,
                        f"Function {name}() on column {column} prevents index usage",
                        f"Rewrite as: {column} >= '2024-01-01' AND {column} < '2025-01-01' (for YEAR)",
                        HintCategory.PERFORMANCE,
                        HintSeverity.HIGH,
                    )
                elif name in ("UPPER", "LOWER"):
                    ctx.add_hint(
                        HintType.WARNING,
                        f"Function {name}() on column prevents index usage",
                        "Consider using case-insensitive collation or storing normalized values",
                        HintCategory.PERFORMANCE,
                        HintSeverity.MEDIUM,
                    )
                else:
                    ctx.add_hint(
                        HintType.INFO,
                        f"Function {name}() on column may prevent index usage",
                        "Consider rewriting to avoid function on indexed column",
                        HintCategory.PERFORMANCE,
                        HintSeverity.MEDIUM,
                    )

        if isinstance(node, (exp.Like, exp.ILike)):
            pattern = node.expression
            if isinstance(pattern, exp.Literal) and pattern.is_string and str(pattern.this).startswith("%"):
                ctx.add_hint(
                    HintType.WARNING,
                    "LIKE pattern starts with wildcard (%)",
                    "Leading wildcards prevent index usage. Consider full-text search or reverse index",
                    HintCategory.PERFORMANCE,
                    HintSeverity.HIGH,
                )

        if isinstance(node, exp.Or):
            left, right = _qualifiers(node.left), _qualifiers(node.right)
            if left and right and not left & right:
                ctx.add_hint(
                    HintType.INFO,
                    "OR condition spans different columns",
                    "Consider using UNION or separate indexes for better performance",
                    HintCategory.PERFORMANCE,
                    HintSeverity.MEDIUM,
                )


def analyze_aggregates(ctx: ParserContext, select: SelectStatement):
    has_count_star = False
    has_count_distinct = False
    for item in select.projections:
        expression = item.expression
        if not isinstance(expression, exp.Count):
            continue
        argument = expression.this
        if isinstance(argument, exp.Star):
            has_count_star = True
        elif isinstance(argument, exp.Distinct):
            has_count_distinct = True

    if len(select.group_by) > MAX_GROUP_BY_COLUMNS:
        ctx.add_hint(
            HintType.WARNING,
            f"GROUP BY with {len(select.group_by)} columns",
            "High cardinality grouping may impact performance. Review if all columns are necessary",
            HintCategory.PERFORMANCE,
            HintSeverity.MEDIUM,
        )

    if select.where is None and (select.group_by or has_count_star or has_count_distinct):
        ctx.add_hint(
            HintType.INFO,
            "Aggregate query without WHERE clause",
            "Consider adding WHERE clause to reduce rows before aggregation",
            HintCategory.PERFORMANCE,
            HintSeverity.LOW,
        )

    if has_count_distinct and not has_count_star:
        ctx.add_hint(
            HintType.INFO,
            "COUNT(DISTINCT) detected",
            "COUNT(DISTINCT) is expensive. Consider approximate alternatives if exact count is not required",
            HintCategory.PERFORMANCE,
            HintSeverity.MEDIUM,
        )


# ============================================================================
# Entry points
# ============================================================================


def analyze_performance(
    ctx: ParserContext,
    nodes: List[FlowNode],
    edges: List[FlowEdge],
    select: Optional[SelectStatement],
) -> List[IndexSuggestion]:
    """
    Run every structural rule, appending hints to ctx.hints.

    Returns:
        Index / clustering candidates for the primary SELECT
    """
    detect_filter_pushdown(ctx, nodes, edges)
    analyze_join_order(ctx, nodes)
    detect_repeated_scans(ctx)
    if select is None:
        return []
    detect_having_without_aggregate(ctx, select)
    detect_subquery_conversions(ctx, select)
    suggestions = generate_index_hints(ctx, select)
    detect_non_sargable(ctx, select)
    analyze_aggregates(ctx, select)
    return suggestions


def performance_score(hints: List[OptimizationHint]) -> int:
    """100 minus 15/8/3 per high/medium/low performance hint, clamped to [0, 100]"""
    penalty = sum(_SEVERITY_PENALTY[hint.severity] for hint in hints if hint.category == HintCategory.PERFORMANCE)
    return max(0, min(100, 100 - penalty))


def count_performance_issues(hints: List[OptimizationHint]) -> int:
    return sum(1 for hint in hints if hint.category == HintCategory.PERFORMANCE)


__all__ = [
    "detect_filter_pushdown",
    "analyze_join_order",
    "detect_repeated_scans",
    "detect_having_without_aggregate",
    "detect_subquery_conversions",
    "generate_index_hints",
    "detect_non_sargable",
    "analyze_aggregates",
    "analyze_performance",
    "performance_score",
    "count_performance_issues",
]
