"""
Column lineage extraction.

Maps every projected column of a statement's primary SELECT to the
source columns and tables it is computed from, and traces each output
column of a SELECT node back through the flow graph to its source table.
"""

import re
from collections import defaultdict
from typing import Dict, List, Optional, Set

from sqlglot import exp

from .adapter import ProjectionItem, SelectStatement, Statement
from .config import Dialect
from .expressions import column_references, format_expression, is_function_call
from .function_registry import function_name, is_aggregate_call
from .models import (
    ColumnFlow,
    ColumnInfo,
    ColumnLineage,
    ColumnSource,
    FlowEdge,
    FlowNode,
    LineageStep,
    NodeType,
    TableCategory,
    TransformationKind,
)


def column_info(item: ProjectionItem, dialect: Dialect) -> ColumnInfo:
    """
    Lineage metadata for one SELECT-list entry.

    Transformation precedence: an alias over a differently named plain
    column is a rename, then aggregate, then window, then passthrough.
    Star projections are direct.
    """
    expression = item.expression
    if item.is_star:
        text = format_expression(expression)
        table = expression.table if isinstance(expression, exp.Column) else ""
        return ColumnInfo(
            name=text,
            expression=text,
            source_column="*",
            source_table=table or None,
            transformation=TransformationKind.DIRECT,
        )

    # One level of CAST is transparent for source attribution
    source = expression.this if isinstance(expression, exp.Cast) else expression
    source_column = source.name if isinstance(source, exp.Column) else None
    source_table = (source.table or None) if isinstance(source, exp.Column) else None

    is_window = isinstance(expression, exp.Window)
    is_aggregate = not is_window and is_aggregate_call(expression, dialect)

    if item.alias:
        name = item.alias
    elif source_column:
        name = source_column
    elif is_window and expression.this is not None:
        name = function_name(expression.this)
    elif is_function_call(expression):
        name = function_name(expression)
    elif isinstance(expression, exp.Literal):
        name = str(expression.this)
    else:
        name = "expr"

    if item.alias and isinstance(expression, exp.Column) and item.alias.lower() != expression.name.lower():
        transformation = TransformationKind.RENAMED
    elif is_aggregate:
        transformation = TransformationKind.AGGREGATED
    elif is_window:
        transformation = TransformationKind.CALCULATED
    else:
        transformation = TransformationKind.PASSTHROUGH

    return ColumnInfo(
        name=name,
        expression=format_expression(expression),
        source_column=source_column,
        source_table=source_table,
        is_aggregate=is_aggregate,
        is_window_func=is_window,
        transformation=transformation,
    )


def primary_select(statement: Statement) -> Optional[SelectStatement]:
    """The SELECT whose projection defines a statement's output columns"""
    if statement.kind in ("select", "insert", "create"):
        return statement.select
    return None


def _alias_map(select: SelectStatement) -> Dict[str, str]:
    """alias (and bare name) -> table name, lower-cased keys"""
    aliases: Dict[str, str] = {}
    for source in select.sources:
        if source.kind not in ("table", "subquery", "function"):
            continue
        aliases[source.name.lower()] = source.name
        if source.alias:
            aliases[source.alias.lower()] = source.name
    return aliases


def _table_node_ids(nodes: List[FlowNode]) -> Dict[str, str]:
    """First top-level table/subquery node id per lower-cased label"""
    ids: Dict[str, str] = {}
    for node in nodes:
        if node.type in (NodeType.TABLE, NodeType.SUBQUERY) and node.access_mode != "write":
            ids.setdefault(node.label.lower(), node.id)
    return ids


def extract_column_lineage(statement: Statement, nodes: List[FlowNode], dialect: Dialect) -> List[ColumnLineage]:
    """
    Column lineage for a statement's output.

    Non-SELECT statements yield an empty list; INSERT...SELECT, CREATE
    TABLE AS and CREATE VIEW use their inner SELECT.
    """
    select = primary_select(statement)
    if select is None:
        return []

    aliases = _alias_map(select)
    node_ids = _table_node_ids(nodes)
    source_tables = [source.name for source in select.sources if source.kind in ("table", "subquery", "function")]
    single_table = source_tables[0] if len(source_tables) == 1 else None

    def resolve(table_ref: Optional[str]) -> Optional[str]:
        if not table_ref:
            return single_table
        return aliases.get(table_ref.lower(), table_ref)

    lineage = []
    for item in select.projections:
        info = column_info(item, dialect)
        entry = ColumnLineage(
            output_column=info.name,
            expression=info.expression,
            source_column=info.source_column,
            source_table=resolve(info.source_table) if info.source_column else None,
            transformation=info.transformation,
        )

        if item.is_star:
            star_table = resolve(info.source_table) if info.source_table else None
            for node in nodes:
                if node.type != NodeType.TABLE or node.access_mode == "write":
                    continue
                if node.table_category == TableCategory.TABLE_FUNCTION:
                    continue
                if star_table and node.label.lower() != star_table.lower():
                    continue
                entry.sources.append(ColumnSource(table=node.label, column="*", node_id=node.id))
        else:
            seen = set()
            for column in column_references(item.expression):
                table = resolve(column.table or None)
                key = (table, column.name)
                if key in seen:
                    continue
                seen.add(key)
                node_id = node_ids.get(table.lower()) if table else None
                entry.sources.append(ColumnSource(table=table, column=column.name, node_id=node_id))

        lineage.append(entry)
    return lineage


# ============================================================================
# Column flows
# ============================================================================

_PLAIN_REFERENCE = re.compile(r"^[\w.]+$")


def _step_transformation(column: ColumnInfo, node: FlowNode) -> str:
    if node.type == NodeType.TABLE:
        return "source"
    if column.is_aggregate:
        return "aggregated"
    if column.is_window_func or node.type == NodeType.WINDOW:
        return "calculated"
    if node.type == NodeType.JOIN:
        return "joined"
    if column.transformation == TransformationKind.DIRECT:
        return "passthrough"
    if column.source_column and column.name.lower() != column.source_column.lower():
        return "renamed"
    if column.expression and column.expression != column.name and not _PLAIN_REFERENCE.match(column.expression):
        return "calculated"
    return "passthrough"


def _upstream_column(target: ColumnInfo, source: FlowNode) -> ColumnInfo:
    """The column a source node hands to the node computing `target`"""
    if target.source_column and target.source_table and _matches_table(target.source_table, source):
        return ColumnInfo(
            name=target.source_column,
            expression=target.source_column,
            source_table=target.source_table,
        )

    name = target.name.lower()
    expression = (target.expression or "").lower()

    if source.type == NodeType.AGGREGATE:
        for detail in source.aggregate_details or []:
            output = detail.alias or detail.name
            if output.lower() == name or output.lower() in expression:
                return ColumnInfo(
                    name=output,
                    expression=detail.expression,
                    is_aggregate=True,
                    source_column=detail.source_column or output,
                    source_table=detail.source_table,
                )

    if source.type == NodeType.WINDOW:
        for detail in source.window_details or []:
            output = detail.alias or detail.name
            if output.lower() == name:
                return ColumnInfo(name=output, expression=f"{detail.name}() OVER (...)", is_window_func=True)

    for column in source.columns or []:
        candidate = column.name.lower()
        if candidate == name or candidate == (target.source_column or "").lower() or candidate in expression:
            return column

    passthrough = target.source_column or target.name
    if source.type == NodeType.JOIN:
        return ColumnInfo(
            name=passthrough,
            expression=passthrough,
            source_column=target.source_column,
            source_table=target.source_table,
        )
    return ColumnInfo(name=passthrough, expression=passthrough)


def _matches_table(table_ref: str, node: FlowNode) -> bool:
    """Whether a table name or alias refers to `node`"""
    ref = table_ref.lower()
    label = node.label.lower()
    if label == ref or f"alias: {ref}" in (detail.lower() for detail in node.details):
        return True
    if len(ref) <= 2:
        return label.startswith(ref)
    return ref in label or label in ref


def _table_for(table_ref: str, nodes: List[FlowNode]) -> Optional[FlowNode]:
    return next((node for node in nodes if node.type == NodeType.TABLE and _matches_table(table_ref, node)), None)


def trace_column_path(
    column: ColumnInfo,
    node: FlowNode,
    nodes_by_id: Dict[str, FlowNode],
    incoming: Dict[str, List[str]],
    visited: Optional[Set[str]] = None,
) -> List[LineageStep]:
    """
    Lineage steps ending at `node`, ordered from source table to `node`.

    Follows the first incoming edge whose source node yields a path. When
    nothing upstream can be traced, a column with an explicit source table
    is attached to the matching table node.
    """
    visited = set() if visited is None else visited
    if node.id in visited:
        return []
    visited.add(node.id)

    step = LineageStep(
        node_id=node.id,
        node_name=node.label,
        node_type=node.type,
        column_name=column.name,
        transformation=_step_transformation(column, node),
        expression=column.expression if column.expression != column.name else None,
    )
    if node.type == NodeType.TABLE:
        return [step]

    sources = [nodes_by_id[source_id] for source_id in incoming.get(node.id, []) if source_id in nodes_by_id]
    if column.source_table:
        # Join inputs that match the column's table are tried first
        sources.sort(key=lambda source: not _matches_table(column.source_table, source))
    for source in sources:
        upstream = _upstream_column(column, source)
        if upstream.is_aggregate and upstream.source_column and upstream.source_column != upstream.name:
            # COUNT(order_id) traces order_id, not the aggregate's alias
            upstream = ColumnInfo(
                name=upstream.source_column,
                expression=upstream.source_column,
                source_column=upstream.source_column,
                source_table=upstream.source_table,
            )
        path = trace_column_path(upstream, source, nodes_by_id, incoming, set(visited))
        if path:
            return path + [step]

    path = [step]
    if column.source_table and column.source_column:
        table = _table_for(column.source_table, list(nodes_by_id.values()))
        if table is not None:
            path.insert(
                0,
                LineageStep(
                    node_id=table.id,
                    node_name=table.label,
                    node_type=NodeType.TABLE,
                    column_name=column.source_column,
                    transformation="source",
                ),
            )
    return path


def extract_column_flows(statement: Statement, nodes: List[FlowNode], edges: List[FlowEdge]) -> List[ColumnFlow]:
    """
    Column flows for every output column of the top-level SELECT nodes.

    Only SELECT statements produce flows.
    """
    if statement.kind != "select":
        return []

    nodes_by_id = {node.id: node for node in nodes}
    incoming: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        incoming[edge.target].append(edge.source)

    flows = []
    for node in nodes:
        if node.type != NodeType.SELECT or not node.columns:
            continue
        for column in node.columns:
            path = trace_column_path(column, node, nodes_by_id, incoming)
            if path:
                flows.append(
                    ColumnFlow(
                        id=f"lineage_{node.id}_{column.name}",
                        output_column=column.name,
                        output_node_id=node.id,
                        lineage_path=path,
                    )
                )
    return flows


__all__ = [
    "column_info",
    "primary_select",
    "extract_column_lineage",
    "trace_column_path",
    "extract_column_flows",
]
