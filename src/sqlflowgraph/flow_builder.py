"""
Flow graph construction.

Compiles a normalized Statement into flow nodes and edges: one node per
pipeline stage (tables, joins, filters, aggregation, projection, sort,
limit, result), with CTE bodies and derived tables compiled into
collapsed child graphs.
"""

import logging
from typing import List, Optional, Set, Tuple

from sqlglot import exp

from .adapter import ProjectionItem, SelectStatement, SourceRef, Statement, iter_select_tree, normalize_query
from .config import MAX_NESTING_DEPTH
from .expressions import (
    aggregate_calls,
    extract_conditions,
    find_subqueries,
    format_expression,
    format_order_by,
    function_arguments,
    is_function_call,
    iter_local_nodes,
    window_calls,
)
from .function_registry import classify_function, function_name
from .lineage import column_info
from .models import (
    AggregateFunctionDetail,
    CaseDetail,
    FlowEdge,
    FlowNode,
    NodeType,
    ParserContext,
    TableCategory,
    WindowFunctionDetail,
    walk_nodes,
)

logger = logging.getLogger(__name__)


class FlowGraphBuilder:
    """
    Builds the flow graph of one top-level statement.

    Nodes and edges accumulate in `nodes` / `edges`; statistics, hints and
    table usage accumulate in the shared ParserContext.

    Example:
        ctx = ParserContext(dialect=Dialect.MYSQL)
        builder = FlowGraphBuilder(ctx)
        terminal_id = builder.build(statement)
    """

    def __init__(self, ctx: ParserContext, nodes: Optional[List[FlowNode]] = None, edges: Optional[List[FlowEdge]] = None):
        self.ctx = ctx
        self.nodes: List[FlowNode] = nodes if nodes is not None else []
        self.edges: List[FlowEdge] = edges if edges is not None else []

    # ========================================================================
    # Node / edge helpers
    # ========================================================================

    def _add_node(self, node_type: NodeType, prefix: str, label: str, description: str = "", details=None, **kwargs) -> FlowNode:
        node = FlowNode(
            id=self.ctx.gen_id(prefix),
            type=node_type,
            label=label,
            description=description,
            details=list(details or []),
            **kwargs,
        )
        self.nodes.append(node)
        return node

    def _add_edge(self, source: str, target: str, sql_clause: Optional[str] = None, clause_type: str = "flow") -> FlowEdge:
        edge = FlowEdge(
            id=self.ctx.gen_id("e"),
            source=source,
            target=target,
            sql_clause=sql_clause or None,
            clause_type=clause_type,
        )
        self.edges.append(edge)
        return edge

    def _chain(self, current_id: Optional[str], node: FlowNode, sql_clause: Optional[str] = None, clause_type: str = "flow") -> str:
        if current_id is not None:
            self._add_edge(current_id, node.id, sql_clause, clause_type)
        return node.id

    def _write_target(self, ref: SourceRef, operation: str, description: str) -> FlowNode:
        self.ctx.track_table(ref.name)
        return self._add_node(
            NodeType.TABLE,
            "table",
            ref.name,
            description,
            table_category=TableCategory.PHYSICAL,
            access_mode="write",
            operation_type=operation,
        )

    # ========================================================================
    # Statement dispatch
    # ========================================================================

    def build(self, statement: Statement) -> Optional[str]:
        """
        Compile one statement into the graph.

        Returns:
            Id of the statement's terminal node, or None if it produced none
        """
        kind = statement.kind
        if kind == "select" and statement.select is not None:
            return self.build_select(statement.select)
        if kind == "insert":
            return self._build_insert(statement)
        if kind in ("update", "delete"):
            return self._build_update_delete(statement)
        if kind == "create" and statement.select is not None:
            return self._build_create_as_select(statement)
        if kind == "merge":
            return self._build_merge(statement)
        return self._build_generic(statement)

    # ========================================================================
    # SELECT
    # ========================================================================

    def build_select(self, select: SelectStatement, cte_names: Optional[Set[str]] = None) -> str:
        """
        Compile a SELECT (and any set-operation chain) into the graph.

        Returns:
            Id of the final result (or set-operation) node
        """
        cte_names = set(cte_names or ())
        for block in select.branches():
            cte_names.update(cte.name.lower() for cte in block.ctes)

        cte_nodes: List[Tuple[str, FlowNode]] = []
        for block in select.branches():
            cte_nodes.extend(self._build_ctes(block, cte_names))
        first_new = len(self.nodes)

        output_id = self._build_select_block(select, cte_names)
        current = select
        while current.next is not None:
            operator = current.set_operation or "UNION"
            following = current.next
            next_id = self._build_select_block(following, cte_names)
            self.ctx.stats.unions += 1
            union = self._add_node(
                NodeType.UNION,
                "union",
                operator,
                f"{operator} operation",
                details=[
                    f"Left: {', '.join(current.table_names()) or '-'}",
                    f"Right: {', '.join(following.table_names()) or '-'}",
                ],
            )
            self._add_edge(output_id, union.id, operator, "union")
            self._add_edge(next_id, union.id, operator, "union")
            output_id = union.id
            current = following

        self._link_ctes(cte_nodes, self.nodes[first_new:])
        return output_id

    def _build_ctes(self, block: SelectStatement, cte_names: Set[str]) -> List[Tuple[str, FlowNode]]:
        built = []
        for cte in block.ctes:
            self.ctx.stats.ctes += 1
            node = self._add_node(
                NodeType.CTE,
                "cte",
                f"WITH RECURSIVE {cte.name}" if cte.recursive else f"WITH {cte.name}",
                "Recursive Common Table Expression" if cte.recursive else "Common Table Expression",
                details=[f"Columns: {', '.join(cte.column_names)}"] if cte.column_names else [],
                expanded=False,
                children=[],
                child_edges=[],
                depth=0,
            )
            if cte.query is not None:
                self._build_nested(cte.query, node.children, node.child_edges, node.id, 0, cte_names)
            built.append((cte.name.lower(), node))
        return built

    def _link_ctes(self, cte_nodes: List[Tuple[str, FlowNode]], new_nodes: List[FlowNode]):
        """Connect each CTE to the nodes that read it (references and other CTE bodies)"""
        for name, cte_node in cte_nodes:
            for node in new_nodes:
                if node.table_category == TableCategory.CTE_REFERENCE and node.label.lower() == name:
                    self._add_edge(cte_node.id, node.id, f"WITH {node.label}", "cte")
            for other_name, other in cte_nodes:
                if other is cte_node:
                    continue
                if any(
                    child.table_category == TableCategory.CTE_REFERENCE and child.label.lower() == name
                    for child in walk_nodes(other.children or [])
                ):
                    self._add_edge(cte_node.id, other.id, f"WITH {other_name}", "cte")

    def _build_select_block(self, select: SelectStatement, cte_names: Set[str]) -> str:
        ctx = self.ctx
        current_id: Optional[str] = None

        # FROM / JOIN
        for index, source in enumerate(select.sources):
            source_id = self._build_source(source, cte_names, joined=index > 0)
            if current_id is None:
                current_id = source_id
            else:
                current_id = self._build_join(source, current_id, source_id)

        self._track_functions(select)

        if select.where is not None:
            conditions = extract_conditions(select.where)
            ctx.stats.conditions += len(conditions)
            node = self._add_node(NodeType.FILTER, "filter", "WHERE", "Filter rows", conditions)
            current_id = self._chain(current_id, node, " AND ".join(conditions), "where")

        if select.group_by:
            columns = ", ".join(format_expression(e) for e in select.group_by)
            node = self._add_node(NodeType.AGGREGATE, "agg", "GROUP BY", "Aggregate rows", [f"Columns: {columns}"])
            current_id = self._chain(current_id, node, f"GROUP BY {columns}", "group")

        if select.having is not None:
            condition = format_expression(select.having)
            node = self._add_node(NodeType.FILTER, "filter", "HAVING", "Filter groups", [condition])
            current_id = self._chain(current_id, node, condition, "having")

        if select.qualify is not None:
            conditions = extract_conditions(select.qualify)
            node = self._add_node(NodeType.FILTER, "filter", "QUALIFY", "Filter window results", conditions)
            current_id = self._chain(current_id, node, " AND ".join(conditions), "qualify")

        aggregates = self._aggregate_details(select.projections)
        if select.group_by or aggregates:
            ctx.stats.aggregations += 1
        if aggregates:
            node = self._add_node(
                NodeType.AGGREGATE,
                "aggregate",
                "AGGREGATE",
                f"{len(aggregates)} aggregate function(s)",
                [f"{a.expression} AS {a.alias}" if a.alias else a.expression for a in aggregates],
                aggregate_details=aggregates,
            )
            current_id = self._chain(current_id, node)

        cases = self._case_details(select.projections)
        if cases:
            node = self._add_node(
                NodeType.CASE,
                "case",
                "CASE",
                f"{len(cases)} CASE statement(s)",
                [case.alias or "CASE" for case in cases],
                case_details=cases,
            )
            current_id = self._chain(current_id, node)

        windows = self._window_details(select.projections)
        if windows:
            ctx.stats.window_functions += len(windows)
            node = self._add_node(
                NodeType.WINDOW,
                "window",
                "WINDOW",
                f"{len(windows)} window function(s)",
                [f"{w.name}() AS {w.alias}" if w.alias else f"{w.name}()" for w in windows],
                window_details=windows,
            )
            current_id = self._chain(current_id, node)

        columns = [column_info(item, ctx.dialect) for item in select.projections]
        if any(item.is_star for item in select.projections):
            ctx.has_select_star = True
        names = [column.name for column in columns]
        select_node = self._add_node(
            NodeType.SELECT,
            "select",
            "SELECT",
            "Project distinct columns" if select.distinct else "Project columns",
            names if len(names) <= 5 else [f"{len(names)} columns"],
            columns=columns,
        )
        current_id = self._chain(current_id, select_node)
        self._wire_subquery_sources(select, select_node, cte_names)

        order_by = format_order_by(select.order_by)
        if order_by:
            node = self._add_node(NodeType.SORT, "sort", "ORDER BY", "Sort results", [", ".join(order_by)])
            current_id = self._chain(current_id, node, "ORDER BY " + ", ".join(order_by), "order")

        if select.limit is not None:
            ctx.has_no_limit = False
            details = [f"{select.limit} rows"]
            if select.offset:
                details.append(f"Offset: {select.offset}")
            node = self._add_node(NodeType.LIMIT, "limit", "LIMIT", "Limit rows", details)
            current_id = self._chain(current_id, node, f"LIMIT {select.limit}", "limit")

        result = self._add_node(NodeType.RESULT, "result", "Result", "Query output")
        return self._chain(current_id, result)

    def _build_source(self, source: SourceRef, cte_names: Set[str], joined: bool) -> str:
        ctx = self.ctx
        if source.kind == "subquery" and source.query is not None:
            ctx.stats.subqueries += 1
            node = self._add_node(
                NodeType.SUBQUERY,
                "subquery",
                source.alias or "subquery",
                table_category=TableCategory.DERIVED,
                expanded=False,
                children=[],
                child_edges=[],
            )
            self._build_nested(source.query, node.children, node.child_edges, node.id, 0, cte_names)
            node.description = f"Derived table with {len(node.children)} operations" if node.children else "Derived table"
            return node.id

        if source.kind == "function":
            ctx.functions_used.add(f"{source.function_name}:table")
            details = [f"Function: {source.function_name}"]
            if source.alias:
                details.append(f"Alias: {source.alias}")
            node = self._add_node(
                NodeType.TABLE,
                "table",
                source.alias or source.function_name,
                f"Joined table function ({source.function_name})" if joined else f"Table function source ({source.function_name})",
                details,
                table_category=TableCategory.TABLE_FUNCTION,
                access_mode="read",
            )
            return node.id

        if source.kind == "values":
            node = self._add_node(
                NodeType.TABLE,
                "table",
                source.alias or "VALUES",
                "Inline VALUES list",
                table_category=TableCategory.DERIVED,
                access_mode="read",
            )
            return node.id

        is_cte = source.name.lower() in cte_names and not source.schema
        if is_cte:
            description = "Joined CTE reference" if joined else "CTE reference"
        else:
            description = "Joined table" if joined else "Source table"
            ctx.track_table(source.name)
        details = [f"Alias: {source.alias}"] if source.alias and source.alias != source.name else []
        if source.schema:
            details.append(f"Schema: {source.schema}")
        node = self._add_node(
            NodeType.TABLE,
            "table",
            source.name,
            description,
            details,
            table_category=TableCategory.CTE_REFERENCE if is_cte else TableCategory.PHYSICAL,
            access_mode="read",
        )
        return node.id

    def _build_join(self, source: SourceRef, left_id: str, right_id: str) -> str:
        ctx = self.ctx
        ctx.stats.joins += 1
        if source.implicit:
            ctx.implicit_joins += 1
            node = self._add_node(
                NodeType.JOIN,
                "join",
                "CROSS JOIN",
                f"Implicit join with {source.display_name}",
                [source.display_name],
                join_type="CROSS",
            )
            self._add_edge(left_id, node.id, None, "join")
            self._add_edge(right_id, node.id, None, "join")
            return node.id

        condition = source.condition_text()
        node = self._add_node(
            NodeType.JOIN,
            "join",
            source.join_keyword or "JOIN",
            f"Join with {source.display_name}",
            [text for text in (condition, source.display_name) if text],
            join_type=source.join_type,
        )
        self._add_edge(left_id, node.id, condition, "join")
        self._add_edge(right_id, node.id, condition, "on")
        return node.id

    def _wire_subquery_sources(self, select: SelectStatement, select_node: FlowNode, cte_names: Set[str]):
        """Tables read by WHERE/HAVING/SELECT-list/ORDER BY/ON subqueries feed the SELECT directly"""
        subqueries = []
        for expression in self._clause_expressions(select):
            subqueries.extend(find_subqueries(expression))
        if not subqueries:
            return
        self.ctx.stats.subqueries += len(subqueries)

        seen = {node.label.lower() for node in self.nodes if node.type == NodeType.TABLE}
        for query in subqueries:
            for table in self._subquery_tables(query, cte_names, 1):
                key = table.lower()
                if key in seen:
                    continue
                seen.add(key)
                self.ctx.track_table(table)
                node = self._add_node(
                    NodeType.TABLE,
                    "table",
                    table,
                    "Scalar subquery source",
                    table_category=TableCategory.PHYSICAL,
                    access_mode="read",
                )
                self._add_edge(node.id, select_node.id, "Subquery source", "flow")

    @staticmethod
    def _clause_expressions(select: SelectStatement) -> List[exp.Expression]:
        expressions = [select.where, select.having, select.qualify, select.order_by]
        expressions.extend(item.expression for item in select.projections)
        expressions.extend(source.condition for source in select.sources)
        return [e for e in expressions if e is not None]

    def _subquery_tables(self, query: exp.Expression, cte_names: Set[str], depth: int) -> List[str]:
        """Physical table names read anywhere inside an expression subquery"""
        if depth > MAX_NESTING_DEPTH:
            return []
        inner = normalize_query(query)
        blocks = [block for block, _ in iter_select_tree(inner, MAX_NESTING_DEPTH - depth)]
        local_ctes = set(cte_names)
        for block in blocks:
            local_ctes.update(cte.name.lower() for cte in block.ctes)

        tables = []
        for block in blocks:
            for source in block.sources:
                if source.kind == "table" and (source.schema or source.name.lower() not in local_ctes):
                    tables.append(source.name)
            for expression in self._clause_expressions(block):
                for nested in find_subqueries(expression):
                    tables.extend(self._subquery_tables(nested, local_ctes, depth + 1))
        return tables

    # ========================================================================
    # Projection payloads
    # ========================================================================

    def _aggregate_details(self, projections: List[ProjectionItem]) -> List[AggregateFunctionDetail]:
        details = []
        seen = set()
        for item in projections:
            calls = aggregate_calls(item.expression, self.ctx.dialect)
            top_level = len(calls) == 1 and calls[0] is item.expression
            for call in calls:
                args = function_arguments(call)
                first = args[0] if args else None
                if isinstance(first, exp.Distinct) and first.expressions:
                    first = first.expressions[0]
                source_column = first.name if isinstance(first, exp.Column) else None
                source_table = (first.table or None) if isinstance(first, exp.Column) else None
                detail = AggregateFunctionDetail(
                    name=function_name(call),
                    expression=format_expression(call),
                    alias=item.alias if top_level else None,
                    source_column=source_column,
                    source_table=source_table,
                )
                key = (detail.name, detail.expression, source_table, source_column)
                if key in seen:
                    continue
                seen.add(key)
                details.append(detail)
        return details

    @staticmethod
    def _case_details(projections: List[ProjectionItem]) -> List[CaseDetail]:
        details = []
        for item in projections:
            case = item.expression
            if not isinstance(case, exp.Case):
                continue
            conditions = [
                (format_expression(branch.this), format_expression(branch.args.get("true")))
                for branch in case.args.get("ifs") or []
            ]
            default = case.args.get("default")
            details.append(
                CaseDetail(
                    conditions=conditions,
                    else_value=format_expression(default) if default is not None else None,
                    alias=item.alias,
                )
            )
        return details

    @staticmethod
    def _window_details(projections: List[ProjectionItem]) -> List[WindowFunctionDetail]:
        details = []
        for item in projections:
            for window in window_calls(item.expression):
                spec = window.args.get("spec")
                details.append(
                    WindowFunctionDetail(
                        name=function_name(window.this) if window.this is not None else "WINDOW",
                        partition_by=[format_expression(p) for p in window.args.get("partition_by") or []],
                        order_by=format_order_by(window.args.get("order")),
                        frame=spec.sql() if spec is not None else None,
                        alias=item.alias if window is item.expression else None,
                    )
                )
        return details

    def _track_functions(self, select: SelectStatement):
        expressions = [item.expression for item in select.projections]
        expressions.extend([select.where, select.having, select.qualify, select.order_by])
        expressions.extend(select.group_by)
        for expression in expressions:
            for node in iter_local_nodes(expression):
                if not is_function_call(node):
                    continue
                windowed = isinstance(node.parent, exp.Window) and node.parent.this is node
                category = classify_function(node, self.ctx.dialect, windowed=windowed)
                self.ctx.functions_used.add(f"{function_name(node)}:{category}")

    # ========================================================================
    # Nested bodies (CTEs, derived tables)
    # ========================================================================

    def _build_nested(
        self,
        select: SelectStatement,
        children: List[FlowNode],
        child_edges: List[FlowEdge],
        parent_id: str,
        depth: int,
        cte_names: Set[str],
    ) -> Optional[str]:
        """
        Compile a CTE / subquery body into a container's child graph.

        Children are flattened into the container's lists and tagged with
        the container id; `depth` is the container's nesting depth.

        Returns:
            Id of the last child in the body's chain
        """
        if depth >= MAX_NESTING_DEPTH:
            logger.debug("Nesting depth %d reached under %s; body not expanded", depth, parent_id)
            return None

        last_id = self._build_nested_block(select, children, child_edges, parent_id, depth, cte_names)
        current = select
        while current.next is not None:
            operator = current.set_operation or "UNION"
            next_id = self._build_nested_block(current.next, children, child_edges, parent_id, depth, cte_names)
            self.ctx.stats.unions += 1
            union = FlowNode(
                id=self.ctx.gen_id("child_union"),
                type=NodeType.UNION,
                label=operator,
                description=f"{operator} operation",
                parent_id=parent_id,
                depth=depth + 1,
            )
            children.append(union)
            for source_id in (last_id, next_id):
                if source_id is not None:
                    child_edges.append(FlowEdge(id=self.ctx.gen_id("ce"), source=source_id, target=union.id))
            last_id = union.id
            current = current.next
        return last_id

    def _build_nested_block(
        self,
        select: SelectStatement,
        children: List[FlowNode],
        child_edges: List[FlowEdge],
        parent_id: str,
        depth: int,
        cte_names: Set[str],
    ) -> Optional[str]:
        ctx = self.ctx
        cte_names = cte_names | {cte.name.lower() for cte in select.ctes}
        previous: Optional[str] = None

        def edge(source_id: Optional[str], target_id: str):
            if source_id is not None:
                child_edges.append(FlowEdge(id=ctx.gen_id("ce"), source=source_id, target=target_id))

        def child(node_type: NodeType, prefix: str, label: str, description: str, details=None, link=True, **kwargs) -> FlowNode:
            nonlocal previous
            node = FlowNode(
                id=ctx.gen_id(prefix),
                type=node_type,
                label=label,
                description=description,
                details=list(details or []),
                parent_id=parent_id,
                depth=depth + 1,
                **kwargs,
            )
            children.append(node)
            if link:
                edge(previous, node.id)
                previous = node.id
            return node

        for cte in select.ctes:
            ctx.stats.ctes += 1
            cte_node = child(
                NodeType.CTE,
                "child_cte",
                f"WITH RECURSIVE {cte.name}" if cte.recursive else f"WITH {cte.name}",
                "Nested Common Table Expression",
                link=False,
                expanded=False,
                children=[],
                child_edges=[],
            )
            if cte.query is not None:
                self._build_nested(cte.query, cte_node.children, cte_node.child_edges, cte_node.id, depth + 1, cte_names)

        for index, source in enumerate(select.sources):
            if source.kind == "subquery" and source.query is not None:
                ctx.stats.subqueries += 1
                body_id = self._build_nested(source.query, children, child_edges, parent_id, depth + 1, cte_names)
                source_id = body_id
            elif source.kind == "function":
                ctx.functions_used.add(f"{source.function_name}:table")
                source_id = child(
                    NodeType.TABLE,
                    "child_table",
                    source.alias or source.function_name,
                    "Table function",
                    link=False,
                    table_category=TableCategory.TABLE_FUNCTION,
                ).id
            else:
                is_cte = source.kind == "table" and source.name.lower() in cte_names and not source.schema
                if source.kind == "table" and not is_cte:
                    ctx.track_table(source.name)
                category = TableCategory.CTE_REFERENCE if is_cte else TableCategory.PHYSICAL
                if source.kind == "values":
                    category = TableCategory.DERIVED
                source_id = child(
                    NodeType.TABLE,
                    "child_table",
                    source.name,
                    "Table",
                    link=False,
                    table_category=category,
                    access_mode="read",
                ).id

            if source_id is None:
                continue
            if previous is None:
                previous = source_id
                continue

            ctx.stats.joins += 1
            if source.implicit:
                ctx.implicit_joins += 1
            keyword = "CROSS JOIN" if source.implicit else (source.join_keyword or "JOIN")
            condition = source.condition_text()
            join_node = child(
                NodeType.JOIN,
                "child_join",
                f"{keyword} {source.display_name}",
                "Join",
                [condition] if condition else [],
                join_type=source.join_type,
            )
            edge(source_id, join_node.id)

        self._track_functions(select)
        subquery_tables = []
        for expression in self._clause_expressions(select):
            for query in find_subqueries(expression):
                ctx.stats.subqueries += 1
                subquery_tables.extend(self._subquery_tables(query, cte_names, depth + 2))

        if select.where is not None:
            child(NodeType.FILTER, "child_where", "WHERE", "Filter", extract_conditions(select.where))
        if select.group_by:
            ctx.stats.aggregations += 1
            columns = ", ".join(format_expression(e) for e in select.group_by)
            child(NodeType.AGGREGATE, "child_group", "GROUP BY", "Aggregate", [f"Columns: {columns}"])
        if select.having is not None:
            child(NodeType.FILTER, "child_having", "HAVING", "Filter groups", [format_expression(select.having)])
        if select.qualify is not None:
            child(NodeType.FILTER, "child_qualify", "QUALIFY", "Filter window results", extract_conditions(select.qualify))

        cases = self._case_details(select.projections)
        if cases:
            child(NodeType.CASE, "child_case", "CASE", f"{len(cases)} CASE statement(s)", case_details=cases)
        windows = self._window_details(select.projections)
        if windows:
            ctx.stats.window_functions += len(windows)
            child(NodeType.WINDOW, "child_window", "WINDOW", f"{len(windows)} window function(s)", window_details=windows)

        select_node: Optional[FlowNode] = None
        if select.projections:
            columns = [column_info(item, ctx.dialect) for item in select.projections]
            if any(item.is_star for item in select.projections):
                ctx.has_select_star = True
            names = [column.name for column in columns]
            select_node = child(
                NodeType.SELECT,
                "child_select",
                "SELECT",
                "Project columns",
                names if len(names) <= 5 else [f"{len(names)} columns"],
                columns=columns,
            )

        # Tables read by clause subqueries feed the body's SELECT (or its last stage)
        seen = {node.label.lower() for node in children if node.type == NodeType.TABLE}
        for table in subquery_tables:
            if table.lower() in seen:
                continue
            seen.add(table.lower())
            ctx.track_table(table)
            source = child(
                NodeType.TABLE,
                "child_table",
                table,
                "Subquery source",
                link=False,
                table_category=TableCategory.PHYSICAL,
                access_mode="read",
            )
            target_id = select_node.id if select_node is not None else previous
            if target_id is not None:
                edge(source.id, target_id)

        order_by = format_order_by(select.order_by)
        if order_by:
            child(NodeType.SORT, "child_sort", "ORDER BY", "Sort", [", ".join(order_by)])
        if select.limit is not None:
            child(NodeType.LIMIT, "child_limit", "LIMIT", "Limit rows", [f"{select.limit} rows"])
        return previous

    # ========================================================================
    # DML / DDL
    # ========================================================================

    def _build_insert(self, statement: Statement) -> str:
        source_id: Optional[str] = None
        if statement.select is not None:
            source_id = self.build_select(statement.select)
        elif statement.values_rows:
            values = self._add_node(
                NodeType.TABLE,
                "table",
                "VALUES",
                f"{statement.values_rows} row(s) of literal values",
                table_category=TableCategory.DERIVED,
                access_mode="read",
            )
            source_id = values.id

        result = self._add_node(NodeType.RESULT, "stmt", "INSERT", "Insert statement", operation_type="INSERT")
        targets = [self._write_target(ref, "INSERT", "Insert target table") for ref in statement.targets]
        if targets:
            for target in targets:
                if source_id is not None:
                    self._add_edge(source_id, target.id, "INSERT INTO", "insert")
                self._add_edge(target.id, result.id)
        elif source_id is not None:
            self._add_edge(source_id, result.id, "INSERT INTO", "insert")
        return result.id

    def _build_update_delete(self, statement: Statement) -> str:
        ctx = self.ctx
        operation = statement.statement_type
        source_ids: List[str] = []

        # Sub-selects must not raise SELECT * / LIMIT findings of their own
        had_star, had_no_limit = ctx.has_select_star, ctx.has_no_limit
        if statement.from_sources:
            synthetic = SelectStatement(
                projections=[ProjectionItem(expression=exp.Star())],
                sources=list(statement.from_sources),
            )
            source_ids.append(self.build_select(synthetic))
        if statement.where is not None:
            subqueries = find_subqueries(statement.where)
            ctx.stats.subqueries += len(subqueries)
            for query in subqueries:
                source_ids.append(self.build_select(normalize_query(query)))
        ctx.has_select_star, ctx.has_no_limit = had_star, had_no_limit

        result = self._add_node(
            NodeType.RESULT, "stmt", operation, f"{operation.lower()} statement", operation_type=operation
        )
        targets = [self._write_target(ref, operation, "Target table") for ref in statement.targets]
        downstream = [target.id for target in targets] or [result.id]

        upstream = source_ids
        if statement.where is not None:
            conditions = extract_conditions(statement.where)
            ctx.stats.conditions += len(conditions)
            where = self._add_node(
                NodeType.FILTER, "filter", "WHERE", "DML filter condition", [" AND ".join(conditions)]
            )
            for source_id in source_ids:
                self._add_edge(source_id, where.id, None, "flow")
            upstream = [where.id]

        for source_id in upstream:
            for target_id in downstream:
                self._add_edge(source_id, target_id, None, "where" if statement.where is not None else "flow")
        for target in targets:
            self._add_edge(target.id, result.id)
        return result.id

    def _build_create_as_select(self, statement: Statement) -> str:
        source_id = self.build_select(statement.select)
        name = statement.object_name or "unnamed"
        if statement.keyword == "VIEW":
            label, description, operation = f"VIEW {name}", f"Create view: {name}", "CREATE_VIEW"
        else:
            label, description, operation = f"TABLE {name}", f"Create table as select: {name}", "CREATE_TABLE_AS"
        node = self._add_node(NodeType.RESULT, "stmt", label, description, access_mode="write", operation_type=operation)
        self._add_edge(source_id, node.id, f"CREATE {statement.keyword or 'TABLE'}", "create")
        return node.id

    def _build_merge(self, statement: Statement) -> str:
        ctx = self.ctx
        target = statement.targets[0] if statement.targets else None
        source_id = None
        if statement.merge_source is not None:
            source_id = self._build_source(statement.merge_source, set(), joined=False)

        condition = format_expression(statement.merge_condition) if statement.merge_condition is not None else ""
        if statement.merge_condition is not None:
            ctx.stats.conditions += len(extract_conditions(statement.merge_condition))
        details = [f"ON {condition}"] if condition else []
        for action in statement.merge_actions:
            text = action.describe()
            if action.columns:
                text += f" ({', '.join(action.columns)})"
            details.append(text)

        merge = self._add_node(
            NodeType.RESULT,
            "stmt",
            f"MERGE INTO {target.name}" if target else "MERGE",
            "; ".join(action.describe() for action in statement.merge_actions) or "Merge statement",
            details,
            operation_type="MERGE",
        )
        if source_id is not None:
            self._add_edge(source_id, merge.id, condition, "merge_source")
        if target is not None:
            target_node = self._write_target(target, "MERGE", "Merge target table")
            self._add_edge(merge.id, target_node.id, "MERGE INTO", "merge_target")
        return merge.id

    def _build_generic(self, statement: Statement) -> str:
        operation = statement.statement_type
        keyword = statement.keyword
        name = statement.object_name
        if statement.kind == "create":
            label = f"{keyword} {name}" if keyword and name else f"CREATE {keyword or ''}".strip()
            description = f"Create {(keyword or 'object').lower()}: {name}" if name else "Create statement"
        elif statement.kind in ("drop", "alter") and name:
            label = " ".join(word for word in (operation, keyword, name) if word)
            description = f"{operation.capitalize()} {(keyword or 'object').lower()}: {name}"
        else:
            label = operation
            description = f"{operation.lower()} statement"

        if statement.where is not None:
            self.ctx.stats.conditions += len(extract_conditions(statement.where))

        result = self._add_node(NodeType.RESULT, "stmt", label, description, operation_type=operation)
        for ref in statement.targets:
            target = self._write_target(ref, operation, "Target table")
            self._add_edge(target.id, result.id)
        return result.id


__all__ = [
    "FlowGraphBuilder",
]
