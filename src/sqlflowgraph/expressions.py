"""
Expression helpers over sqlglot trees.

Renders expressions into the short human-readable strings shown on flow
nodes and lineage entries, and walks expressions without descending into
nested queries.
"""

from typing import Iterator, List, Optional, Tuple

from sqlglot import exp

from .config import MAX_NESTING_DEPTH, Dialect
from .function_registry import function_name, is_aggregate_call

QUERY_TYPES = (exp.Select, exp.Union, exp.Intersect, exp.Except)

MAX_CONDITIONS = 5

_BINARY_OPERATORS = {
    exp.EQ: "=",
    exp.NEQ: "<>",
    exp.GT: ">",
    exp.GTE: ">=",
    exp.LT: "<",
    exp.LTE: "<=",
    exp.And: "AND",
    exp.Or: "OR",
    exp.Add: "+",
    exp.Sub: "-",
    exp.Mul: "*",
    exp.Div: "/",
    exp.Mod: "%",
    exp.DPipe: "||",
    exp.Like: "LIKE",
    exp.ILike: "ILIKE",
    exp.Is: "IS",
}

# Structural nodes that subclass exp.Func but are not function calls
_NON_CALL_FUNCS = (exp.Case, exp.If, exp.Cast, exp.Exists)


# ============================================================================
# Traversal
# ============================================================================


def is_query(node: Optional[exp.Expression]) -> bool:
    return isinstance(node, QUERY_TYPES)


def unwrap_subquery(node: Optional[exp.Expression]) -> Optional[exp.Expression]:
    """Strip any number of parentheses / Subquery wrappers around a query"""
    while isinstance(node, (exp.Subquery, exp.Paren)) and node.this is not None:
        node = node.this
    return node


def iter_local_nodes(node: Optional[exp.Expression]) -> Iterator[exp.Expression]:
    """
    Yield `node` and its descendants, without entering nested queries.

    Subquery wrappers and query nodes below the root are yielded but not
    descended into, so callers see exactly one level of query.
    """
    if node is None:
        return
    stack = [(node, True)]
    while stack:
        current, is_root = stack.pop()
        yield current
        if not is_root and isinstance(current, (exp.Subquery,) + QUERY_TYPES):
            continue
        children = list(current.iter_expressions())
        for child in reversed(children):
            stack.append((child, False))


def find_subqueries(node: Optional[exp.Expression]) -> List[exp.Expression]:
    """
    Query nodes directly nested inside an expression (one level deep).

    `x IN (SELECT ...)`, `EXISTS (SELECT ...)` and scalar `(SELECT ...)`
    all yield the inner SELECT / set operation.
    """
    found: List[exp.Expression] = []
    if node is None:
        return found
    for current in iter_local_nodes(node):
        if current is node:
            continue
        if isinstance(current, exp.Subquery):
            inner = unwrap_subquery(current)
            if is_query(inner):
                found.append(inner)
        elif is_query(current) and not isinstance(current.parent, exp.Subquery):
            found.append(current)
    return found


def column_references(node: Optional[exp.Expression]) -> List[exp.Column]:
    """Column references in an expression, excluding nested queries"""
    return [
        current
        for current in iter_local_nodes(node)
        if isinstance(current, exp.Column) and not isinstance(current.this, exp.Star)
    ]


def column_display_name(column: exp.Column) -> str:
    return f"{column.table}.{column.name}" if column.table else column.name


def is_star(node: Optional[exp.Expression]) -> bool:
    if isinstance(node, exp.Star):
        return True
    return isinstance(node, exp.Column) and isinstance(node.this, exp.Star)


def unalias(node: exp.Expression) -> Tuple[exp.Expression, Optional[str]]:
    """Split a projection into (expression, alias)"""
    if isinstance(node, exp.Alias):
        return node.this, node.alias or None
    return node, None


def is_function_call(node: exp.Expression) -> bool:
    return isinstance(node, exp.Func) and not isinstance(node, _NON_CALL_FUNCS)


def function_arguments(node: exp.Expression) -> List[exp.Expression]:
    """Positional arguments of a function node, in declaration order"""
    if isinstance(node, exp.Anonymous):
        return list(node.expressions)
    args: List[exp.Expression] = []
    for key in node.arg_types:
        value = node.args.get(key)
        values = value if isinstance(value, list) else [value]
        args.extend(v for v in values if isinstance(v, exp.Expression))
    return args


def aggregate_calls(node: Optional[exp.Expression], dialect: Dialect) -> List[exp.Expression]:
    """Aggregate calls in an expression, skipping windowed ones and nested queries"""
    return [
        current
        for current in iter_local_nodes(node)
        if is_aggregate_call(current, dialect) and not isinstance(current.parent, exp.Window)
    ]


def contains_aggregate(node: Optional[exp.Expression], dialect: Dialect) -> bool:
    return bool(aggregate_calls(node, dialect))


def window_calls(node: Optional[exp.Expression]) -> List[exp.Window]:
    return [current for current in iter_local_nodes(node) if isinstance(current, exp.Window)]


# ============================================================================
# Rendering
# ============================================================================


def format_expression(node: Optional[exp.Expression], depth: int = 0) -> str:
    """
    Render an expression for display.

    Produces `table.col`, `NAME(args)`, `NAME(DISTINCT args)`,
    `CAST(x AS type)`, `CASE ... END` and `fn(...) OVER (...)`; anything
    else falls back to sqlglot's own SQL generation.
    """
    if node is None:
        return ""
    if depth > MAX_NESTING_DEPTH * 2:
        return node.sql()

    def fmt(child: Optional[exp.Expression]) -> str:
        return format_expression(child, depth + 1)

    if isinstance(node, exp.Star):
        return "*"
    if isinstance(node, exp.Column):
        if isinstance(node.this, exp.Star):
            return f"{node.table}.*" if node.table else "*"
        return column_display_name(node)
    if isinstance(node, exp.Alias):
        return fmt(node.this)
    if isinstance(node, exp.Literal):
        return str(node.this)
    if isinstance(node, exp.Null):
        return "NULL"
    if isinstance(node, exp.Boolean):
        return "TRUE" if node.this else "FALSE"
    if isinstance(node, exp.Paren):
        return f"({fmt(node.this)})"
    if isinstance(node, exp.Subquery) or is_query(node):
        return "(subquery)"
    if isinstance(node, exp.Not):
        inner = node.this
        if isinstance(inner, exp.In):
            return fmt(inner).replace(" IN ", " NOT IN ", 1)
        return f"NOT {fmt(inner)}"
    if isinstance(node, exp.Neg):
        return f"-{fmt(node.this)}"
    if isinstance(node, exp.Between):
        return f"{fmt(node.this)} BETWEEN {fmt(node.args.get('low'))} AND {fmt(node.args.get('high'))}"
    if isinstance(node, exp.In):
        if node.args.get("query") is not None:
            return f"{fmt(node.this)} IN (subquery)"
        return f"{fmt(node.this)} IN ({', '.join(fmt(e) for e in node.expressions)})"
    if isinstance(node, exp.Exists):
        return "EXISTS (subquery)"
    if isinstance(node, exp.Cast):
        to = node.args.get("to")
        return f"CAST({fmt(node.this)} AS {to.sql() if to is not None else ''})"
    if isinstance(node, exp.Case):
        parts = ["CASE"]
        if node.this is not None:
            parts.append(fmt(node.this))
        for branch in node.args.get("ifs") or []:
            parts.append(f"WHEN {fmt(branch.this)} THEN {fmt(branch.args.get('true'))}")
        if node.args.get("default") is not None:
            parts.append(f"ELSE {fmt(node.args['default'])}")
        parts.append("END")
        return " ".join(parts)
    if isinstance(node, exp.Window):
        return f"{fmt(node.this)} OVER ({_format_window_spec(node, depth + 1)})"
    if isinstance(node, exp.Distinct):
        return "DISTINCT " + ", ".join(fmt(e) for e in node.expressions)
    if isinstance(node, exp.Binary):
        operator = _BINARY_OPERATORS.get(type(node))
        if operator:
            return f"{fmt(node.left)} {operator} {fmt(node.right)}"
    if is_function_call(node):
        args = function_arguments(node)
        if args and isinstance(args[0], exp.Distinct):
            rendered = fmt(args[0])
            rest = [fmt(a) for a in args[1:]]
            return f"{function_name(node)}({', '.join([rendered] + rest)})"
        return f"{function_name(node)}({', '.join(fmt(a) for a in args)})"
    return node.sql()


def _format_window_spec(window: exp.Window, depth: int) -> str:
    parts = []
    partition = window.args.get("partition_by") or []
    if partition:
        parts.append("PARTITION BY " + ", ".join(format_expression(p, depth) for p in partition))
    order_by = format_order_by(window.args.get("order"))
    if order_by:
        parts.append("ORDER BY " + ", ".join(order_by))
    spec = window.args.get("spec")
    if spec is not None:
        parts.append(spec.sql())
    return " ".join(parts)


def format_order_by(order: Optional[exp.Expression]) -> List[str]:
    """`["col DESC", "other"]` for an ORDER BY clause (direction only when given)"""
    if order is None:
        return []
    rendered = []
    for item in order.expressions:
        if isinstance(item, exp.Ordered):
            text = format_expression(item.this)
            if item.args.get("desc"):
                text += " DESC"
            rendered.append(text)
        else:
            rendered.append(format_expression(item))
    return rendered


def extract_conditions(condition: Optional[exp.Expression], limit: int = MAX_CONDITIONS) -> List[str]:
    """
    Split a boolean expression on AND/OR into displayable conditions.

    Splitting stops three levels down; at most `limit` conditions are kept.
    """
    conditions: List[str] = []

    def visit(node: Optional[exp.Expression], depth: int):
        if node is None or len(conditions) >= limit:
            return
        if isinstance(node, exp.Paren) and isinstance(node.this, exp.Connector) and depth < 3:
            visit(node.this, depth)
            return
        if isinstance(node, exp.Connector) and depth < 3:
            visit(node.left, depth + 1)
            visit(node.right, depth + 1)
            return
        conditions.append(format_expression(node))

    visit(condition, 0)
    return conditions[:limit]


__all__ = [
    "QUERY_TYPES",
    "MAX_CONDITIONS",
    "is_query",
    "unwrap_subquery",
    "iter_local_nodes",
    "find_subqueries",
    "column_references",
    "column_display_name",
    "is_star",
    "unalias",
    "is_function_call",
    "function_arguments",
    "aggregate_calls",
    "contains_aggregate",
    "window_calls",
    "format_expression",
    "format_order_by",
    "extract_conditions",
]
