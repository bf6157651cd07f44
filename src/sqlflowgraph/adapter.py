"""
Normalization adapter between sqlglot and the flow graph builder.

sqlglot's expression shapes drift between releases (`from` vs `from_`,
`with` vs `with_`, `Limit.expression` vs `Limit.this`, `Alter` vs
`AlterTable`, `whens` vs bare WHEN lists). Everything downstream works on
the small canonical tree defined here instead of raw sqlglot nodes.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from .config import Dialect
from .expressions import QUERY_TYPES, format_expression, is_star, unalias, unwrap_subquery
from .function_registry import table_function_name

logger = logging.getLogger(__name__)


class StatementParseError(ValueError):
    """SQL text the grammar could not turn into a statement"""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None, near: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column
        self.near = near


# ============================================================================
# Canonical Statement Tree
# ============================================================================


@dataclass
class ProjectionItem:
    """One entry of a SELECT list"""

    expression: exp.Expression
    alias: Optional[str] = None

    @property
    def is_star(self) -> bool:
        return is_star(self.expression)


@dataclass
class SourceRef:
    """
    One FROM / JOIN item.

    kind is "table", "subquery", "function" or "values". Joined items carry
    their join keyword; comma-separated items are marked `implicit`.
    """

    kind: str
    name: str
    alias: Optional[str] = None
    schema: Optional[str] = None
    query: Optional["SelectStatement"] = None
    function_name: Optional[str] = None
    join_keyword: Optional[str] = None  # "JOIN", "LEFT JOIN", "CROSS JOIN", ...
    join_type: Optional[str] = None  # INNER, LEFT, CROSS, ...
    implicit: bool = False
    condition: Optional[exp.Expression] = None
    using: List[str] = field(default_factory=list)
    node: Optional[exp.Expression] = None

    @property
    def is_join(self) -> bool:
        return self.join_keyword is not None or self.implicit

    @property
    def display_name(self) -> str:
        return self.alias or self.name

    def condition_text(self) -> str:
        if self.condition is not None:
            return format_expression(self.condition)
        if self.using:
            return f"USING ({', '.join(self.using)})"
        return ""


@dataclass
class CteDefinition:
    name: str
    query: Optional["SelectStatement"]
    recursive: bool = False
    column_names: List[str] = field(default_factory=list)


@dataclass
class SelectStatement:
    """
    One SELECT block.

    Set operations form a chain: `set_operation` names the operator that
    joins this block to `next`.
    """

    projections: List[ProjectionItem] = field(default_factory=list)
    sources: List[SourceRef] = field(default_factory=list)
    ctes: List[CteDefinition] = field(default_factory=list)
    where: Optional[exp.Expression] = None
    group_by: List[exp.Expression] = field(default_factory=list)
    having: Optional[exp.Expression] = None
    qualify: Optional[exp.Expression] = None
    order_by: Optional[exp.Expression] = None
    limit: Optional[str] = None
    offset: Optional[str] = None
    distinct: bool = False
    set_operation: Optional[str] = None
    next: Optional["SelectStatement"] = None
    node: Optional[exp.Expression] = None

    def branches(self) -> List["SelectStatement"]:
        """This block followed by every block chained through set operations"""
        chain = []
        current: Optional[SelectStatement] = self
        while current is not None:
            chain.append(current)
            current = current.next
        return chain

    def table_names(self) -> List[str]:
        return [source.name for source in self.sources if source.kind == "table"]


@dataclass
class MergeAction:
    matched: bool
    action: str  # UPDATE, INSERT, DELETE
    condition: Optional[str] = None
    columns: List[str] = field(default_factory=list)

    def describe(self) -> str:
        text = "WHEN MATCHED" if self.matched else "WHEN NOT MATCHED"
        if self.condition:
            text += f" AND {self.condition}"
        return f"{text} THEN {self.action}"


@dataclass
class Statement:
    """
    One top-level statement.

    kind is the lower-cased statement keyword (select, insert, update,
    delete, create, drop, alter, merge, truncate, or a command keyword).
    """

    kind: str
    select: Optional[SelectStatement] = None
    keyword: Optional[str] = None  # CREATE kind: TABLE, VIEW, INDEX, ...
    object_name: Optional[str] = None
    targets: List[SourceRef] = field(default_factory=list)
    from_sources: List[SourceRef] = field(default_factory=list)
    where: Optional[exp.Expression] = None
    values_rows: int = 0
    merge_source: Optional[SourceRef] = None
    merge_condition: Optional[exp.Expression] = None
    merge_actions: List[MergeAction] = field(default_factory=list)
    node: Optional[exp.Expression] = None

    @property
    def statement_type(self) -> str:
        return self.kind.upper()


# ============================================================================
# Parsing
# ============================================================================


def parse_statements(sql: str, dialect: Dialect) -> List[Statement]:
    """
    Parse SQL text with sqlglot and normalize every statement.

    Raises:
        StatementParseError: If the grammar rejects the text or a statement
            is a bare expression rather than a statement
    """
    try:
        expressions = sqlglot.parse(sql, read=dialect.sqlglot_name)
    except ParseError as error:
        first = error.errors[0] if error.errors else {}
        message = first.get("description") or str(error).split("\n")[0]
        near = first.get("highlight") or None
        raise StatementParseError(message, line=first.get("line"), column=first.get("col"), near=near) from error
    except TokenError as error:
        raise StatementParseError(str(error).split("\n")[0]) from error

    statements = [normalize_statement(expression) for expression in expressions if expression is not None]
    if not statements:
        raise StatementParseError("No statement found")
    return statements


def normalize_statement(node: exp.Expression) -> Statement:
    """Convert one sqlglot root expression into a Statement"""
    if isinstance(node, (exp.Subquery,) + QUERY_TYPES):
        return Statement(kind="select", select=normalize_query(node), node=node)

    key = node.key
    if isinstance(node, exp.Insert):
        return _normalize_insert(node)
    if isinstance(node, exp.Update):
        return _normalize_update(node)
    if isinstance(node, exp.Delete):
        return _normalize_delete(node)
    if isinstance(node, exp.Create):
        return _normalize_create(node)
    if isinstance(node, exp.Merge):
        return _normalize_merge(node)
    if isinstance(node, exp.Drop):
        kind = str(node.args.get("kind") or "").upper() or None
        return Statement(kind="drop", keyword=kind, object_name=_object_name(node.this), targets=_targets(node.this), node=node)
    if key in ("alter", "altertable"):
        return Statement(kind="alter", keyword=str(node.args.get("kind") or "TABLE").upper(), object_name=_object_name(node.this), targets=_targets(node.this), node=node)
    if key == "truncatetable":
        targets = [ref for table in node.expressions for ref in _targets(table)]
        return Statement(kind="truncate", targets=targets, node=node)
    if isinstance(node, exp.Command):
        return Statement(kind=str(node.this or "command").lower(), node=node)
    if isinstance(node, exp.Condition):
        raise StatementParseError(f"Unexpected expression '{node.sql()[:50]}' where a statement was expected")
    return Statement(kind=key, node=node)


def normalize_query(node: exp.Expression, outer_ctes: Optional[List[CteDefinition]] = None) -> SelectStatement:
    """
    Normalize a SELECT or a set-operation tree into a SelectStatement chain.

    WITH / ORDER BY / LIMIT written after a set operation belong to the
    whole chain; they are attached to the head and tail blocks.
    """
    node = unwrap_subquery(node)
    if not isinstance(node, QUERY_TYPES):
        return SelectStatement(node=node)

    if isinstance(node, exp.Select):
        select = _normalize_select(node)
        select.ctes = list(outer_ctes or []) + select.ctes
        return select

    ctes = list(outer_ctes or []) + _ctes(node)

    branches = _flatten_set_operation(node)
    blocks = []
    for branch_node, operator in branches:
        block = _normalize_select(branch_node) if isinstance(branch_node, exp.Select) else normalize_query(branch_node)
        block.set_operation = operator
        blocks.append(block)
    for block, following in zip(blocks, blocks[1:]):
        block.next = following
    head, tail = blocks[0], blocks[-1]
    head.ctes = ctes + head.ctes
    if tail.order_by is None:
        tail.order_by = node.args.get("order")
    if tail.limit is None:
        tail.limit = _limit_value(node.args.get("limit"))
    return head


def _set_operator(node: exp.Expression) -> str:
    if isinstance(node, exp.Intersect):
        name = "INTERSECT"
    elif isinstance(node, exp.Except):
        name = "EXCEPT"
    else:
        name = "UNION"
    if node.args.get("distinct") is False:
        name += " ALL"
    return name


def _flatten_set_operation(node: exp.Expression):
    """[(branch, operator-to-next)] in source order; the last operator is None"""
    node = unwrap_subquery(node)
    if not isinstance(node, (exp.Union, exp.Intersect, exp.Except)):
        return [(node, None)]
    left = _flatten_set_operation(node.this)
    right = _flatten_set_operation(node.expression)
    left[-1] = (left[-1][0], _set_operator(node))
    return left + right


def _ctes(node: exp.Expression) -> List[CteDefinition]:
    with_clause = node.args.get("with_") or node.args.get("with")
    if with_clause is None:
        return []
    recursive = bool(with_clause.args.get("recursive"))
    ctes = []
    for cte in with_clause.expressions:
        alias = cte.args.get("alias")
        columns = [column.name for column in alias.columns] if alias is not None else []
        body = cte.this
        ctes.append(
            CteDefinition(
                name=cte.alias_or_name,
                query=normalize_query(body) if isinstance(unwrap_subquery(body), QUERY_TYPES) else None,
                recursive=recursive,
                column_names=columns,
            )
        )
    return ctes


def _limit_value(limit: Optional[exp.Expression]) -> Optional[str]:
    """The row-count text of a LIMIT / FETCH / TOP clause, None when it has no value"""
    if limit is None:
        return None
    if isinstance(limit, exp.Fetch):
        value = limit.args.get("count")
    else:
        value = limit.args.get("expression") or limit.this
    if value is None or isinstance(value, exp.All):
        return None
    text = format_expression(value).strip()
    # PostgreSQL LIMIT ALL returns every row
    if not text or text.upper() == "ALL":
        return None
    return text


def _normalize_select(node: exp.Select) -> SelectStatement:
    select = SelectStatement(node=node)
    select.ctes = _ctes(node)
    select.distinct = node.args.get("distinct") is not None

    for projection in node.expressions:
        expression, alias = unalias(projection)
        select.projections.append(ProjectionItem(expression=expression, alias=alias))

    from_clause = node.args.get("from_") or node.args.get("from")
    if from_clause is not None:
        if from_clause.this is not None:
            select.sources.append(_source_ref(from_clause.this))
        # Older sqlglot releases keep comma-separated FROM items here
        for extra in from_clause.expressions:
            ref = _source_ref(extra)
            ref.implicit = True
            select.sources.append(ref)
    for join in node.args.get("joins") or []:
        select.sources.append(_join_ref(join))

    where = node.args.get("where")
    select.where = where.this if where is not None else None
    group = node.args.get("group")
    if group is not None:
        select.group_by = list(group.expressions)
        for key in ("grouping_sets", "cube", "rollup"):
            for item in group.args.get(key) or []:
                select.group_by.extend(item.expressions or [item])
    having = node.args.get("having")
    select.having = having.this if having is not None else None
    qualify = node.args.get("qualify")
    select.qualify = qualify.this if qualify is not None else None
    select.order_by = node.args.get("order")
    select.limit = _limit_value(node.args.get("limit"))
    offset = node.args.get("offset")
    if offset is not None:
        select.offset = _limit_value(offset)
    return select


def _source_ref(node: exp.Expression) -> SourceRef:
    """Classify one FROM item"""
    function = table_function_name(node)
    if function is not None:
        return SourceRef(kind="function", name=function, function_name=function, alias=node.alias or None, node=node)

    if isinstance(node, exp.Table):
        return SourceRef(
            kind="table",
            name=node.name,
            alias=node.alias or None,
            schema=node.db or None,
            node=node,
        )

    inner = unwrap_subquery(node)
    if isinstance(inner, QUERY_TYPES):
        return SourceRef(kind="subquery", name=node.alias or "subquery", alias=node.alias or None, query=normalize_query(inner), node=node)
    if isinstance(inner, exp.Values) or isinstance(node, exp.Values):
        return SourceRef(kind="values", name="VALUES", alias=node.alias or None, node=node)
    if isinstance(node, exp.Lateral):
        query = unwrap_subquery(node.this)
        if isinstance(query, QUERY_TYPES):
            return SourceRef(kind="subquery", name=node.alias or "lateral", alias=node.alias or None, query=normalize_query(query), node=node)

    name = node.alias_or_name or node.key
    return SourceRef(kind="table", name=name, node=node)


def _join_ref(join: exp.Join) -> SourceRef:
    ref = _source_ref(join.this)
    ref.node = join.this
    method = str(join.args.get("method") or "").upper()
    side = str(join.args.get("side") or "").upper()
    kind = str(join.args.get("kind") or "").upper()
    condition = join.args.get("on")
    using = [ident.name for ident in join.args.get("using") or []]

    if not method and not side and not kind and condition is None and not using:
        ref.implicit = True
        ref.join_type = "CROSS"
        return ref

    words = [word for word in (method, side, kind) if word]
    ref.join_keyword = " ".join(words + ["JOIN"])
    ref.join_type = kind if kind in ("CROSS", "INNER") else (side or kind or "INNER")
    ref.condition = condition
    ref.using = using
    return ref


def _object_name(node: Optional[exp.Expression]) -> Optional[str]:
    if node is None:
        return None
    if isinstance(node, exp.Schema):
        node = node.this
    if isinstance(node, exp.Table):
        return ".".join(part for part in (node.db, node.name) if part)
    if isinstance(node, exp.Expression):
        return node.name or node.sql()
    return str(node)


def _targets(node: Optional[exp.Expression]) -> List[SourceRef]:
    if isinstance(node, exp.Schema):
        node = node.this
    if isinstance(node, exp.Table) and node.name:
        return [SourceRef(kind="table", name=node.name, alias=node.alias or None, schema=node.db or None, node=node)]
    return []


def _normalize_insert(node: exp.Insert) -> Statement:
    statement = Statement(kind="insert", targets=_targets(node.this), node=node)
    source = unwrap_subquery(node.expression)
    outer_ctes = _ctes(node)
    if isinstance(source, QUERY_TYPES):
        statement.select = normalize_query(source, outer_ctes=outer_ctes)
    elif isinstance(source, exp.Values):
        statement.values_rows = len(source.expressions)
    return statement


def _normalize_update(node: exp.Update) -> Statement:
    target = node.this
    statement = Statement(kind="update", targets=_targets(target), node=node)
    target_key = _object_name(target)

    from_clause = node.args.get("from_") or node.args.get("from")
    if from_clause is not None:
        items = [from_clause.this] + list(from_clause.expressions)
        for item in items:
            if item is None:
                continue
            ref = _source_ref(item)
            if ref.kind == "table" and _object_name(item) == target_key and ref.alias == (target.alias or None):
                continue
            statement.from_sources.append(ref)
    joins = list(node.args.get("joins") or [])
    if isinstance(target, exp.Table):
        joins.extend(target.args.get("joins") or [])
    for join in joins:
        statement.from_sources.append(_join_ref(join))

    where = node.args.get("where")
    statement.where = where.this if where is not None else None
    return statement


def _normalize_delete(node: exp.Delete) -> Statement:
    statement = Statement(kind="delete", targets=_targets(node.this), node=node)
    for table in node.args.get("tables") or []:
        for ref in _targets(table):
            if all(ref.name.lower() != existing.name.lower() for existing in statement.targets):
                statement.targets.append(ref)
    for item in node.args.get("using") or []:
        statement.from_sources.append(_source_ref(item))
    joins = list(node.args.get("joins") or [])
    if isinstance(node.this, exp.Table):
        joins.extend(node.this.args.get("joins") or [])
    for join in joins:
        statement.from_sources.append(_join_ref(join))
    where = node.args.get("where")
    statement.where = where.this if where is not None else None
    return statement


def _normalize_create(node: exp.Create) -> Statement:
    keyword = str(node.args.get("kind") or "").upper() or None
    target = node.this
    statement = Statement(kind="create", keyword=keyword, object_name=_object_name(target), node=node)
    if keyword == "INDEX" and isinstance(target, exp.Index):
        table = target.args.get("table")
        statement.targets = _targets(table)
    elif keyword in ("TABLE", None):
        statement.targets = _targets(target)

    body = unwrap_subquery(node.expression)
    if isinstance(body, QUERY_TYPES):
        statement.select = normalize_query(body, outer_ctes=_ctes(node))
    return statement


def _normalize_merge(node: exp.Merge) -> Statement:
    statement = Statement(kind="merge", targets=_targets(node.this), node=node)
    using = node.args.get("using")
    if using is not None:
        statement.merge_source = _source_ref(using)
    statement.merge_condition = node.args.get("on")

    whens = node.args.get("whens")
    clauses = whens.expressions if whens is not None else node.expressions
    for when in clauses:
        then = when.args.get("then")
        if isinstance(then, exp.Update):
            action = "UPDATE"
            columns = [format_expression(assignment.this) for assignment in then.expressions if isinstance(assignment, exp.EQ)]
        elif isinstance(then, exp.Insert):
            action = "INSERT"
            inserted = then.this
            columns = [format_expression(c) for c in inserted.expressions] if isinstance(inserted, exp.Tuple) else []
        else:
            action = (then.name if then is not None else "").upper() or "DELETE"
            columns = []
        condition = when.args.get("condition")
        statement.merge_actions.append(
            MergeAction(
                matched=bool(when.args.get("matched")),
                action=action,
                condition=format_expression(condition) if condition is not None else None,
                columns=columns,
            )
        )
    return statement


def iter_select_tree(select: Optional[SelectStatement], max_depth: int):
    """
    Yield every SelectStatement reachable from `select` with its depth.

    Covers set-operation branches, CTE bodies and FROM subqueries; stops
    below `max_depth`.
    """
    if select is None:
        return
    stack = [(select, 0)]
    while stack:
        current, depth = stack.pop()
        yield current, depth
        if depth >= max_depth:
            continue
        if current.next is not None:
            stack.append((current.next, depth))
        for cte in current.ctes:
            if cte.query is not None:
                stack.append((cte.query, depth + 1))
        for source in current.sources:
            if source.query is not None:
                stack.append((source.query, depth + 1))


__all__ = [
    "StatementParseError",
    "ProjectionItem",
    "SourceRef",
    "CteDefinition",
    "SelectStatement",
    "MergeAction",
    "Statement",
    "parse_statements",
    "normalize_statement",
    "normalize_query",
    "iter_select_tree",
]
