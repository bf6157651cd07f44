"""
Core data models for the SQL flow graph compiler.

Contains all dataclass definitions for:
- Flow graph models (nodes, edges, node payloads)
- Statistics and optimization hint models
- Column lineage models
- Per-statement compilation context
- Parse and batch result models
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from sqlglot import exp

from .config import DEFAULT_DIALECT, Dialect

# ============================================================================
# Flow Graph Models
# ============================================================================


class NodeType(Enum):
    """Pipeline stage represented by a flow node"""

    TABLE = "table"
    JOIN = "join"
    FILTER = "filter"
    AGGREGATE = "aggregate"
    WINDOW = "window"
    CASE = "case"
    SELECT = "select"
    SORT = "sort"
    LIMIT = "limit"
    CTE = "cte"
    SUBQUERY = "subquery"
    UNION = "union"
    RESULT = "result"
    OPERATION = "operation"  # Session/utility command


class TableCategory(Enum):
    """Where a table node's rows come from"""

    PHYSICAL = "physical"
    DERIVED = "derived"  # Subquery in FROM
    CTE_REFERENCE = "cte_reference"
    TABLE_FUNCTION = "table_function"


class TransformationKind(Enum):
    """How an output column is produced from its source"""

    DIRECT = "direct"  # Star expansion
    RENAMED = "renamed"
    AGGREGATED = "aggregated"
    CALCULATED = "calculated"
    PASSTHROUGH = "passthrough"


@dataclass
class NodeWarning:
    """A problem attached to a single flow node"""

    type: str  # unused, dead-column, repeated-scan, complex, fan-out, ...
    severity: str  # low, medium, high
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "severity": self.severity, "message": self.message}


@dataclass
class ColumnInfo:
    """Lineage-ready metadata for one projected column"""

    name: str
    expression: str
    source_column: Optional[str] = None
    source_table: Optional[str] = None
    is_aggregate: bool = False
    is_window_func: bool = False
    transformation: TransformationKind = TransformationKind.PASSTHROUGH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "expression": self.expression,
            "source_column": self.source_column,
            "source_table": self.source_table,
            "is_aggregate": self.is_aggregate,
            "is_window_func": self.is_window_func,
            "transformation": self.transformation.value,
        }


@dataclass
class AggregateFunctionDetail:
    name: str
    expression: str
    alias: Optional[str] = None
    source_column: Optional[str] = None
    source_table: Optional[str] = None


@dataclass
class WindowFunctionDetail:
    name: str
    partition_by: List[str] = field(default_factory=list)
    order_by: List[str] = field(default_factory=list)
    frame: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class CaseDetail:
    conditions: List[Tuple[str, str]] = field(default_factory=list)  # (WHEN, THEN)
    else_value: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class FlowNode:
    """
    One pipeline stage in a statement's flow graph.

    Container nodes (CTEs and FROM subqueries) carry their body as a
    nested sub-graph in `children`/`child_edges` and start collapsed.
    """

    id: str
    type: NodeType
    label: str
    description: str = ""
    details: List[str] = field(default_factory=list)

    # Collapsed sub-graph for CTE/subquery containers
    children: Optional[List["FlowNode"]] = None
    child_edges: Optional[List["FlowEdge"]] = None
    expanded: bool = True

    # Payloads
    columns: Optional[List[ColumnInfo]] = None
    aggregate_details: Optional[List[AggregateFunctionDetail]] = None
    window_details: Optional[List[WindowFunctionDetail]] = None
    case_details: Optional[List[CaseDetail]] = None
    warnings: List[NodeWarning] = field(default_factory=list)

    # Breadcrumb
    parent_id: Optional[str] = None
    depth: int = 0

    table_category: Optional[TableCategory] = None
    access_mode: Optional[str] = None  # "read" or "write"
    operation_type: Optional[str] = None  # INSERT, UPDATE, CREATE_VIEW, ...
    join_type: Optional[str] = None  # INNER, LEFT, CROSS, ...
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    complexity_level: Optional[str] = None  # low, medium, high

    def add_warning(self, warning_type: str, severity: str, message: str):
        self.warnings.append(NodeWarning(type=warning_type, severity=severity, message=message))

    def has_warning(self, warning_type: str) -> bool:
        return any(w.type == warning_type for w in self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "label": self.label,
            "description": self.description,
            "details": list(self.details),
            "warnings": [w.to_dict() for w in self.warnings],
            "depth": self.depth,
        }
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
            data["child_edges"] = [edge.to_dict() for edge in (self.child_edges or [])]
            data["expanded"] = self.expanded
        if self.columns is not None:
            data["columns"] = [col.to_dict() for col in self.columns]
        optional = {
            "parent_id": self.parent_id,
            "table_category": self.table_category.value if self.table_category else None,
            "access_mode": self.access_mode,
            "operation_type": self.operation_type,
            "join_type": self.join_type,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "complexity_level": self.complexity_level,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass
class FlowEdge:
    """Data-flow edge between two flow nodes"""

    id: str
    source: str
    target: str
    sql_clause: Optional[str] = None  # Clause text for click-to-source navigation
    clause_type: Optional[str] = None  # flow, join, on, where, having, ...
    start_line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "source": self.source, "target": self.target}
        if self.sql_clause is not None:
            data["sql_clause"] = self.sql_clause
        if self.clause_type is not None:
            data["clause_type"] = self.clause_type
        if self.start_line is not None:
            data["start_line"] = self.start_line
        return data


def walk_nodes(nodes: List[FlowNode]) -> Iterator[FlowNode]:
    """Every node of a graph, container children included (depth-first)"""
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        yield node
        if node.children:
            stack.extend(reversed(node.children))


# ============================================================================
# Statistics and Hint Models
# ============================================================================


class ComplexityLevel(Enum):
    """Ordinal complexity classification of a statement"""

    SIMPLE = "Simple"
    MODERATE = "Moderate"
    COMPLEX = "Complex"
    VERY_COMPLEX = "Very Complex"

    @classmethod
    def from_score(cls, score: float) -> "ComplexityLevel":
        if score < 5:
            return cls.SIMPLE
        if score < 15:
            return cls.MODERATE
        if score < 30:
            return cls.COMPLEX
        return cls.VERY_COMPLEX


@dataclass
class QueryStats:
    """Counts and derived metrics for one statement"""

    tables: int = 0
    joins: int = 0
    subqueries: int = 0
    ctes: int = 0
    aggregations: int = 0
    window_functions: int = 0
    unions: int = 0
    conditions: int = 0

    # Derived
    max_cte_depth: int = 0
    max_fan_out: int = 0
    critical_path_length: int = 0
    complexity: ComplexityLevel = ComplexityLevel.SIMPLE
    complexity_score: float = 0
    complexity_breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": self.tables,
            "joins": self.joins,
            "subqueries": self.subqueries,
            "ctes": self.ctes,
            "aggregations": self.aggregations,
            "window_functions": self.window_functions,
            "unions": self.unions,
            "conditions": self.conditions,
            "max_cte_depth": self.max_cte_depth,
            "max_fan_out": self.max_fan_out,
            "critical_path_length": self.critical_path_length,
            "complexity": self.complexity.value,
            "complexity_score": self.complexity_score,
            "complexity_breakdown": dict(self.complexity_breakdown),
        }


class HintType(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class HintSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HintCategory(Enum):
    PERFORMANCE = "performance"
    QUALITY = "quality"
    BEST_PRACTICE = "best-practice"
    SECURITY = "security"


@dataclass
class OptimizationHint:
    """A rule-based optimization or quality finding"""

    type: HintType
    message: str
    suggestion: str = ""
    category: HintCategory = HintCategory.BEST_PRACTICE
    severity: HintSeverity = HintSeverity.LOW
    node_id: Optional[str] = None
    # Tables this finding is about; used when merging overlapping findings
    related_tables: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "message": self.message,
            "suggestion": self.suggestion,
            "category": self.category.value,
            "severity": self.severity.value,
        }
        if self.node_id is not None:
            data["node_id"] = self.node_id
        return data


# ============================================================================
# Column Lineage Models
# ============================================================================


@dataclass
class ColumnSource:
    """One source column feeding an output column"""

    table: Optional[str]
    column: str
    node_id: Optional[str] = None


@dataclass
class ColumnLineage:
    """Maps one output column to its source"""

    output_column: str
    expression: str
    source_column: Optional[str] = None
    source_table: Optional[str] = None
    transformation: TransformationKind = TransformationKind.PASSTHROUGH
    sources: List[ColumnSource] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_column": self.output_column,
            "expression": self.expression,
            "source_column": self.source_column,
            "source_table": self.source_table,
            "transformation": self.transformation.value,
            "sources": [
                {"table": src.table, "column": src.column, "node_id": src.node_id}
                for src in self.sources
            ],
        }


@dataclass
class LineageStep:
    """One hop of a column's path through the flow graph"""

    node_id: str
    node_name: str
    node_type: NodeType
    column_name: str
    transformation: str  # source, passthrough, renamed, aggregated, calculated, joined
    expression: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "node_id": self.node_id,
            "node_name": self.node_name,
            "node_type": self.node_type.value,
            "column_name": self.column_name,
            "transformation": self.transformation,
        }
        if self.expression is not None:
            data["expression"] = self.expression
        return data


@dataclass
class ColumnFlow:
    """Path of one output column from its source table to the SELECT that emits it"""

    id: str
    output_column: str
    output_node_id: str
    lineage_path: List[LineageStep] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "output_column": self.output_column,
            "output_node_id": self.output_node_id,
            "lineage_path": [step.to_dict() for step in self.lineage_path],
        }


# ============================================================================
# Compilation Context
# ============================================================================


@dataclass
class ParserContext:
    """
    Per-statement accumulator threaded through every compilation call.

    A context belongs to exactly one top-level statement and is discarded
    once that statement's ParseResult is assembled.
    """

    dialect: Dialect = DEFAULT_DIALECT
    stats: QueryStats = field(default_factory=QueryStats)
    hints: List[OptimizationHint] = field(default_factory=list)
    node_counter: int = 0
    has_select_star: bool = False
    has_no_limit: bool = True
    statement_type: str = ""
    implicit_joins: int = 0  # comma-separated FROM items, counted in stats.joins too
    table_usage: Dict[str, int] = field(default_factory=dict)  # lower-cased name -> references
    functions_used: Set[str] = field(default_factory=set)  # "NAME:category"

    def gen_id(self, prefix: str) -> str:
        """Generate the next statement-unique node/edge id"""
        node_id = f"{prefix}_{self.node_counter}"
        self.node_counter += 1
        return node_id

    def track_table(self, table_name: str) -> bool:
        """
        Record a reference to a physical table.

        Returns:
            True if this is the first reference to the table (case-insensitive)
        """
        key = table_name.lower()
        is_new = key not in self.table_usage
        self.table_usage[key] = self.table_usage.get(key, 0) + 1
        if is_new:
            self.stats.tables += 1
        return is_new

    def add_hint(
        self,
        hint_type: HintType,
        message: str,
        suggestion: str = "",
        category: HintCategory = HintCategory.BEST_PRACTICE,
        severity: HintSeverity = HintSeverity.LOW,
        node_id: Optional[str] = None,
    ) -> OptimizationHint:
        hint = OptimizationHint(
            type=hint_type,
            message=message,
            suggestion=suggestion,
            category=category,
            severity=severity,
            node_id=node_id,
        )
        self.hints.append(hint)
        return hint


# ============================================================================
# Result Models
# ============================================================================


@dataclass
class IndexSuggestion:
    """Columns that may benefit from an index or clustering key"""

    columns: List[str]
    index_type: str  # btree, composite
    reason: str  # filter, join, sort, group
    message: str
    suggestion: str


@dataclass
class ParseResult:
    """Compiled representation of one SQL statement"""

    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    stats: QueryStats = field(default_factory=QueryStats)
    hints: List[OptimizationHint] = field(default_factory=list)
    column_lineage: List[ColumnLineage] = field(default_factory=list)
    column_flows: List[ColumnFlow] = field(default_factory=list)
    table_usage: Dict[str, int] = field(default_factory=dict)
    sql: str = ""
    ast: Optional[exp.Expression] = None
    partial: bool = False
    error: Optional[str] = None

    dialect: Dialect = DEFAULT_DIALECT
    performance_score: int = 100
    performance_issues: int = 0
    functions_used: List[str] = field(default_factory=list)
    index_suggestions: List[IndexSuggestion] = field(default_factory=list)
    has_select_star: bool = False
    has_no_limit: bool = True
    statement_type: str = ""

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.partial

    def find_nodes(self, node_type: NodeType) -> List[FlowNode]:
        return [node for node in self.nodes if node.type == node_type]

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "stats": self.stats.to_dict(),
            "hints": [hint.to_dict() for hint in self.hints],
            "column_lineage": [lineage.to_dict() for lineage in self.column_lineage],
            "column_flows": [flow.to_dict() for flow in self.column_flows],
            "table_usage": dict(self.table_usage),
            "sql": self.sql,
            "dialect": self.dialect.value,
            "partial": self.partial,
            "error": self.error,
            "performance_score": self.performance_score,
            "performance_issues": self.performance_issues,
            "functions_used": list(self.functions_used),
        }


@dataclass
class ValidationError:
    """Structured limit violation reported on a batch"""

    type: str  # size_limit or query_count_limit
    message: str
    actual: int
    limit: int
    unit: str  # bytes or queries

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "details": {"actual": self.actual, "limit": self.limit, "unit": self.unit},
        }


@dataclass
class StatementLineRange:
    """1-based inclusive line span of one statement inside the batch text"""

    start_line: int
    end_line: int


@dataclass
class BatchParseError:
    """Location of a statement that could not be fully parsed"""

    query_index: int
    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    sql: str = ""


@dataclass
class BatchResult:
    """Results of compiling every statement in a batch"""

    queries: List[ParseResult] = field(default_factory=list)
    total_stats: QueryStats = field(default_factory=QueryStats)
    success_count: int = 0
    error_count: int = 0
    query_line_ranges: List[StatementLineRange] = field(default_factory=list)
    validation_error: Optional[ValidationError] = None
    parse_errors: List[BatchParseError] = field(default_factory=list)

    @property
    def total_queries(self) -> int:
        return len(self.queries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queries": [query.to_dict() for query in self.queries],
            "total_queries": self.total_queries,
            "total_stats": self.total_stats.to_dict(),
            "success_count": self.success_count,
            "error_count": self.error_count,
            "query_line_ranges": [
                {"start_line": r.start_line, "end_line": r.end_line} for r in self.query_line_ranges
            ],
            "validation_error": self.validation_error.to_dict() if self.validation_error else None,
            "parse_errors": [
                {"query_index": e.query_index, "message": e.message, "line": e.line, "column": e.column}
                for e in self.parse_errors
            ],
        }


__all__ = [
    "NodeType",
    "TableCategory",
    "TransformationKind",
    "NodeWarning",
    "ColumnInfo",
    "AggregateFunctionDetail",
    "WindowFunctionDetail",
    "CaseDetail",
    "FlowNode",
    "FlowEdge",
    "walk_nodes",
    "ComplexityLevel",
    "QueryStats",
    "HintType",
    "HintSeverity",
    "HintCategory",
    "OptimizationHint",
    "ColumnSource",
    "ColumnLineage",
    "LineageStep",
    "ColumnFlow",
    "ParserContext",
    "IndexSuggestion",
    "ParseResult",
    "ValidationError",
    "StatementLineRange",
    "BatchParseError",
    "BatchResult",
]
