"""
sqlflowgraph - SQL flow graphs, lineage and optimization hints

Compiles SQL statements into a flow graph of pipeline stages (tables,
joins, filters, aggregates, ...) together with complexity stats, column
lineage and rule-based optimization hints.
"""

from importlib.metadata import version

__version__ = version("sqlflowgraph")

from .adapter import StatementParseError
from .batch import BatchProcessor, parse_sql_batch
from .config import (
    DEFAULT_DIALECT,
    DEFAULT_PARSER_CONFIG,
    DEFAULT_VALIDATION_LIMITS,
    MAX_NESTING_DEPTH,
    PARSE_TIMEOUT_MS,
    BatchOptions,
    Dialect,
    ParserConfig,
    ValidationLimits,
)
from .dialects import DialectDetection, detect_dialect

# Import export functionality
from .export import CSVExporter, JSONExporter
from .models import (
    BatchParseError,
    BatchResult,
    ColumnFlow,
    ColumnInfo,
    ColumnLineage,
    ColumnSource,
    ComplexityLevel,
    FlowEdge,
    FlowNode,
    HintCategory,
    HintSeverity,
    HintType,
    IndexSuggestion,
    NodeType,
    NodeWarning,
    OptimizationHint,
    ParseResult,
    QueryStats,
    StatementLineRange,
    TableCategory,
    TransformationKind,
    ValidationError,
)
from .parser import SQLFlowParser, parse_sql
from .session_commands import is_session_command, match_session_command
from .splitter import split_sql_statements
from .validation import validate_sql

# Import visualization functions
from .visualizations import visualize_batch, visualize_flow_graph

__all__ = [
    # Version
    "__version__",
    # Main entry points
    "parse_sql",
    "parse_sql_batch",
    "SQLFlowParser",
    "BatchProcessor",
    "split_sql_statements",
    "validate_sql",
    "detect_dialect",
    "match_session_command",
    "is_session_command",
    # Configuration
    "Dialect",
    "DEFAULT_DIALECT",
    "ParserConfig",
    "DEFAULT_PARSER_CONFIG",
    "ValidationLimits",
    "DEFAULT_VALIDATION_LIMITS",
    "BatchOptions",
    "PARSE_TIMEOUT_MS",
    "MAX_NESTING_DEPTH",
    # Results
    "ParseResult",
    "BatchResult",
    "BatchParseError",
    "StatementLineRange",
    "ValidationError",
    "StatementParseError",
    "DialectDetection",
    # Flow graph
    "FlowNode",
    "FlowEdge",
    "NodeType",
    "NodeWarning",
    "TableCategory",
    "ColumnInfo",
    # Stats and hints
    "QueryStats",
    "ComplexityLevel",
    "OptimizationHint",
    "HintType",
    "HintSeverity",
    "HintCategory",
    "IndexSuggestion",
    # Lineage
    "ColumnFlow",
    "ColumnLineage",
    "ColumnSource",
    "TransformationKind",
    # Export
    "JSONExporter",
    "CSVExporter",
    # Visualization
    "visualize_flow_graph",
    "visualize_batch",
]
