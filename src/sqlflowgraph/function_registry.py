"""
Function Registry.

Contains the known aggregate, window and table-valued function names per
dialect, and helpers that classify sqlglot function nodes into the
`"NAME:category"` entries reported in `ParseResult.functions_used`.
"""

from typing import Dict, FrozenSet, Optional

from sqlglot import exp

from .config import Dialect

# ============================================================================
# Aggregate / Window / Table-Valued Function Registry
# ============================================================================

COMMON_AGGREGATES = frozenset(
    {
        "COUNT",
        "SUM",
        "AVG",
        "MIN",
        "MAX",
        "STDDEV",
        "STDDEV_POP",
        "STDDEV_SAMP",
        "VARIANCE",
        "VAR_POP",
        "VAR_SAMP",
        "COVAR_POP",
        "COVAR_SAMP",
        "CORR",
        "ANY_VALUE",
        "BIT_AND",
        "BIT_OR",
        "BIT_XOR",
        "BOOL_AND",
        "BOOL_OR",
        "EVERY",
    }
)

DIALECT_AGGREGATES: Dict[Dialect, FrozenSet[str]] = {
    Dialect.MYSQL: frozenset({"GROUP_CONCAT", "JSON_ARRAYAGG", "JSON_OBJECTAGG"}),
    Dialect.MARIADB: frozenset({"GROUP_CONCAT", "JSON_ARRAYAGG", "JSON_OBJECTAGG"}),
    Dialect.POSTGRESQL: frozenset({"STRING_AGG", "ARRAY_AGG", "JSON_AGG", "JSONB_AGG", "PERCENTILE_CONT", "MODE"}),
    Dialect.REDSHIFT: frozenset({"LISTAGG", "MEDIAN", "APPROXIMATE_COUNT", "PERCENTILE_CONT"}),
    Dialect.SNOWFLAKE: frozenset(
        {"LISTAGG", "ARRAY_AGG", "OBJECT_AGG", "MEDIAN", "APPROX_COUNT_DISTINCT", "HLL", "MODE"}
    ),
    Dialect.BIGQUERY: frozenset(
        {"STRING_AGG", "ARRAY_AGG", "APPROX_COUNT_DISTINCT", "APPROX_QUANTILES", "COUNTIF", "LOGICAL_AND", "LOGICAL_OR"}
    ),
    Dialect.TRANSACTSQL: frozenset({"STRING_AGG", "COUNT_BIG", "CHECKSUM_AGG", "STDEV", "STDEVP", "VAR", "VARP"}),
    Dialect.SQLITE: frozenset({"GROUP_CONCAT", "TOTAL"}),
    Dialect.HIVE: frozenset({"COLLECT_LIST", "COLLECT_SET", "PERCENTILE", "PERCENTILE_APPROX"}),
    Dialect.ATHENA: frozenset({"ARRAY_AGG", "APPROX_DISTINCT", "APPROX_PERCENTILE", "MAP_AGG"}),
    Dialect.TRINO: frozenset({"ARRAY_AGG", "APPROX_DISTINCT", "APPROX_PERCENTILE", "MAP_AGG", "LISTAGG"}),
    Dialect.ORACLE: frozenset({"LISTAGG", "MEDIAN", "COLLECT", "STATS_MODE"}),
}

WINDOW_ONLY_FUNCTIONS = frozenset(
    {
        "ROW_NUMBER",
        "RANK",
        "DENSE_RANK",
        "NTILE",
        "LAG",
        "LEAD",
        "FIRST_VALUE",
        "LAST_VALUE",
        "NTH_VALUE",
        "PERCENT_RANK",
        "CUME_DIST",
    }
)

# Known table-valued function names (for FROM items that are function calls)
KNOWN_TVF_NAMES = frozenset(
    {
        # Generators
        "GENERATE_SERIES",
        "GENERATE_DATE_ARRAY",
        "GENERATE_TIMESTAMP_ARRAY",
        "SEQUENCE",
        "GENERATOR",
        "RANGE",
        # Column-input
        "UNNEST",
        "FLATTEN",
        "EXPLODE",
        "POSEXPLODE",
        "JSON_TABLE",
        "OPENJSON",
        "STRING_SPLIT",
        "JSON_EACH",
        "JSON_TREE",
        "JSONB_EACH",
        "JSONB_ARRAY_ELEMENTS",
        "JSON_ARRAY_ELEMENTS",
        "REGEXP_SPLIT_TO_TABLE",
        "SPLIT_TO_TABLE",
        # External data
        "READ_CSV",
        "READ_PARQUET",
        "READ_JSON",
        "READ_NDJSON",
        "EXTERNAL_QUERY",
        "OPENROWSET",
        "OPENQUERY",
        "OPENDATASOURCE",
        # System
        "TABLE",
        "RESULT_SCAN",
        "INFORMATION_SCHEMA",
    }
)


def aggregate_functions(dialect: Dialect) -> FrozenSet[str]:
    """Aggregate names recognized for a dialect (common + dialect-specific)"""
    return COMMON_AGGREGATES | DIALECT_AGGREGATES.get(dialect, frozenset())


def function_name(node: exp.Expression) -> str:
    """
    Upper-cased SQL name of a function node.

    Anonymous (unknown to sqlglot) functions keep the name they were
    written with; known functions use sqlglot's canonical SQL name.
    """
    if isinstance(node, exp.Anonymous):
        return str(node.name).upper()
    if isinstance(node, exp.Func):
        return node.sql_name().upper()
    return node.key.upper()


def is_aggregate_call(node: exp.Expression, dialect: Dialect) -> bool:
    if isinstance(node, exp.AggFunc):
        return True
    if isinstance(node, exp.Anonymous):
        return function_name(node) in aggregate_functions(dialect)
    return False


def is_window_only_function(node: exp.Expression) -> bool:
    return isinstance(node, exp.Func) and function_name(node) in WINDOW_ONLY_FUNCTIONS


def classify_function(node: exp.Expression, dialect: Dialect, windowed: bool = False) -> str:
    """
    Category of a function call: aggregate, window or scalar.

    Args:
        node: The function node (without its OVER wrapper)
        dialect: Dialect whose aggregate list applies
        windowed: True if the call carries an OVER clause
    """
    if windowed or is_window_only_function(node):
        return "window"
    if is_aggregate_call(node, dialect):
        return "aggregate"
    return "scalar"


def table_function_name(source: exp.Expression) -> Optional[str]:
    """
    Name of the table-valued function a FROM item calls, if it calls one.

    Handles `UNNEST(...)`, `LATERAL FLATTEN(...)`, `TABLE(fn(...))` and
    function calls parsed as table names such as `generate_series(1, 10)`.
    """
    if isinstance(source, exp.Unnest):
        return "UNNEST"
    if isinstance(source, exp.Lateral):
        inner = source.this
        if isinstance(inner, exp.Explode):
            return "FLATTEN"
        if isinstance(inner, exp.Func):
            return function_name(inner)
        return None
    if isinstance(source, exp.Table):
        inner = source.this
        if isinstance(inner, exp.Func):
            name = function_name(inner)
            if name == "TABLE" and inner.expressions and isinstance(inner.expressions[0], exp.Func):
                return function_name(inner.expressions[0])
            return name
        return None
    if isinstance(source, exp.Func):
        name = function_name(source)
        return name if name in KNOWN_TVF_NAMES else None
    return None


__all__ = [
    "COMMON_AGGREGATES",
    "DIALECT_AGGREGATES",
    "WINDOW_ONLY_FUNCTIONS",
    "KNOWN_TVF_NAMES",
    "aggregate_functions",
    "function_name",
    "is_aggregate_call",
    "is_window_only_function",
    "classify_function",
    "table_function_name",
]
