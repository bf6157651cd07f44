"""
Dialect detection from syntax fingerprints.

Scores each dialect by the proprietary syntax markers found in the SQL
text (path operators, quoting style, dialect-only clauses, join
operators, DDL options) and reports the winner with a confidence level.
The same fingerprints drive the "dialect-specific syntax" hints.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import Dialect
from .models import HintCategory, HintSeverity, HintType, OptimizationHint
from .sql_text import mask_strings_and_comments, strip_sql_comments

# ============================================================================
# Syntax fingerprints
# ============================================================================

# Fingerprint name -> pattern, checked against comment- and string-masked SQL
SYNTAX_PATTERNS: Dict[str, re.Pattern] = {
    "snowflake_path_operator": re.compile(r"\b[A-Za-z_][\w$]*\s*:\s*[A-Za-z_][\w$]*(?!:)"),
    "snowflake_named_args": re.compile(r"\w+\s*=>\s*"),
    "flatten": re.compile(r"\bFLATTEN\s*\(", re.IGNORECASE),
    "three_part_names": re.compile(r"\b[\w$]+\.[\w$]+\.[\w$]+\b"),
    "qualify": re.compile(r"\bQUALIFY\b", re.IGNORECASE),
    "ilike": re.compile(r"\bILIKE\b", re.IGNORECASE),
    "create_or_replace_table": re.compile(r"\bCREATE\s+OR\s+REPLACE\s+TABLE\b", re.IGNORECASE),
    "merge_into": re.compile(r"\bMERGE\s+INTO\b", re.IGNORECASE),
    "bigquery_struct": re.compile(r"\bSTRUCT\s*\(", re.IGNORECASE),
    "bigquery_unnest": re.compile(r"\bUNNEST\s*\(", re.IGNORECASE),
    "bigquery_array_type": re.compile(r"\bARRAY<.*>", re.IGNORECASE),
    "postgres_type_cast": re.compile(r"::\s*[a-z_][\w$]*", re.IGNORECASE),
    "postgres_at_time_zone": re.compile(r"\bAT\s+TIME\s+ZONE\b", re.IGNORECASE),
    "postgres_dollar_quotes": re.compile(r"\$\$"),
    "postgres_array_access": re.compile(r"\w+\[\d+\]"),
    "mysql_backticks": re.compile(r"`[\w-]+`"),
    "mysql_group_by_rollup": re.compile(r"GROUP BY.*WITH ROLLUP", re.IGNORECASE),
    "mysql_dual": re.compile(r"FROM\s+DUAL", re.IGNORECASE),
    "tsql_apply": re.compile(r"\b(CROSS|OUTER)\s+APPLY\b", re.IGNORECASE),
    "tsql_top": re.compile(r"\bTOP\s*\(", re.IGNORECASE),
    "pivot": re.compile(r"\bPIVOT\s*\(", re.IGNORECASE),
    "oracle_connect_by": re.compile(r"\bCONNECT\s+BY\b", re.IGNORECASE),
    "oracle_rownum": re.compile(r"\bROWNUM\b", re.IGNORECASE),
    "oracle_nvl_decode": re.compile(r"\b(NVL2?|DECODE)\s*\(", re.IGNORECASE),
    "oracle_minus": re.compile(r"\bMINUS\b", re.IGNORECASE),
    "oracle_sequence": re.compile(r"\.\s*(NEXTVAL|CURRVAL)\b", re.IGNORECASE),
    "oracle_outer_join_operator": re.compile(r"\(\+\)"),
    "oracle_sysdate": re.compile(r"\bSYS(DATE|TIMESTAMP)\b", re.IGNORECASE),
    "flashback": re.compile(r"\bAS\s+OF\s+(SCN|TIMESTAMP)\b", re.IGNORECASE),
    "hive_lateral_view": re.compile(r"\bLATERAL\s+VIEW\b", re.IGNORECASE),
    "hive_distribute_by": re.compile(r"\bDISTRIBUTE\s+BY\b", re.IGNORECASE),
    "hive_cluster_by": re.compile(r"\bCLUSTER\s+BY\b", re.IGNORECASE),
    "hive_sort_by": re.compile(r"\bSORT\s+BY\b", re.IGNORECASE),
    "hive_serde": re.compile(r"\b(SERDE|ROW\s+FORMAT)\b", re.IGNORECASE),
    "trino_rows_from": re.compile(r"\bROWS\s+FROM\s*\(", re.IGNORECASE),
    "trino_map_functions": re.compile(r"\b(MAP_FROM_ENTRIES|MAP_AGG|ARRAY_JOIN)\s*\(", re.IGNORECASE),
    "external_table": re.compile(r"\bCREATE\s+EXTERNAL\s+TABLE\b", re.IGNORECASE),
    "tblproperties": re.compile(r"\bTBLPROPERTIES\s*\(", re.IGNORECASE),
    "redshift_distkey": re.compile(r"\bDISTKEY\b", re.IGNORECASE),
    "redshift_sortkey": re.compile(r"\bSORTKEY\b", re.IGNORECASE),
    "redshift_diststyle": re.compile(r"\bDISTSTYLE\s+(KEY|ALL|EVEN|AUTO)\b", re.IGNORECASE),
    "redshift_copy": re.compile(r"\bCOPY\s+\w+\s+FROM\b", re.IGNORECASE),
    "redshift_unload": re.compile(r"\bUNLOAD\s*\(", re.IGNORECASE),
    "sqlite_autoincrement": re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE),
    "sqlite_glob": re.compile(r"\bGLOB\b", re.IGNORECASE),
    "sqlite_pragma": re.compile(r"\bPRAGMA\s+", re.IGNORECASE),
}

# Fingerprints that must see string literals intact
RAW_SYNTAX_PATTERNS: Dict[str, re.Pattern] = {
    "postgres_interval": re.compile(r"INTERVAL\s+'[^']+'", re.IGNORECASE),
}

# `#>` collides with `#` comments, so JSON operators are checked before masking
_POSTGRES_JSON_OPERATORS = re.compile(r"->>|#>|\?&|\?\|")

# Fingerprint name -> [(dialect, points)]
DIALECT_WEIGHTS: Dict[str, List[Tuple[Dialect, int]]] = {
    "snowflake_path_operator": [(Dialect.SNOWFLAKE, 1)],
    "snowflake_named_args": [(Dialect.SNOWFLAKE, 1)],
    "flatten": [(Dialect.SNOWFLAKE, 1)],
    "create_or_replace_table": [(Dialect.SNOWFLAKE, 2)],
    "qualify": [(Dialect.SNOWFLAKE, 2), (Dialect.BIGQUERY, 1)],
    "merge_into": [
        (Dialect.SNOWFLAKE, 1),
        (Dialect.TRANSACTSQL, 1),
        (Dialect.ORACLE, 1),
    ],
    "three_part_names": [
        (Dialect.SNOWFLAKE, 3),
        (Dialect.TRANSACTSQL, 1),
        (Dialect.REDSHIFT, 1),
    ],
    "ilike": [
        (Dialect.SNOWFLAKE, 1),
        (Dialect.POSTGRESQL, 1),
        (Dialect.REDSHIFT, 1),
    ],
    "bigquery_struct": [(Dialect.BIGQUERY, 1)],
    "bigquery_array_type": [(Dialect.BIGQUERY, 1)],
    "postgres_dollar_quotes": [(Dialect.POSTGRESQL, 1)],
    "postgres_json_operators": [(Dialect.POSTGRESQL, 1)],
    "postgres_interval": [(Dialect.POSTGRESQL, 1)],
    "postgres_type_cast": [(Dialect.POSTGRESQL, 1)],
    "postgres_at_time_zone": [(Dialect.POSTGRESQL, 1)],
    "mysql_backticks": [(Dialect.MYSQL, 1)],
    "mysql_group_by_rollup": [(Dialect.MYSQL, 1)],
    "mysql_dual": [(Dialect.MYSQL, 1)],
    "tsql_apply": [(Dialect.TRANSACTSQL, 1)],
    "tsql_top": [(Dialect.TRANSACTSQL, 1)],
    "pivot": [(Dialect.TRANSACTSQL, 1), (Dialect.ORACLE, 1)],
    "oracle_connect_by": [(Dialect.ORACLE, 3)],
    "oracle_rownum": [(Dialect.ORACLE, 2)],
    "oracle_nvl_decode": [(Dialect.ORACLE, 1)],
    "oracle_sequence": [(Dialect.ORACLE, 2)],
    "oracle_outer_join_operator": [(Dialect.ORACLE, 3)],
    "oracle_sysdate": [(Dialect.ORACLE, 1)],
    "oracle_minus": [(Dialect.ORACLE, 1)],
    "flashback": [(Dialect.ORACLE, 3)],
    "hive_lateral_view": [(Dialect.HIVE, 3)],
    "hive_distribute_by": [(Dialect.HIVE, 3)],
    "hive_cluster_by": [(Dialect.HIVE, 2)],
    "hive_sort_by": [(Dialect.HIVE, 2)],
    "hive_serde": [(Dialect.HIVE, 2)],
    "trino_rows_from": [(Dialect.TRINO, 3)],
    "trino_map_functions": [(Dialect.TRINO, 2)],
    "external_table": [(Dialect.ATHENA, 2)],
    "tblproperties": [(Dialect.ATHENA, 1)],
    "redshift_distkey": [(Dialect.REDSHIFT, 3)],
    "redshift_sortkey": [(Dialect.REDSHIFT, 3)],
    "redshift_diststyle": [(Dialect.REDSHIFT, 2)],
    "redshift_copy": [(Dialect.REDSHIFT, 2)],
    "redshift_unload": [(Dialect.REDSHIFT, 3)],
    "sqlite_autoincrement": [(Dialect.SQLITE, 3)],
    "sqlite_glob": [(Dialect.SQLITE, 2)],
    "sqlite_pragma": [(Dialect.SQLITE, 3)],
}


def detect_syntax_markers(sql: str) -> Dict[str, bool]:
    """
    Evaluate every syntax fingerprint against the SQL text.

    Returns:
        Fingerprint name -> whether it was found
    """
    masked = mask_strings_and_comments(sql)
    markers = {name: bool(pattern.search(masked)) for name, pattern in SYNTAX_PATTERNS.items()}
    for name, pattern in RAW_SYNTAX_PATTERNS.items():
        markers[name] = bool(pattern.search(sql))
    markers["postgres_json_operators"] = bool(_POSTGRES_JSON_OPERATORS.search(sql))
    # UNNEST alone is not enough to point at BigQuery
    markers["bigquery_unnest_typed"] = markers["bigquery_unnest"] and (
        markers["bigquery_struct"] or markers["bigquery_array_type"]
    )
    return markers


# ============================================================================
# Detection
# ============================================================================


@dataclass
class DialectDetection:
    """Outcome of fingerprint scoring"""

    dialect: Optional[Dialect]
    scores: Dict[Dialect, int] = field(default_factory=dict)
    confidence: str = "none"  # high, low, none


def rank_dialect_scores(scores: Dict[Dialect, int]) -> List[Tuple[Dialect, int]]:
    """Dialects with a positive score, highest first"""
    ranked = [(dialect, score) for dialect, score in scores.items() if score > 0]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked


def detect_dialect(sql: str) -> DialectDetection:
    """
    Guess the dialect of a SQL statement from its syntax fingerprints.

    The result is high-confidence when only one dialect matched, or when
    the top score is at least 3 and leads the runner-up by at least 2.

    Args:
        sql: SQL text (comments are ignored)

    Returns:
        DialectDetection with the winning dialect (None unless confident)
    """
    stripped = strip_sql_comments(sql)
    if not stripped.strip():
        return DialectDetection(dialect=None, scores={}, confidence="none")

    markers = detect_syntax_markers(stripped)
    scores: Dict[Dialect, int] = {}
    for marker, weights in DIALECT_WEIGHTS.items():
        if not markers.get(marker):
            continue
        for dialect, points in weights:
            scores[dialect] = scores.get(dialect, 0) + points
    if markers["bigquery_unnest_typed"]:
        scores[Dialect.BIGQUERY] = scores.get(Dialect.BIGQUERY, 0) + 1

    ranked = rank_dialect_scores(scores)
    if not ranked:
        return DialectDetection(dialect=None, scores=scores, confidence="none")

    top_dialect, top_score = ranked[0]
    second_score = ranked[1][1] if len(ranked) > 1 else 0
    if len(ranked) == 1 or (top_score >= 3 and top_score >= second_score + 2):
        return DialectDetection(dialect=top_dialect, scores=scores, confidence="high")
    return DialectDetection(dialect=None, scores=scores, confidence="low")


def select_retry_dialect(sql: str, current: Dialect) -> Optional[Dialect]:
    """
    Pick a dialect to retry with after a parse failure.

    Uses the detected dialect when it differs from the current one; for a
    low-confidence detection, a clear leader with score >= 2 is accepted.
    """
    detection = detect_dialect(sql)
    if detection.dialect is not None and detection.dialect != current:
        return detection.dialect

    ranked = rank_dialect_scores(detection.scores)
    if not ranked or ranked[0][0] == current:
        return None
    top_dialect, top_score = ranked[0]
    second_score = ranked[1][1] if len(ranked) > 1 else 0
    if top_score >= 2 and top_score > second_score:
        return top_dialect
    return None


# ============================================================================
# Dialect-specific syntax hints
# ============================================================================

_MERGE_DIALECTS = (Dialect.TRANSACTSQL, Dialect.ORACLE, Dialect.SNOWFLAKE, Dialect.BIGQUERY)
_UNNEST_DIALECTS = (Dialect.BIGQUERY, Dialect.POSTGRESQL, Dialect.TRINO, Dialect.ATHENA)


def _syntax_hint(hint_type: HintType, message: str, suggestion: str, severity: HintSeverity) -> OptimizationHint:
    return OptimizationHint(
        type=hint_type,
        message=message,
        suggestion=suggestion,
        category=HintCategory.BEST_PRACTICE,
        severity=severity,
    )


def dialect_syntax_hints(sql: str, current: Dialect) -> List[OptimizationHint]:
    """
    Hints for syntax that belongs to a different dialect than `current`.

    Args:
        sql: Statement text
        current: Dialect the statement was parsed with

    Returns:
        List of best-practice hints (possibly empty)
    """
    stripped = strip_sql_comments(sql)
    markers = detect_syntax_markers(stripped)
    hints: List[OptimizationHint] = []

    if current != Dialect.SNOWFLAKE and (
        markers["snowflake_path_operator"] or markers["snowflake_named_args"] or markers["flatten"]
    ):
        if current in (Dialect.MYSQL, Dialect.POSTGRESQL):
            suggestion = (
                "This query uses Snowflake syntax (e.g., : path operator or => named arguments). "
                "Try Snowflake dialect for full support."
            )
        else:
            suggestion = "This query uses Snowflake-specific syntax. Consider switching to Snowflake dialect."
        hints.append(
            _syntax_hint(HintType.WARNING, "Snowflake-specific syntax detected", suggestion, HintSeverity.MEDIUM)
        )

    unnest_foreign = markers["bigquery_unnest"] and current not in _UNNEST_DIALECTS
    if current != Dialect.BIGQUERY and (
        markers["bigquery_struct"] or markers["bigquery_array_type"] or unnest_foreign
    ):
        hints.append(
            _syntax_hint(
                HintType.WARNING,
                "BigQuery-specific syntax detected",
                "This query uses BigQuery syntax (e.g., STRUCT, UNNEST, or ARRAY<>). "
                "Try BigQuery dialect for full support.",
                HintSeverity.MEDIUM,
            )
        )

    if current not in (Dialect.POSTGRESQL, Dialect.SNOWFLAKE, Dialect.REDSHIFT) and (
        markers["postgres_interval"]
        or markers["postgres_dollar_quotes"]
        or markers["postgres_array_access"]
        or markers["postgres_json_operators"]
    ):
        hints.append(
            _syntax_hint(
                HintType.WARNING,
                "PostgreSQL-specific syntax detected",
                "This query uses PostgreSQL syntax (e.g., INTERVAL '...', $$ quotes, or JSON operators). "
                "Try PostgreSQL dialect.",
                HintSeverity.MEDIUM,
            )
        )

    if current not in (Dialect.MYSQL, Dialect.MARIADB, Dialect.HIVE, Dialect.BIGQUERY) and (
        markers["mysql_backticks"] or markers["mysql_group_by_rollup"] or markers["mysql_dual"]
    ):
        hints.append(
            _syntax_hint(
                HintType.INFO,
                "MySQL-specific syntax detected",
                "This query uses MySQL syntax (e.g., backtick identifiers or WITH ROLLUP). Try MySQL dialect.",
                HintSeverity.LOW,
            )
        )

    if current != Dialect.TRANSACTSQL and (markers["tsql_apply"] or markers["tsql_top"]):
        hints.append(
            _syntax_hint(
                HintType.WARNING,
                "SQL Server (T-SQL) syntax detected",
                "This query uses SQL Server syntax (e.g., CROSS APPLY or TOP). Try TransactSQL dialect.",
                HintSeverity.MEDIUM,
            )
        )

    if markers["merge_into"]:
        if current not in _MERGE_DIALECTS:
            hints.append(
                _syntax_hint(
                    HintType.WARNING,
                    "MERGE statement detected",
                    "MERGE statements are supported in TransactSQL, Oracle, Snowflake, and BigQuery "
                    f"dialects. Current dialect ({current.value}) may have limited support. Consider "
                    "dialect-specific alternatives: PostgreSQL (INSERT ... ON CONFLICT), MySQL "
                    "(INSERT ... ON DUPLICATE KEY UPDATE), or SQLite (INSERT OR REPLACE/IGNORE).",
                    HintSeverity.MEDIUM,
                )
            )
        else:
            hints.append(
                _syntax_hint(
                    HintType.INFO,
                    "MERGE statement",
                    "MERGE statements are complex and may not render fully in all cases.",
                    HintSeverity.LOW,
                )
            )

    return hints


__all__ = [
    "SYNTAX_PATTERNS",
    "DIALECT_WEIGHTS",
    "DialectDetection",
    "detect_syntax_markers",
    "rank_dialect_scores",
    "detect_dialect",
    "select_retry_dialect",
    "dialect_syntax_hints",
]
