"""
Configuration values for the statement compiler.

Contains:
- The supported SQL dialects and their sqlglot reader names
- Validation limits applied to batched input
- Parse timeout and nesting depth defaults
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

# ============================================================================
# Dialects
# ============================================================================


class Dialect(Enum):
    """SQL dialect accepted by the grammar parser"""

    MYSQL = "MySQL"
    POSTGRESQL = "PostgreSQL"
    TRANSACTSQL = "TransactSQL"
    MARIADB = "MariaDB"
    SQLITE = "SQLite"
    SNOWFLAKE = "Snowflake"
    BIGQUERY = "BigQuery"
    HIVE = "Hive"
    REDSHIFT = "Redshift"
    ATHENA = "Athena"
    TRINO = "Trino"
    ORACLE = "Oracle"

    @property
    def sqlglot_name(self) -> str:
        """Name of the sqlglot dialect used to read this dialect"""
        return SQLGLOT_DIALECTS[self]

    @classmethod
    def from_name(cls, name: Union[str, "Dialect"]) -> "Dialect":
        """
        Resolve a dialect from its display name or its sqlglot name.

        Args:
            name: "PostgreSQL", "postgres", "tsql", a Dialect, ...

        Returns:
            The matching Dialect

        Raises:
            ValueError: If the name is not a known dialect
        """
        if isinstance(name, Dialect):
            return name
        lowered = name.strip().lower()
        for dialect in cls:
            if dialect.value.lower() == lowered or dialect.name.lower() == lowered:
                return dialect
        for dialect, reader in SQLGLOT_DIALECTS.items():
            if reader == lowered:
                return dialect
        raise ValueError(f"Unknown SQL dialect: {name}")


# MariaDB has no dedicated sqlglot reader; the MySQL grammar covers it.
SQLGLOT_DIALECTS = {
    Dialect.MYSQL: "mysql",
    Dialect.POSTGRESQL: "postgres",
    Dialect.TRANSACTSQL: "tsql",
    Dialect.MARIADB: "mysql",
    Dialect.SQLITE: "sqlite",
    Dialect.SNOWFLAKE: "snowflake",
    Dialect.BIGQUERY: "bigquery",
    Dialect.HIVE: "hive",
    Dialect.REDSHIFT: "redshift",
    Dialect.ATHENA: "athena",
    Dialect.TRINO: "trino",
    Dialect.ORACLE: "oracle",
}

DEFAULT_DIALECT = Dialect.MYSQL

# ============================================================================
# Limits
# ============================================================================

# Grammar-parser calls slower than this fall back to the regex extractor.
PARSE_TIMEOUT_MS = 5000

# Fraction of the timeout above which a "slow parse" warning is emitted.
PARSE_WARNING_RATIO = 0.7

# Nested CTE/subquery bodies deeper than this are not expanded further.
MAX_NESTING_DEPTH = 10


@dataclass(frozen=True)
class ValidationLimits:
    """Limits applied to batched SQL input"""

    max_sql_size_bytes: int = 100 * 1024
    max_query_count: int = 50

    def __post_init__(self):
        if self.max_sql_size_bytes <= 0:
            raise ValueError("max_sql_size_bytes must be positive")
        if self.max_query_count <= 0:
            raise ValueError("max_query_count must be positive")


DEFAULT_VALIDATION_LIMITS = ValidationLimits()


@dataclass(frozen=True)
class ParserConfig:
    """Options for single-statement compilation"""

    timeout_ms: float = PARSE_TIMEOUT_MS
    warning_ratio: float = PARSE_WARNING_RATIO
    preprocess: bool = True
    retry_with_detected_dialect: bool = True

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if not 0 < self.warning_ratio < 1:
            raise ValueError("warning_ratio must be between 0 and 1")


DEFAULT_PARSER_CONFIG = ParserConfig()


@dataclass(frozen=True)
class BatchOptions:
    """Options for multi-statement processing"""

    combine_session_commands: bool = True
    combine_ddl_statements: bool = False


__all__ = [
    "Dialect",
    "SQLGLOT_DIALECTS",
    "DEFAULT_DIALECT",
    "PARSE_TIMEOUT_MS",
    "PARSE_WARNING_RATIO",
    "MAX_NESTING_DEPTH",
    "ValidationLimits",
    "DEFAULT_VALIDATION_LIMITS",
    "ParserConfig",
    "DEFAULT_PARSER_CONFIG",
    "BatchOptions",
]
