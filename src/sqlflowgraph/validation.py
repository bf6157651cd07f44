"""
Input validation for batched SQL.

Checks batch text against the configured size and statement-count limits
before it is compiled.
"""

import re
from typing import Optional

from .config import DEFAULT_VALIDATION_LIMITS, ValidationLimits
from .models import ValidationError

_SINGLE_QUOTED = re.compile(r"'[^']*'")
_DOUBLE_QUOTED = re.compile(r'"[^"]*"')
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"(--|#)[^\n]*")


def format_bytes(size: int) -> str:
    """Human-readable byte count: `512 bytes`, `1.5KB`, `2.0MB`."""
    if size < 1024:
        return f"{size} bytes"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def sql_size_bytes(sql: str) -> int:
    return len(sql.encode("utf-8"))


def estimate_statement_count(sql: str) -> int:
    """
    Cheap statement estimate: semicolons outside literals and comments.

    Text without a trailing semicolon counts as one more statement.
    """
    cleaned = _SINGLE_QUOTED.sub("", sql)
    cleaned = _DOUBLE_QUOTED.sub("", cleaned)
    cleaned = _BLOCK_COMMENT.sub("", cleaned)
    cleaned = _LINE_COMMENT.sub("", cleaned)
    trimmed = cleaned.strip()
    if not trimmed:
        return 0
    semicolons = cleaned.count(";")
    if semicolons == 0:
        return 1
    return semicolons if trimmed.endswith(";") else semicolons + 1


def validate_sql(sql: str, limits: ValidationLimits = DEFAULT_VALIDATION_LIMITS) -> Optional[ValidationError]:
    """
    Validate SQL input against size and statement-count limits.

    Args:
        sql: Batch SQL text
        limits: Limits to enforce

    Returns:
        The first violated limit, or None if the input is within limits
    """
    size = sql_size_bytes(sql)
    if size > limits.max_sql_size_bytes:
        return ValidationError(
            type="size_limit",
            message=f"SQL input exceeds maximum size limit of {format_bytes(limits.max_sql_size_bytes)}",
            actual=size,
            limit=limits.max_sql_size_bytes,
            unit="bytes",
        )

    statements = estimate_statement_count(sql)
    if statements > limits.max_query_count:
        return ValidationError(
            type="query_count_limit",
            message=(
                f"SQL contains approximately {statements} statements, "
                f"exceeding the limit of {limits.max_query_count}"
            ),
            actual=statements,
            limit=limits.max_query_count,
            unit="statements",
        )

    return None


def truncate_to_bytes(sql: str, max_bytes: int) -> str:
    """Cut text to at most `max_bytes` UTF-8 bytes without splitting a character."""
    encoded = sql.encode("utf-8")
    if len(encoded) <= max_bytes:
        return sql
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


__all__ = [
    "format_bytes",
    "sql_size_bytes",
    "estimate_statement_count",
    "validate_sql",
    "truncate_to_bytes",
]
