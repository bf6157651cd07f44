"""
Session and utility command recognition.

Statements such as USE, SET, SHOW, GRANT or transaction control carry no
data flow. They are matched against an ordered pattern table (first match
wins) before the grammar parser runs and are rendered as a single
informational node.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .sql_text import strip_leading_comments


@dataclass
class SessionCommandPattern:
    """One row of the session command table"""

    pattern: re.Pattern
    type: str
    describe: Callable[["re.Match"], str]
    dialects: Tuple[str, ...] = ()  # Dialects the command is native to (informational)


def _p(regex: str) -> re.Pattern:
    return re.compile(regex, re.IGNORECASE | re.DOTALL)


def _optional(match: "re.Match", group: int, prefix: str = "") -> str:
    value = match.group(group)
    return f"{prefix}{value.strip()}" if value and value.strip() else ""


# Ordered: more specific patterns must precede the generic ones
SESSION_COMMAND_PATTERNS: List[SessionCommandPattern] = [
    # Context switching
    SessionCommandPattern(_p(r"^USE\s+WAREHOUSE\s+(\S+)"), "USE WAREHOUSE", lambda m: f"Switch to warehouse: {m.group(1)}", ("Snowflake",)),
    SessionCommandPattern(_p(r"^USE\s+DATABASE\s+(\S+)"), "USE DATABASE", lambda m: f"Switch to database: {m.group(1)}"),
    SessionCommandPattern(_p(r"^USE\s+SCHEMA\s+(\S+)"), "USE SCHEMA", lambda m: f"Switch to schema: {m.group(1)}"),
    SessionCommandPattern(_p(r"^USE\s+ROLE\s+(\S+)"), "USE ROLE", lambda m: f"Switch to role: {m.group(1)}", ("Snowflake",)),
    SessionCommandPattern(_p(r"^USE\s+SECONDARY\s+ROLES\s+(\S+)"), "USE SECONDARY ROLES", lambda m: f"Set secondary roles: {m.group(1)}", ("Snowflake",)),
    SessionCommandPattern(_p(r"^USE\s+(\S+)"), "USE", lambda m: f"Use: {m.group(1)}"),
    # Variables
    SessionCommandPattern(_p(r"^SET\s+(\w+)\s*=\s*(.+)"), "SET", lambda m: f"Set {m.group(1)} = {m.group(2).strip()}"),
    SessionCommandPattern(_p(r"^SET\s+(TRANSACTION|SESSION|LOCAL|GLOBAL)\s+(.+)"), "SET", lambda m: f"Set {m.group(1)} {m.group(2).strip()}"),
    SessionCommandPattern(_p(r"^UNSET\s+(\w+)"), "UNSET", lambda m: f"Unset variable: {m.group(1)}"),
    SessionCommandPattern(_p(r"^ALTER\s+SESSION\s+SET\s+(.+)"), "ALTER SESSION", lambda m: f"Alter session: {m.group(1).strip()}", ("Snowflake",)),
    SessionCommandPattern(_p(r"^ALTER\s+SESSION\s+UNSET\s+(.+)"), "ALTER SESSION", lambda m: f"Unset session param: {m.group(1).strip()}", ("Snowflake",)),
    # T-SQL
    SessionCommandPattern(_p(r"^EXEC(?:UTE)?\s+(.+)"), "EXECUTE", lambda m: f"Execute: {m.group(1).strip()}", ("TransactSQL",)),
    SessionCommandPattern(_p(r"^PRINT\s+(.+)"), "PRINT", lambda m: f"Print: {m.group(1).strip()}", ("TransactSQL",)),
    SessionCommandPattern(_p(r"^DECLARE\s+(.+)"), "DECLARE", lambda m: f"Declare: {m.group(1).strip()}"),
    SessionCommandPattern(_p(r"^GO\s*$"), "GO", lambda m: "Batch separator", ("TransactSQL",)),
    # PostgreSQL
    SessionCommandPattern(_p(r"^\\(\w+)\s*(.*)"), "PSQL COMMAND", lambda m: f"psql: \\{m.group(1)} {m.group(2)}".rstrip(), ("PostgreSQL",)),
    SessionCommandPattern(_p(r"^COPY\s+(.+)"), "COPY", lambda m: f"Copy: {m.group(1).strip()}", ("PostgreSQL",)),
    SessionCommandPattern(_p(r"^LISTEN\s+(\S+)"), "LISTEN", lambda m: f"Listen to channel: {m.group(1)}", ("PostgreSQL",)),
    SessionCommandPattern(_p(r"^NOTIFY\s+(\S+)"), "NOTIFY", lambda m: f"Notify channel: {m.group(1)}", ("PostgreSQL",)),
    SessionCommandPattern(_p(r"^VACUUM\b\s*(.*)"), "VACUUM", lambda m: "Vacuum" + _optional(m, 1, ": "), ("PostgreSQL",)),
    SessionCommandPattern(_p(r"^ANALYZE\b\s*(.*)"), "ANALYZE", lambda m: "Analyze" + _optional(m, 1, ": "), ("PostgreSQL",)),
    SessionCommandPattern(_p(r"^REINDEX\b\s*(.*)"), "REINDEX", lambda m: "Reindex" + _optional(m, 1, ": "), ("PostgreSQL",)),
    SessionCommandPattern(_p(r"^CLUSTER\b\s*(.*)"), "CLUSTER", lambda m: "Cluster" + _optional(m, 1, ": "), ("PostgreSQL",)),
    # SHOW
    SessionCommandPattern(_p(r"^SHOW\s+TRANSACTIONS"), "SHOW TRANSACTIONS", lambda m: "Show transactions"),
    SessionCommandPattern(_p(r"^SHOW\s+VARIABLES(\s+LIKE\s+.+)?"), "SHOW VARIABLES", lambda m: "Show variables" + _optional(m, 1, " ")),
    SessionCommandPattern(_p(r"^SHOW\s+PARAMETERS(\s+LIKE\s+.+)?"), "SHOW PARAMETERS", lambda m: "Show parameters" + _optional(m, 1, " "), ("Snowflake",)),
    SessionCommandPattern(_p(r"^SHOW\s+DATABASES"), "SHOW DATABASES", lambda m: "Show databases"),
    SessionCommandPattern(_p(r"^SHOW\s+SCHEMAS"), "SHOW SCHEMAS", lambda m: "Show schemas"),
    SessionCommandPattern(_p(r"^SHOW\s+TABLES(\s+IN\s+\S+)?"), "SHOW TABLES", lambda m: "Show tables" + _optional(m, 1, " ")),
    SessionCommandPattern(_p(r"^SHOW\s+VIEWS(\s+IN\s+\S+)?"), "SHOW VIEWS", lambda m: "Show views" + _optional(m, 1, " ")),
    SessionCommandPattern(_p(r"^SHOW\s+COLUMNS\s+(IN|FROM)\s+(\S+)"), "SHOW COLUMNS", lambda m: f"Show columns in {m.group(2)}"),
    SessionCommandPattern(_p(r"^SHOW\s+GRANTS(\s+.+)?"), "SHOW GRANTS", lambda m: "Show grants" + _optional(m, 1, " ")),
    SessionCommandPattern(_p(r"^SHOW\s+ROLES"), "SHOW ROLES", lambda m: "Show roles", ("Snowflake",)),
    SessionCommandPattern(_p(r"^SHOW\s+WAREHOUSES"), "SHOW WAREHOUSES", lambda m: "Show warehouses", ("Snowflake",)),
    SessionCommandPattern(_p(r"^SHOW\s+(.+)"), "SHOW", lambda m: f"Show: {m.group(1).strip()}"),
    # Introspection and maintenance
    SessionCommandPattern(_p(r"^DESCRIBE\s+(\S+)"), "DESCRIBE", lambda m: f"Describe table: {m.group(1)}"),
    SessionCommandPattern(_p(r"^DESC\s+(\S+)"), "DESCRIBE", lambda m: f"Describe table: {m.group(1)}"),
    SessionCommandPattern(_p(r"^EXPLAIN\s+(.+)"), "EXPLAIN", lambda m: f"Explain: {m.group(1).strip()[:50]}..."),
    SessionCommandPattern(_p(r"^FLUSH\s+(.+)"), "FLUSH", lambda m: f"Flush: {m.group(1).strip()}", ("MySQL", "MariaDB")),
    SessionCommandPattern(_p(r"^RESET\s+(.+)"), "RESET", lambda m: f"Reset: {m.group(1).strip()}"),
    SessionCommandPattern(_p(r"^PURGE\s+(.+)"), "PURGE", lambda m: f"Purge: {m.group(1).strip()}", ("MySQL", "MariaDB")),
    # BigQuery
    SessionCommandPattern(_p(r"^ASSERT\s+(.+)"), "ASSERT", lambda m: f"Assert: {m.group(1).strip()}", ("BigQuery",)),
    SessionCommandPattern(_p(r"^EXPORT\s+DATA\s+(.+)"), "EXPORT DATA", lambda m: f"Export data: {m.group(1).strip()}", ("BigQuery",)),
    SessionCommandPattern(_p(r"^LOAD\s+DATA\s+(.+)"), "LOAD DATA", lambda m: f"Load data: {m.group(1).strip()}"),
    # Hive
    SessionCommandPattern(_p(r"^ADD\s+(JAR|FILE|ARCHIVE)\s+(.+)"), "ADD RESOURCE", lambda m: f"Add {m.group(1)}: {m.group(2).strip()}", ("Hive",)),
    SessionCommandPattern(_p(r"^MSCK\s+REPAIR\s+TABLE\s+(\S+)"), "MSCK REPAIR", lambda m: f"Repair table: {m.group(1)}", ("Hive",)),
    SessionCommandPattern(_p(r"^REFRESH\s+TABLE\s+(\S+)"), "REFRESH TABLE", lambda m: f"Refresh table: {m.group(1)}", ("Hive",)),
    SessionCommandPattern(_p(r"^INVALIDATE\s+METADATA\b\s*(.*)"), "INVALIDATE METADATA", lambda m: "Invalidate metadata" + _optional(m, 1, ": "), ("Hive",)),
    # Transactions
    SessionCommandPattern(_p(r"^BEGIN(\s+TRANSACTION|\s+WORK|\s+TRAN)?\s*$"), "BEGIN", lambda m: "Begin transaction"),
    SessionCommandPattern(_p(r"^START\s+TRANSACTION"), "START TRANSACTION", lambda m: "Start transaction"),
    SessionCommandPattern(_p(r"^COMMIT(\s+TRANSACTION|\s+WORK|\s+TRAN)?\b"), "COMMIT", lambda m: "Commit transaction"),
    SessionCommandPattern(
        _p(r"^ROLLBACK(\s+TRANSACTION|\s+WORK|\s+TRAN)?(\s+TO\s+SAVEPOINT\s+\S+)?"),
        "ROLLBACK",
        lambda m: "Rollback transaction" + _optional(m, 2, " "),
    ),
    SessionCommandPattern(_p(r"^SAVEPOINT\s+(\S+)"), "SAVEPOINT", lambda m: f"Create savepoint: {m.group(1)}"),
    SessionCommandPattern(_p(r"^RELEASE\s+SAVEPOINT\s+(\S+)"), "RELEASE SAVEPOINT", lambda m: f"Release savepoint: {m.group(1)}"),
    # Access control
    SessionCommandPattern(_p(r"^GRANT\s+(.+)"), "GRANT", lambda m: f"Grant: {m.group(1).strip()[:50]}..."),
    SessionCommandPattern(_p(r"^REVOKE\s+(.+)"), "REVOKE", lambda m: f"Revoke: {m.group(1).strip()[:50]}..."),
]

SESSION_COMMAND_SUGGESTION = "This is a session/utility command that sets database context or configuration."


@dataclass
class SessionCommandMatch:
    type: str
    description: str


def match_session_command(sql: str) -> Optional[SessionCommandMatch]:
    """
    Match a statement against the session command table.

    Leading comments are ignored. A statement consisting only of comments
    matches as COMMENT.

    Returns:
        The first matching command, or None for statements with data flow
    """
    stripped = sql.strip()
    if not stripped:
        return None
    body = strip_leading_comments(stripped).strip().rstrip(";").strip()
    if not body:
        is_block = stripped.startswith("/*")
        return SessionCommandMatch(type="COMMENT", description="SQL block comment" if is_block else "SQL comment")

    for command in SESSION_COMMAND_PATTERNS:
        match = command.pattern.match(body)
        if match:
            return SessionCommandMatch(type=command.type, description=command.describe(match))
    return None


def is_session_command(sql: str) -> bool:
    return match_session_command(sql) is not None


__all__ = [
    "SessionCommandPattern",
    "SESSION_COMMAND_PATTERNS",
    "SESSION_COMMAND_SUGGESTION",
    "SessionCommandMatch",
    "match_session_command",
    "is_session_command",
]
