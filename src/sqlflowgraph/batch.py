"""
Batch processing of multi-statement SQL text.

Validates the batch against size and count limits, splits it into
statements, compiles each statement in isolation and aggregates the
results. Consecutive session commands (and, optionally, consecutive DDL
statements) are merged into one summary result.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .config import BatchOptions, DEFAULT_DIALECT, DEFAULT_VALIDATION_LIMITS, Dialect, ParserConfig, ValidationLimits
from .models import (
    BatchParseError,
    BatchResult,
    ComplexityLevel,
    FlowNode,
    HintCategory,
    HintSeverity,
    HintType,
    NodeType,
    OptimizationHint,
    ParseResult,
    ParserContext,
    QueryStats,
    StatementLineRange,
)
from .parser import SQLFlowParser
from .session_commands import SESSION_COMMAND_SUGGESTION, match_session_command
from .splitter import SqlStatement, scan_sql_statements
from .sql_text import strip_leading_comments
from .validation import format_bytes, truncate_to_bytes, validate_sql

logger = logging.getLogger(__name__)

_ERROR_LOCATION = re.compile(r"^Line\s+(\d+)(,\s*column\s+(\d+))?\s*:\s*", re.IGNORECASE)

_DDL_PATTERNS = [
    (
        "CREATE",
        re.compile(
            r"^CREATE\s+(?:OR\s+REPLACE\s+)?(TABLE|VIEW|INDEX|SCHEMA|DATABASE|FUNCTION|PROCEDURE|TRIGGER|SEQUENCE|TYPE|MATERIALIZED\s+VIEW)"
            r"\s+(?:IF\s+NOT\s+EXISTS\s+)?([^\s(]+)",
            re.IGNORECASE,
        ),
    ),
    (
        "ALTER",
        re.compile(r"^ALTER\s+(TABLE|VIEW|INDEX|SCHEMA|DATABASE|FUNCTION|PROCEDURE)\s+([^\s(]+)", re.IGNORECASE),
    ),
    (
        "DROP",
        re.compile(
            r"^DROP\s+(TABLE|VIEW|INDEX|SCHEMA|DATABASE|FUNCTION|PROCEDURE|TRIGGER|SEQUENCE|TYPE|MATERIALIZED\s+VIEW)"
            r"\s+(?:IF\s+EXISTS\s+)?([^\s(;]+)",
            re.IGNORECASE,
        ),
    ),
]


@dataclass
class DdlStatementInfo:
    type: str  # CREATE, ALTER, DROP
    keyword: str  # TABLE, VIEW, ...
    object_name: str


@dataclass
class _PendingStatement:
    sql: str
    start_line: int
    end_line: int
    type: str
    description: str = ""
    ddl: Optional[DdlStatementInfo] = None


def ddl_statement_info(sql: str) -> Optional[DdlStatementInfo]:
    """CREATE/ALTER/DROP statements without a query body, else None"""
    body = strip_leading_comments(sql).strip()
    # CREATE ... AS SELECT carries data flow and is compiled normally
    if re.search(r"\bAS\s*\(?\s*(SELECT|WITH)\b", body, re.IGNORECASE):
        return None
    for statement_type, pattern in _DDL_PATTERNS:
        match = pattern.match(body)
        if match:
            keyword = re.sub(r"\s+", " ", match.group(1).upper())
            return DdlStatementInfo(statement_type, keyword, re.sub(r"[`\"\[\]]", "", match.group(2)))
    return None


def offset_error_line(message: str, line_offset: int) -> str:
    """Shift a `Line L[, column C]:` prefix from statement to batch coordinates"""
    if line_offset <= 0:
        return message
    match = _ERROR_LOCATION.match(message)
    if not match:
        return message
    column_part = match.group(2) or ""
    return f"Line {int(match.group(1)) + line_offset}{column_part}: {message[match.end():]}"


def _shift_lines(result: ParseResult, line_offset: int):
    if line_offset <= 0:
        return
    if result.error:
        result.error = offset_error_line(result.error, line_offset)
    for node in result.nodes:
        if node.start_line:
            node.start_line += line_offset
        if node.end_line:
            node.end_line += line_offset
    for edge in result.edges:
        if edge.start_line:
            edge.start_line += line_offset


def _summary_result(
    node_type: NodeType,
    prefix: str,
    label: str,
    description: str,
    hint: OptimizationHint,
    pending: List[_PendingStatement],
    dialect: Dialect,
    complexity_score: int,
    statement_type: str,
    access_mode: Optional[str] = None,
) -> ParseResult:
    ctx = ParserContext(dialect=dialect)
    combined_sql = ";\n".join(item.sql for item in pending)
    node = FlowNode(
        id=ctx.gen_id(prefix),
        type=node_type,
        label=label,
        description=description,
        access_mode=access_mode,
        start_line=1,
        end_line=combined_sql.count("\n") + 1,
    )
    stats = QueryStats(complexity=ComplexityLevel.SIMPLE, complexity_score=complexity_score)
    return ParseResult(
        nodes=[node],
        stats=stats,
        hints=[hint],
        sql=combined_sql,
        dialect=dialect,
        has_no_limit=False,
        statement_type=pending[0].type if len(pending) == 1 else statement_type,
    )


def merged_session_result(pending: List[_PendingStatement], dialect: Dialect) -> ParseResult:
    """One `Session Setup` operation node listing every command"""
    count = len(pending)
    hint = OptimizationHint(
        type=HintType.INFO,
        message=f"{count} session command{'s' if count > 1 else ''}",
        suggestion=SESSION_COMMAND_SUGGESTION,
    )
    description = "\n".join(f"• {item.description}" for item in pending)
    return _summary_result(NodeType.OPERATION, "session", "Session Setup", description, hint, pending, dialect, 1, "SESSION")


def merged_ddl_result(pending: List[_PendingStatement], dialect: Dialect) -> ParseResult:
    """One `Schema Definition` node summarizing the DDL statements"""
    groups: Dict[str, List[str]] = {}
    for item in pending:
        groups.setdefault(f"{item.ddl.type} {item.ddl.keyword}", []).append(item.ddl.object_name)

    summary = ", ".join(f"{len(names)} {key}{'s' if len(names) > 1 else ''}" for key, names in groups.items())
    listing = "\n".join(
        f"{key.split(' ', 1)[1]}{'s' if len(names) > 1 else ''}: {', '.join(names)}" for key, names in groups.items()
    )
    count = len(pending)
    hint = OptimizationHint(
        type=HintType.INFO,
        message=summary,
        suggestion=f"This block contains {count} DDL statement{'s' if count > 1 else ''} defining database schema.",
    )
    return _summary_result(
        NodeType.RESULT, "ddl", "Schema Definition", f"{summary}\n\n{listing}", hint, pending, dialect, count, "DDL", "write"
    )


def _error_result(sql: str, dialect: Dialect, error: Exception) -> ParseResult:
    message = f"Unexpected error while compiling statement: {error}"
    return ParseResult(
        sql=sql,
        dialect=dialect,
        partial=True,
        error=message,
        hints=[
            OptimizationHint(
                type=HintType.ERROR,
                message=message,
                category=HintCategory.BEST_PRACTICE,
                severity=HintSeverity.HIGH,
            )
        ],
    )


def aggregate_stats(queries: List[ParseResult]) -> QueryStats:
    """
    Batch-level totals.

    Tables are distinct across the batch; other counters and the score are
    summed; the complexity level comes from the mean score.
    """
    totals = QueryStats()
    tables = set()
    for query in queries:
        tables.update(query.table_usage)
        stats = query.stats
        totals.joins += stats.joins
        totals.subqueries += stats.subqueries
        totals.ctes += stats.ctes
        totals.aggregations += stats.aggregations
        totals.window_functions += stats.window_functions
        totals.unions += stats.unions
        totals.conditions += stats.conditions
        totals.complexity_score += stats.complexity_score
        totals.max_cte_depth = max(totals.max_cte_depth, stats.max_cte_depth)
        totals.max_fan_out = max(totals.max_fan_out, stats.max_fan_out)
        totals.critical_path_length = max(totals.critical_path_length, stats.critical_path_length)
    totals.tables = len(tables)
    average = totals.complexity_score / len(queries) if queries else 0
    totals.complexity = ComplexityLevel.from_score(average)
    return totals


class BatchProcessor:
    """
    Compiles every statement of a SQL batch.

    Example:
        processor = BatchProcessor(dialect=Dialect.SNOWFLAKE)
        batch = processor.process("USE WAREHOUSE wh; SELECT 1 FROM t;")
        print(batch.success_count, batch.error_count)
    """

    def __init__(
        self,
        dialect: Union[Dialect, str] = DEFAULT_DIALECT,
        limits: ValidationLimits = DEFAULT_VALIDATION_LIMITS,
        options: Optional[BatchOptions] = None,
        config: Optional[ParserConfig] = None,
    ):
        self.dialect = Dialect.from_name(dialect)
        self.limits = limits
        self.options = options or BatchOptions()
        self.parser = SQLFlowParser(dialect=self.dialect, config=config)

    def process(self, sql: str) -> BatchResult:
        validation_error = validate_sql(sql, self.limits)
        truncated = validation_error is not None and validation_error.type == "size_limit"
        if truncated:
            logger.warning("Batch exceeds %s; truncating", format_bytes(self.limits.max_sql_size_bytes))
            sql = truncate_to_bytes(sql, self.limits.max_sql_size_bytes)

        batch = BatchResult(validation_error=validation_error)
        self._compile_statements(sql, batch)

        if truncated:
            for query in batch.queries:
                query.hints.append(
                    OptimizationHint(
                        type=HintType.WARNING,
                        message="Input truncated due to size limit",
                        suggestion=(
                            f"Showing first {format_bytes(self.limits.max_sql_size_bytes)} of "
                            f"{format_bytes(validation_error.actual)}. Consider splitting into smaller files."
                        ),
                        category=HintCategory.PERFORMANCE,
                        severity=HintSeverity.MEDIUM,
                    )
                )
        elif validation_error is not None:
            logger.warning("%s", validation_error.message)

        batch.total_stats = aggregate_stats(batch.queries)
        self._collect_errors(batch)
        logger.info(
            "Compiled batch: %d result(s), %d succeeded, %d failed",
            batch.total_queries,
            batch.success_count,
            batch.error_count,
        )
        return batch

    def _compile_statements(self, sql: str, batch: BatchResult):
        sessions: List[_PendingStatement] = []
        ddl: List[_PendingStatement] = []

        def flush(pending: List[_PendingStatement], merge):
            if not pending:
                return
            batch.queries.append(merge(pending, self.dialect))
            batch.query_line_ranges.append(StatementLineRange(pending[0].start_line, pending[-1].end_line))
            pending.clear()

        for statement in scan_sql_statements(sql):
            start_line, end_line = statement.line_range(sql)
            body = strip_leading_comments(statement.text)
            # Leading comment lines are not part of the command's range
            body_start = start_line + statement.text.count("\n") - body.count("\n")

            session = match_session_command(statement.text) if self.options.combine_session_commands else None
            if session is not None:
                sessions.append(_PendingStatement(body, body_start, end_line, session.type, session.description))
                continue
            flush(sessions, merged_session_result)

            info = ddl_statement_info(statement.text) if self.options.combine_ddl_statements else None
            if info is not None:
                ddl.append(_PendingStatement(body, body_start, end_line, info.type, ddl=info))
                continue
            flush(ddl, merged_ddl_result)

            batch.queries.append(self._compile_one(statement, start_line))
            batch.query_line_ranges.append(StatementLineRange(start_line, end_line))

        flush(sessions, merged_session_result)
        flush(ddl, merged_ddl_result)

    def _compile_one(self, statement: SqlStatement, start_line: int) -> ParseResult:
        try:
            result = self.parser.parse(statement.text)
        except Exception as error:
            logger.debug("Statement at line %d raised; recording as error", start_line, exc_info=True)
            result = _error_result(statement.text, self.dialect, error)
        _shift_lines(result, start_line - 1)
        return result

    @staticmethod
    def _collect_errors(batch: BatchResult):
        for index, query in enumerate(batch.queries):
            if not query.error:
                batch.success_count += 1
                continue
            batch.error_count += 1
            match = _ERROR_LOCATION.match(query.error)
            if match:
                line = int(match.group(1))
                column = int(match.group(3)) if match.group(3) else None
            else:
                line, column = batch.query_line_ranges[index].start_line, None
            sql = query.sql if len(query.sql) <= 200 else query.sql[:200] + "..."
            batch.parse_errors.append(
                BatchParseError(query_index=index, message=query.error, line=line, column=column, sql=sql)
            )


def parse_sql_batch(
    sql: str,
    dialect: Union[Dialect, str] = DEFAULT_DIALECT,
    limits: ValidationLimits = DEFAULT_VALIDATION_LIMITS,
    options: Optional[BatchOptions] = None,
) -> BatchResult:
    """
    Compile every statement of a SQL batch.

    Args:
        sql: Batch text with `;`-separated statements
        dialect: Dialect or dialect name
        limits: Size and statement-count limits
        options: Session/DDL combining options

    Returns:
        BatchResult; a failing statement never aborts the others
    """
    return BatchProcessor(dialect=dialect, limits=limits, options=options).process(sql)


__all__ = [
    "DdlStatementInfo",
    "ddl_statement_info",
    "offset_error_line",
    "merged_session_result",
    "merged_ddl_result",
    "aggregate_stats",
    "BatchProcessor",
    "parse_sql_batch",
]
