"""
Single-statement parse orchestration.

SQLFlowParser runs one SQL text through session-command matching,
preprocessing, the timed grammar parse (with one dialect-guess retry),
flow graph construction and every analysis pass, falling back to the
regex extractor whenever the grammar parser fails or is too slow.
"""

import logging
import time
from typing import Callable, List, Optional, Tuple, Union

from .adapter import Statement, StatementParseError, parse_statements
from .config import DEFAULT_DIALECT, DEFAULT_PARSER_CONFIG, Dialect, ParserConfig
from .dialects import detect_dialect, dialect_syntax_hints, select_retry_dialect
from .fallback import regex_fallback_parse
from .flow_builder import FlowGraphBuilder
from .hints import detect_advanced_issues, generate_presence_hints
from .lineage import extract_column_flows, extract_column_lineage, primary_select
from .metrics import assign_line_numbers, calculate_complexity, calculate_enhanced_metrics
from .models import (
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
)
from .performance import analyze_performance, count_performance_issues, performance_score
from .preprocessing import preprocess_sql
from .session_commands import SESSION_COMMAND_SUGGESTION, SessionCommandMatch, match_session_command

logger = logging.getLogger(__name__)

FALLBACK_SUGGESTION = "Showing partial visualization using fallback parser. Some elements may be inaccurate."


class SQLFlowParser:
    """
    Compiles SQL text into a flow graph with stats, lineage and hints.

    The parser keeps no state between calls; every call to `parse` gets a
    fresh ParserContext.

    Example:
        parser = SQLFlowParser(dialect=Dialect.POSTGRESQL)
        result = parser.parse("SELECT id FROM users WHERE active")
        print(result.stats.complexity)
    """

    def __init__(
        self,
        dialect: Union[Dialect, str] = DEFAULT_DIALECT,
        timeout_ms: Optional[float] = None,
        config: Optional[ParserConfig] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.dialect = Dialect.from_name(dialect)
        self.config = config or DEFAULT_PARSER_CONFIG
        self.timeout_ms = timeout_ms if timeout_ms is not None else self.config.timeout_ms
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self.clock = clock

    def parse(self, sql: str) -> ParseResult:
        """
        Compile one SQL text.

        Never raises for bad SQL: parse failures and timeouts produce a
        partial result with an explanatory hint.
        """
        if not sql or not sql.strip():
            return ParseResult(sql=sql or "", error="No SQL provided", dialect=self.dialect)

        session = match_session_command(sql)
        if session is not None:
            return self._session_result(sql, session)

        ctx = ParserContext(dialect=self.dialect)
        text = sql
        if self.config.preprocess:
            text, applied = preprocess_sql(sql, self.dialect)
            for preprocessor in applied:
                ctx.add_hint(HintType.INFO, preprocessor.message, preprocessor.suggestion)

        try:
            statements, elapsed_ms = self._timed_parse(text, self.dialect)
        except StatementParseError as error:
            retried = self._retry(sql, ctx, error)
            if retried is None:
                return self._failure_result(sql, ctx, error)
            statements, elapsed_ms = retried

        timeout_s = self.timeout_ms / 1000
        elapsed_s = elapsed_ms / 1000
        if elapsed_ms > self.timeout_ms:
            logger.warning("Parse took %.1fs (timeout %.0fs); using regex fallback", elapsed_s, timeout_s)
            timeout_hint = OptimizationHint(
                type=HintType.WARNING,
                message=f"Query parsing took {elapsed_s:.1f}s — exceeded {timeout_s:.0f}s timeout",
                suggestion="Showing partial visualization. Consider simplifying the query or splitting it into smaller parts.",
                category=HintCategory.PERFORMANCE,
                severity=HintSeverity.HIGH,
            )
            result = regex_fallback_parse(sql, ctx.dialect, self._carry_hints(ctx))
            result.hints.insert(0, timeout_hint)
            result.performance_score = performance_score(result.hints)
            result.performance_issues = count_performance_issues(result.hints)
            return result
        if elapsed_ms > self.timeout_ms * self.config.warning_ratio:
            ctx.add_hint(
                HintType.WARNING,
                f"Query parsing took {elapsed_s:.1f}s — approaching {timeout_s:.0f}s timeout limit",
                "Consider simplifying the query or splitting it into smaller parts",
                HintCategory.PERFORMANCE,
                HintSeverity.MEDIUM,
            )

        return self._compile(sql, statements, ctx)

    # ========================================================================
    # Grammar parse
    # ========================================================================

    def _timed_parse(self, sql: str, dialect: Dialect) -> Tuple[List[Statement], float]:
        started = self.clock()
        try:
            statements = parse_statements(sql, dialect)
        finally:
            elapsed_ms = (self.clock() - started) * 1000
        return statements, elapsed_ms

    def _retry(self, sql: str, ctx: ParserContext, error: StatementParseError) -> Optional[Tuple[List[Statement], float]]:
        """Retry once with a detected dialect; switches ctx.dialect on success"""
        if not self.config.retry_with_detected_dialect:
            return None
        retry_dialect = select_retry_dialect(sql, self.dialect)
        if retry_dialect is None:
            return None

        text = preprocess_sql(sql, retry_dialect)[0] if self.config.preprocess else sql
        logger.debug("Retrying parse with %s after: %s", retry_dialect.value, error.message)
        try:
            parsed = self._timed_parse(text, retry_dialect)
        except StatementParseError as retry_error:
            logger.debug("Retry with %s failed: %s", retry_dialect.value, retry_error.message)
            return None

        ctx.dialect = retry_dialect
        ctx.add_hint(
            HintType.INFO,
            f"Auto-retried parse with {retry_dialect.value} dialect after {self.dialect.value} parse failure",
            f"Switch the dialect to {retry_dialect.value} to parse this query directly.",
        )
        return parsed

    def _describe_error(self, sql: str, error: StatementParseError) -> str:
        message = error.message
        if error.near:
            message = f"{message} (near '{error.near}')"

        detection = detect_dialect(sql)
        if detection.dialect is not None and detection.dialect != self.dialect:
            message = f"{message}. Try {detection.dialect.value} dialect."
        elif self.dialect != Dialect.POSTGRESQL:
            message = f"{message}. Try PostgreSQL dialect (most compatible)."

        if error.line is not None:
            location = f"Line {error.line}, column {error.column}" if error.column is not None else f"Line {error.line}"
            message = f"{location}: {message}"
        return message

    # ========================================================================
    # Results
    # ========================================================================

    @staticmethod
    def _carry_hints(ctx: ParserContext) -> ParserContext:
        """Fresh context for the fallback extractor keeping the hints gathered so far"""
        fallback_ctx = ParserContext(dialect=ctx.dialect)
        fallback_ctx.hints = list(ctx.hints)
        return fallback_ctx

    def _failure_result(self, sql: str, ctx: ParserContext, error: StatementParseError) -> ParseResult:
        message = self._describe_error(sql, error)
        logger.warning("Parse failed for %s: %s", self.dialect.value, message)

        result = regex_fallback_parse(sql, self.dialect, self._carry_hints(ctx))
        result.hints.insert(
            0,
            OptimizationHint(
                type=HintType.ERROR,
                message=f"Parse error: {message}",
                suggestion=FALLBACK_SUGGESTION,
                category=HintCategory.BEST_PRACTICE,
                severity=HintSeverity.HIGH,
            ),
        )
        result.hints.extend(dialect_syntax_hints(sql, self.dialect))
        result.error = message
        result.performance_score = performance_score(result.hints)
        result.performance_issues = count_performance_issues(result.hints)
        return result

    def _session_result(self, sql: str, session: SessionCommandMatch) -> ParseResult:
        ctx = ParserContext(dialect=self.dialect, statement_type=session.type)
        node = FlowNode(
            id=ctx.gen_id("session"),
            type=NodeType.OPERATION,
            label=session.type,
            description=session.description,
            details=[session.description],
        )
        ctx.add_hint(HintType.INFO, f"{session.type} statement", SESSION_COMMAND_SUGGESTION)
        stats = QueryStats(complexity=ComplexityLevel.SIMPLE, complexity_score=1)
        return ParseResult(
            nodes=[node],
            stats=stats,
            hints=ctx.hints,
            sql=sql,
            dialect=self.dialect,
            has_no_limit=False,
            statement_type=session.type,
        )

    def _compile(self, sql: str, statements: List[Statement], ctx: ParserContext) -> ParseResult:
        """Build the graph for every statement, then run the analysis passes in order"""
        builder = FlowGraphBuilder(ctx)
        for statement in statements:
            builder.build(statement)
        nodes, edges = builder.nodes, builder.edges

        primary = statements[0]
        ctx.statement_type = primary.statement_type
        calculate_complexity(ctx.stats)
        generate_presence_hints(ctx, primary.kind, primary.where is not None)
        ctx.hints.extend(dialect_syntax_hints(sql, ctx.dialect))
        detect_advanced_issues(ctx, nodes, sql)
        calculate_enhanced_metrics(ctx, nodes, edges)
        index_suggestions = analyze_performance(ctx, nodes, edges, primary_select(primary))
        assign_line_numbers(nodes, sql)
        lineage = extract_column_lineage(primary, nodes, ctx.dialect)
        flows = extract_column_flows(primary, nodes, edges)
        ctx.stats.tables = len(ctx.table_usage)

        logger.debug(
            "Compiled %s statement: %d nodes, %d edges, %d hints",
            ctx.statement_type,
            len(nodes),
            len(edges),
            len(ctx.hints),
        )
        return ParseResult(
            nodes=nodes,
            edges=edges,
            stats=ctx.stats,
            hints=ctx.hints,
            column_lineage=lineage,
            column_flows=flows,
            table_usage=dict(ctx.table_usage),
            sql=sql,
            ast=primary.node,
            dialect=ctx.dialect,
            performance_score=performance_score(ctx.hints),
            performance_issues=count_performance_issues(ctx.hints),
            functions_used=sorted(ctx.functions_used),
            index_suggestions=index_suggestions,
            has_select_star=ctx.has_select_star,
            has_no_limit=ctx.has_no_limit,
            statement_type=ctx.statement_type,
        )


def parse_sql(
    sql: str,
    dialect: Union[Dialect, str] = DEFAULT_DIALECT,
    timeout_ms: Optional[float] = None,
    config: Optional[ParserConfig] = None,
) -> ParseResult:
    """
    Compile one SQL statement into a ParseResult.

    Args:
        sql: SQL text (one statement, or several compiled into one graph)
        dialect: Dialect or dialect name
        timeout_ms: Parse timeout override in milliseconds
        config: Parser options

    Returns:
        ParseResult; `partial` is set when the regex fallback was used
    """
    return SQLFlowParser(dialect=dialect, timeout_ms=timeout_ms, config=config).parse(sql)


__all__ = [
    "SQLFlowParser",
    "parse_sql",
]
