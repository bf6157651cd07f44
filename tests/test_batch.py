"""
Tests for multi-statement batch processing.
"""

from sqlflowgraph import (
    BatchOptions,
    BatchProcessor,
    NodeType,
    ValidationLimits,
    parse_sql_batch,
)
from sqlflowgraph.batch import aggregate_stats, ddl_statement_info, offset_error_line


def _ranges(batch):
    return [(r.start_line, r.end_line) for r in batch.query_line_ranges]


class TestBatchBasics:
    def test_failing_statement_does_not_abort_batch(self):
        """Test that one bad statement becomes an error entry and the rest compile."""
        batch = parse_sql_batch("SELECT * FROM a; INVALID; SELECT * FROM b;")
        assert batch.total_queries == 3
        assert batch.success_count == 2
        assert batch.error_count == 1
        assert batch.parse_errors[0].query_index == 1
        assert batch.parse_errors[0].line == 1
        assert batch.queries[1].partial is True

    def test_line_numbers_are_batch_relative(self):
        sql = "SELECT 1 FROM a;\n\n\nSELECT id\nFROM t\nWHERE x = 1;"
        batch = parse_sql_batch(sql)
        assert _ranges(batch) == [(1, 1), (4, 6)]
        where = next(n for n in batch.queries[1].nodes if n.type == NodeType.FILTER)
        assert where.start_line == 6

    def test_error_line_is_shifted(self):
        batch = parse_sql_batch("SELECT 1 FROM a;\nSELECT * FROM orders WHERE (")
        assert batch.error_count == 1
        assert batch.parse_errors[0].query_index == 1
        assert batch.parse_errors[0].line == 2

    def test_aggregate_tables_are_distinct(self):
        batch = parse_sql_batch("SELECT * FROM a JOIN b ON a.id = b.id; SELECT * FROM a;")
        assert batch.total_stats.tables == 2
        assert batch.total_stats.joins == 1

    def test_aggregate_stats_of_nothing(self):
        stats = aggregate_stats([])
        assert stats.tables == 0
        assert stats.complexity_score == 0

    def test_to_dict(self):
        data = parse_sql_batch("SELECT 1 FROM a; SELECT 2 FROM b;").to_dict()
        assert len(data["queries"]) == 2


class TestSessionMerge:
    """Test that consecutive session commands collapse into one result."""

    SQL = "USE db;\nSET x = 1;\nSELECT id FROM t;"

    def test_session_commands_merge(self):
        batch = parse_sql_batch(self.SQL)
        assert batch.total_queries == 2
        session = batch.queries[0]
        assert session.statement_type == "SESSION"
        assert [n.label for n in session.nodes] == ["Session Setup"]
        assert session.nodes[0].type == NodeType.OPERATION
        assert session.hints[0].message == "2 session commands"
        assert _ranges(batch) == [(1, 2), (3, 3)]

    def test_merge_can_be_disabled(self):
        processor = BatchProcessor(options=BatchOptions(combine_session_commands=False))
        batch = processor.process(self.SQL)
        assert batch.total_queries == 3
        assert batch.queries[0].statement_type == "USE"


class TestDdlMerge:
    SQL = "CREATE TABLE a (id INT);\nCREATE TABLE b (id INT);\nDROP TABLE c;"

    def test_ddl_is_compiled_separately_by_default(self):
        assert parse_sql_batch(self.SQL).total_queries == 3

    def test_ddl_statements_merge(self):
        """Test that consecutive DDL collapses into a schema definition summary."""
        batch = parse_sql_batch(self.SQL, options=BatchOptions(combine_ddl_statements=True))
        assert batch.total_queries == 1
        ddl = batch.queries[0]
        assert ddl.nodes[0].label == "Schema Definition"
        assert ddl.hints[0].message == "2 CREATE TABLEs, 1 DROP TABLE"
        assert ddl.stats.complexity_score == 3
        assert ddl.statement_type == "DDL"
        assert _ranges(batch) == [(1, 3)]

    def test_ddl_statement_info(self):
        info = ddl_statement_info("CREATE TABLE IF NOT EXISTS `s`.`t` (id INT)")
        assert (info.type, info.keyword, info.object_name) == ("CREATE", "TABLE", "s.t")

        info = ddl_statement_info("DROP VIEW IF EXISTS v")
        assert (info.type, info.keyword, info.object_name) == ("DROP", "VIEW", "v")

    def test_ctas_is_not_ddl(self):
        assert ddl_statement_info("CREATE TABLE t AS SELECT id FROM s") is None
        assert ddl_statement_info("SELECT 1") is None


class TestLimits:
    def test_oversized_batch_is_truncated(self):
        """Test that input over the size limit is cut and flagged."""
        limits = ValidationLimits(max_sql_size_bytes=20)
        batch = parse_sql_batch("SELECT id FROM users WHERE active = 1", limits=limits)
        assert batch.validation_error.type == "size_limit"
        assert batch.total_queries == 1
        messages = [h.message for h in batch.queries[0].hints]
        assert "Input truncated due to size limit" in messages
        assert batch.queries[0].sql == "SELECT id FROM users"

    def test_query_count_limit_still_compiles(self):
        limits = ValidationLimits(max_query_count=1)
        batch = parse_sql_batch("SELECT 1 FROM a; SELECT 2 FROM b;", limits=limits)
        assert batch.validation_error.type == "query_count_limit"
        assert batch.total_queries == 2


class TestOffsetErrorLine:
    def test_shifts_line_and_keeps_column(self):
        assert offset_error_line("Line 2, column 5: bad", 3) == "Line 5, column 5: bad"

    def test_line_only(self):
        assert offset_error_line("Line 1: bad", 1) == "Line 2: bad"

    def test_untouched(self):
        assert offset_error_line("bad", 3) == "bad"
        assert offset_error_line("Line 2: bad", 0) == "Line 2: bad"
