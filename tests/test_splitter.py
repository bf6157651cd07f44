"""
Tests for splitting batched SQL text into statements.

Semicolons inside string literals, comments, parentheses, dollar quotes
and procedural BEGIN ... END blocks must never end a statement.
"""

from sqlflowgraph import split_sql_statements
from sqlflowgraph.splitter import count_sql_statements, scan_sql_statements


class TestSplitBasics:
    """Test plain statement splitting."""

    def test_splits_on_semicolons(self):
        """Test that top-level semicolons separate statements."""
        assert split_sql_statements("a;b") == ["a", "b"]

    def test_drops_empty_segments(self):
        """Test that empty segments between delimiters are dropped."""
        assert split_sql_statements("SELECT 1;;  ;\nSELECT 2;") == ["SELECT 1", "SELECT 2"]

    def test_trailing_statement_without_delimiter(self):
        """Test that the last statement does not need a semicolon."""
        assert split_sql_statements("SELECT 1; SELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_empty_input(self):
        """Test that empty and whitespace-only input produce no statements."""
        assert split_sql_statements("") == []
        assert split_sql_statements("   \n\t ") == []

    def test_statements_are_trimmed_segments(self):
        """Test that splitting "a;b" yields exactly the trimmed halves."""
        segments = [
            "SELECT 1",
            "  SELECT id FROM t WHERE x = 'a'  ",
            "\nINSERT INTO t VALUES (1, 2)\n",
            "\tUPDATE t SET a = 1\t",
            "DELETE FROM t",
        ]
        for first in segments:
            for second in segments:
                assert split_sql_statements(f"{first};{second}") == [first.strip(), second.strip()]

    def test_long_statement_is_not_split(self):
        """Test that a single wide SELECT with many d-prefixed columns stays one statement."""
        sql = "SELECT " + ", ".join(f"d{i}" for i in range(12000)) + " FROM data"
        statements = split_sql_statements(sql)
        assert len(statements) == 1
        assert statements[0] == sql

    def test_count_matches_split(self):
        sql = "SELECT 1; SELECT 2; SELECT 3"
        assert count_sql_statements(sql) == len(split_sql_statements(sql)) == 3


class TestSplitQuotingAndComments:
    """Test that quoted text and comments are opaque to the splitter."""

    def test_semicolon_in_string_literal(self):
        """Test that a semicolon inside a string literal is kept."""
        assert split_sql_statements("SELECT 1; SELECT ';' FROM t;") == ["SELECT 1", "SELECT ';' FROM t"]

    def test_semicolon_in_double_quoted_identifier(self):
        assert split_sql_statements('SELECT "a;b" FROM t; SELECT 2') == ['SELECT "a;b" FROM t', "SELECT 2"]

    def test_semicolon_in_backtick_identifier(self):
        """Test that a semicolon inside a backtick-quoted identifier is kept."""
        assert split_sql_statements("SELECT `a;b` FROM t; SELECT 2") == ["SELECT `a;b` FROM t", "SELECT 2"]

    def test_semicolon_in_line_comment(self):
        """Test that a semicolon inside a -- comment does not split."""
        statements = split_sql_statements("SELECT 1 -- first; still comment\n; SELECT 2")
        assert statements == ["SELECT 1 -- first; still comment", "SELECT 2"]

    def test_semicolon_in_block_comment(self):
        statements = split_sql_statements("SELECT /* a; b */ 1; SELECT 2")
        assert statements == ["SELECT /* a; b */ 1", "SELECT 2"]

    def test_comment_only_segment_is_dropped(self):
        """Test that a trailing comment-only segment is not a statement."""
        assert split_sql_statements("SELECT 1;\n-- trailing comment") == ["SELECT 1"]

    def test_semicolon_in_parentheses(self):
        statements = split_sql_statements("INSERT INTO t VALUES (1, ';'); SELECT 2")
        assert len(statements) == 2

    def test_dollar_quoted_body(self):
        """Test that PostgreSQL dollar-quoted bodies are kept whole."""
        sql = (
            "CREATE FUNCTION f() RETURNS int AS $body$ SELECT 1; SELECT 2; $body$ LANGUAGE sql;\n"
            "SELECT f();"
        )
        statements = split_sql_statements(sql)
        assert len(statements) == 2
        assert statements[0].endswith("LANGUAGE sql")
        assert statements[1] == "SELECT f()"


class TestSplitProceduralBlocks:
    """Test BEGIN ... END and DELIMITER handling."""

    def test_procedure_body_is_one_statement(self):
        """Test that semicolons inside a procedure body do not split."""
        sql = "CREATE PROCEDURE p() BEGIN SELECT 1; SELECT 2; END; SELECT 3"
        statements = split_sql_statements(sql)
        assert statements == ["CREATE PROCEDURE p() BEGIN SELECT 1; SELECT 2; END", "SELECT 3"]

    def test_transaction_begin_is_not_a_block(self):
        """Test that BEGIN TRANSACTION is an ordinary statement."""
        statements = split_sql_statements("BEGIN TRANSACTION; SELECT 1; COMMIT;")
        assert statements == ["BEGIN TRANSACTION", "SELECT 1", "COMMIT"]

    def test_begin_as_column_alias_is_not_a_block(self):
        """Test that BEGIN used as an alias does not open a procedural block."""
        statements = split_sql_statements("SELECT start_at AS begin FROM t; SELECT 2")
        assert statements == ["SELECT start_at AS begin FROM t", "SELECT 2"]

    def test_case_end_does_not_close_block(self):
        sql = (
            "CREATE PROCEDURE p() BEGIN SELECT CASE WHEN x = 1 THEN 'a' END FROM t; SELECT 2; END;\n"
            "SELECT 3"
        )
        statements = split_sql_statements(sql)
        assert len(statements) == 2
        assert statements[1] == "SELECT 3"

    def test_delimiter_directive(self):
        """Test that DELIMITER switches the statement terminator."""
        sql = "DELIMITER //\nCREATE PROCEDURE p() BEGIN SELECT 1; END//\nDELIMITER ;\nSELECT 2;"
        statements = split_sql_statements(sql)
        assert statements == ["CREATE PROCEDURE p() BEGIN SELECT 1; END", "SELECT 2"]


class TestStatementPositions:
    """Test offsets and line ranges reported for each statement."""

    def test_offsets_slice_the_batch(self):
        sql = "SELECT 1;\n  SELECT 2;"
        for statement in scan_sql_statements(sql):
            assert sql[statement.start : statement.end] == statement.text

    def test_line_ranges(self):
        """Test that line ranges are 1-based and cover multi-line statements."""
        sql = "SELECT 1;\nSELECT a\nFROM t;\n\nSELECT 3"
        ranges = [statement.line_range(sql) for statement in scan_sql_statements(sql)]
        assert ranges == [(1, 1), (2, 3), (5, 5)]
