"""
Tests for batch input validation and limit configuration.
"""

import pytest

from sqlflowgraph import ParserConfig, ValidationLimits, validate_sql
from sqlflowgraph.validation import estimate_statement_count, format_bytes, truncate_to_bytes


class TestValidateSql:
    """Test size and statement-count limits."""

    def test_within_limits(self):
        """Test that small input passes validation."""
        assert validate_sql("SELECT 1; SELECT 2;") is None

    def test_size_limit(self):
        """Test that oversized input reports a size_limit error."""
        limits = ValidationLimits(max_sql_size_bytes=10)
        error = validate_sql("SELECT * FROM some_table", limits)

        assert error is not None
        assert error.type == "size_limit"
        assert error.actual == len("SELECT * FROM some_table")
        assert error.limit == 10
        assert error.unit == "bytes"
        assert "10 bytes" in error.message

    def test_size_counts_utf8_bytes(self):
        """Test that the size limit is measured in UTF-8 bytes, not characters."""
        limits = ValidationLimits(max_sql_size_bytes=12)
        assert validate_sql("SELECT 'ééé'", limits) is not None

    def test_query_count_limit(self):
        """Test that too many statements report a query_count_limit error."""
        limits = ValidationLimits(max_query_count=2)
        error = validate_sql("SELECT 1; SELECT 2; SELECT 3;", limits)

        assert error is not None
        assert error.type == "query_count_limit"
        assert error.actual == 3
        assert error.limit == 2
        assert "approximately 3 statements" in error.message

    def test_size_checked_before_count(self):
        limits = ValidationLimits(max_sql_size_bytes=5, max_query_count=1)
        error = validate_sql("SELECT 1; SELECT 2;", limits)
        assert error.type == "size_limit"

    def test_to_dict_shape(self):
        error = validate_sql("SELECT 1; SELECT 2;", ValidationLimits(max_query_count=1))
        data = error.to_dict()
        assert data["type"] == "query_count_limit"
        assert data["details"] == {"actual": 2, "limit": 1, "unit": "statements"}


class TestEstimateStatementCount:
    """Test the cheap semicolon-based statement estimate."""

    def test_ignores_semicolons_in_literals_and_comments(self):
        sql = "SELECT ';' FROM t -- ; ;\n; /* ; */ SELECT 2"
        assert estimate_statement_count(sql) == 2

    def test_no_semicolon_is_one_statement(self):
        assert estimate_statement_count("SELECT 1") == 1

    def test_empty_is_zero(self):
        assert estimate_statement_count("  -- nothing here") == 0


class TestHelpers:
    def test_format_bytes(self):
        assert format_bytes(512) == "512 bytes"
        assert format_bytes(1536) == "1.5KB"
        assert format_bytes(2 * 1024 * 1024) == "2.0MB"

    def test_truncate_keeps_whole_characters(self):
        """Test that truncation never splits a multi-byte character."""
        assert truncate_to_bytes("abé", 3) == "ab"
        assert truncate_to_bytes("abc", 10) == "abc"


class TestLimitConfiguration:
    """Test validation of limit and parser configuration values."""

    def test_default_limits(self):
        limits = ValidationLimits()
        assert limits.max_sql_size_bytes == 100 * 1024
        assert limits.max_query_count == 50

    @pytest.mark.parametrize("kwargs", [{"max_sql_size_bytes": 0}, {"max_query_count": -1}])
    def test_non_positive_limits_rejected(self, kwargs):
        with pytest.raises(ValueError):
            ValidationLimits(**kwargs)

    def test_parser_config_rejects_bad_values(self):
        """Test that ParserConfig validates timeout and warning ratio."""
        with pytest.raises(ValueError, match="timeout_ms"):
            ParserConfig(timeout_ms=0)
        with pytest.raises(ValueError, match="warning_ratio"):
            ParserConfig(warning_ratio=1.5)
