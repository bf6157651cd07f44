"""
Tests for structural performance rules and the performance score.
"""

import pytest

from sqlflowgraph import HintCategory, HintSeverity, HintType, OptimizationHint, parse_sql
from sqlflowgraph.performance import count_performance_issues, performance_score


def _find(result, prefix):
    return [hint for hint in result.hints if hint.message.startswith(prefix)]


class TestPredicateRules:
    """Test WHERE-clause rules."""

    def test_function_on_column(self):
        """Test that YEAR() on a filtered column is flagged as non-sargable."""
        result = parse_sql("SELECT id FROM orders WHERE YEAR(created_at) = 2024 LIMIT 10")
        hints = _find(result, "Function YEAR() on column created_at")
        assert len(hints) == 1
        assert hints[0].severity == HintSeverity.HIGH

    def test_leading_wildcard(self):
        result = parse_sql("SELECT id FROM users WHERE name LIKE '%son' LIMIT 10")
        hints = _find(result, "LIKE pattern starts with wildcard")
        assert len(hints) == 1
        assert hints[0].category == HintCategory.PERFORMANCE

    def test_trailing_wildcard_is_fine(self):
        result = parse_sql("SELECT id FROM users WHERE name LIKE 'jo%' LIMIT 10")
        assert _find(result, "LIKE pattern starts with wildcard") == []

    def test_or_across_tables(self):
        result = parse_sql(
            "SELECT u.id FROM users u JOIN orders o ON o.user_id = u.id "
            "WHERE u.vip = 1 OR o.total > 100 LIMIT 10"
        )
        assert len(_find(result, "OR condition spans different columns")) == 1


class TestSubqueryRules:
    def test_not_in_subquery(self):
        """Test that NOT IN (subquery) warns about NULL semantics."""
        result = parse_sql("SELECT id FROM users WHERE id NOT IN (SELECT user_id FROM bans) LIMIT 10")
        hints = _find(result, "NOT IN with subquery")
        assert len(hints) == 1
        assert hints[0].category == HintCategory.QUALITY
        assert _find(result, "IN subquery could be converted to JOIN") == []

    def test_in_subquery_join_rewrite(self):
        result = parse_sql("SELECT id FROM users WHERE id IN (SELECT user_id FROM orders) LIMIT 10")
        hints = _find(result, "IN subquery could be converted to JOIN")
        assert len(hints) == 1
        assert hints[0].suggestion == "Consider: JOIN orders ON id = user_id"

    def test_correlated_exists(self):
        result = parse_sql(
            "SELECT id FROM users u WHERE EXISTS (SELECT 1 FROM orders o WHERE o.user_id = u.id) LIMIT 10"
        )
        assert len(_find(result, "EXISTS subquery could be converted to JOIN")) == 1

    def test_scalar_subquery_in_select(self):
        result = parse_sql(
            "SELECT id, (SELECT MAX(total) FROM orders o WHERE o.user_id = u.id) AS top FROM users u LIMIT 10"
        )
        assert len(_find(result, "Scalar subquery in SELECT list")) == 1


class TestAggregateRules:
    def test_having_without_aggregate(self):
        result = parse_sql("SELECT dept, COUNT(*) FROM emp GROUP BY dept HAVING dept > 10")
        assert len(_find(result, "HAVING clause without aggregate functions")) == 1

    def test_having_with_aggregate(self):
        result = parse_sql("SELECT dept, COUNT(*) FROM emp GROUP BY dept HAVING COUNT(*) > 10")
        assert _find(result, "HAVING clause without aggregate functions") == []

    def test_count_distinct_without_where(self):
        """Test that COUNT(DISTINCT) and a missing WHERE are both reported."""
        result = parse_sql("SELECT COUNT(DISTINCT user_id) FROM orders")
        assert len(_find(result, "COUNT(DISTINCT) detected")) == 1
        assert len(_find(result, "Aggregate query without WHERE clause")) == 1

    def test_wide_group_by(self):
        result = parse_sql("SELECT a, b, c, d, e, f, COUNT(*) FROM t WHERE g = 1 GROUP BY a, b, c, d, e, f")
        assert [h.message for h in _find(result, "GROUP BY with")] == ["GROUP BY with 6 columns"]


class TestJoinOrder:
    def test_early_cross_join(self):
        """Test that a CROSS JOIN before other joins is flagged."""
        result = parse_sql("SELECT a.id FROM a CROSS JOIN b JOIN c ON c.id = a.id LIMIT 10")
        hints = _find(result, "CROSS JOIN appears before other JOINs")
        assert len(hints) == 1
        assert hints[0].severity == HintSeverity.HIGH
        assert hints[0].node_id is not None


class TestFilterPushdown:
    """Test the filter-after-JOIN rule."""

    def test_filter_reaching_one_table_after_join(self):
        """Test that a WHERE after a JOIN whose inputs trace to one table is flagged."""
        result = parse_sql(
            "SELECT o.id FROM orders o JOIN (SELECT id FROM users) u ON u.id = o.user_id "
            "WHERE o.total > 100 LIMIT 10"
        )
        hints = _find(result, "Filter on orders could be applied before JOIN")
        assert len(hints) == 1
        assert hints[0].severity == HintSeverity.MEDIUM
        assert hints[0].category == HintCategory.PERFORMANCE

        where = result.get_node(hints[0].node_id)
        assert where.label == "WHERE"
        assert where.has_warning("filter-pushdown")

    def test_filter_over_two_tables_is_not_flagged(self):
        result = parse_sql(
            "SELECT o.id FROM orders o JOIN users u ON u.id = o.user_id WHERE o.total > 100 LIMIT 10"
        )
        assert _find(result, "Filter on") == []

    def test_filter_without_join_is_not_flagged(self):
        result = parse_sql("SELECT id FROM orders WHERE total > 100 LIMIT 10")
        assert _find(result, "Filter on") == []


class TestIndexSuggestions:
    def test_filter_and_sort_columns(self):
        """Test per-purpose index candidates and the consolidated hint."""
        result = parse_sql(
            "SELECT id FROM orders WHERE status = 'open' AND region = 'eu' ORDER BY created_at LIMIT 10"
        )
        by_reason = {s.reason: s for s in result.index_suggestions}
        assert by_reason["filter"].columns == ["status", "region"]
        assert by_reason["filter"].index_type == "composite"
        assert by_reason["sort"].columns == ["created_at"]
        assert by_reason["sort"].index_type == "btree"

        consolidated = _find(result, "Columns that may benefit from indexing/clustering")
        assert [h.message for h in consolidated] == [
            "Columns that may benefit from indexing/clustering: status, region, created_at"
        ]

    def test_no_candidates_without_predicates(self):
        result = parse_sql("SELECT id FROM orders LIMIT 10")
        assert result.index_suggestions == []


class TestPerformanceScore:
    """Test the 100-point performance score."""

    @staticmethod
    def _hint(severity, category=HintCategory.PERFORMANCE):
        return OptimizationHint(type=HintType.WARNING, message="m", category=category, severity=severity)

    def test_penalties_by_severity(self):
        hints = [
            self._hint(HintSeverity.HIGH),
            self._hint(HintSeverity.MEDIUM),
            self._hint(HintSeverity.LOW),
            self._hint(HintSeverity.HIGH, HintCategory.QUALITY),
        ]
        assert performance_score(hints) == 100 - 15 - 8 - 3
        assert count_performance_issues(hints) == 3

    def test_score_is_clamped(self):
        assert performance_score([self._hint(HintSeverity.HIGH)] * 10) == 0

    @pytest.mark.parametrize("hints", [[], None])
    def test_no_hints_is_perfect(self, hints):
        assert performance_score(hints or []) == 100

    def test_score_matches_result_hints(self):
        result = parse_sql("SELECT * FROM users WHERE name LIKE '%x'")
        assert result.performance_score == performance_score(result.hints)
        assert result.performance_score < 100
