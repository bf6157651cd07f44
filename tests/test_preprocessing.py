"""
Tests for dialect preprocessing transforms.
"""

from sqlflowgraph import Dialect
from sqlflowgraph.preprocessing import (
    collapse_snowflake_paths,
    hoist_nested_ctes,
    preprocess_sql,
    rewrite_grouping_sets,
    rewrite_set_operator_synonyms,
    strip_dialect_clauses,
)


class TestHoistNestedCtes:
    """Test moving WITH blocks out of FROM subqueries."""

    def test_nested_with_is_hoisted(self):
        """Test that a WITH inside a FROM subquery moves to the top level."""
        sql = "SELECT * FROM (WITH c AS (SELECT 1 AS x) SELECT x FROM c) t"
        result = hoist_nested_ctes(sql)

        assert result is not None
        assert result.startswith("WITH c AS (SELECT 1 AS x)")
        assert "(WITH" not in result
        assert result.rstrip().endswith(") t")

    def test_top_level_with_untouched(self):
        assert hoist_nested_ctes("WITH c AS (SELECT 1) SELECT * FROM c") is None

    def test_with_opening_cte_body_untouched(self):
        """Test that a WITH directly inside a CTE body stays nested."""
        sql = "WITH outer_cte AS (WITH inner_cte AS (SELECT 1 AS x) SELECT x FROM inner_cte) SELECT x FROM outer_cte"
        assert hoist_nested_ctes(sql) is None


class TestRewriteGroupingSets:
    def test_grouping_sets_flattened(self):
        """Test that GROUPING SETS become the distinct grouping columns."""
        sql = "SELECT a, b, COUNT(*) FROM t GROUP BY GROUPING SETS ((a, b), (a))"
        assert rewrite_grouping_sets(sql) == "SELECT a, b, COUNT(*) FROM t GROUP BY a, b"

    def test_plain_group_by_untouched(self):
        assert rewrite_grouping_sets("SELECT a FROM t GROUP BY a") is None


class TestDialectRewrites:
    """Test the smaller dialect-specific rewrites."""

    def test_deep_snowflake_path_is_bounded(self):
        assert collapse_snowflake_paths("SELECT v:a:b:c:d FROM t", Dialect.SNOWFLAKE) == "SELECT v:a:b FROM t"

    def test_paths_only_rewritten_for_snowflake(self):
        assert collapse_snowflake_paths("SELECT v:a:b:c:d FROM t", Dialect.MYSQL) is None

    def test_at_time_zone_removed_for_postgres(self):
        result = strip_dialect_clauses("SELECT created_at AT TIME ZONE 'UTC' FROM t", Dialect.POSTGRESQL)
        assert "AT TIME ZONE" not in result
        assert "'UTC'" not in result
        assert result.endswith("FROM t")

    def test_oracle_outer_join_marker_removed(self):
        result = strip_dialect_clauses("SELECT * FROM a, b WHERE a.id = b.id(+)", Dialect.ORACLE)
        assert result == "SELECT * FROM a, b WHERE a.id = b.id"

    def test_oracle_hierarchical_clauses_removed(self):
        sql = "SELECT id FROM emp START WITH mgr IS NULL CONNECT BY PRIOR id = mgr ORDER BY id"
        result = strip_dialect_clauses(sql, Dialect.ORACLE)
        assert "START WITH" not in result
        assert "CONNECT BY" not in result
        assert result.endswith("ORDER BY id")

    def test_minus_becomes_except(self):
        assert rewrite_set_operator_synonyms("SELECT a FROM t MINUS SELECT a FROM u") == (
            "SELECT a FROM t EXCEPT SELECT a FROM u"
        )

    def test_minus_inside_literal_untouched(self):
        assert rewrite_set_operator_synonyms("SELECT 'MINUS' FROM t") is None


class TestPreprocessPipeline:
    """Test the ordered preprocessing pipeline."""

    def test_reports_applied_transforms(self):
        sql = "SELECT a, COUNT(*) FROM t GROUP BY GROUPING SETS ((a))"
        rewritten, applied = preprocess_sql(sql, Dialect.MYSQL)
        assert [p.name for p in applied] == ["rewrite_grouping_sets"]
        assert "GROUPING SETS" not in rewritten

    def test_grouping_sets_kept_where_supported(self):
        """Test that dialects with GROUPING SETS support keep the clause."""
        sql = "SELECT a, COUNT(*) FROM t GROUP BY GROUPING SETS ((a))"
        rewritten, applied = preprocess_sql(sql, Dialect.POSTGRESQL)
        assert rewritten == sql
        assert applied == []

    def test_plain_sql_unchanged(self):
        rewritten, applied = preprocess_sql("SELECT id FROM users", Dialect.MYSQL)
        assert rewritten == "SELECT id FROM users"
        assert applied == []
