"""
Tests for the regex fallback extractor.
"""

from sqlflowgraph import ComplexityLevel, Dialect, NodeType, TableCategory
from sqlflowgraph.fallback import (
    extract_cte_bodies,
    extract_table_names,
    normalize_object_name,
    regex_fallback_parse,
)


class TestExtraction:
    def test_normalize_object_name(self):
        assert normalize_object_name("[dbo].[Orders]") == "Orders"
        assert normalize_object_name('`db`."t"') == "t"
        assert normalize_object_name("plain") == "plain"

    def test_cte_bodies_in_order(self):
        bodies = extract_cte_bodies("WITH a AS (SELECT 1), b (x) AS (SELECT (2)) SELECT * FROM b")
        assert list(bodies) == ["a", "b"]
        assert bodies["a"] == "SELECT 1"
        assert bodies["b"] == "SELECT (2)"

    def test_table_names_are_distinct(self):
        names = extract_table_names("SELECT * FROM s.orders o JOIN users u ON 1 = 1 JOIN ORDERS x ON 1 = 1")
        assert names == ["orders", "users"]

    def test_keywords_are_not_tables(self):
        assert extract_table_names("SELECT * FROM (SELECT 1) t") == []


class TestFallbackGraph:
    """Test the partial graph built from raw text."""

    SQL = (
        "WITH recent AS (SELECT * FROM orders WHERE created_at > now()) "
        "SELECT * FROM recent r JOIN users u ON u.id = r.user_id"
    )

    def test_nodes(self):
        result = regex_fallback_parse(self.SQL, Dialect.POSTGRESQL)
        assert result.partial is True
        assert [n.label for n in result.nodes] == ["recent", "orders", "users"]
        assert all(n.type == NodeType.TABLE for n in result.nodes)
        assert result.nodes[0].table_category == TableCategory.CTE_REFERENCE
        assert result.table_usage == {"orders": 1, "users": 1}

    def test_edges(self):
        result = regex_fallback_parse(self.SQL, Dialect.POSTGRESQL)
        labels = {n.id: n.label for n in result.nodes}
        pairs = {(labels[e.source], labels[e.target], e.clause_type) for e in result.edges}
        assert pairs == {("orders", "recent", "flow"), ("recent", "users", "join")}

    def test_stats(self):
        """Test that the fallback score counts tables plus three per join."""
        stats = regex_fallback_parse(self.SQL, Dialect.POSTGRESQL).stats
        assert stats.tables == 2
        assert stats.joins == 1
        assert stats.ctes == 1
        assert stats.subqueries == 1
        assert stats.conditions == 1
        assert stats.complexity_score == 5
        assert stats.complexity == ComplexityLevel.MODERATE

    def test_partial_hint_is_last(self):
        result = regex_fallback_parse(self.SQL, Dialect.POSTGRESQL)
        assert result.hints[-1].message == "Partial visualization - SQL parser could not parse this query"
        assert "3 table(s)" in result.hints[-1].suggestion
        assert result.statement_type == "SELECT"


class TestMergeFallback:
    SQL = (
        "MERGE INTO target t USING source s ON t.id = s.id "
        "WHEN MATCHED THEN UPDATE SET t.val = s.val "
        "WHEN NOT MATCHED THEN INSERT (id, val) VALUES (s.id, s.val)"
    )

    def test_merge_node(self):
        """Test that MERGE recovers its target, source and actions."""
        result = regex_fallback_parse(self.SQL, Dialect.TRANSACTSQL)
        merge = next(n for n in result.nodes if n.type == NodeType.RESULT)
        assert merge.label == "MERGE INTO target"
        assert merge.access_mode == "write"
        assert "MATCHED -> UPDATE" in merge.description
        assert "NOT MATCHED -> INSERT" in merge.description
        assert "SET: val" in merge.description
        assert "INSERT: id, val" in merge.description

        labels = {n.id: n.label for n in result.nodes}
        pairs = {(labels[e.source], e.clause_type) for e in result.edges if e.target == merge.id}
        assert pairs == {("target", "merge_target"), ("source", "merge_source")}
        assert result.statement_type == "MERGE"

    def test_merge_hint_is_dialect_specific(self):
        result = regex_fallback_parse(self.SQL, Dialect.TRANSACTSQL)
        hint = next(h for h in result.hints if h.message == "MERGE statement detected (using fallback parser)")
        assert "fully supported in TransactSQL" in hint.suggestion

        result = regex_fallback_parse(self.SQL, Dialect.MYSQL)
        hint = next(h for h in result.hints if h.message == "MERGE statement detected (using fallback parser)")
        assert "ON DUPLICATE KEY UPDATE" in hint.suggestion
