"""
Tests for quality hints: unused CTEs, dead columns, duplicate subqueries
and repeated table scans.
"""

from sqlflowgraph import HintCategory, HintSeverity, HintType, NodeType, parse_sql
from sqlflowgraph.hints import filter_clause_texts, find_text_subqueries, subquery_signature


def _hints_containing(result, text):
    return [hint for hint in result.hints if text in hint.message]


class TestUnusedCtes:
    def test_unused_cte_is_flagged(self):
        """Test that a CTE nothing reads gets a warning and a node badge."""
        result = parse_sql(
            "WITH a AS (SELECT id FROM users), b AS (SELECT id FROM orders) SELECT id FROM a LIMIT 5"
        )
        hints = _hints_containing(result, "Unused CTE")
        assert [h.message for h in hints] == ['Unused CTE: "WITH b"']
        assert hints[0].category == HintCategory.QUALITY

        unused = next(n for n in result.find_nodes(NodeType.CTE) if n.label == "WITH b")
        assert unused.has_warning("unused")
        assert hints[0].node_id == unused.id

    def test_cte_read_by_another_cte_is_used(self):
        result = parse_sql("WITH a AS (SELECT id FROM t), b AS (SELECT id FROM a) SELECT id FROM b LIMIT 5")
        assert _hints_containing(result, "Unused CTE") == []


class TestDeadColumns:
    """Test that body columns are checked against filter, grouping, ordering and join clauses."""

    def test_unreferenced_cte_columns(self):
        """Test that body columns no clause reads are reported as dead."""
        result = parse_sql("WITH c AS (SELECT id, name AS full_name FROM users) SELECT id FROM c LIMIT 5")
        hints = _hints_containing(result, "dead column")
        assert [h.message for h in hints] == ["2 dead columns detected: id, full_name"]

        cte = result.find_nodes(NodeType.CTE)[0]
        assert hints[0].node_id == cte.id
        body_select = next(child for child in cte.children if child.type == NodeType.SELECT)
        assert body_select.has_warning("dead-column")
        warning = next(w for w in body_select.warnings if w.type == "dead-column")
        assert warning.message == 'Column "id" is not used in WHERE/ORDER BY/GROUP BY/HAVING/JOIN clauses'

    def test_outer_select_list_does_not_keep_column_alive(self):
        """Test that naming a column only in the outer SELECT list still leaves it dead."""
        result = parse_sql("WITH c AS (SELECT id, name FROM users) SELECT id, name FROM c WHERE id > 1")
        hints = _hints_containing(result, "dead column")
        assert [h.message for h in hints] == ["1 dead column detected: name"]

    def test_source_column_in_clause_keeps_rename_alive(self):
        result = parse_sql(
            "WITH c AS (SELECT id, name AS full_name FROM users) "
            "SELECT c.id FROM c JOIN orders o ON o.user_id = c.id ORDER BY name"
        )
        assert _hints_containing(result, "dead column") == []

    def test_star_columns_are_not_reported(self):
        """Test that a star projection never counts as a dead column."""
        result = parse_sql("WITH c AS (SELECT * FROM users) SELECT id FROM c LIMIT 5")
        assert _hints_containing(result, "dead column") == []

    def test_many_dead_columns_are_summarized(self):
        result = parse_sql("WITH c AS (SELECT a, b, x, y, z FROM t) SELECT a FROM c WHERE a > 0")
        hints = _hints_containing(result, "dead column")
        assert [h.message for h in hints] == ["4 dead columns detected: b, x, y and 1 more"]

    def test_clause_texts(self):
        clauses = filter_clause_texts(
            "SELECT a FROM t JOIN u ON u.id = t.id WHERE t.x = 'group by y' GROUP BY a HAVING COUNT(*) > 1"
        )
        assert [clause.strip() for clause in clauses] == ["u.id = t.id", "t.x =", "a", "count(*) > 1"]


class TestDuplicateSubqueries:
    def test_text_subqueries_skip_cte_bodies(self):
        """Test that CTE bodies are not treated as subqueries."""
        subqueries = find_text_subqueries(
            "WITH c AS (SELECT id FROM t) SELECT id FROM c WHERE id IN (SELECT id FROM u)"
        )
        assert len(subqueries) == 1
        assert subqueries[0].location == "where"
        assert subqueries[0].from_table == "u"

    def test_signature_drops_table_alias(self):
        assert subquery_signature("SELECT id FROM orders o WHERE o.x = 1") == subquery_signature(
            "SELECT  id\nFROM orders WHERE o.x = 1"
        )

    def test_identical_subqueries_in_where(self):
        result = parse_sql(
            "SELECT id FROM users "
            "WHERE dept_id IN (SELECT id FROM depts WHERE active = 1) "
            "OR manager_id IN (SELECT id FROM depts WHERE active = 1) LIMIT 5"
        )
        hints = _hints_containing(result, "identical subqueries detected")
        assert len(hints) == 1
        assert hints[0].message == "2 identical subqueries detected"
        where = result.find_nodes(NodeType.FILTER)[0]
        assert any("Duplicate subquery in WHERE" in w.message for w in where.warnings)


class TestRepeatedScans:
    def test_self_join_scans_table_twice(self):
        """Test that a self-join reports one repeated-scan finding."""
        result = parse_sql("SELECT a.id FROM users a JOIN users b ON a.manager_id = b.id LIMIT 5")
        hints = [h for h in result.hints if "scanned" in h.message or "accessed" in h.message]
        assert [h.message for h in hints] == ['Table "users" scanned 2 times']
        assert hints[0].category == HintCategory.PERFORMANCE

        tables = result.find_nodes(NodeType.TABLE)
        assert len(tables) == 2
        assert all(t.has_warning("repeated-scan") for t in tables)

    def test_duplicate_subqueries_merge_with_repeated_scan(self):
        """Test that duplicate FROM subqueries over one table yield one merged finding."""
        result = parse_sql(
            "SELECT a.id FROM (SELECT id FROM orders WHERE status = 'x') a "
            "JOIN (SELECT id FROM orders WHERE status = 'x') b ON a.id = b.id LIMIT 5"
        )
        assert result.table_usage == {"orders": 2}
        assert _hints_containing(result, "identical subqueries") == []

        merged = _hints_containing(result, "scanned")
        assert [h.message for h in merged] == ["Table 'orders' is scanned 2 times via duplicate subqueries"]
        assert merged[0].type == HintType.WARNING
        assert merged[0].severity == HintSeverity.MEDIUM
        assert all(subquery.has_warning("complex") for subquery in result.find_nodes(NodeType.SUBQUERY))
