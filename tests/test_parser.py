"""
Tests for single-statement compilation.

Covers flow graph shape, statistics, session commands, parse failures,
timeouts and result serialization.
"""

import pytest

import sqlflowgraph.parser as parser_module
from sqlflowgraph import (
    ComplexityLevel,
    Dialect,
    HintCategory,
    HintType,
    NodeType,
    ParserConfig,
    SQLFlowParser,
    TableCategory,
    parse_sql,
)
from sqlflowgraph.adapter import StatementParseError
from sqlflowgraph.models import walk_nodes


def _fake_clock(*ticks):
    """Clock returning the given readings (in seconds) in order."""
    readings = iter(ticks)
    return lambda: next(readings)


def _messages(result):
    return [hint.message for hint in result.hints]


@pytest.fixture
def users_query():
    return parse_sql("SELECT id, name FROM users WHERE active = 1 LIMIT 10")


class TestSimpleSelect:
    """Test the flow graph of a filtered, limited SELECT."""

    def test_node_sequence(self, users_query):
        """Test that the pipeline is table -> WHERE -> SELECT -> LIMIT -> result."""
        types = [node.type for node in users_query.nodes]
        assert types == [NodeType.TABLE, NodeType.FILTER, NodeType.SELECT, NodeType.LIMIT, NodeType.RESULT]

    def test_edges_follow_pipeline(self, users_query):
        """Test that each stage feeds the next one."""
        labels = {node.id: node.label for node in users_query.nodes}
        pairs = [(labels[edge.source], labels[edge.target]) for edge in users_query.edges]
        assert pairs == [("users", "WHERE"), ("WHERE", "SELECT"), ("SELECT", "LIMIT"), ("LIMIT", "Result")]

    def test_filter_details(self, users_query):
        where = users_query.find_nodes(NodeType.FILTER)[0]
        assert where.details == ["active = 1"]

    def test_table_node(self, users_query):
        table = users_query.nodes[0]
        assert table.label == "users"
        assert table.table_category == TableCategory.PHYSICAL
        assert table.access_mode == "read"

    def test_stats_and_flags(self, users_query):
        """Test the counters and flags of the simple query."""
        assert users_query.stats.tables == 1
        assert users_query.stats.joins == 0
        assert users_query.stats.conditions == 1
        assert users_query.stats.complexity == ComplexityLevel.SIMPLE
        assert users_query.has_no_limit is False
        assert users_query.has_select_star is False
        assert users_query.statement_type == "SELECT"
        assert users_query.succeeded

    def test_no_limit_or_star_hints(self, users_query):
        messages = _messages(users_query)
        assert "No LIMIT clause" not in messages
        assert "SELECT * detected" not in messages

    def test_index_candidates(self, users_query):
        """Test that the filtered column is reported as an index candidate."""
        assert [s.reason for s in users_query.index_suggestions] == ["filter"]
        assert users_query.index_suggestions[0].columns == ["active"]
        assert users_query.performance_score == 97
        assert users_query.performance_issues == 1

    def test_line_numbers(self):
        result = parse_sql("SELECT id\nFROM users\nWHERE active = 1")
        where = result.find_nodes(NodeType.FILTER)[0]
        table = result.find_nodes(NodeType.TABLE)[0]
        assert where.start_line == 3
        assert table.start_line == 2


class TestClauseOrder:
    """Test that clauses are chained in SQL evaluation order."""

    SQL = (
        "SELECT d.name, COUNT(*) AS n FROM employees e "
        "JOIN departments d ON e.dept_id = d.id "
        "WHERE e.active = 1 GROUP BY d.name HAVING COUNT(*) > 1 ORDER BY n DESC LIMIT 5"
    )

    def test_node_types_in_order(self):
        result = parse_sql(self.SQL)
        assert [node.type for node in result.nodes] == [
            NodeType.TABLE,
            NodeType.TABLE,
            NodeType.JOIN,
            NodeType.FILTER,
            NodeType.AGGREGATE,
            NodeType.FILTER,
            NodeType.AGGREGATE,
            NodeType.SELECT,
            NodeType.SORT,
            NodeType.LIMIT,
            NodeType.RESULT,
        ]

    def test_stats(self):
        """Test counters and the weighted complexity score."""
        stats = parse_sql(self.SQL).stats
        assert stats.tables == 2
        assert stats.joins == 1
        assert stats.aggregations == 1
        assert stats.complexity_breakdown["joins"] == 3
        assert stats.complexity_score == 4
        assert stats.complexity == ComplexityLevel.SIMPLE

    def test_functions_used(self):
        result = parse_sql(self.SQL)
        assert "COUNT:aggregate" in result.functions_used
        assert result.functions_used == sorted(result.functions_used)


class TestNestedStructures:
    """Test CTEs, derived tables and expression subqueries."""

    def test_tables_counted_inside_nested_bodies(self):
        """Test that tables read by subqueries count toward stats.tables."""
        result = parse_sql(
            "SELECT o.id FROM (SELECT id, cid FROM orders) o "
            "JOIN customers c ON o.cid = c.id "
            "WHERE c.id IN (SELECT cid FROM vip)"
        )
        assert result.stats.tables == 3
        assert set(result.table_usage) == {"orders", "customers", "vip"}
        assert result.stats.subqueries == 2

    def test_derived_table_is_collapsed_container(self):
        result = parse_sql("SELECT t.id FROM (SELECT id FROM orders WHERE total > 10) t")
        container = result.find_nodes(NodeType.SUBQUERY)[0]
        assert container.label == "t"
        assert container.expanded is False
        assert container.table_category == TableCategory.DERIVED
        child_types = [child.type for child in container.children]
        assert NodeType.FILTER in child_types
        assert all(child.parent_id == container.id for child in container.children)

    def test_cte_feeds_its_reference(self):
        """Test that a CTE node connects to the table node that reads it."""
        result = parse_sql("WITH recent AS (SELECT id FROM orders) SELECT id FROM recent")
        cte = result.find_nodes(NodeType.CTE)[0]
        reference = next(n for n in result.nodes if n.table_category == TableCategory.CTE_REFERENCE)
        assert cte.label == "WITH recent"
        assert reference.label == "recent"
        assert any(e.source == cte.id and e.target == reference.id and e.clause_type == "cte" for e in result.edges)
        assert result.stats.ctes == 1
        assert result.table_usage == {"orders": 1}

    def test_top_level_cte_chain_has_depth_zero(self):
        """Test that CTEs declared side by side all sit at depth 0."""
        result = parse_sql("WITH a AS (SELECT id FROM t), b AS (SELECT id FROM a) SELECT id FROM b")
        assert result.stats.ctes == 2
        assert [cte.depth for cte in result.find_nodes(NodeType.CTE)] == [0, 0]
        assert result.stats.max_cte_depth == 0
        assert result.stats.critical_path_length > 0

    def test_nested_with_is_one_level_deeper(self):
        """Test that a WITH inside a CTE body becomes a nested CTE container at depth 1."""
        result = parse_sql(
            "WITH outer_cte AS (WITH inner_cte AS (SELECT id FROM t) SELECT id FROM inner_cte) "
            "SELECT id FROM outer_cte"
        )
        outer = result.find_nodes(NodeType.CTE)[0]
        inner = next(child for child in outer.children if child.type == NodeType.CTE)

        assert inner.label == "WITH inner_cte"
        assert inner.depth == 1
        assert inner.parent_id == outer.id
        assert any(child.label == "t" for child in inner.children)
        assert result.stats.ctes == 2
        assert result.stats.max_cte_depth == 1
        assert result.table_usage == {"t": 1}

    def test_subquery_tables_inside_cte_get_nodes(self):
        """Test that a table read by a WHERE subquery in a CTE body is a node and counts once."""
        result = parse_sql("WITH c AS (SELECT id FROM a WHERE id IN (SELECT id FROM b)) SELECT id FROM c")
        labels = {node.label for node in walk_nodes(result.nodes) if node.type == NodeType.TABLE}

        assert {"a", "b"} <= labels
        assert result.stats.tables == 2
        assert result.table_usage == {"a": 1, "b": 1}

        cte = result.find_nodes(NodeType.CTE)[0]
        source = next(child for child in cte.children if child.label == "b")
        select = next(child for child in cte.children if child.type == NodeType.SELECT)
        assert source.description == "Subquery source"
        assert any(edge.source == source.id and edge.target == select.id for edge in cte.child_edges)

    def test_union_node(self):
        result = parse_sql("SELECT id FROM a UNION ALL SELECT id FROM b")
        unions = result.find_nodes(NodeType.UNION)
        assert len(unions) == 1
        assert unions[0].label == "UNION ALL"
        assert result.stats.unions == 1


class TestWriteStatements:
    """Test DML and DDL graphs."""

    def test_update_without_where(self):
        """Test that an UPDATE without WHERE raises an error-level hint."""
        result = parse_sql("UPDATE users SET active = 0")
        hint = next(h for h in result.hints if h.message == "UPDATE without WHERE clause")
        assert hint.type == HintType.ERROR
        assert result.statement_type == "UPDATE"

    def test_delete_with_where_has_no_error_hint(self):
        result = parse_sql("DELETE FROM users WHERE id = 1")
        assert "DELETE without WHERE clause" not in _messages(result)

    def test_insert_select_writes_target(self):
        result = parse_sql("INSERT INTO archive SELECT id FROM users")
        targets = [n for n in result.nodes if n.access_mode == "write"]
        assert [n.label for n in targets] == ["archive"]
        assert targets[0].operation_type == "INSERT"
        assert result.statement_type == "INSERT"

    def test_create_view_as_select(self):
        result = parse_sql("CREATE VIEW active_users AS SELECT id FROM users WHERE active = 1")
        view = next(n for n in result.nodes if n.operation_type == "CREATE_VIEW")
        assert view.label == "VIEW active_users"
        assert result.table_usage == {"users": 1}


class TestPresenceHints:
    def test_select_star_and_missing_limit(self):
        result = parse_sql("SELECT * FROM users")
        messages = _messages(result)
        assert "SELECT * detected" in messages
        assert "No LIMIT clause" in messages
        assert result.has_select_star is True

    def test_limit_all_counts_as_no_limit(self):
        """Test that PostgreSQL LIMIT ALL is treated as a missing LIMIT."""
        result = parse_sql("SELECT a FROM t LIMIT ALL", dialect=Dialect.POSTGRESQL)
        assert result.has_no_limit is True
        assert "No LIMIT clause" in _messages(result)
        assert result.find_nodes(NodeType.LIMIT) == []

    def test_cartesian_product(self):
        """Test that comma joins without conditions are flagged."""
        result = parse_sql("SELECT a.id FROM a, b")
        hint = next(h for h in result.hints if h.message == "Possible Cartesian product")
        assert hint.category == HintCategory.PERFORMANCE


class TestSessionCommands:
    def test_session_command_result(self):
        """Test that a session command becomes one operation node."""
        result = parse_sql("USE analytics")
        assert len(result.nodes) == 1
        assert result.nodes[0].type == NodeType.OPERATION
        assert result.nodes[0].description == "Use: analytics"
        assert result.statement_type == "USE"
        assert result.stats.complexity_score == 1
        assert result.has_no_limit is False
        assert _messages(result) == ["USE statement"]


class TestFailures:
    """Test empty input, parse failures and the regex fallback."""

    def test_empty_input(self):
        result = parse_sql("   ")
        assert result.error == "No SQL provided"
        assert result.nodes == []

    def test_parse_error_falls_back(self):
        """Test that invalid SQL yields a partial result with an error hint."""
        result = parse_sql("SELECT * FROM orders WHERE (")
        assert result.partial is True
        assert result.error
        assert "Try PostgreSQL dialect (most compatible)." in result.error
        first = result.hints[0]
        assert first.type == HintType.ERROR
        assert first.message.startswith("Parse error: ")
        assert "fallback parser" in first.suggestion
        assert [n.label for n in result.nodes] == ["orders"]
        assert result.nodes[0].description == "Table (detected by fallback parser)"

    def test_postgres_parse_error_has_no_postgres_suggestion(self):
        result = parse_sql("SELECT * FROM orders WHERE (", dialect=Dialect.POSTGRESQL)
        assert "Try PostgreSQL dialect" not in result.error


class TestDialectRetry:
    """Test the single retry with a detected dialect after a parse failure."""

    @pytest.fixture
    def mysql_rejects(self, monkeypatch):
        real_parse = parser_module.parse_statements

        def parse_statements(sql, dialect):
            if dialect == Dialect.MYSQL:
                raise StatementParseError("Invalid expression / Unexpected token", line=1, column=8)
            return real_parse(sql, dialect)

        monkeypatch.setattr(parser_module, "parse_statements", parse_statements)

    def test_successful_retry_switches_dialect(self, mysql_rejects, monkeypatch):
        """Test that a retry that parses switches the result dialect and adds an info hint."""
        monkeypatch.setattr(parser_module, "select_retry_dialect", lambda sql, current: Dialect.POSTGRESQL)
        result = SQLFlowParser(dialect=Dialect.MYSQL).parse("SELECT id FROM users LIMIT 1")

        assert result.partial is False
        assert result.error is None
        assert result.dialect == Dialect.POSTGRESQL
        retry = next(h for h in result.hints if h.message.startswith("Auto-retried"))
        assert retry.message == "Auto-retried parse with PostgreSQL dialect after MySQL parse failure"
        assert retry.type == HintType.INFO
        assert [n.label for n in result.find_nodes(NodeType.TABLE)] == ["users"]

    def test_no_retry_dialect_falls_back(self, mysql_rejects, monkeypatch):
        monkeypatch.setattr(parser_module, "select_retry_dialect", lambda sql, current: None)
        result = SQLFlowParser(dialect=Dialect.MYSQL).parse("SELECT id FROM users LIMIT 1")

        assert result.partial is True
        assert result.dialect == Dialect.MYSQL
        assert not any(h.message.startswith("Auto-retried") for h in result.hints)


class TestTiming:
    """Test the parse timeout and slow-parse warning with an injected clock."""

    def test_timeout_uses_fallback(self):
        """Test that a parse slower than the timeout returns a partial result."""
        parser = SQLFlowParser(clock=_fake_clock(0.0, 6.0))
        result = parser.parse("SELECT id FROM users")

        assert result.partial is True
        assert result.error is None
        timeout = result.hints[0]
        assert timeout.message == "Query parsing took 6.0s — exceeded 5s timeout"
        assert timeout.type == HintType.WARNING
        assert timeout.category == HintCategory.PERFORMANCE
        assert [n.label for n in result.nodes] == ["users"]

    def test_slow_parse_warning(self):
        """Test that a parse above the warning ratio adds a warning hint."""
        parser = SQLFlowParser(clock=_fake_clock(0.0, 4.0))
        result = parser.parse("SELECT id FROM users LIMIT 1")

        assert result.partial is False
        assert "Query parsing took 4.0s — approaching 5s timeout limit" in _messages(result)

    def test_timeout_from_config(self):
        parser = SQLFlowParser(config=ParserConfig(timeout_ms=1000), clock=_fake_clock(0.0, 0.8))
        result = parser.parse("SELECT id FROM users LIMIT 1")
        assert "Query parsing took 0.8s — approaching 1s timeout limit" in _messages(result)

    def test_elapsed_equal_to_timeout_only_warns(self):
        """Test that a parse taking exactly the timeout is not treated as timed out."""
        parser = SQLFlowParser(clock=_fake_clock(0.0, 5.0))
        result = parser.parse("SELECT id FROM users LIMIT 1")

        assert result.partial is False
        assert "Query parsing took 5.0s — approaching 5s timeout limit" in _messages(result)
        assert not any("exceeded" in m for m in _messages(result))

    def test_elapsed_at_warning_ratio_has_no_hint(self):
        """Test that the slow-parse warning needs strictly more than the warning ratio."""
        parser = SQLFlowParser(clock=_fake_clock(0.0, 3.5))
        result = parser.parse("SELECT id FROM users LIMIT 1")
        assert not any("Query parsing took" in m for m in _messages(result))

    def test_fast_parse_has_no_timing_hint(self):
        parser = SQLFlowParser(clock=_fake_clock(0.0, 0.01))
        result = parser.parse("SELECT id FROM users LIMIT 1")
        assert not any("Query parsing took" in m for m in _messages(result))

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            SQLFlowParser(timeout_ms=0)


class TestDeterminism:
    def test_same_input_same_output(self):
        """Test that compiling twice gives identical serialized results."""
        sql = "WITH c AS (SELECT id, total FROM orders) SELECT id, SUM(total) AS s FROM c GROUP BY id"
        assert parse_sql(sql).to_dict() == parse_sql(sql).to_dict()

    def test_dialect_by_name(self):
        result = parse_sql("SELECT id FROM users LIMIT 1", dialect="postgres")
        assert result.dialect == Dialect.POSTGRESQL

    def test_to_dict_shape(self, users_query):
        data = users_query.to_dict()
        assert data["stats"]["tables"] == 1
        assert data["nodes"][0]["type"] == "table"
        assert data["dialect"] == "MySQL"
        assert data["partial"] is False
