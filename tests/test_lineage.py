"""
Tests for column lineage extraction.
"""

from sqlflowgraph import NodeType, TransformationKind, parse_sql


def _by_name(result):
    return {entry.output_column: entry for entry in result.column_lineage}


class TestSelectLineage:
    """Test lineage for plain SELECT statements."""

    SQL = (
        "SELECT u.id, u.name AS full_name, COUNT(o.id) AS order_count "
        "FROM users u JOIN orders o ON o.user_id = u.id GROUP BY u.id, u.name"
    )

    def test_output_columns_in_order(self):
        result = parse_sql(self.SQL)
        assert [entry.output_column for entry in result.column_lineage] == ["id", "full_name", "order_count"]

    def test_passthrough_resolves_alias(self):
        """Test that a qualified column resolves its alias to the table name."""
        entry = _by_name(parse_sql(self.SQL))["id"]
        assert entry.transformation == TransformationKind.PASSTHROUGH
        assert entry.source_table == "users"
        assert entry.source_column == "id"

    def test_rename(self):
        entry = _by_name(parse_sql(self.SQL))["full_name"]
        assert entry.transformation == TransformationKind.RENAMED
        assert entry.source_column == "name"
        assert entry.source_table == "users"

    def test_aggregate_sources(self):
        result = parse_sql(self.SQL)
        entry = _by_name(result)["order_count"]
        assert entry.transformation == TransformationKind.AGGREGATED
        assert [(s.table, s.column) for s in entry.sources] == [("orders", "id")]

        orders_node = next(n for n in result.nodes if n.label == "orders")
        assert entry.sources[0].node_id == orders_node.id

    def test_window_is_calculated(self):
        result = parse_sql("SELECT ROW_NUMBER() OVER (ORDER BY id) AS rn FROM t")
        assert _by_name(result)["rn"].transformation == TransformationKind.CALCULATED

    def test_unqualified_column_uses_single_table(self):
        entry = _by_name(parse_sql("SELECT price FROM items"))["price"]
        assert entry.source_table == "items"

    def test_star_is_direct(self):
        """Test that a star projection maps to every read table."""
        result = parse_sql("SELECT * FROM users")
        assert len(result.column_lineage) == 1
        entry = result.column_lineage[0]
        assert entry.transformation == TransformationKind.DIRECT
        assert [(s.table, s.column) for s in entry.sources] == [("users", "*")]


class TestStatementLineage:
    def test_insert_select_uses_inner_select(self):
        result = parse_sql("INSERT INTO archive SELECT id, total FROM orders")
        assert [entry.output_column for entry in result.column_lineage] == ["id", "total"]
        assert {entry.source_table for entry in result.column_lineage} == {"orders"}

    def test_update_has_no_lineage(self):
        result = parse_sql("UPDATE users SET active = 0 WHERE id = 1")
        assert result.column_lineage == []

    def test_lineage_serializes(self):
        data = parse_sql("SELECT id FROM users").to_dict()
        lineage = data["column_lineage"]
        assert lineage[0]["output_column"] == "id"
        assert lineage[0]["transformation"] == "passthrough"
        assert lineage[0]["sources"][0]["table"] == "users"


class TestColumnFlows:
    """Test per-column paths traced back through the flow graph."""

    @staticmethod
    def _flow(result, name):
        return next(flow for flow in result.column_flows if flow.output_column == name)

    def test_path_runs_from_table_to_select(self):
        result = parse_sql("SELECT name FROM users WHERE id > 1")
        flow = self._flow(result, "name")
        select = result.find_nodes(NodeType.SELECT)[0]

        assert flow.output_node_id == select.id
        assert flow.id == f"lineage_{select.id}_name"
        assert [step.node_name for step in flow.lineage_path] == ["users", "WHERE", "SELECT"]
        assert [step.transformation for step in flow.lineage_path] == ["source", "passthrough", "passthrough"]

    def test_joined_columns_reach_their_own_table(self):
        """Test that an alias-qualified column is traced to the aliased table, not the first join input."""
        result = parse_sql("SELECT u.name, o.total FROM users u JOIN orders o ON u.id = o.user_id")

        name_path = self._flow(result, "name").lineage_path
        total_path = self._flow(result, "total").lineage_path
        assert name_path[0].node_name == "users"
        assert total_path[0].node_name == "orders"
        assert total_path[0].column_name == "total"
        assert total_path[1].node_type == NodeType.JOIN
        assert total_path[1].transformation == "joined"
        assert total_path[-1].expression == "o.total"

    def test_aggregate_traces_its_argument(self):
        result = parse_sql("SELECT user_id, COUNT(order_id) AS order_count FROM orders GROUP BY user_id")
        path = self._flow(result, "order_count").lineage_path

        assert path[0].node_name == "orders"
        assert path[0].column_name == "order_id"
        assert path[-1].column_name == "order_count"
        assert path[-1].transformation == "aggregated"

    def test_only_select_statements_have_flows(self):
        assert parse_sql("UPDATE users SET active = 0 WHERE id = 1").column_flows == []
        assert parse_sql("INSERT INTO archive SELECT id FROM orders").column_flows == []

    def test_flows_serialize(self):
        data = parse_sql("SELECT id FROM users").to_dict()
        flow = data["column_flows"][0]
        assert flow["output_column"] == "id"
        source = flow["lineage_path"][0]
        assert source["node_name"] == "users"
        assert source["node_type"] == "table"
        assert source["transformation"] == "source"
        assert "expression" not in source
