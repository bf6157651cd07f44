"""
Pure visualization functions for flow graphs.

These functions translate compiled results into Graphviz DOT format.
No business logic - just presentation layer.
"""

import graphviz

from .models import BatchResult, FlowNode, NodeType, ParseResult, TableCategory

# Color scheme for different node types
NODE_COLORS = {
    NodeType.TABLE: "#607D8B",  # Grey
    NodeType.JOIN: "#FF9800",  # Orange
    NodeType.FILTER: "#9C27B0",  # Purple
    NodeType.AGGREGATE: "#E91E63",  # Pink
    NodeType.WINDOW: "#3F51B5",  # Indigo
    NodeType.CASE: "#FFC107",  # Amber
    NodeType.SELECT: "#4CAF50",  # Green
    NodeType.SORT: "#009688",  # Teal
    NodeType.LIMIT: "#795548",  # Brown
    NodeType.CTE: "#2196F3",  # Blue
    NodeType.SUBQUERY: "#FF5722",  # Deep orange
    NodeType.UNION: "#00BCD4",  # Cyan
    NodeType.RESULT: "#388E3C",  # Dark green
    NodeType.OPERATION: "#9E9E9E",  # Light grey
}

CTE_REFERENCE_COLOR = "#64B5F6"
WARNING_BORDER_COLOR = "#D32F2F"

EDGE_STYLES = {
    "join": {"color": "#FF9800"},
    "on": {"color": "#FF9800", "style": "dashed"},
    "cte": {"color": "#2196F3", "style": "dashed"},
    "union": {"color": "#00BCD4"},
    "insert": {"color": "#388E3C", "penwidth": "2.0"},
    "merge_source": {"color": "#388E3C"},
    "merge_target": {"color": "#388E3C", "penwidth": "2.0"},
}


def _sanitize_graphviz_id(node_id: str) -> str:
    """
    Sanitize a node ID for use in Graphviz.

    Graphviz interprets colons as node:port syntax, so they are replaced
    along with dots.
    """
    return node_id.replace(":", "__").replace(".", "_")


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _node_label(node: FlowNode) -> str:
    lines = [node.label]
    if node.description and node.description != node.label:
        lines.append(node.description)
    if node.details:
        lines.append(node.details[0] if len(node.details) == 1 else f"{len(node.details)} details")
    return "\\n".join(_escape(line) for line in lines)


def _add_node(dot: graphviz.Digraph, node: FlowNode, prefix: str = ""):
    color = NODE_COLORS.get(node.type, "#9E9E9E")
    if node.table_category == TableCategory.CTE_REFERENCE:
        color = CTE_REFERENCE_COLOR

    attrs = {
        "label": _node_label(node),
        "fillcolor": color,
        "fontcolor": "white",
        "tooltip": _escape("; ".join(w.message for w in node.warnings) or node.description or node.label),
    }
    if node.type == NodeType.TABLE:
        attrs["shape"] = "cylinder"
    if node.warnings:
        attrs["color"] = WARNING_BORDER_COLOR
        attrs["penwidth"] = "2.0"
    dot.node(_sanitize_graphviz_id(prefix + node.id), **attrs)


def _add_graph(dot: graphviz.Digraph, result: ParseResult, prefix: str, expand_children: bool):
    for node in result.nodes:
        if expand_children and node.children:
            with dot.subgraph(name=f"cluster_{_sanitize_graphviz_id(prefix + node.id)}") as cluster:
                cluster.attr(label=_escape(node.label), style="rounded,dashed", color=NODE_COLORS[node.type])
                _add_node(cluster, node, prefix)
                for child in node.children:
                    _add_node(cluster, child, prefix)
                for edge in node.child_edges or []:
                    cluster.edge(_sanitize_graphviz_id(prefix + edge.source), _sanitize_graphviz_id(prefix + edge.target))
        else:
            _add_node(dot, node, prefix)

    for edge in result.edges:
        style = EDGE_STYLES.get(edge.clause_type or "", {})
        label = _escape(edge.sql_clause[:40]) if edge.sql_clause else ""
        dot.edge(
            _sanitize_graphviz_id(prefix + edge.source),
            _sanitize_graphviz_id(prefix + edge.target),
            label=label,
            **style,
        )


def visualize_flow_graph(result: ParseResult, expand_children: bool = False) -> graphviz.Digraph:
    """
    Create Graphviz visualization of one statement's flow graph.

    Pure function: Takes a ParseResult, returns a Graphviz Digraph.

    Args:
        result: Compiled statement
        expand_children: Draw CTE / subquery bodies as clusters

    Returns:
        graphviz.Digraph object ready to render
    """
    dot = graphviz.Digraph(comment=f"{result.statement_type or 'SQL'} flow")
    dot.attr(rankdir="LR")  # Left to right layout for better flow
    dot.attr("node", shape="box", style="rounded,filled", fontname="Arial", fontsize="12")
    dot.attr("edge", fontsize="10", color="#555555")
    _add_graph(dot, result, "", expand_children)
    return dot


def visualize_batch(batch: BatchResult, expand_children: bool = False) -> graphviz.Digraph:
    """
    Create one Graphviz visualization with a cluster per statement.

    Node ids are prefixed with the statement index so ids from different
    statements never collide.
    """
    dot = graphviz.Digraph(comment="SQL batch flow")
    dot.attr(rankdir="LR")
    dot.attr("node", shape="box", style="rounded,filled", fontname="Arial", fontsize="12")
    dot.attr("edge", fontsize="10", color="#555555")

    for index, query in enumerate(batch.queries):
        with dot.subgraph(name=f"cluster_q{index}") as cluster:
            title = f"Query {index + 1}: {query.statement_type or 'SQL'}"
            if query.error:
                title += " (partial)"
            cluster.attr(label=_escape(title), style="rounded", color="#BDBDBD")
            _add_graph(cluster, query, f"q{index}_", expand_children)
    return dot


__all__ = [
    "NODE_COLORS",
    "visualize_flow_graph",
    "visualize_batch",
]
