"""
Statistics and complexity scoring.

Computes the weighted complexity score of a statement, graph-shape
metrics (fan-out, critical path, CTE depth), per-node complexity tags and
source line numbers for flow nodes.
"""

import re
from collections import defaultdict
from typing import Dict, List, Optional, Set

from .models import ComplexityLevel, FlowEdge, FlowNode, NodeType, ParserContext, QueryStats, walk_nodes
from .sql_text import mask_strings_and_comments

COMPLEXITY_WEIGHTS = {
    "joins": 3,
    "subqueries": 2,
    "ctes": 2,
    "aggregations": 1,
    "window_functions": 2,
}

FAN_OUT_WARNING = 3
FAN_OUT_HIGH = 5


def calculate_complexity(stats: QueryStats):
    """Fill complexity_score, complexity_breakdown and complexity from the counters"""
    breakdown = {name: getattr(stats, name) * weight for name, weight in COMPLEXITY_WEIGHTS.items()}
    stats.complexity_breakdown = breakdown
    stats.complexity_score = sum(breakdown.values())
    stats.complexity = ComplexityLevel.from_score(stats.complexity_score)


def _outgoing(edges: List[FlowEdge]) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.source].append(edge.target)
    return adjacency


def critical_path_length(nodes: List[FlowNode], edges: List[FlowEdge]) -> int:
    """
    Number of nodes on the longest path starting at a root.

    Cycles cannot occur in a well-formed flow graph; an in-progress node is
    treated as a dead end so malformed input still terminates.
    """
    adjacency = _outgoing(edges)
    targets = {edge.target for edge in edges}
    roots = [node.id for node in nodes if node.id not in targets] or [node.id for node in nodes[:1]]
    longest: Dict[str, int] = {}
    visiting: Set[str] = set()

    def visit(node_id: str) -> int:
        if node_id in longest:
            return longest[node_id]
        if node_id in visiting:
            return 0
        visiting.add(node_id)
        best = 0
        for target in adjacency.get(node_id, []):
            best = max(best, visit(target))
        visiting.discard(node_id)
        longest[node_id] = best + 1
        return best + 1

    return max((visit(root) for root in roots), default=0)


def max_cte_depth(nodes: List[FlowNode]) -> int:
    """
    Deepest CTE container in the graph.

    Top-level CTEs have depth 0; a WITH nested inside a CTE or derived
    table body sits one level below its container.
    """
    return max((node.depth for node in walk_nodes(nodes) if node.type == NodeType.CTE), default=0)


def calculate_enhanced_metrics(ctx: ParserContext, nodes: List[FlowNode], edges: List[FlowEdge]):
    """
    Graph-shape metrics plus fan-out / complexity node annotations.

    Sets max_fan_out, critical_path_length and max_cte_depth on ctx.stats
    and tags nodes with `fan-out` / `complex` warnings and a complexity
    level.
    """
    stats = ctx.stats
    adjacency = _outgoing(edges)

    stats.max_fan_out = max((len(targets) for targets in adjacency.values()), default=0)
    stats.critical_path_length = critical_path_length(nodes, edges)
    stats.max_cte_depth = max_cte_depth(nodes)

    for node in nodes:
        fan_out = len(adjacency.get(node.id, []))
        if fan_out >= FAN_OUT_WARNING:
            node.add_warning(
                "fan-out",
                "high" if fan_out >= FAN_OUT_HIGH else "medium",
                f"High fan-out: {fan_out} outgoing connections",
            )

        if node.type == NodeType.JOIN:
            if stats.joins > 3:
                node.add_warning("complex", "medium", "Complex operation - may impact performance")
            node.complexity_level = "high" if stats.joins > 5 else "medium" if stats.joins > 2 else "low"
        elif node.type == NodeType.AGGREGATE and node.aggregate_details:
            count = len(node.aggregate_details)
            if count > 3:
                node.add_warning("complex", "medium", "Complex operation - may impact performance")
            node.complexity_level = "high" if count > 4 else "medium" if count > 2 else "low"
        elif node.type in (NodeType.SUBQUERY, NodeType.CTE):
            node.complexity_level = "high" if stats.subqueries > 2 else "low"


# ============================================================================
# Line numbers
# ============================================================================

_KEYWORD_PATTERNS = {
    "SELECT": re.compile(r"\bSELECT\b", re.IGNORECASE),
    "FROM": re.compile(r"\bFROM\b", re.IGNORECASE),
    "WHERE": re.compile(r"\bWHERE\b", re.IGNORECASE),
    "GROUP BY": re.compile(r"\bGROUP\s+BY\b", re.IGNORECASE),
    "HAVING": re.compile(r"\bHAVING\b", re.IGNORECASE),
    "QUALIFY": re.compile(r"\bQUALIFY\b", re.IGNORECASE),
    "ORDER BY": re.compile(r"\bORDER\s+BY\b", re.IGNORECASE),
    "LIMIT": re.compile(r"\b(LIMIT|TOP|FETCH)\b", re.IGNORECASE),
    "JOIN": re.compile(r"\bJOIN\b", re.IGNORECASE),
    "WITH": re.compile(r"\bWITH\b", re.IGNORECASE),
    "SET_OPERATION": re.compile(r"\b(UNION|INTERSECT|EXCEPT|MINUS)\b", re.IGNORECASE),
}

_FILTER_KEYWORDS = {"WHERE": "WHERE", "HAVING": "HAVING", "QUALIFY": "QUALIFY"}


def extract_keyword_lines(sql: str) -> Dict[str, List[int]]:
    """1-based line numbers on which each clause keyword appears (outside strings/comments)"""
    masked = mask_strings_and_comments(sql)
    keyword_lines: Dict[str, List[int]] = defaultdict(list)
    for index, line in enumerate(masked.split("\n"), start=1):
        for keyword, pattern in _KEYWORD_PATTERNS.items():
            if pattern.search(line):
                keyword_lines[keyword].append(index)
    return keyword_lines


def _first(lines: Dict[str, List[int]], keyword: str) -> Optional[int]:
    values = lines.get(keyword)
    return values[0] if values else None


def _table_line(name: str, masked_lines: List[str]) -> Optional[int]:
    """First line naming the table in FROM/JOIN/INTO/UPDATE context (same or previous line)"""
    pattern = re.compile(rf"(?<!\w){re.escape(name)}\b", re.IGNORECASE)
    context = re.compile(r"\b(FROM|JOIN|INTO|UPDATE|USING|TABLE|VIEW)\b", re.IGNORECASE)
    for index, line in enumerate(masked_lines):
        match = pattern.search(line)
        if not match:
            continue
        if context.search(line[: match.start()]) or (index > 0 and context.search(masked_lines[index - 1])):
            return index + 1
    for index, line in enumerate(masked_lines):
        if pattern.search(line):
            return index + 1
    return None


def assign_line_numbers(nodes: List[FlowNode], sql: str):
    """
    Best-effort `start_line` for each top-level node.

    Join nodes consume JOIN lines in order; clause nodes take the first
    line of their keyword; tables take the first line that names them in a
    FROM/JOIN context.
    """
    masked = mask_strings_and_comments(sql)
    masked_lines = masked.split("\n")
    keyword_lines = extract_keyword_lines(sql)
    join_lines = list(keyword_lines.get("JOIN", []))
    from_line = _first(keyword_lines, "FROM")

    for node in nodes:
        line: Optional[int] = None
        if node.type == NodeType.TABLE:
            if node.label.upper() != "VALUES":
                line = _table_line(node.label, masked_lines)
            line = line or from_line
        elif node.type == NodeType.JOIN:
            if join_lines:
                line = join_lines.pop(0)
        elif node.type == NodeType.FILTER:
            keyword = _FILTER_KEYWORDS.get(node.label)
            line = _first(keyword_lines, keyword) if keyword else None
        elif node.type == NodeType.AGGREGATE:
            line = _first(keyword_lines, "GROUP BY") or _first(keyword_lines, "SELECT")
        elif node.type in (NodeType.SELECT, NodeType.CASE, NodeType.WINDOW, NodeType.RESULT):
            line = _first(keyword_lines, "SELECT")
        elif node.type == NodeType.SORT:
            line = _first(keyword_lines, "ORDER BY")
        elif node.type == NodeType.LIMIT:
            line = _first(keyword_lines, "LIMIT")
        elif node.type == NodeType.CTE:
            name = node.label.split()[-1]
            cte_pattern = re.compile(rf"\b{re.escape(name)}\b\s*(\([^)]*\))?\s*(AS\b|$)", re.IGNORECASE)
            for index, text in enumerate(masked_lines):
                if cte_pattern.search(text):
                    line = index + 1
                    break
            line = line or _first(keyword_lines, "WITH")
        elif node.type == NodeType.SUBQUERY:
            line = _table_line(node.label, masked_lines) if node.label != "subquery" else None
            line = line or from_line
        elif node.type == NodeType.UNION:
            line = _first(keyword_lines, "SET_OPERATION")
        if line is not None:
            node.start_line = line


def fallback_complexity(stats: QueryStats):
    """Score for regex-extracted results: tables + joins * 3"""
    stats.complexity_score = stats.tables + stats.joins * 3
    stats.complexity_breakdown = {"tables": stats.tables, "joins": stats.joins * 3}
    stats.complexity = ComplexityLevel.from_score(stats.complexity_score)


__all__ = [
    "COMPLEXITY_WEIGHTS",
    "calculate_complexity",
    "critical_path_length",
    "max_cte_depth",
    "calculate_enhanced_metrics",
    "extract_keyword_lines",
    "assign_line_numbers",
    "fallback_complexity",
]
