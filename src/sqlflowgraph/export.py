"""
Export functionality for compiled statements.

Supports exporting to:
- JSON: Machine-readable flow graph, stats, hints and lineage
- CSV: Column lineage and optimization hints for spreadsheets
"""

import csv
import json
from pathlib import Path
from typing import Any, Dict, Union

from .models import BatchResult, ParseResult


class JSONExporter:
    """
    Export a ParseResult or BatchResult to JSON.

    The output is the result's `to_dict()` form, optionally without the
    SQL text.
    """

    @staticmethod
    def export(result: Union[ParseResult, BatchResult], include_sql: bool = True) -> Dict[str, Any]:
        """
        Export a compiled result to a JSON-serializable dictionary.

        Args:
            result: Single-statement or batch result
            include_sql: Whether to keep each statement's SQL text

        Returns:
            Dictionary with nodes, edges, stats, hints and lineage (per
            query for batches)

        Example:
            data = JSONExporter.export(parse_sql("SELECT id FROM users"))
            print(data["stats"]["complexity"])
        """
        data = result.to_dict()
        if not include_sql:
            queries = data["queries"] if isinstance(result, BatchResult) else [data]
            for query in queries:
                query.pop("sql", None)
        return data

    @staticmethod
    def export_to_file(
        result: Union[ParseResult, BatchResult],
        file_path: str,
        include_sql: bool = True,
        indent: int = 2,
    ):
        """
        Export a compiled result to a JSON file.

        Args:
            result: Single-statement or batch result
            file_path: Path to output JSON file
            include_sql: Whether to keep each statement's SQL text
            indent: JSON indentation (default: 2)
        """
        data = JSONExporter.export(result, include_sql=include_sql)

        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(data, f, indent=indent)


class CSVExporter:
    """
    Export column lineage and hints to CSV (one-way export only).

    For machine-readable export of the whole result, use JSONExporter.
    """

    @staticmethod
    def export_lineage_to_file(result: ParseResult, file_path: str):
        """
        Export column lineage to CSV, one row per (output column, source).

        Args:
            result: Compiled statement
            file_path: Path to output CSV file
        """
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(
                [
                    "output_column",
                    "expression",
                    "transformation",
                    "source_table",
                    "source_column",
                ]
            )

            for lineage in result.column_lineage:
                sources = lineage.sources or [None]
                for source in sources:
                    writer.writerow(
                        [
                            lineage.output_column,
                            lineage.expression,
                            lineage.transformation.value,
                            (source.table if source else lineage.source_table) or "",
                            (source.column if source else lineage.source_column) or "",
                        ]
                    )

    @staticmethod
    def export_hints_to_file(result: Union[ParseResult, BatchResult], file_path: str):
        """
        Export optimization hints to CSV.

        Args:
            result: Single-statement or batch result
            file_path: Path to output CSV file
        """
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        queries = result.queries if isinstance(result, BatchResult) else [result]

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["query_index", "type", "severity", "category", "message", "suggestion", "node_id"])

            for index, query in enumerate(queries):
                for hint in query.hints:
                    writer.writerow(
                        [
                            index,
                            hint.type.value,
                            hint.severity.value,
                            hint.category.value,
                            hint.message,
                            hint.suggestion,
                            hint.node_id or "",
                        ]
                    )


__all__ = [
    "JSONExporter",
    "CSVExporter",
]
