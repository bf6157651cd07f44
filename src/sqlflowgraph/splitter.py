"""
Statement splitter for batched SQL text.

Splits on top-level statement delimiters while tracking quote, comment,
parenthesis, dollar-quote and procedural BEGIN ... END state, so that
semicolons inside any of those never end a statement.
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional

from .sql_text import line_number_at, strip_leading_comments

_TRANSACTION_BEGIN = re.compile(r"^(TRANSACTION|WORK|TRAN|TRY|CATCH)\b")
_PROCEDURAL_PREFIX = re.compile(r"\b(AS|THEN|ELSE|LOOP|IS)\s*$")
_ROUTINE_HEADER = re.compile(r"\bCREATE\s+(OR\s+REPLACE\s+)?(FUNCTION|PROCEDURE|TRIGGER)\b[^;]*$")
_NOT_BLOCK_FOLLOWER = re.compile(r"^(?:$|[,;)=]|(?:FROM|WHERE|AS|ORDER|GROUP|UNION|HAVING|LIMIT)\b)")
_QUALIFIED_END = re.compile(r"^(TRY|CATCH|IF|LOOP|WHILE)\b")
_DELIMITER_DIRECTIVE = re.compile(r"DELIMITER\s+(\S+)", re.IGNORECASE)
_DOLLAR_TAG_CHAR = re.compile(r"[A-Za-z0-9_]")


@dataclass
class SqlStatement:
    """One statement found by the splitter, with its position in the batch"""

    text: str
    start: int  # Offset of the first character of `text` in the batch
    end: int  # Offset just past the last character of `text`

    def line_range(self, batch_sql: str):
        """1-based (start_line, end_line) of this statement in the batch"""
        start_line = line_number_at(batch_sql, self.start)
        end_line = line_number_at(batch_sql, max(self.end - 1, self.start))
        return start_line, end_line


def _is_identifier_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


class _StatementScanner:
    """Single-pass scanner over batched SQL text."""

    def __init__(self, sql: str):
        self.sql = sql

    def _match_keyword(self, idx: int, keyword: str) -> bool:
        sql = self.sql
        if sql[idx : idx + len(keyword)].upper() != keyword:
            return False
        if idx > 0 and _is_identifier_char(sql[idx - 1]):
            return False
        after = idx + len(keyword)
        return not (after < len(sql) and _is_identifier_char(sql[after]))

    def _is_procedural_begin(self, idx: int) -> bool:
        after = self.sql[idx + 5 : idx + 25].strip().upper()
        if _TRANSACTION_BEGIN.match(after) or _NOT_BLOCK_FOLLOWER.match(after):
            return False
        before = self.sql[max(0, idx - 200) : idx].upper()
        return bool(_PROCEDURAL_PREFIX.search(before) or _ROUTINE_HEADER.search(before))

    def scan(self) -> Iterator[SqlStatement]:
        sql = self.sql
        length = len(sql)
        current: List[str] = []
        has_content = False
        segment_start = 0
        in_string = False
        string_char = ""
        in_line_comment = False
        in_block_comment = False
        in_dollar_quotes = False
        dollar_tag = ""
        depth = 0
        begin_end_depth = 0
        case_depth = 0
        custom_delimiter: Optional[str] = None

        def append(text: str):
            nonlocal has_content
            current.append(text)
            if not has_content and not text.isspace():
                has_content = True

        i = 0
        while i < length:
            char = sql[i]
            next_char = sql[i + 1] if i + 1 < length else ""
            prev_char = sql[i - 1] if i > 0 else ""

            if in_line_comment:
                append(char)
                if char == "\n":
                    in_line_comment = False
                i += 1
                continue

            if in_block_comment:
                append(char)
                if char == "*" and next_char == "/":
                    append("/")
                    i += 1
                    in_block_comment = False
                i += 1
                continue

            if not in_string and not in_dollar_quotes:
                if char == "/" and next_char == "*":
                    in_block_comment = True
                    append("/*")
                    i += 2
                    continue
                if (char == "-" and next_char == "-") or (char == "/" and next_char == "/" and custom_delimiter != "//"):
                    in_line_comment = True
                    append(char + next_char)
                    i += 2
                    continue
                if char == "#":
                    in_line_comment = True
                    append(char)
                    i += 1
                    continue

            if not in_string and char == "$":
                j = i + 1
                while j < length and _DOLLAR_TAG_CHAR.match(sql[j]):
                    j += 1
                if j < length and sql[j] == "$":
                    tag = sql[i + 1 : j]
                    if in_dollar_quotes and tag == dollar_tag:
                        in_dollar_quotes = False
                        dollar_tag = ""
                        append(sql[i : j + 1])
                        i = j + 1
                        continue
                    if not in_dollar_quotes:
                        in_dollar_quotes = True
                        dollar_tag = tag
                        append(sql[i : j + 1])
                        i = j + 1
                        continue

            if not in_string and not in_dollar_quotes and char in "Dd" and not has_content:
                directive = _DELIMITER_DIRECTIVE.match(sql, i)
                if directive:
                    custom_delimiter = None if directive.group(1) == ";" else directive.group(1)
                    newline = sql.find("\n", i)
                    i = length if newline == -1 else newline
                    current = []
                    has_content = False
                    segment_start = i
                    continue

            if not in_dollar_quotes and char in ("'", '"', "`") and prev_char != "\\":
                if not in_string:
                    in_string = True
                    string_char = char
                elif char == string_char:
                    in_string = False

            if not in_string and not in_dollar_quotes:
                if char == "(":
                    depth += 1
                elif char == ")":
                    depth -= 1
                elif char in "Cc" and self._match_keyword(i, "CASE"):
                    case_depth += 1
                elif char in "Bb" and self._match_keyword(i, "BEGIN"):
                    if self._is_procedural_begin(i):
                        begin_end_depth += 1
                elif char in "Ee" and self._match_keyword(i, "END"):
                    after_end = sql[i + 3 : i + 15].strip().upper()
                    if _QUALIFIED_END.match(after_end):
                        pass
                    elif case_depth > 0:
                        case_depth -= 1
                    elif begin_end_depth > 0:
                        begin_end_depth -= 1

            delimiter = custom_delimiter or ";"
            at_top_level = not in_string and not in_dollar_quotes and depth == 0 and begin_end_depth == 0
            if at_top_level and sql.startswith(delimiter, i):
                statement = self._finish("".join(current), segment_start)
                if statement:
                    yield statement
                current = []
                has_content = False
                i += len(delimiter)
                segment_start = i
                continue

            append(char)
            i += 1

        statement = self._finish("".join(current), segment_start)
        if statement:
            yield statement

    @staticmethod
    def _finish(segment: str, segment_start: int) -> Optional[SqlStatement]:
        text = segment.strip()
        if not text or not strip_leading_comments(text).strip():
            return None
        start = segment_start + (len(segment) - len(segment.lstrip()))
        return SqlStatement(text=text, start=start, end=start + len(text))


def scan_sql_statements(sql: str) -> List[SqlStatement]:
    """Split batched SQL into statements, keeping their batch offsets."""
    return list(_StatementScanner(sql).scan())


def split_sql_statements(sql: str) -> List[str]:
    """
    Split batched SQL text into individual statements.

    Empty and comment-only segments are dropped; each statement is trimmed.

    Example:
        >>> split_sql_statements("SELECT 1; SELECT ';' FROM t;")
        ['SELECT 1', "SELECT ';' FROM t"]
    """
    return [statement.text for statement in scan_sql_statements(sql)]


def count_sql_statements(sql: str) -> int:
    return sum(1 for _ in _StatementScanner(sql).scan())


__all__ = [
    "SqlStatement",
    "scan_sql_statements",
    "split_sql_statements",
    "count_sql_statements",
]
