"""
Text-level helpers for SQL that has not (or could not) be parsed.

Used by the splitter, preprocessing transforms, dialect detection, the
regex fallback extractor and the raw-text hint rules.
"""

import re
from typing import List

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"--[^\n\r]*")
_HASH_COMMENT = re.compile(r"#[^\n\r]*")
_LEADING_COMMENTS = re.compile(r"^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/|#[^\n]*(?:\n|$))*", re.DOTALL)


def strip_sql_comments(sql: str) -> str:
    """Replace block, `--` and `#` comments with a single space."""
    sql = _BLOCK_COMMENT.sub(" ", sql)
    sql = _LINE_COMMENT.sub(" ", sql)
    return _HASH_COMMENT.sub(" ", sql)


def strip_leading_comments(sql: str) -> str:
    """Drop whitespace and comments that precede the first token."""
    return _LEADING_COMMENTS.sub("", sql, count=1)


def mask_strings_and_comments(sql: str) -> str:
    """
    Replace string literals, quoted identifiers and comments with spaces.

    The result has the same length as the input, so match positions found
    in the masked text can be used to slice the original text.
    """
    chars = list(sql)
    length = len(chars)
    i = 0
    while i < length:
        ch = chars[i]
        nxt = chars[i + 1] if i + 1 < length else ""
        if ch == "/" and nxt == "*":
            chars[i] = chars[i + 1] = " "
            i += 2
            while i < length:
                if chars[i] == "*" and i + 1 < length and chars[i + 1] == "/":
                    chars[i] = chars[i + 1] = " "
                    i += 2
                    break
                if chars[i] != "\n":
                    chars[i] = " "
                i += 1
            continue
        if (ch == "-" and nxt == "-") or ch == "#":
            while i < length and chars[i] != "\n":
                chars[i] = " "
                i += 1
            continue
        if ch == "'":
            chars[i] = " "
            i += 1
            while i < length:
                if chars[i] == "'" and i + 1 < length and chars[i + 1] == "'":
                    chars[i] = chars[i + 1] = " "
                    i += 2
                    continue
                if chars[i] == "'":
                    chars[i] = " "
                    i += 1
                    break
                if chars[i] != "\n":
                    chars[i] = " "
                i += 1
            continue
        if ch == '"':
            chars[i] = " "
            i += 1
            while i < length:
                if chars[i] == '"':
                    chars[i] = " "
                    i += 1
                    break
                if chars[i] != "\n":
                    chars[i] = " "
                i += 1
            continue
        i += 1
    return "".join(chars)


def find_matching_paren(sql: str, open_pos: int) -> int:
    """
    Find the closing parenthesis matching the `(` at `open_pos`.

    String literals, quoted identifiers and comments are skipped.

    Returns:
        Index of the matching `)`, or -1 if there is none
    """
    if open_pos >= len(sql) or sql[open_pos] != "(":
        return -1
    length = len(sql)
    depth = 1
    i = open_pos + 1
    while i < length:
        ch = sql[i]
        if ch == "'":
            i += 1
            while i < length:
                if sql[i] == "'" and i + 1 < length and sql[i + 1] == "'":
                    i += 2
                    continue
                if sql[i] == "'":
                    i += 1
                    break
                i += 1
            continue
        if ch == '"':
            end = sql.find('"', i + 1)
            i = length if end == -1 else end + 1
            continue
        if ch == "/" and sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = length if end == -1 else end + 2
            continue
        if ch == "-" and sql.startswith("--", i):
            end = sql.find("\n", i)
            i = length if end == -1 else end
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def split_top_level_commas(value: str) -> List[str]:
    """Split on commas that are not nested inside parentheses or literals."""
    masked = mask_strings_and_comments(value)
    parts = []
    depth = 0
    start = 0
    for i, ch in enumerate(masked):
        if ch == "(":
            depth += 1
        elif ch == ")":
            if depth > 0:
                depth -= 1
        elif ch == "," and depth == 0:
            parts.append(value[start:i])
            start = i + 1
    parts.append(value[start:])
    return parts


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def line_number_at(text: str, offset: int) -> int:
    """1-based line number of a character offset."""
    return text.count("\n", 0, max(offset, 0)) + 1


__all__ = [
    "strip_sql_comments",
    "strip_leading_comments",
    "mask_strings_and_comments",
    "find_matching_paren",
    "split_top_level_commas",
    "normalize_whitespace",
    "line_number_at",
]
