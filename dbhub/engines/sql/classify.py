"""
Statement classification by leading keyword.

READ statements return rows, WRITE statements return an affected-row count, and
everything else (DDL, SET, CALL, WITH, ...) is executed as a raw pass-through.
"""

import re
from enum import Enum


class StatementKind(str, Enum):
    READ = "read"
    WRITE = "write"
    OTHER = "other"


READ_KEYWORDS = frozenset({"SELECT", "SHOW", "DESCRIBE", "EXPLAIN"})
WRITE_KEYWORDS = frozenset({"INSERT", "UPDATE", "DELETE"})

# Leading whitespace, stray ';', opening parens, -- line comments, /* block comments */
_LEADING_NOISE = re.compile(r"\A(?:\s+|;|\(|--[^\n]*(?:\n|\Z)|/\*.*?\*/)+", re.DOTALL)
_FIRST_WORD = re.compile(r"[A-Za-z_]+")


def leading_keyword(sql: str) -> str:
    """First keyword of *sql*, upper-cased; "" when there is none."""
    s = _LEADING_NOISE.sub("", sql or "", count=1)
    m = _FIRST_WORD.match(s)
    return m.group(0).upper() if m else ""


def classify(sql: str) -> StatementKind:
    keyword = leading_keyword(sql)
    if keyword in READ_KEYWORDS:
        return StatementKind.READ
    if keyword in WRITE_KEYWORDS:
        return StatementKind.WRITE
    return StatementKind.OTHER
