"""SQL text analysis: config comments, statement splitting, table references.

Config comments are parsed with regex (they are line comments, not SQL).
Statement splitting and table extraction use the sqlglot tokenizer/AST so
semicolons inside strings or comments are handled correctly.
"""

from __future__ import annotations

import logging
import re

import sqlglot
from sqlglot import exp
from sqlglot.tokens import TokenType

logger = logging.getLogger("arnab.sql")

DIALECT = "duckdb"

# Schemas that are never model relations
SKIP_SCHEMAS = frozenset({"information_schema", "pg_catalog", "sys"})

CONFIG_PATTERN = re.compile(r"^[ \t]*--\s*config:(.*)$", re.MULTILINE)

# Statements starting with one of these produce records and get materialized
_RECORD_TOKENS = frozenset({
    TokenType.SELECT,
    TokenType.WITH,
    TokenType.FROM,
    TokenType.VALUES,
    TokenType.L_PAREN,
})
_RECORD_PREFIX_RE = re.compile(r"^\s*(?:select|with|from|values|\()", re.IGNORECASE)


def find_config_directives(sql: str) -> list[tuple[int, str]]:
    """Return ``(line, body)`` for each ``-- config:`` line."""
    return [
        (sql.count("\n", 0, m.start()) + 1, m.group(1).strip())
        for m in CONFIG_PATTERN.finditer(sql)
    ]


def parse_config_pairs(body: str) -> list[tuple[str, str]]:
    """Split ``key=value, key=value``; raises ValueError on a pair without ``=``."""
    pairs = []
    for pair in body.split(","):
        pair = pair.strip()
        if not pair:
            continue
        if "=" not in pair:
            raise ValueError(pair)
        key, value = pair.split("=", 1)
        key, value = key.strip(), value.strip()
        if not key or not value:
            raise ValueError(pair)
        pairs.append((key, value))
    return pairs


def strip_config_comments(sql: str) -> str:
    """Remove config comment lines and leading blank lines, return the query."""
    query_lines = [line for line in sql.split("\n") if not CONFIG_PATTERN.match(line)]
    while query_lines and not query_lines[0].strip():
        query_lines.pop(0)
    return "\n".join(query_lines)


def split_statements(sql: str) -> list[str]:
    """Split SQL into statements on top-level semicolons.

    Segments holding only whitespace or comments are dropped.
    """
    try:
        tokens = sqlglot.tokenize(sql, read=DIALECT)
    except sqlglot.errors.TokenError as e:
        logger.debug("Tokenizer failed, falling back to naive split: %s", e)
        return [s.strip() for s in sql.split(";") if _has_code(s)]

    statements = []
    seg_start = 0
    seg_has_tokens = False
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            if seg_has_tokens:
                statements.append(sql[seg_start:token.start].strip())
            seg_start = token.end + 1
            seg_has_tokens = False
        else:
            seg_has_tokens = True
    if seg_has_tokens:
        statements.append(sql[seg_start:].strip())
    return statements


def _has_code(segment: str) -> bool:
    no_comments = re.sub(r"--[^\n]*|/\*.*?\*/", "", segment, flags=re.DOTALL)
    return bool(no_comments.strip())


def returns_records(statement: str) -> bool:
    """Whether a statement is a query (SELECT, WITH, FROM-first, VALUES, subquery)."""
    try:
        tokens = sqlglot.tokenize(statement, read=DIALECT)
    except sqlglot.errors.TokenError:
        return bool(_RECORD_PREFIX_RE.match(re.sub(r"--[^\n]*|/\*.*?\*/", "", statement, flags=re.DOTALL)))
    return bool(tokens) and tokens[0].token_type in _RECORD_TOKENS


def extract_table_refs(sql: str) -> list[str]:
    """Extract table references (``schema.table`` or ``table``) from a query.

    CTE names and system schemas are skipped. Returns an empty list when the
    query cannot be parsed.
    """
    try:
        parsed = sqlglot.parse_one(sql, read=DIALECT)
    except sqlglot.errors.SqlglotError:
        return []
    if parsed is None:
        return []

    cte_names = {cte.alias.lower() for cte in parsed.find_all(exp.CTE) if cte.alias}

    refs: set[str] = set()
    for table in parsed.find_all(exp.Table):
        schema = (table.db or "").lower()
        name = (table.name or "").lower()
        if not name or schema in SKIP_SCHEMAS:
            continue
        if not schema and name in cte_names:
            continue
        refs.add(f"{schema}.{name}" if schema else name)
    return sorted(refs)
