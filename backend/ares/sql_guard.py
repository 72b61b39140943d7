"""
Read-only guard for SQL produced by the LLM.
Parses with sqlglot and only lets a single query statement through.
"""
from __future__ import annotations

import logging

import sqlglot
from sqlglot import exp

logger = logging.getLogger(__name__)

_READ_DIALECTS = {"postgres": "postgres", "mysql": "mysql", "generic": None}
_QUERY_TYPES = (exp.Select, exp.Union, exp.Intersect, exp.Except)


class UnsafeSqlError(ValueError):
    """Raised when generated SQL is not a single read-only query."""


def ensure_read_only(sql: str, dialect: str = "generic") -> str:
    """Return ``sql`` unchanged if it is exactly one SELECT-style statement.

    Raises UnsafeSqlError for empty input, parse failures, stacked statements,
    and anything that is not a query (DML, DDL, SET, CALL, SELECT ... INTO).
    """
    text = (sql or "").strip()
    if not text:
        raise UnsafeSqlError("Generated SQL is empty.")
    try:
        statements = [s for s in sqlglot.parse(text, read=_READ_DIALECTS.get(dialect)) if s is not None]
    except sqlglot.errors.SqlglotError as e:
        raise UnsafeSqlError(f"Generated SQL could not be parsed: {e}") from e
    if len(statements) != 1:
        raise UnsafeSqlError("Only a single SQL statement is allowed.")
    stmt = statements[0]
    if not isinstance(stmt, _QUERY_TYPES) or stmt.args.get("into") is not None:
        logger.warning(f"[SQLGuard] Rejected {type(stmt).__name__} statement")
        raise UnsafeSqlError("Only read-only SELECT queries are allowed.")
    for node in stmt.walk():
        if isinstance(node, (exp.Insert, exp.Update, exp.Delete, exp.Drop, exp.Create, exp.Command, exp.Into)):
            logger.warning(f"[SQLGuard] Rejected nested {type(node).__name__}")
            raise UnsafeSqlError("Only read-only SELECT queries are allowed.")
    return sql
