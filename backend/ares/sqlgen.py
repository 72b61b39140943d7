from __future__ import annotations

from typing import Any, List, Optional, Tuple
import logging
import re

import sqlglot

from .schemas import DashboardFilter, DashboardJoin, DataSources, MetricQuery

logger = logging.getLogger(__name__)

SqlDialect = str  # "postgres" | "mysql" | "generic"

_IDENT_STRIP_RE = re.compile(r"[^a-zA-Z0-9_.]")
_PASSTHROUGH_ORDER = {"bucket", "value", "value2"}
_SQLGLOT_DIALECTS = {"postgres": "postgres", "mysql": "mysql", "generic": None}


class SqlBuildError(ValueError):
    """Raised when a metric query cannot be turned into SQL."""


def sanitize_identifier(value: Optional[str]) -> str:
    return _IDENT_STRIP_RE.sub("", str(value or ""))


def _escape(value: Any) -> str:
    return str(value if value is not None else "").replace("'", "''")


def _lit(value: Any) -> str:
    return f"'{_escape(value)}'"


def detect_dialect(data_source: str, data_sources: Optional[DataSources]) -> SqlDialect:
    if data_source == "postgres":
        return "postgres"
    if data_source == "mysql":
        return "mysql"
    if data_source == "localSql" and data_sources is not None:
        conn = (data_sources.localSql.connectionString or "").strip()
        if conn.startswith("mysql://") or conn.startswith("mysql2://"):
            return "mysql"
        if conn.startswith("postgres://") or conn.startswith("postgresql://"):
            return "postgres"
    return "generic"


def _filter_clause(f: DashboardFilter, dialect: SqlDialect) -> str:
    column = sanitize_identifier(f.column)
    raw = f.value or ""
    if f.op == "contains":
        comparator = "ILIKE" if dialect == "postgres" else "LIKE"
        return f"{column} {comparator} '%{_escape(raw)}%'"
    if f.op == "in":
        items = f.values if f.values is not None else [x.strip() for x in raw.split(",")]
        items = [x for x in items if x]
        if not items:
            return "1=1"
        return f"{column} IN ({', '.join(_lit(x) for x in items)})"
    if f.op == "between":
        lo, hi = raw, f.valueTo or ""
        if not lo or not hi:
            return "1=1"
        return f"{column} BETWEEN {_lit(lo)} AND {_lit(hi)}"
    return f"{column} {f.op} {_lit(raw)}"


def build_where(filters: List[DashboardFilter], dialect: SqlDialect) -> str:
    if not filters:
        return ""
    return "WHERE " + " AND ".join(_filter_clause(f, dialect) for f in filters)


def build_joins(joins: List[DashboardJoin]) -> str:
    if not joins:
        return ""
    parts: list[str] = []
    for j in joins:
        if j.type == "left":
            kw = "LEFT JOIN"
        elif j.type == "right":
            kw = "RIGHT JOIN"
        else:
            kw = "JOIN"
        parts.append(
            f"{kw} {sanitize_identifier(j.table)} ON {sanitize_identifier(j.onLeft)} = {sanitize_identifier(j.onRight)}"
        )
    return " ".join(parts)


def build_date_bucket(column: str, time_grain: Optional[str], dialect: SqlDialect) -> str:
    if not time_grain:
        return column
    if dialect == "mysql":
        if time_grain == "day":
            return f"DATE({column})"
        if time_grain == "week":
            return f"YEARWEEK({column}, 1)"
        if time_grain == "month":
            return f"DATE_FORMAT({column}, '%Y-%m-01')"
        if time_grain == "quarter":
            return f"CONCAT(YEAR({column}), '-Q', QUARTER({column}))"
        if time_grain == "year":
            return f"YEAR({column})"
        return column
    return f"date_trunc('{time_grain}', {column})"


def resolve_order_by(order_by: Optional[str], fallback: str) -> str:
    if not order_by:
        return fallback
    if order_by in _PASSTHROUGH_ORDER:
        return order_by
    return sanitize_identifier(order_by)


def _agg_expr(aggregation: str, column: str) -> str:
    agg = aggregation.upper()
    if agg == "COUNT":
        return f"COUNT({column or '*'})"
    if not column:
        raise SqlBuildError(f"metricColumn is required for {agg}")
    return f"{agg}({column})"


def build_sql_from_metric(query: MetricQuery, dialect: SqlDialect) -> str:
    """Render a widget's metric query as a single SELECT for the given dialect.

    Output columns are fixed so charts can bind to them: ``bucket`` (only when
    grouped), ``value`` and optionally ``value2``. Identifiers are stripped to
    ``[A-Za-z0-9_.]``; literal values are single-quote escaped.
    """
    table = sanitize_identifier(query.table)
    if not table:
        raise SqlBuildError("table is required")
    metrics = f"{_agg_expr(query.aggregation, sanitize_identifier(query.metricColumn))} AS value"
    column2 = sanitize_identifier(query.metricColumn2) if query.metricColumn2 else ""
    if column2 and query.aggregation2:
        metrics += f", {_agg_expr(query.aggregation2, column2)} AS value2"

    joins = build_joins(query.joins)
    where = build_where(query.filters, dialect)
    limit = f"LIMIT {max(1, int(query.limit))}" if query.limit else "LIMIT 100"
    direction = "ASC" if (query.orderDirection or "").upper() == "ASC" else "DESC"
    group_by = sanitize_identifier(query.groupBy) if query.groupBy else ""

    if group_by:
        bucket = build_date_bucket(group_by, query.timeGrain, dialect)
        order_by = resolve_order_by(query.orderBy, "bucket")
        parts = [
            f"SELECT {bucket} AS bucket, {metrics}",
            f"FROM {table}",
            joins,
            where,
            f"GROUP BY {bucket}",
            f"ORDER BY {order_by} {direction}",
            limit,
        ]
    else:
        order_by = resolve_order_by(query.orderBy, "value")
        parts = [
            f"SELECT {metrics}",
            f"FROM {table}",
            joins,
            where,
            f"ORDER BY {order_by} {direction}",
            limit,
        ]
    sql = " ".join(p for p in parts if p) + ";"
    logger.debug(f"[SQL] Built metric query ({dialect}): {sql[:300]}")
    return sql


def validate_sql(sql: str, dialect: SqlDialect = "generic") -> Tuple[bool, Optional[str]]:
    """Syntax-check SQL with sqlglot for the given dialect.

    Returns (is_valid, error_message).
    """
    try:
        sqlglot.parse_one(sql, read=_SQLGLOT_DIALECTS.get(dialect))
        return (True, None)
    except sqlglot.errors.SqlglotError as e:
        return (False, str(e))
