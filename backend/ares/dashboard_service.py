from __future__ import annotations

import logging
from typing import Iterable, List

from .connectors.base import ConnectorError
from .query_service import QueryContext, run_query
from .schemas import DashboardOut, DashboardWidget, MetricQuery, QueryResult, WidgetSqlResponse
from .sqlgen import SqlBuildError, build_sql_from_metric, detect_dialect, validate_sql

logger = logging.getLogger(__name__)

CHAT_TREND_LIMIT = 3


def run_dashboard_widget(widget: DashboardWidget, ctx: QueryContext) -> QueryResult:
    if ctx.data_source == "firebase":
        raise ConnectorError("Dashboards require SQL data sources. Switch to Local SQL in Profile.")
    dialect = detect_dialect(ctx.data_source, ctx.data_sources)
    sql = build_sql_from_metric(widget.query, dialect)
    logger.debug(f"[Dashboard] widget={widget.id} dialect={dialect} sql={sql}")
    return run_query(sql, ctx)


def preview_widget_sql(query: MetricQuery, ctx: QueryContext) -> WidgetSqlResponse:
    """Build the widget SQL for the active source without executing it."""
    dialect = detect_dialect(ctx.data_source, ctx.data_sources)
    sql = build_sql_from_metric(query, dialect)
    ok, err = validate_sql(sql, dialect)
    if not ok:
        logger.warning(f"[Dashboard] generated {dialect} SQL failed to parse: {err}")
        raise SqlBuildError(f"Generated SQL is invalid: {err}")
    return WidgetSqlResponse(dialect=dialect, sql=sql)


def collect_chat_trends(dashboards: Iterable[DashboardOut]) -> List[DashboardWidget]:
    widgets = [w for d in dashboards for w in d.widgets]
    return [w for w in widgets if w.showInChat][:CHAT_TREND_LIMIT]
