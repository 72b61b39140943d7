from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .connectors import firestore as firestore_connector
from .connectors import sql as sql_connector
from .connectors.base import ConnectorError
from .schemas import DataSources, QueryResult, TestConnectionRequest

logger = logging.getLogger(__name__)


@dataclass
class QueryContext:
    data_source: str
    data_sources: DataSources


def _firebase_config(data_sources: DataSources) -> firestore_connector.FirebaseConfig:
    fb = data_sources.firebase
    if not fb.projectId or not fb.serviceAccountJson:
        raise ConnectorError("Firebase credentials not configured.")
    return firestore_connector.FirebaseConfig(project_id=fb.projectId, service_account_json=fb.serviceAccountJson)


def run_query(sql: str, ctx: QueryContext, max_rows: Optional[int] = None) -> QueryResult:
    """Send ``sql`` to the context's active data source and normalize the result."""
    sources = ctx.data_sources
    logger.info(f"[Query] Dispatching to {ctx.data_source}")
    if ctx.data_source == "localSql":
        dsn = sources.localSql.connectionString
        if not dsn:
            raise ConnectorError("Local SQL connection string not configured.")
        return sql_connector.run_sql_query(dsn, sql, max_rows)
    if ctx.data_source == "postgres":
        dsn = sources.postgres.connectionString
        if not dsn:
            raise ConnectorError("PostgreSQL connection string not configured.")
        return sql_connector.run_postgres_query(dsn, sql, max_rows)
    if ctx.data_source == "mysql":
        dsn = sources.mysql.connectionString
        if not dsn:
            raise ConnectorError("MySQL connection string not configured.")
        return sql_connector.run_mysql_query(dsn, sql, max_rows)
    if ctx.data_source == "firebase":
        return firestore_connector.run_firestore_query(sql, _firebase_config(sources), max_rows)
    raise ConnectorError("Unsupported data source.")


def test_connection(kind: str, payload: TestConnectionRequest) -> bool:
    """Probe a data source before it is saved. ``kind`` is the connector route name."""
    if kind == "firebase":
        if not payload.projectId or not payload.serviceAccountJson:
            raise ConnectorError("projectId and serviceAccountJson are required.")
        cfg = firestore_connector.FirebaseConfig(payload.projectId, payload.serviceAccountJson)
        return firestore_connector.test_firestore_connection(cfg)
    dsn = (payload.connectionString or "").strip()
    if not dsn:
        raise ConnectorError("connectionString is required.")
    if kind == "local-sql":
        return sql_connector.test_sql_connection(dsn)
    if kind == "postgres":
        return sql_connector.test_postgres_connection(dsn)
    if kind == "mysql":
        return sql_connector.test_mysql_connection(dsn)
    raise ConnectorError("Unsupported data source.")
