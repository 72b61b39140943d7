from __future__ import annotations

import logging
import threading
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from ..config import settings
from ..metrics import counter_inc, timed
from ..schemas import QueryResult
from ..security import fingerprint
from .base import ConnectorError, json_safe_cell

logger = logging.getLogger(__name__)

_POSTGRES_SCHEMES = {"postgres", "postgresql"}
_MYSQL_SCHEMES = {"mysql", "mysql2"}
_UNSUPPORTED = "Unsupported SQL protocol. Use postgres:// or mysql://"

# Cached pooled engines keyed by the raw DSN
_ENGINE_CACHE: dict[str, Engine] = {}
_ENGINE_LOCK = threading.Lock()


def get_protocol(dsn: str) -> str:
    try:
        return (urlparse((dsn or "").strip()).scheme or "").lower()
    except ValueError:
        return ""


def engine_kind(dsn: str) -> str:
    proto = get_protocol(dsn)
    if proto in _POSTGRES_SCHEMES:
        return "postgres"
    if proto in _MYSQL_SCHEMES:
        return "mysql"
    raise ConnectorError(_UNSUPPORTED)


def _sqlalchemy_url(dsn: str) -> str:
    d = dsn.strip()
    kind = engine_kind(d)
    rest = d.split("://", 1)[1]
    if kind == "postgres":
        return "postgresql+psycopg2://" + rest
    return "mysql+pymysql://" + rest


def get_engine_from_dsn(dsn: str) -> Engine:
    """Create (and cache) a pooled engine for a postgres:// or mysql:// connection string."""
    d = (dsn or "").strip()
    eng = _ENGINE_CACHE.get(d)
    if eng is not None:
        return eng
    url = _sqlalchemy_url(d)
    with _ENGINE_LOCK:
        eng = _ENGINE_CACHE.get(d)
        if eng is not None:
            return eng
        try:
            eng = create_engine(
                url,
                pool_pre_ping=True,
                pool_size=4,
                max_overflow=4,
                pool_recycle=1800,
            )
        except (ArgumentError, ImportError) as e:
            raise ConnectorError(f"Invalid connection string: {e}") from e
        _ENGINE_CACHE[d] = eng
        logger.info(f"[SQL] Created engine {engine_kind(d)}:{fingerprint(d)}")
    return eng


def dispose_all_engines() -> int:
    """Dispose and clear all cached engines."""
    with _ENGINE_LOCK:
        engines = list(_ENGINE_CACHE.values())
        _ENGINE_CACHE.clear()
    for eng in engines:
        eng.dispose()
    return len(engines)


def test_sql_connection(dsn: str) -> bool:
    engine = get_engine_from_dsn(dsn)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise ConnectorError(str(getattr(e, "orig", None) or e)) from e
    return True


def run_sql_query(dsn: str, sql: str, max_rows: Optional[int] = None) -> QueryResult:
    engine = get_engine_from_dsn(dsn)
    kind = engine_kind(dsn)
    cap = int(max_rows or settings.query_max_rows)
    counter_inc("connector_queries_total", {"engine": kind})
    try:
        with timed("connector_query_ms", {"engine": kind}):
            with engine.connect() as conn:
                res = conn.execute(text(sql))
                if not res.returns_rows:
                    return QueryResult(columns=[], rows=[])
                columns = [str(c) for c in res.keys()]
                fetched = res.mappings().fetchmany(cap)
    except SQLAlchemyError as e:
        counter_inc("connector_errors_total", {"engine": kind})
        logger.warning(f"[SQL] Query failed on {kind}:{fingerprint(dsn)}: {e}")
        raise ConnectorError(str(getattr(e, "orig", None) or e)) from e
    rows = [{k: json_safe_cell(v) for k, v in row.items()} for row in fetched]
    return QueryResult(columns=columns, rows=rows)


# --- Scheme-checked entry points for the dedicated postgres / mysql sources ---
def assert_postgres(dsn: str) -> None:
    d = (dsn or "").strip()
    if not (d.startswith("postgres://") or d.startswith("postgresql://")):
        raise ConnectorError("PostgreSQL connection string must start with postgres:// or postgresql://")


def assert_mysql(dsn: str) -> None:
    d = (dsn or "").strip()
    if not (d.startswith("mysql://") or d.startswith("mysql2://")):
        raise ConnectorError("MySQL connection string must start with mysql:// or mysql2://")


def test_postgres_connection(dsn: str) -> bool:
    assert_postgres(dsn)
    return test_sql_connection(dsn)


def run_postgres_query(dsn: str, sql: str, max_rows: Optional[int] = None) -> QueryResult:
    assert_postgres(dsn)
    return run_sql_query(dsn, sql, max_rows)


def test_mysql_connection(dsn: str) -> bool:
    assert_mysql(dsn)
    return test_sql_connection(dsn)


def run_mysql_query(dsn: str, sql: str, max_rows: Optional[int] = None) -> QueryResult:
    assert_mysql(dsn)
    return run_sql_query(dsn, sql, max_rows)
