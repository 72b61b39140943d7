import datetime
import decimal

import pytest

from ares import query_service
from ares import schemas
from ares.connectors import firestore as firestore_connector
from ares.connectors import sql as sql_connector
from ares.connectors.base import ConnectorError, json_safe_cell
from ares.query_service import QueryContext, run_query
from ares.schemas import DataSources, FirebaseSource, QueryResult, SqlSource


def _ctx(source, **kw):
    return QueryContext(data_source=source, data_sources=DataSources(**kw))


class TestDispatch:
    """Routing SQL to the configured data source"""

    @pytest.mark.parametrize(
        "source,message",
        [
            ("localSql", "Local SQL connection string not configured."),
            ("postgres", "PostgreSQL connection string not configured."),
            ("mysql", "MySQL connection string not configured."),
            ("firebase", "Firebase credentials not configured."),
            ("oracle", "Unsupported data source."),
        ],
    )
    def test_missing_configuration(self, source, message):
        with pytest.raises(ConnectorError) as ei:
            run_query("SELECT 1", _ctx(source))
        assert str(ei.value) == message

    def test_local_sql_goes_to_sql_connector(self, monkeypatch):
        seen = {}

        def fake_run(dsn, sql, max_rows=None):
            seen.update(dsn=dsn, sql=sql)
            return QueryResult(columns=["x"], rows=[{"x": 1}])

        monkeypatch.setattr(sql_connector, "run_sql_query", fake_run)
        res = run_query("SELECT 1 AS x", _ctx("localSql", localSql=SqlSource(connectionString="mysql://u:p@h/db")))
        assert res.rows == [{"x": 1}]
        assert seen == {"dsn": "mysql://u:p@h/db", "sql": "SELECT 1 AS x"}

    def test_postgres_source_checks_scheme(self):
        ctx = _ctx("postgres", postgres=SqlSource(connectionString="mysql://u:p@h/db"))
        with pytest.raises(ConnectorError, match="must start with postgres://"):
            run_query("SELECT 1", ctx)

    def test_mysql_source_checks_scheme(self):
        ctx = _ctx("mysql", mysql=SqlSource(connectionString="postgres://u:p@h/db"))
        with pytest.raises(ConnectorError, match="must start with mysql://"):
            run_query("SELECT 1", ctx)

    def test_firebase_goes_to_firestore_connector(self, monkeypatch):
        seen = {}

        def fake_run(sql, config, max_rows=None):
            seen["project"] = config.project_id
            return QueryResult(columns=["id"], rows=[{"id": "a"}])

        monkeypatch.setattr(firestore_connector, "run_firestore_query", fake_run)
        ctx = _ctx("firebase", firebase=FirebaseSource(projectId="demo", serviceAccountJson="{}"))
        assert run_query("SELECT * FROM users", ctx).columns == ["id"]
        assert seen == {"project": "demo"}


class TestConnectionChecks:
    def test_requires_connection_string(self):
        with pytest.raises(ConnectorError, match="connectionString is required"):
            query_service.test_connection("postgres", schemas.TestConnectionRequest(connectionString="  "))

    def test_firebase_requires_both_fields(self):
        with pytest.raises(ConnectorError, match="projectId and serviceAccountJson"):
            query_service.test_connection("firebase", schemas.TestConnectionRequest(projectId="demo"))

    def test_local_sql_rejects_unknown_protocol(self):
        with pytest.raises(ConnectorError, match="Unsupported SQL protocol"):
            query_service.test_connection("local-sql", schemas.TestConnectionRequest(connectionString="sqlite:///x.db"))


class TestSqlConnector:
    def test_protocol_and_kind(self):
        assert sql_connector.get_protocol("PostgreSQL://u@h/db") == "postgresql"
        assert sql_connector.get_protocol("not a url") == ""
        assert sql_connector.engine_kind("mysql2://u@h/db") == "mysql"
        with pytest.raises(ConnectorError):
            sql_connector.engine_kind("mssql://u@h/db")

    def test_engines_cached_per_dsn(self):
        dsn = "postgres://user:pw@localhost:5432/analytics"
        try:
            e1 = sql_connector.get_engine_from_dsn(dsn)
            e2 = sql_connector.get_engine_from_dsn(dsn)
            assert e1 is e2
            assert e1.url.drivername == "postgresql+psycopg2"
        finally:
            assert sql_connector.dispose_all_engines() >= 1


class TestJsonSafeCell:
    def test_conversions(self):
        assert json_safe_cell(decimal.Decimal("1.50")) == 1.5
        assert json_safe_cell(b"abc") == "abc"
        assert json_safe_cell(b"\xff") == "0xff"
        assert json_safe_cell(datetime.date(2024, 5, 1)) == "2024-05-01"
        assert json_safe_cell({"n": [decimal.Decimal("2")]}) == {"n": [2.0]}
        assert json_safe_cell(None) is None
