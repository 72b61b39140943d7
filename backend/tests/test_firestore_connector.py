"""
Firestore SQL-subset translation and query execution against a fake client.
"""
import pytest

from ares.connectors import firestore as firestore_connector
from ares.connectors.base import ConnectorError


class TestParseSql:
    def test_full_statement(self):
        q = firestore_connector.parse_sql(
            "SELECT name, total FROM orders WHERE status = 'paid' AND total >= 10 ORDER BY total DESC LIMIT 5;"
        )
        assert q.collection == "orders"
        assert q.fields == ["name", "total"]
        assert [(f.field, f.op, f.value) for f in q.filters] == [("status", "==", "paid"), ("total", ">=", 10)]
        assert q.order_by == ("total", "desc")
        assert q.limit == 5

    def test_star_without_clauses(self):
        q = firestore_connector.parse_sql("select * from users")
        assert q.collection == "users"
        assert q.fields is None
        assert q.filters == []
        assert q.order_by is None
        assert q.limit is None

    def test_multiline_where(self):
        q = firestore_connector.parse_sql("SELECT *\nFROM users\nWHERE age > 30\nORDER BY age")
        assert [(f.field, f.op, f.value) for f in q.filters] == [("age", ">", 30)]
        assert q.order_by == ("age", "asc")

    def test_not_equal_spellings(self):
        q = firestore_connector.parse_sql("SELECT * FROM t WHERE a <> 1 AND b != 'x'")
        assert [f.op for f in q.filters] == ["!=", "!="]

    def test_quoted_value_with_and(self):
        q = firestore_connector.parse_sql("SELECT * FROM products WHERE category = 'Food and Drink' AND stock > 0")
        assert [(f.field, f.op, f.value) for f in q.filters] == [("category", "==", "Food and Drink"), ("stock", ">", 0)]

    def test_quoted_value_with_keywords(self):
        q = firestore_connector.parse_sql("SELECT * FROM t WHERE status = 'over limit' ORDER BY name LIMIT 5")
        assert [(f.field, f.op, f.value) for f in q.filters] == [("status", "==", "over limit")]
        assert q.order_by == ("name", "asc")
        assert q.limit == 5

    def test_quoted_value_keeps_inner_spacing(self):
        q = firestore_connector.parse_sql("SELECT * FROM t WHERE note = 'order  by\nhand' LIMIT 2")
        assert q.filters[0].value == "order  by\nhand"
        assert q.order_by is None
        assert q.limit == 2

    def test_non_select_rejected(self):
        with pytest.raises(ConnectorError, match="Only basic SELECT"):
            firestore_connector.parse_sql("UPDATE users SET a = 1")

    def test_unsupported_filter_rejected(self):
        with pytest.raises(ConnectorError, match="Unsupported Firebase filter"):
            firestore_connector.parse_sql("SELECT * FROM users WHERE name LIKE 'a%'")

    @pytest.mark.parametrize(
        "raw,expected",
        [("'it''s'", "it's"), ('"x"', "x"), ("true", True), ("FALSE", False), ("null", None), ("42", 42), ("3.5", 3.5), ("abc", "abc")],
    )
    def test_parse_value(self, raw, expected):
        assert firestore_connector.parse_value(raw) == expected


class _Doc:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    def to_dict(self):
        return dict(self._data)


class _Query:
    def __init__(self, docs):
        self.docs = docs
        self.calls = []

    def where(self, filter=None):
        self.calls.append(("where", filter))
        return self

    def order_by(self, field, direction=None):
        self.calls.append(("order_by", field, direction))
        return self

    def limit(self, n):
        self.calls.append(("limit", n))
        return self

    def stream(self):
        return iter(self.docs)


class _Client:
    def __init__(self, docs):
        self.query = _Query(docs)
        self.collection_name = None

    def collection(self, name):
        self.collection_name = name
        return self.query


@pytest.fixture
def fake_client(monkeypatch):
    docs = [_Doc("a1", {"name": "Ann", "total": 12}), _Doc("b2", {"name": "Bob"})]
    client = _Client(docs)
    monkeypatch.setattr(firestore_connector, "get_client", lambda config: client)
    return client


CONFIG = firestore_connector.FirebaseConfig(project_id="demo", service_account_json="{}")


class TestRunFirestoreQuery:
    def test_selected_fields_missing_become_none(self, fake_client):
        res = firestore_connector.run_firestore_query("SELECT name, total FROM orders WHERE total > 1 LIMIT 50", CONFIG)
        assert fake_client.collection_name == "orders"
        assert res.columns == ["name", "total"]
        assert res.rows == [{"name": "Ann", "total": 12}, {"name": "Bob", "total": None}]

    def test_star_includes_document_id(self, fake_client):
        res = firestore_connector.run_firestore_query("SELECT * FROM orders", CONFIG)
        assert res.columns == ["id", "name", "total"]
        assert res.rows[0] == {"id": "a1", "name": "Ann", "total": 12}

    def test_limit_is_capped(self, fake_client):
        firestore_connector.run_firestore_query("SELECT * FROM orders LIMIT 10", CONFIG, max_rows=2)
        assert ("limit", 2) in fake_client.query.calls
