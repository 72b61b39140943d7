"""
Firestore connector.

Translates a small SQL subset into a Firestore query:

    SELECT <fields|*> FROM <collection>
    [WHERE <field> <op> <value> [AND ...]]
    [ORDER BY <field> [ASC|DESC]]
    [LIMIT <n>]

Only comparison operators Firestore supports natively are accepted; anything
else is rejected instead of being silently dropped.
"""
from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account

from ..config import settings
from ..metrics import counter_inc, timed
from ..schemas import QueryResult
from ..security import fingerprint
from .base import ConnectorError, json_safe_cell

logger = logging.getLogger(__name__)

_SELECT_RE = re.compile(r"select\s+(.+?)\s+from\s+([a-zA-Z0-9_\-]+)", re.IGNORECASE)
_WHERE_RE = re.compile(r"\bwhere\s+(.+?)\s*(?:\border\s+by\b|\blimit\b|$)", re.IGNORECASE)
_AND_RE = re.compile(r"\s+and\s+", re.IGNORECASE)
_COND_RE = re.compile(r"^([a-zA-Z0-9_.\-]+)\s*(==|!=|<>|<=|>=|=|<|>)\s*(.+)$", re.DOTALL)
_ORDER_RE = re.compile(r"\border\s+by\s+([a-zA-Z0-9_.\-]+)(\s+desc|\s+asc)?", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\blimit\s+(\d+)", re.IGNORECASE)
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

_OPS = {"=": "==", "==": "==", "!=": "!=", "<>": "!=", "<": "<", "<=": "<=", ">": ">", ">=": ">="}


@dataclass
class FirebaseConfig:
    project_id: str
    service_account_json: str


@dataclass
class FirestoreFilter:
    field: str
    op: str
    value: Any


@dataclass
class FirestoreQuery:
    collection: str
    fields: Optional[list[str]]
    filters: list[FirestoreFilter] = field(default_factory=list)
    order_by: Optional[tuple[str, str]] = None
    limit: Optional[int] = None


def parse_value(raw: str) -> Any:
    s = raw.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        return s[1:-1].replace("''", "'")
    low = s.lower()
    if low == "true":
        return True
    if low == "false":
        return False
    if low == "null":
        return None
    if _INT_RE.match(s):
        return int(s)
    if _FLOAT_RE.match(s):
        return float(s)
    return s


def _mask_literals(text: str) -> str:
    """Blank out quoted literals (same length) so keyword regexes only see SQL structure."""
    out = list(text)
    quote = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == quote:
                if i + 1 < len(text) and text[i + 1] == quote:
                    out[i] = out[i + 1] = "x"
                    i += 2
                    continue
                quote = None
            else:
                out[i] = "x"
        elif ch in ("'", '"'):
            quote = ch
        elif ch.isspace():
            out[i] = " "
        i += 1
    return "".join(out)


def _split_conditions(text: str, masked: str, start: int, end: int) -> list[str]:
    conds: list[str] = []
    pos = start
    for am in _AND_RE.finditer(masked, start, end):
        conds.append(text[pos : am.start()].strip())
        pos = am.end()
    conds.append(text[pos:end].strip())
    return conds


def parse_sql(sql: str) -> FirestoreQuery:
    text = (sql or "").strip().rstrip(";").strip()
    masked = _mask_literals(text)
    m = _SELECT_RE.search(masked)
    if not m:
        raise ConnectorError("Only basic SELECT queries are supported for Firebase.")
    fields_raw = text[m.start(1) : m.end(1)].strip()
    collection = m.group(2).strip()
    fields = None if fields_raw == "*" else [f.strip() for f in fields_raw.split(",") if f.strip()]

    filters: list[FirestoreFilter] = []
    wm = _WHERE_RE.search(masked)
    if wm:
        for cond in _split_conditions(text, masked, wm.start(1), wm.end(1)):
            cm = _COND_RE.match(cond)
            if not cm:
                raise ConnectorError(f"Unsupported Firebase filter: {cond}")
            filters.append(FirestoreFilter(cm.group(1), _OPS[cm.group(2)], parse_value(cm.group(3))))

    order_by = None
    om = _ORDER_RE.search(masked)
    if om:
        direction = "desc" if (om.group(2) or "").strip().lower() == "desc" else "asc"
        order_by = (om.group(1).strip(), direction)

    lm = _LIMIT_RE.search(masked)
    limit = int(lm.group(1)) if lm else None
    return FirestoreQuery(collection=collection, fields=fields, filters=filters, order_by=order_by, limit=limit)


# --- Client cache ---
_CLIENTS: dict[str, firestore.Client] = {}
_CLIENT_LOCK = threading.Lock()


def _client_key(config: FirebaseConfig) -> str:
    return f"{config.project_id}-{fingerprint(config.service_account_json)}"


def get_client(config: FirebaseConfig) -> firestore.Client:
    key = _client_key(config)
    client = _CLIENTS.get(key)
    if client is not None:
        return client
    try:
        info = json.loads(config.service_account_json)
        creds = service_account.Credentials.from_service_account_info(info)
    except (ValueError, KeyError) as e:
        raise ConnectorError(f"Invalid Firebase service account JSON: {e}") from e
    with _CLIENT_LOCK:
        client = _CLIENTS.get(key)
        if client is None:
            client = firestore.Client(project=config.project_id, credentials=creds)
            _CLIENTS[key] = client
            logger.info(f"[Firestore] Created client for project {config.project_id}")
    return client


def test_firestore_connection(config: FirebaseConfig) -> bool:
    client = get_client(config)
    try:
        next(iter(client.collections()), None)
    except Exception as e:
        raise ConnectorError(f"Firebase connection failed: {e}") from e
    return True


def run_firestore_query(sql: str, config: FirebaseConfig, max_rows: Optional[int] = None) -> QueryResult:
    parsed = parse_sql(sql)
    client = get_client(config)
    query = client.collection(parsed.collection)
    for f in parsed.filters:
        query = query.where(filter=FieldFilter(f.field, f.op, f.value))
    if parsed.order_by:
        fld, direction = parsed.order_by
        query = query.order_by(
            fld, direction=firestore.Query.DESCENDING if direction == "desc" else firestore.Query.ASCENDING
        )
    cap = int(max_rows or settings.query_max_rows)
    query = query.limit(min(parsed.limit, cap) if parsed.limit else cap)

    counter_inc("connector_queries_total", {"engine": "firestore"})
    try:
        with timed("connector_query_ms", {"engine": "firestore"}):
            docs = list(query.stream())
    except Exception as e:
        counter_inc("connector_errors_total", {"engine": "firestore"})
        logger.warning(f"[Firestore] Query on '{parsed.collection}' failed: {e}")
        raise ConnectorError(str(e)) from e

    rows: list[dict[str, Any]] = []
    for doc in docs:
        data = doc.to_dict() or {}
        if parsed.fields is None:
            row = {"id": doc.id, **data}
        else:
            row = {f: data.get(f) for f in parsed.fields}
        rows.append({k: json_safe_cell(v) for k, v in row.items()})
    columns = parsed.fields if parsed.fields is not None else (list(rows[0].keys()) if rows else [])
    return QueryResult(columns=columns, rows=rows)
