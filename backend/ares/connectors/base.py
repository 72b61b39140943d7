from __future__ import annotations

import binascii
import datetime
import decimal
from typing import Any


class ConnectorError(RuntimeError):
    """A data source could not be reached or could not run the statement."""


def json_safe_cell(v: Any) -> Any:
    """Coerce driver values to JSON-serializable primitives.
    - bytes/bytearray/memoryview -> utf-8 text, else hex string (0x...)
    - Decimal -> float (str if not representable)
    - date/datetime/time -> ISO string
    - Anything else unknown to JSON (GeoPoint, DocumentReference, ...) -> str
    """
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    if isinstance(v, (bytes, bytearray, memoryview)):
        try:
            return bytes(v).decode("utf-8")
        except UnicodeDecodeError:
            return "0x" + binascii.hexlify(bytes(v)).decode("ascii")
    if isinstance(v, decimal.Decimal):
        try:
            return float(v)
        except (ValueError, OverflowError):
            return str(v)
    if isinstance(v, (datetime.datetime, datetime.date, datetime.time)):
        return v.isoformat()
    if isinstance(v, dict):
        return {str(k): json_safe_cell(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [json_safe_cell(x) for x in v]
    path = getattr(v, "path", None)
    if isinstance(path, str):
        return path
    return str(v)
