from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple

# In-memory metrics registry (single process): counters, gauges, summaries (sum, count)

_Key = Tuple[str, Tuple[Tuple[str, str], ...]]

_lock = threading.Lock()
_counters: Dict[_Key, float] = {}
_gauges: Dict[_Key, float] = {}
_summaries: Dict[_Key, Tuple[float, int]] = {}


def _key(name: str, labels: Dict[str, str] | None) -> _Key:
    return name, tuple(sorted((labels or {}).items()))


def counter_inc(name: str, labels: Dict[str, str] | None = None, amount: float = 1.0) -> None:
    with _lock:
        k = _key(name, labels)
        _counters[k] = _counters.get(k, 0.0) + float(amount)


def gauge_inc(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    with _lock:
        k = _key(name, labels)
        _gauges[k] = _gauges.get(k, 0.0) + float(amount)


def gauge_dec(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    gauge_inc(name, -float(amount), labels)


def summary_observe(name: str, value: float, labels: Dict[str, str] | None = None) -> None:
    with _lock:
        k = _key(name, labels)
        s, c = _summaries.get(k, (0.0, 0))
        _summaries[k] = (s + float(value), c + 1)


@contextmanager
def timed(name: str, labels: Dict[str, str] | None = None) -> Iterator[None]:
    """Observe the wrapped block's duration in milliseconds, even when it raises."""
    start = time.perf_counter()
    try:
        yield
    finally:
        summary_observe(name, int((time.perf_counter() - start) * 1000), labels)


def counter_value(name: str, labels: Dict[str, str] | None = None) -> float:
    with _lock:
        return _counters.get(_key(name, labels), 0.0)


def _fmt_labels(items: Tuple[Tuple[str, str], ...]) -> str:
    if not items:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in items) + "}"


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for (name, items), val in _counters.items():
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name}{_fmt_labels(items)} {val}")
        for (name, items), val in _gauges.items():
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name}{_fmt_labels(items)} {val}")
        for (name, items), (s, c) in _summaries.items():
            lines.append(f"# TYPE {name} summary")
            lines.append(f"{name}_sum{_fmt_labels(items)} {s}")
            lines.append(f"{name}_count{_fmt_labels(items)} {c}")
    lines.append(f"# EOF {int(time.time())}")
    return "\n".join(lines) + "\n"
