from __future__ import annotations

import contextlib
import time
from datetime import UTC, datetime
from typing import Any, Iterator

import orjson

from murmur_api.core.config import Settings
from murmur_api.errors import GraphError
from murmur_api.metrics import inc_op


def log_json(payload: dict[str, Any]) -> None:
    try:
        line = orjson.dumps(
            {"ts": datetime.now(UTC).isoformat(), **payload}, default=str
        ).decode("utf-8")
    except Exception:  # noqa: BLE001
        return
    print(line, flush=True)


@contextlib.contextmanager
def op_scope(op: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """Time one engine operation and record its outcome kind.

    The yielded dict can be extended by the operation (e.g. ``changed``) and
    is included in the log line.
    """
    start = time.perf_counter()
    extra: dict[str, Any] = {}
    try:
        yield extra
    except GraphError as exc:
        _finish(op, outcome=exc.kind, start=start, fields={**fields, **extra})
        raise
    except Exception:
        _finish(op, outcome="error", start=start, fields={**fields, **extra})
        raise
    _finish(op, outcome="ok", start=start, fields={**fields, **extra})


def _finish(op: str, *, outcome: str, start: float, fields: dict[str, Any]) -> None:
    inc_op(op=op, outcome=outcome)
    if not Settings().log_json:
        return
    duration_ms = (time.perf_counter() - start) * 1000.0
    log_json(
        {
            "level": "info" if outcome == "ok" else "warn",
            "op": op,
            "outcome": outcome,
            "duration_ms": round(duration_ms, 2),
            **fields,
        }
    )
