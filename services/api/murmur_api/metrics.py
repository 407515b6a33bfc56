from __future__ import annotations

from collections import Counter
from threading import Lock
from typing import Iterable


_LOCK = Lock()
_OPS: Counter[tuple[str, str]] = Counter()
_TXNS: Counter[str] = Counter()
_HTTP_REQUESTS: Counter[tuple[str, str, str]] = Counter()
_HTTP_LATENCY_BUCKETS_S: tuple[float, ...] = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
)
_HTTP_LATENCY_BINS: dict[tuple[str, str], list[int]] = {}
_HTTP_LATENCY_SUM_S: dict[tuple[str, str], float] = {}
_HTTP_LATENCY_COUNT: dict[tuple[str, str], int] = {}


def inc_op(*, op: str, outcome: str) -> None:
    with _LOCK:
        _OPS[(str(op), str(outcome))] += 1


def inc_txn(*, outcome: str) -> None:
    with _LOCK:
        _TXNS[str(outcome)] += 1


def observe_http_request(
    *,
    path: str,
    method: str,
    status: str,
    duration_ms: float | None = None,
) -> None:
    key = (str(path), str(method), str(status))
    latency_key = (str(path), str(method))

    dur_s: float | None = None
    if duration_ms is not None:
        dur_s = max(0.0, float(duration_ms) / 1000.0)

    with _LOCK:
        _HTTP_REQUESTS[key] += 1
        if dur_s is None:
            return
        bins = _HTTP_LATENCY_BINS.get(latency_key)
        if bins is None:
            bins = [0 for _ in range(len(_HTTP_LATENCY_BUCKETS_S) + 1)]
            _HTTP_LATENCY_BINS[latency_key] = bins

        idx = len(_HTTP_LATENCY_BUCKETS_S)
        for i, edge in enumerate(_HTTP_LATENCY_BUCKETS_S):
            if dur_s <= float(edge):
                idx = i
                break
        bins[idx] += 1
        _HTTP_LATENCY_SUM_S[latency_key] = (
            float(_HTTP_LATENCY_SUM_S.get(latency_key, 0.0)) + dur_s
        )
        _HTTP_LATENCY_COUNT[latency_key] = int(_HTTP_LATENCY_COUNT.get(latency_key, 0)) + 1


def op_count(*, op: str, outcome: str) -> int:
    with _LOCK:
        return int(_OPS.get((str(op), str(outcome)), 0))


def txn_count(*, outcome: str) -> int:
    with _LOCK:
        return int(_TXNS.get(str(outcome), 0))


def reset_metrics() -> None:
    with _LOCK:
        _OPS.clear()
        _TXNS.clear()
        _HTTP_REQUESTS.clear()
        _HTTP_LATENCY_BINS.clear()
        _HTTP_LATENCY_SUM_S.clear()
        _HTTP_LATENCY_COUNT.clear()


def _fmt_labels(**labels: str) -> str:
    def esc(value: str) -> str:
        return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')

    parts = [f'{k}="{esc(v)}"' for k, v in labels.items()]
    return "{" + ",".join(parts) + "}" if parts else ""


def _render_counter(
    *,
    name: str,
    help_text: str,
    rows: Iterable[tuple[dict[str, str], int]],
) -> str:
    lines: list[str] = [
        f"# HELP {name} {help_text}",
        f"# TYPE {name} counter",
    ]
    for labels, value in rows:
        lines.append(f"{name}{_fmt_labels(**labels)} {int(value)}")
    return "\n".join(lines) + "\n"


def _render_histogram(
    *,
    name: str,
    help_text: str,
    rows: Iterable[tuple[dict[str, str], list[int], float, int]],
) -> str:
    lines: list[str] = [
        f"# HELP {name} {help_text}",
        f"# TYPE {name} histogram",
    ]
    for labels, bin_counts, sum_s, count in rows:
        cumulative = 0
        for i, edge in enumerate(_HTTP_LATENCY_BUCKETS_S):
            cumulative += int(bin_counts[i])
            lines.append(f"{name}_bucket{_fmt_labels(**labels, le=str(edge))} {cumulative}")
        cumulative += int(bin_counts[-1])
        lines.append(f"{name}_bucket{_fmt_labels(**labels, le='+Inf')} {cumulative}")
        lines.append(f"{name}_sum{_fmt_labels(**labels)} {float(sum_s):.6f}")
        lines.append(f"{name}_count{_fmt_labels(**labels)} {int(count)}")
    return "\n".join(lines) + "\n"


def render_prometheus_metrics() -> str:
    with _LOCK:
        ops = sorted(_OPS.items())
        txns = sorted(_TXNS.items())
        http = sorted(_HTTP_REQUESTS.items())
        latency = sorted(
            (
                key,
                list(bins),
                float(_HTTP_LATENCY_SUM_S.get(key, 0.0)),
                int(_HTTP_LATENCY_COUNT.get(key, 0)),
            )
            for key, bins in _HTTP_LATENCY_BINS.items()
        )

    out = [
        _render_counter(
            name="murmur_graph_ops_total",
            help_text="Engine operations by name and outcome kind.",
            rows=[({"op": op, "outcome": outcome}, n) for (op, outcome), n in ops],
        ),
        _render_counter(
            name="murmur_transactions_total",
            help_text="Store transactions by outcome (commit, abort, read, conflict, transaction_timeout).",
            rows=[({"outcome": outcome}, n) for outcome, n in txns],
        ),
        _render_counter(
            name="murmur_http_requests_total",
            help_text="Total HTTP requests processed by this API process.",
            rows=[
                ({"path": path, "method": method, "status": status}, n)
                for (path, method, status), n in http
            ],
        ),
        _render_histogram(
            name="murmur_http_request_duration_seconds",
            help_text="HTTP request duration (seconds) by route template and method (in-process).",
            rows=[
                ({"path": path, "method": method}, bins, sum_s, count)
                for ((path, method), bins, sum_s, count) in latency
            ],
        ),
    ]
    return "\n".join(out)
