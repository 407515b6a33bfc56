from __future__ import annotations

from collections import deque
from datetime import UTC, datetime
from threading import Lock
from typing import Any, Literal

import httpx

from murmur_api.core.config import Settings
from murmur_api.oplog import log_json


AlertSeverity = Literal["INFO", "WARN", "CRIT"]

_RECENT_MAX = 200
_LOCK = Lock()
_RECENT: deque[dict[str, Any]] = deque(maxlen=_RECENT_MAX)


def _clamp_content(text_in: str) -> str:
    s = str(text_in or "")
    if len(s) <= 1900:
        return s
    return s[:1890].rstrip() + "\n..."


def _alert_prefix(severity: AlertSeverity) -> str:
    return f"[Murmur ALERT][SEV:{severity}]"


def _deliver(url: str, *, content: str, timeout: float) -> str | None:
    try:
        resp = httpx.post(url, json={"content": content}, timeout=timeout)
    except Exception as exc:  # noqa: BLE001
        return str(exc)[:300]
    if resp.status_code >= 400:
        return f"http_{resp.status_code}"
    return None


def send_alert(
    *,
    severity: AlertSeverity,
    summary: str,
    extra: dict[str, Any] | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Record an alert and, when configured, push it to the ops webhook.

    Delivery problems are recorded on the returned dict and never raised:
    alerts ride along with an error that is already propagating.
    """
    settings = settings or Settings()
    now_dt = now or datetime.now(UTC)
    record: dict[str, Any] = {
        "severity": severity,
        "summary": str(summary)[:240],
        "extra": dict(extra or {}),
        "created_at": now_dt.isoformat(),
        "delivered": False,
        "delivery_error": None,
    }

    if settings.log_json:
        log_json({"level": "critical", "alert": record["summary"], **record["extra"]})

    url = str(settings.alerts_webhook_url or "").strip()
    if settings.alerts_enabled and url:
        lines = [f"{_alert_prefix(severity)} {record['summary']}"]
        for key in sorted(record["extra"]):
            lines.append(f"- {key}: {record['extra'][key]}")
        err = _deliver(
            url,
            content=_clamp_content("\n".join(lines)),
            timeout=float(settings.alerts_timeout_sec),
        )
        record["delivered"] = err is None
        record["delivery_error"] = err

    with _LOCK:
        _RECENT.append(record)
    return record


def recent_alerts(*, limit: int = 50) -> list[dict[str, Any]]:
    limit = max(1, min(_RECENT_MAX, int(limit)))
    with _LOCK:
        rows = list(_RECENT)
    return rows[-limit:][::-1]


def clear_alerts() -> None:
    with _LOCK:
        _RECENT.clear()
