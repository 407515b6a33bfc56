from __future__ import annotations

import orjson
import pytest


def test_operations_are_counted_by_outcome(memory_store, make_user) -> None:
    from murmur_api.edges import set_follow
    from murmur_api.errors import SelfReferenceError
    from murmur_api.metrics import op_count, render_prometheus_metrics

    a = make_user(memory_store, "ada")
    b = make_user(memory_store, "bea")
    set_follow(memory_store, follower_id=a.id, target_id=b.id, desired=True)
    with pytest.raises(SelfReferenceError):
        set_follow(memory_store, follower_id=a.id, target_id=a.id, desired=True)

    assert op_count(op="set_follow", outcome="ok") == 1
    assert op_count(op="set_follow", outcome="self_reference") == 1
    assert op_count(op="register_user", outcome="ok") == 2

    text = render_prometheus_metrics()
    assert "# TYPE murmur_graph_ops_total counter" in text
    assert 'murmur_graph_ops_total{op="set_follow",outcome="ok"} 1' in text
    assert 'murmur_transactions_total{outcome="commit"}' in text


def test_http_histogram_rendering() -> None:
    from murmur_api.metrics import observe_http_request, render_prometheus_metrics

    observe_http_request(path="/api/posts", method="GET", status="200", duration_ms=7.0)
    observe_http_request(path="/api/posts", method="GET", status="200", duration_ms=3000.0)

    text = render_prometheus_metrics()
    assert 'murmur_http_requests_total{path="/api/posts",method="GET",status="200"} 2' in text
    assert 'murmur_http_request_duration_seconds_bucket{path="/api/posts",method="GET",le="0.01"} 1' in text
    assert 'murmur_http_request_duration_seconds_bucket{path="/api/posts",method="GET",le="+Inf"} 2' in text
    assert 'murmur_http_request_duration_seconds_count{path="/api/posts",method="GET"} 2' in text


def test_operation_log_lines_are_json(monkeypatch, capsys, memory_store, make_user) -> None:
    monkeypatch.setenv("MURMUR_LOG_JSON", "1")
    from murmur_api.edges import toggle_follow

    a = make_user(memory_store, "ada")
    b = make_user(memory_store, "bea")
    capsys.readouterr()

    toggle_follow(memory_store, follower_id=a.id, target_id=b.id)
    lines = [orjson.loads(line) for line in capsys.readouterr().out.splitlines() if line]
    ops = [line for line in lines if line.get("op") == "toggle_follow"]
    assert len(ops) == 1
    assert ops[0]["outcome"] == "ok"
    assert ops[0]["following"] is True
    assert ops[0]["follower_id"] == a.id
    assert "ts" in ops[0] and "duration_ms" in ops[0]


def test_settings_validation(monkeypatch) -> None:
    from pydantic import ValidationError

    from murmur_api.core.config import Settings

    monkeypatch.setenv("MURMUR_STORE_BACKEND", " Memory ")
    assert Settings().store_backend == "memory"

    with pytest.raises(ValidationError):
        Settings(store_backend="redis")
    with pytest.raises(ValidationError):
        Settings(txn_timeout_sec=0)
    with pytest.raises(ValidationError):
        Settings(feed_max_limit=0)
    with pytest.raises(ValidationError):
        Settings(conflict_retry_max_delay_ms=0)


def test_build_store_follows_backend(monkeypatch, tmp_path) -> None:
    from murmur_api.core.config import Settings
    from murmur_api.memory_store import InMemoryEntityStore
    from murmur_api.sql_store import SqlEntityStore
    from murmur_api.store import build_store

    assert isinstance(build_store(Settings(store_backend="memory")), InMemoryEntityStore)
    sql = build_store(Settings(store_backend="sql", db_url=f"sqlite:///{tmp_path / 'b.db'}"))
    assert isinstance(sql, SqlEntityStore)


def test_access_token_round_trip() -> None:
    import jwt

    from murmur_api.core.config import Settings
    from murmur_api.core.security import create_access_token, decode_token

    token = create_access_token(subject="u_1")
    assert decode_token(token)["sub"] == "u_1"

    other = Settings(auth_jwt_issuer="someone-else")
    with pytest.raises(jwt.InvalidIssuerError):
        decode_token(token, settings=other)
