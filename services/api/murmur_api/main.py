from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exception_handlers import (
    http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from murmur_api.core.config import Settings
from murmur_api.errors import GraphError
from murmur_api.metrics import observe_http_request, render_prometheus_metrics
from murmur_api.oplog import log_json
from murmur_api.store import EntityStore, build_store


def _parse_csv(value: str) -> list[str]:
    raw = str(value or "").strip()
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def create_app(
    *, settings: Settings | None = None, store: EntityStore | None = None
) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(
        title="Murmur API",
        version="0.1.0",
        openapi_url="/api/openapi.json",
        docs_url="/docs",
    )
    app.state.store = store if store is not None else build_store(settings)

    allowed_hosts = _parse_csv(settings.allowed_hosts) or ["*"]
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

    cors_origins = _parse_csv(settings.cors_allowed_origins)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def _request_context(request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("x-request-id") or f"req_{uuid4().hex}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:  # noqa: BLE001
            duration_ms = (time.perf_counter() - start) * 1000.0
            _observe_http(request=request, status_code=500, duration_ms=duration_ms)
            if settings.log_json:
                log_json(
                    {
                        "level": "error",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status": 500,
                        "duration_ms": round(duration_ms, 2),
                    }
                )
            raise

        duration_ms = (time.perf_counter() - start) * 1000.0
        _observe_http(
            request=request, status_code=response.status_code, duration_ms=duration_ms
        )
        response.headers["X-Request-Id"] = request_id

        if settings.log_json:
            log_json(
                {
                    "level": "info",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                }
            )
        return response

    @app.exception_handler(GraphError)
    async def _graph_error(request: Request, exc: GraphError):
        headers: dict[str, str] = {}
        if exc.retryable:
            headers["Retry-After"] = "1"
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            headers["X-Request-Id"] = str(request_id)
        return JSONResponse(
            status_code=int(exc.status_code), content=exc.to_payload(), headers=headers
        )

    @app.exception_handler(HTTPException)
    async def _with_request_id_http_exception(request: Request, exc: HTTPException):
        resp = await http_exception_handler(request, exc)
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            resp.headers["X-Request-Id"] = str(request_id)
        return resp

    @app.exception_handler(RequestValidationError)
    async def _with_request_id_validation_error(
        request: Request, exc: RequestValidationError
    ):
        resp = await request_validation_exception_handler(request, exc)
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            resp.headers["X-Request-Id"] = str(request_id)
        return resp

    @app.exception_handler(Exception)
    async def _with_request_id_unhandled(request: Request, exc: Exception):
        _ = exc
        request_id = getattr(request.state, "request_id", None)
        resp = JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
        if request_id:
            resp.headers["X-Request-Id"] = str(request_id)
        return resp

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "store": settings.store_backend}

    @app.get("/api/metrics", response_class=PlainTextResponse)
    def metrics() -> Response:
        return PlainTextResponse(
            content=render_prometheus_metrics(), media_type="text/plain; version=0.0.4"
        )

    from murmur_api.routers import follows, posts, users

    app.include_router(users.router)
    app.include_router(follows.router)
    app.include_router(posts.router)

    return app


def _observe_http(*, request: Request, status_code: int, duration_ms: float) -> None:
    route = request.scope.get("route")
    template = getattr(route, "path", None) if route is not None else None
    observe_http_request(
        path=str(template or request.url.path),
        method=request.method,
        status=str(status_code),
        duration_ms=duration_ms,
    )


def serve() -> None:
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Run the Murmur API server.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    uvicorn.run(create_app(), host=str(args.host), port=int(args.port))


if __name__ == "__main__":
    serve()
