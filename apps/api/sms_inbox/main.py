from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sms_inbox.core.config import get_settings
from sms_inbox.core.logging_config import configure_logging, request_id_ctx
from sms_inbox.core.metrics import metrics_endpoint, observe_http_request
from sms_inbox.core.middleware import (
    RateLimiter,
    apply_security_headers,
    build_request_id,
    is_rate_limit_exempt,
    log_request_completion,
    now_ts,
    rate_limit_key,
    rate_limit_response,
)
from sms_inbox.routers.campaigns import router as campaigns_router
from sms_inbox.routers.escalations import router as escalations_router
from sms_inbox.routers.health import router as health_router
from sms_inbox.routers.inbound import router as inbound_router
from sms_inbox.routers.messages import router as messages_router
from sms_inbox.routers.routing import router as routing_router
from sms_inbox.routers.threads import router as threads_router
from sms_inbox.routers.webhooks import router as webhooks_router

logger = logging.getLogger("sms_inbox.api")


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = first.get("msg") or "Invalid value"
    return f"{loc}: {msg}" if loc else msg


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="SMS Inbox API", version=settings.VERSION)

    rate_limiter = (
        RateLimiter(max_requests=settings.RATE_LIMIT_REQUESTS_PER_MINUTE)
        if settings.RATE_LIMIT_REQUESTS_PER_MINUTE > 0
        else None
    )
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.middleware("http")
    async def add_security_headers_and_request_context(request, call_next):  # type: ignore[no-untyped-def]
        request_id = build_request_id(request, header_name=settings.REQUEST_ID_HEADER)
        token = request_id_ctx.set(request_id)
        start_ts = now_ts()
        method = request.method
        path = request.url.path
        response = None
        blocked = False
        status_code = 500

        try:
            if rate_limiter is not None and not is_rate_limit_exempt(path, settings=settings):
                key = rate_limit_key(request)
                checked_at = now_ts()
                if not rate_limiter.allow(key, now_ts=checked_at):
                    blocked = True
                    response = rate_limit_response(
                        retry_after=rate_limiter.retry_after_seconds(key, now_ts=checked_at)
                    )

            if response is None:
                response = await call_next(request)

            status_code = response.status_code
            response.headers[settings.REQUEST_ID_HEADER] = request_id
            apply_security_headers(response, settings=settings)
            return response
        finally:
            duration_ms = int((now_ts() - start_ts) * 1000)
            route = request.scope.get("route")
            # Label by route template so ids in paths do not explode metric cardinality.
            metric_path = getattr(route, "path", None) or path
            if settings.ENABLE_PROMETHEUS_METRICS:
                observe_http_request(
                    method=method,
                    path=metric_path,
                    status_code=status_code,
                    duration_ms=duration_ms,
                    rate_limited=blocked,
                )
            log_request_completion(
                request_id=request_id,
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=duration_ms,
                rate_limited=blocked,
            )
            request_id_ctx.reset(token)

    if settings.ENABLE_PROMETHEUS_METRICS:
        app.add_route(settings.PROMETHEUS_METRICS_PATH, metrics_endpoint, methods=["GET"])

    app.include_router(health_router)
    app.include_router(inbound_router)
    app.include_router(messages_router)
    app.include_router(threads_router)
    app.include_router(escalations_router)
    app.include_router(campaigns_router)
    app.include_router(webhooks_router)
    app.include_router(routing_router)
    return app


app = create_app()
