"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from boop.domain.proximity.exceptions import ProximityError
from boop.infra.rate_limit import RateLimitExceeded
from boop.obs.logging import current_request_id


def get_request_id(request: Request, default: str = "unknown") -> str:
    rid = getattr(request.state, "request_id", None) or current_request_id()
    return rid or request.headers.get("X-Request-Id") or default


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {
            "detail": "validation_error",
            "errors": jsonable_encoder(exc.errors()),
            "request_id": get_request_id(request),
        }
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(ProximityError)
    async def proximity_exc_handler(request: Request, exc: ProximityError):  # type: ignore[override]
        payload = {"error": exc.reason, "request_id": get_request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_exc_handler(request: Request, exc: RateLimitExceeded):  # type: ignore[override]
        payload = {"error": "rate_limited", "request_id": get_request_id(request)}
        return JSONResponse(status_code=429, content=payload, headers={"Retry-After": str(exc.retry_after)})
