"""
FastAPI Middleware

Provides request/response middleware for:
- Correlation ID injection
- Request logging (with token masking)
- Global error handling
- Security headers (HSTS, CSP upgrade-insecure-requests)
- Rate limiting for webhook endpoints
"""
import time
from collections import defaultdict
from typing import Callable
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import (
    get_logger,
    set_correlation_id,
    get_correlation_id
)
from app.core.exceptions import AppException

logger = get_logger(__name__)

# query params שמכילים טוקנים של הפלטפורמות: לא נכתבים ללוג
_SENSITIVE_QUERY_PARAMS = frozenset({"validationToken", "challenge", "token"})

WEBHOOK_PATH_PREFIX = "/api/webhooks/"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        # Get correlation ID from header or generate new one
        correlation_id = request.headers.get("X-Correlation-ID")
        correlation_id = set_correlation_id(correlation_id)

        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id

        return response


def _mask_query_params(params: dict[str, str]) -> dict[str, str]:
    """מיסוך טוקני אימות של הפלטפורמות ב-query string"""
    return {
        key: ("***" if key in _SENSITIVE_QUERY_PARAMS else value)
        for key, value in params.items()
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and responses (with token masking)"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        start_time = time.time()
        path = request.url.path

        logger.info(
            f"Request started: {request.method} {path}",
            extra_data={
                "method": request.method,
                "path": path,
                "query_params": _mask_query_params(dict(request.query_params)),
                "client_host": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            log_level = "info" if response.status_code < 400 else "warning"
            getattr(logger, log_level)(
                f"Request completed: {request.method} {path}",
                extra_data={
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_seconds": round(duration, 4),
                }
            )

            return response
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {path}",
                extra_data={
                    "method": request.method,
                    "path": path,
                    "duration_seconds": round(duration, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise


async def app_exception_handler(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Handle application exceptions"""
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path,
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": request.url.path,
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "ERR_1000",
                "message": "An unexpected error occurred",
                "details": {}
            }
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    כותרות אבטחה לכל תשובה.

    X-Content-Type-Options תמיד; HSTS ו-CSP רק כשלא במצב DEBUG,
    כדי לא לחסום פיתוח מקומי ב-HTTP.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"

        if not self._debug:
            response.headers["Content-Security-Policy"] = "upgrade-insecure-requests"
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


class WebhookRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting לנקודות webhook — sliding window לפי IP.

    מגביל מספר בקשות לחלון זמן נתון (ברירת מחדל: 100 בקשות / 60 שניות)
    על paths תחת /api/webhooks/. מחזיר 429 Too Many Requests אם חורג.

    הערה: ממוקם בתוך CorrelationIdMiddleware ב-stack, כך שלכל בקשה
    (כולל 429) יש correlation ID תקין בלוגים וב-response.
    """

    def __init__(
        self,
        app: FastAPI,
        *,
        max_requests: int = 100,
        window_seconds: int = 60,
    ) -> None:
        super().__init__(app)
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        # מיפוי IP → רשימת timestamps
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _cleanup_window(self, ip: str, now: float) -> None:
        """ניקוי בקשות ישנות מחוץ לחלון הזמן + מחיקת IP ריקים"""
        cutoff = now - self._window_seconds
        timestamps = self._requests[ip]
        idx = 0
        for idx, ts in enumerate(timestamps):
            if ts >= cutoff:
                break
        else:
            idx = len(timestamps)
        if idx > 0:
            self._requests[ip] = timestamps[idx:]
        # מחיקת מפתח ריק: מונע דליפת זיכרון מ-IP חד-פעמיים
        if not self._requests[ip]:
            del self._requests[ip]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        path = request.url.path
        if not path.startswith(WEBHOOK_PATH_PREFIX):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        self._cleanup_window(client_ip, now)

        if len(self._requests.get(client_ip, [])) >= self._max_requests:
            logger.warning(
                "Rate limit exceeded for webhook",
                extra_data={
                    "client_ip": client_ip,
                    "path": path,
                    "limit": self._max_requests,
                    "window_seconds": self._window_seconds,
                },
            )
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests. Please try again later."},
                headers={
                    "Retry-After": str(self._window_seconds),
                    "X-Correlation-ID": get_correlation_id(),
                },
            )

        self._requests[client_ip].append(now)
        return await call_next(request)


def setup_middleware(app: FastAPI) -> None:
    """Setup all middleware for the application"""
    from app.core.config import settings

    # ב-Starlette, ה-middleware האחרון שנוסף הוא ה-outermost.
    # סדר עיבוד בקשה: SecurityHeaders → CorrelationId → RequestLogging → RateLimit → app
    app.add_middleware(
        WebhookRateLimitMiddleware,
        max_requests=settings.WEBHOOK_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.WEBHOOK_RATE_LIMIT_WINDOW_SECONDS,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
