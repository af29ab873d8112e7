"""
ReplySequence - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import engine, Base
from app.domain.processors.dependencies import build_processor_dependencies
from app.domain.services.platforms.pubsub_auth import PubSubTokenVerifier

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "Webhooks", "description": "קליטת אירועים מ-Zoom, Microsoft Teams ו-Google Meet."},
    {"name": "Cron", "description": "ריצות מתוזמנות על ה-retry ledger."},
    {
        "name": "Admin",
        "description": "ניהול ה-ledger: circuit breakers, רשומות כושלות, dead letters ומטריקות.",
    },
    {"name": "Health", "description": "liveness ו-readiness."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "קליטת webhooks של פלטפורמות שיחות וידאו, עיבוד אידמפוטנטי של אירועים, "
        "ו-retry ledger עם backoff ו-dead letter."
    ),
    openapi_tags=_OPENAPI_TAGS,
    openapi_url="/openapi.json",
)

# Setup middleware (correlation ID, request logging, rate limiting)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local frontend development without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables and shared clients on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    # לקוחות משותפים (OAuth token cache, JWKS cache): פעם אחת לכל תהליך
    app.state.processor_deps = build_processor_dependencies()
    app.state.pubsub_verifier = PubSubTokenVerifier()


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    # סגירת חיבורי מסד הנתונים למניעת connection pool exhaustion
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="בדיקת חיוּת (Liveness Probe)",
    description=(
        "בדיקה קלה שהתהליך חי ומגיב. "
        "לא בודק תלויות חיצוניות — כדי למנוע restart מיותר בגלל כשלון DB/Redis."
    ),
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    """Liveness probe — התהליך חי ומגיב."""
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="בדיקת מוכנות (Readiness Probe)",
    description=(
        "בדיקת התלויות: DB ו-Celery broker. "
        "מחזיר status=healthy אם הכל תקין, או status=degraded עם פירוט השגיאה."
    ),
    responses={
        200: {
            "description": "כל התלויות תקינות",
            "content": {"application/json": {"example": {"status": "healthy", "db": "ok", "celery": "ok"}}},
        },
        503: {
            "description": "לפחות תלות אחת לא זמינה",
            "content": {
                "application/json": {
                    "example": {"status": "degraded", "db": "ok", "celery": "error: celery_unavailable"}
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check():
    """Readiness probe — בדיקת התלויות החיצוניות."""
    from app.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
