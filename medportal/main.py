import logging

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from medportal.config import get_settings
from medportal.db.postgres import engine, Base, get_db
from medportal.db.types import utcnow
import medportal.models  # noqa: F401  (registers ORM tables on Base.metadata)
from medportal.api.responses import register_exception_handlers
from medportal.api.middleware.rate_limit import RateLimitMiddleware, close_redis
from medportal.api.middleware.security_headers import SecurityHeadersMiddleware
from medportal.api.routes import (
    admin,
    appointments,
    auth,
    blogs,
    doctor,
    laboratory,
    notifications,
    patient,
    pharmacy,
)

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

# Rate limiting (must be added before CORS so it runs after CORS in the middleware stack)
app.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.RATE_LIMIT_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)
app.add_middleware(SecurityHeadersMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(auth.router, prefix=settings.API_PREFIX, tags=["Auth"])
app.include_router(appointments.router, prefix=settings.API_PREFIX, tags=["Appointments"])
app.include_router(doctor.router, prefix=settings.API_PREFIX, tags=["Doctor"])
app.include_router(patient.router, prefix=settings.API_PREFIX, tags=["Patient"])
app.include_router(pharmacy.router, prefix=settings.API_PREFIX, tags=["Pharmacy"])
app.include_router(laboratory.router, prefix=settings.API_PREFIX, tags=["Laboratory"])
app.include_router(notifications.router, prefix=settings.API_PREFIX, tags=["Notifications"])
app.include_router(admin.router, prefix=settings.API_PREFIX, tags=["Admin"])
app.include_router(blogs.router, prefix=settings.API_PREFIX, tags=["Blogs"])


@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started (clinic timezone %s)", settings.APP_NAME, settings.APP_VERSION, settings.CLINIC_TIMEZONE)


@app.on_event("shutdown")
async def shutdown():
    await engine.dispose()
    await close_redis()


@app.get(f"{settings.API_PREFIX}/health", tags=["Health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    body = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "services": {"database": "connected", "api": "running"},
    }
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        body["status"] = "unhealthy"
        body["services"]["database"] = "disconnected"
        return JSONResponse(status_code=503, content=body)
    return body
