"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from gatekeepr.core.config import settings
from gatekeepr.core.middleware import setup_middleware
from gatekeepr.core.rate_limiter import limiter
from gatekeepr.core.exceptions import GatekeeprError

from gatekeepr.api.auth import router as auth_router
from gatekeepr.api.access import router as access_router
from gatekeepr.api.roles import router as roles_router
from gatekeepr.api.permissions import router as permissions_router
from gatekeepr.api.groups import router as groups_router
from gatekeepr.api.tools import router as tools_router
from gatekeepr.api.bulk import router as bulk_router
from gatekeepr.api.audit import router as audit_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("gatekeepr")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("🚀 Starting %s", settings.APP_NAME)
    if settings.STRICT_TRANSITIONS:
        logger.info("Strict access transitions enabled")
    yield
    logger.info("🔻 Shutting down %s", settings.APP_NAME)


app = FastAPI(
    title="Gatekeepr API",
    description="Role-based access control, access requests and audit trail",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(GatekeeprError)
async def gatekeepr_exception_handler(request: Request, exc: GatekeeprError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


# Register routers
app.include_router(auth_router)
app.include_router(access_router, prefix="/api")
app.include_router(roles_router, prefix="/api")
app.include_router(permissions_router, prefix="/api")
app.include_router(groups_router, prefix="/api")
app.include_router(tools_router, prefix="/api")
app.include_router(bulk_router, prefix="/api")
app.include_router(audit_router, prefix="/api")


@app.get("/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
