"""FastAPI main application for the voting backend."""

import time
from contextlib import asynccontextmanager

import asyncpg
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes import auth, users, votes, voting_sessions
from app.core.config import settings
from app.core.database import close_db_pool, get_db_connection, get_pool, init_db_pool
from app.core.exceptions import VotingAppError
from app.core.logging_config import get_logger, setup_logging
from app.core.responses import error_response_dict
from app.services.users import ensure_default_admin
from app.services.voting_sessions import ensure_global_session

# Setup logging
setup_logging()
logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Strict Transport Security (HSTS) - only in production with HTTPS
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting voting backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # Initialize async database pool (skip in test environment)
    if settings.ENVIRONMENT != "test":
        await init_db_pool(settings)
        async with get_db_connection() as conn:
            await ensure_global_session(conn)
            if await ensure_default_admin(conn, settings):
                logger.warning(
                    "Default admin account created; change its password before going live"
                )

    yield

    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down voting backend...")


app = FastAPI(
    title="Voting App Backend",
    description="""
    **Voting App Backend** - assigned-voter polls with one ballot per voter

    Features:
    - Voting sessions with draft / active / ended / cancelled lifecycle
    - Per-session assigned voters, optional time window and custom candidates
    - Exactly one ballot per user per session, enforced by the database
    - Aggregated results per session and for the legacy global poll
    - JWT authentication with user and admin roles

    ## Authentication

    Include the JWT token in the Authorization header:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    Every route is served both at the root and under `/api`.
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add security headers middleware FIRST (before CORS)
app.add_middleware(SecurityHeadersMiddleware)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    )


# Exception handlers
@app.exception_handler(VotingAppError)
async def voting_app_exception_handler(request: Request, exc: VotingAppError):
    """Map domain errors to their status with a {"message"} body."""
    return error_response_dict(exc.message, exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle framework HTTP errors (unknown route, wrong method) in the same envelope."""
    return error_response_dict(str(exc.detail), exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors as 400 with a per-field map."""
    errors = {}
    for error in exc.errors():
        loc = [str(part) for part in error["loc"] if part != "body"]
        field = ".".join(loc) or "body"
        errors[field] = error["msg"].removeprefix("Value error, ")

    message = next(iter(errors.values()), "Validation failed")
    return error_response_dict(message, status.HTTP_400_BAD_REQUEST, errors=errors)


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(
    request: Request, exc: asyncpg.exceptions.PostgresError
):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(
        "Database error occurred",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=str(exc) if settings.is_development else None,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=str(exc) if settings.is_development else None,
    )


# Same routes under /api for clients built against the prefixed paths
api_router = APIRouter(prefix="/api")

for module in (auth, users, voting_sessions, votes):
    api_router.include_router(module.router)
    app.include_router(module.router)

app.include_router(api_router)


@app.get("/health")
@app.get("/api/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns 200 if the database answers, 503 otherwise.
    """
    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}

    pool = get_pool()
    if pool is None:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": "Database pool not initialized",
        }
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=health_status
        )

    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except (OSError, asyncpg.exceptions.PostgresError) as e:
        logger.error(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": "Database is not accessible",
        }
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=health_status
        )

    pool_size = pool.get_size()
    pool_idle = pool.get_idle_size()
    health_status["checks"]["database"] = {
        "status": "healthy",
        "message": "Database is accessible",
        "pool": {
            "size": pool_size,
            "max": pool.get_max_size(),
            "idle": pool_idle,
            "active": pool_size - pool_idle,
        },
    }
    return health_status
