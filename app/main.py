"""FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import attempts, exams, generation_jobs
from app.config import settings
from app.exceptions import ExamGeneratorException
from app.middleware import RequestIDMiddleware
from app.rate_limit import limiter
from app.utils.error_utils import GENERIC_ERROR_MESSAGE, error_body, status_code_for

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    # Startup
    logger.info("Starting Exam Generator API...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Content store: {settings.vector_db_path} ({settings.content_collection})")

    # Validate required environment variables
    if not settings.openai_api_key:
        logger.error("Environment variable validation failed: OPENAI_API_KEY is not set")
        raise ValueError("OPENAI_API_KEY is required but not set")
    if not settings.auth_jwt_secret:
        logger.warning("AUTH_JWT_SECRET is not set; all authenticated requests will be rejected")

    # Initialize database
    try:
        from app.db.database import init_db

        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise

    from app.dependencies import get_orchestrator

    orchestrator = get_orchestrator()
    orchestrator.reconcile_stale_jobs()

    yield
    # Shutdown
    logger.info("Shutting down Exam Generator API...")
    orchestrator.shutdown(wait=False)


# Create FastAPI application
app = FastAPI(
    title="Exam Generator",
    description="Generates exams from curated content and scores submitted attempts",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS
cors_origins = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if cors_origins else ["*"],
    allow_credentials=bool(cors_origins),
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Add request ID middleware
app.add_middleware(RequestIDMiddleware)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Exception handlers
@app.exception_handler(ExamGeneratorException)
async def custom_exception_handler(request: Request, exc: ExamGeneratorException):
    """Handle custom application exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = status_code_for(exc)

    if status_code >= 500:
        logger.error(
            f"Application error [{request_id}]: {exc.message}",
            exc_info=True,
            extra={"request_id": request_id, "details": exc.details},
        )
    else:
        logger.warning(f"Request failed [{request_id}]: {exc.__class__.__name__}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=error_body(
            exc.__class__.__name__,
            exc.message,
            request_id,
            details=exc.details,
            is_production=settings.is_production,
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(
        f"Validation error [{request_id}]: {exc.errors()}",
        extra={"request_id": request_id},
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=error_body(
            "ValidationError",
            "Request validation failed",
            request_id,
            details={"errors": jsonable_encoder(exc.errors())},
        ),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception(
        f"Unexpected error [{request_id}]: {str(exc)}",
        extra={"request_id": request_id},
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("InternalServerError", GENERIC_ERROR_MESSAGE, request_id),
    )


# Include routers
app.include_router(generation_jobs.router)
app.include_router(exams.router)
app.include_router(attempts.router)


@app.get("/health")
async def health_check():
    """
    Health check with database and configuration status.

    Returns:
        Overall status plus per-dependency checks
    """
    from sqlalchemy import text

    from app.db.database import engine

    checks = {}
    overall_status = "healthy"

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:50]}"
        overall_status = "degraded"
        logger.warning(f"Database health check failed: {e}")

    checks["openai_api"] = "ok" if settings.openai_api_key else "error: key not set"
    checks["auth"] = "ok" if settings.auth_jwt_secret else "error: secret not set"
    checks["vector_db"] = "ok" if settings.vector_db_path.exists() else "missing"
    if any(value != "ok" for value in checks.values()):
        overall_status = "degraded"

    return {
        "status": overall_status,
        "version": VERSION,
        "service": "exam-generator",
        "checks": checks,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Exam Generator API",
        "version": VERSION,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
