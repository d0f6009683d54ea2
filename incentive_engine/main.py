"""
FastAPI application main module.
Wires the incentive engine API with request context, logging and error handling.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import os
from contextlib import asynccontextmanager
from incentive_engine.api.v1 import api_router
from incentive_engine.config import STORAGE_SETTINGS
from incentive_engine.database import engine, Base, SessionLocal
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import OperatorRole
from incentive_engine.models.schemas.base import ErrorResponse
from incentive_engine.utils import setup_logging, get_logger, StorageConflictError
from incentive_engine.utils.observability import (
    REQUEST_ID_HEADER,
    bind_request_id,
    reset_request_id,
    ensure_request_id,
    elapsed_ms,
)

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "incentive-engine"
SERVICE_VERSION = "1.0.0"


def bootstrap_admin() -> None:
    """Seed the first ADMIN operator from BOOTSTRAP_ADMIN_API_KEY on an empty operator table."""
    api_key = os.getenv("BOOTSTRAP_ADMIN_API_KEY")
    if not api_key:
        return
    db = SessionLocal()
    try:
        if db.query(Operator).first() is not None:
            return
        admin = Operator(
            name=os.getenv("BOOTSTRAP_ADMIN_NAME", "Bootstrap Admin"),
            email=os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@localhost.localdomain"),
            api_key=api_key,
            role=OperatorRole.ADMIN,
        )
        db.add(admin)
        db.commit()
        logger.info("Bootstrap admin operator created", operator_id=admin.id)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Application startup initiated")
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        bootstrap_admin()

        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Partner Incentive Engine",
    description="""
    Milestone-based incentive engine for mortgage case partners.

    ## Features
    * **Campaigns and rules** - Developer-funded budgets with per-case and per-recipient caps
    * **Milestone evaluation** - Awards issued on proof-backed workflow milestones only
    * **Approval firewall** - Approval-class events can never trigger a reward
    * **Award ledger** - PENDING -> VERIFIED -> APPROVED -> PAID with clawback
    * **Payout workflow** - Four-eyes approval, bounded retries
    * **Referral fraud screen** - Self-referral, duplicate and velocity checks

    ## Authentication
    Use Bearer token authentication with your operator API key:
    ```
    Authorization: Bearer <api_key>
    ```

    ## Conflicts
    Concurrent writes that lose a race come back as `409` with
    `error_code: STORAGE_CONFLICT` and a `Retry-After` header; the request may be retried.
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    The request ID is also bound to the logging context for audit events.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()
    token = bind_request_id(request_id)

    try:
        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            user_agent=request.headers.get("User-Agent"),
            remote_addr=request.client.host if request.client else "unknown",
            request_id=request_id
        )

        response = await call_next(request)

        process_time_ms = elapsed_ms(request.state.start_time)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(process_time_ms)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"

        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            process_time_ms=process_time_ms,
            request_id=request_id
        )

        return response
    finally:
        reset_request_id(token)

def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry the raw ValueError raised by a model validator
    return [
        {k: (str(v) if k == "ctx" else v) for k, v in error.items()}
        for error in exc.errors()
    ]

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "error_code": "VALIDATION_ERROR",
            "details": jsonable_errors(exc),
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions; dict details carry a message and an error_code."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    content = {"success": False, "request_id": request_id}
    if isinstance(exc.detail, dict):
        content.update(exc.detail)
    else:
        content["message"] = exc.detail

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(StorageConflictError)
async def storage_conflict_handler(request: Request, exc: StorageConflictError):
    """A lost write race: nothing was persisted and the caller may retry."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Storage conflict",
        operation=exc.operation,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=409,
        content={
            "success": False,
            "message": str(exc),
            "error_code": "STORAGE_CONFLICT",
            "retry": True,
            "request_id": request_id
        },
        headers={"Retry-After": str(STORAGE_SETTINGS["conflict_retry_after_seconds"])}
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with database status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    return health_status

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Partner Incentive Engine API",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(
    api_router,
    prefix="/api/v1",
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "incentive_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["incentive_engine"],
        log_level="info",
        access_log=True
    )
