"""
CustodyFolio FastAPI application.
Main entry point for the backend API.

Error mapping (every error body is {"code", "message", "details"?}):
- CoreError subclasses -> their http_status (400 / 404 / 409 / 500)
- Request validation errors -> 400 VALIDATION_ERROR
- Anything else -> 500 with a generic message, details only in the logs
"""
import subprocess
import sys
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from backend.app.api.v1.router import router as api_v1_router
from backend.app.config import get_settings, set_test_mode, is_test_mode
from backend.app.logging_config import configure_logging, get_logger, bind_request_context, clear_request_context
from backend.app.services.errors import CoreError, UnexpectedError, ValidationError

# Check for --test flag in command line arguments
# This must be done before any imports that might use settings
if "--test" in sys.argv:
    set_test_mode(True)
    print("[CustodyFolio] Test mode enabled (--test flag detected)")
    sys.argv.remove("--test")  # Remove flag so uvicorn doesn't complain

# Get settings after test mode is set
settings = get_settings()

# Configure logging with settings
configure_logging(settings.LOG_LEVEL, enable_file_logging=settings.LOG_TO_FILE)
logger = get_logger(__name__)


def ensure_database_exists():
    """
    Ensure database exists and is migrated.
    If database file doesn't exist, is empty or has no tables, run migrations.

    Used by:
    - Backend server on startup (via lifespan)
    - custody_cli.py init-db
    """
    # Get settings at call time to respect test mode
    settings = get_settings()

    db_url = settings.DATABASE_URL
    if not db_url.startswith("sqlite:///"):
        return

    project_root = Path(__file__).parent.parent.parent
    db_path_str = db_url.replace("sqlite:///", "")
    db_path = Path(db_path_str) if db_path_str.startswith("/") else project_root / db_path_str

    needs_migration = False
    if not db_path.exists():
        logger.warning("Database file not found, running migrations", db_path=str(db_path))
        needs_migration = True
    elif db_path.stat().st_size == 0:
        logger.warning("Database file is empty (0 bytes), running migrations", db_path=str(db_path))
        needs_migration = True
    else:
        # Plain sqlite3: faster than building an engine for one query
        import sqlite3
        try:
            conn = sqlite3.connect(str(db_path))
            cursor = conn.cursor()
            cursor.execute("SELECT count(*) FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' AND name != 'alembic_version'")
            table_count = cursor.fetchone()[0]
            conn.close()
            if table_count == 0:
                logger.warning("Database has no tables, running migrations", db_path=str(db_path))
                needs_migration = True
            else:
                logger.info("Database initialized", db_path=str(db_path), table_count=table_count)
        except sqlite3.DatabaseError as e:
            logger.warning("Database appears corrupted, running migrations", db_path=str(db_path), error=str(e))
            needs_migration = True

    if not needs_migration:
        return

    db_path.parent.mkdir(parents=True, exist_ok=True)
    alembic_ini = project_root / "backend" / "alembic.ini"

    logger.info("Running Alembic migrations...")
    result = subprocess.run(
        ["alembic", "-c", str(alembic_ini), "upgrade", "head"],
        cwd=project_root,
        capture_output=True,
        text=True,
        )
    if result.returncode != 0:
        logger.error("Failed to create database", stderr=result.stderr)
        sys.exit(1)
    logger.info("Database created and migrated successfully")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan context manager.
    Handles startup and shutdown events.
    """
    logger.info(
        "Starting CustodyFolio",
        version=settings.VERSION,
        database_url=settings.DATABASE_URL.split("///")[-1],
        test_mode=is_test_mode(),
        )

    ensure_database_exists()

    yield
    logger.info("Shutting down CustodyFolio")


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url=f"{settings.API_V1_PREFIX}/docs",
    redoc_url=f"{settings.API_V1_PREFIX}/redoc",
    lifespan=lifespan,
    )

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Tag every log event of a request with its id, method and path."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    bind_request_context(request_id=request_id, method=request.method, path=request.url.path)
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        clear_request_context()


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

def _error_list(errors) -> list:
    """Keep the serializable part of pydantic errors (ctx may hold exception objects)."""
    return [{"type": e.get("type"), "loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]


@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    if isinstance(exc, UnexpectedError):
        logger.error("Request failed", error_code=exc.code, cause=repr(exc.__cause__))
    else:
        logger.info("Request rejected", error_code=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError("Invalid request", {"errors": _error_list(exc.errors())})
    return JSONResponse(status_code=error.http_status, content=jsonable_encoder(error.to_dict()))


@app.exception_handler(PydanticValidationError)
async def pydantic_validation_error_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    error = ValidationError("Invalid request", {"errors": _error_list(exc.errors())})
    return JSONResponse(status_code=error.http_status, content=jsonable_encoder(error.to_dict()))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content=UnexpectedError().to_dict())


# Mount API v1 router
app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    """
    Root endpoint.
    Provides basic API information.
    """
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
        }
