import logging
import time
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# Registers every table on Base.metadata
from . import models  # noqa: F401
from .config import ALLOWED_ORIGINS
from .database import Base, engine
from .domain.applications.router import router as applications_router
from .domain.availability.router import router as availability_router
from .domain.bookings.router import router as bookings_router
from .domain.ledger.router import router as ledger_router
from .domain.providers.router import router as providers_router
from .errors import CoreError
from .rate_limiter import get_redis_client

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Token verification fetches Google certificates through httpx
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_tables() -> None:
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Schema ready")
    except SQLAlchemyError as e:
        # Several workers can race on the first start
        if "already exists" in str(e) or "duplicate key" in str(e):
            logger.info("Schema was created by another worker")
        else:
            logger.error(f"❌ Schema creation failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 MindCare Core starting")
    create_tables()

    try:
        shared = get_redis_client() is not None
    except redis.RedisError as e:
        logger.warning(f"⚠️ Redis unreachable, rate limits are per process and caching is off: {e}")
    else:
        if not shared:
            logger.info("REDIS_URL not set, rate limits are per process and caching is off")

    yield
    logger.info("MindCare Core stopped")


app = FastAPI(title="MindCare Core API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError):
    """Domain failures carry their own status and a stable machine-readable code"""
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.url.path} -> {exc.code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may hold the ValueError raised by a field validator
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """A missing Authorization header is an authentication failure, not a bad body"""
    missing_auth = any("authorization" in str(error.get("loc", "")).lower() for error in exc.errors())
    if missing_auth:
        logger.warning(f"🔒 {request.url.path}: no bearer token")
        return JSONResponse(status_code=401, content={"detail": "Not authenticated", "code": "unauthenticated"})

    logger.warning(f"{request.method} {request.url.path} -> 422: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} failed: {e}")
        raise
    logger.info(
        f"{request.method} {request.url.path} {response.status_code} "
        f"{(time.perf_counter() - started) * 1000:.0f}ms"
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(applications_router)
app.include_router(providers_router)
app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(ledger_router)


@app.get("/")
def root():
    return {"service": "mindcare-core", "status": "running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/redis")
def redis_health():
    try:
        client = get_redis_client()
        if client is None:
            return {"status": "disabled"}
        started = time.perf_counter()
        client.ping()
        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        info = client.info()
    except redis.RedisError as e:
        return {"status": "unhealthy", "error": str(e)}
    return {
        "status": "healthy",
        "latency_ms": latency_ms,
        "version": info.get("redis_version", "unknown"),
        "connected_clients": info.get("connected_clients", 0),
    }
