import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from formrelayapi.cache import MemoryListingCache, RedisListingCache
from formrelayapi.config import config
from formrelayapi.database import database
from formrelayapi.logging_conf import configure_logging
from formrelayapi.middleware import edge_filter, log_requests
from formrelayapi.routers.auth import confirm_router
from formrelayapi.routers.auth import router as auth_router
from formrelayapi.routers.comment import router as comment_router
from formrelayapi.routers.form import router as form_router
from formrelayapi.routers.submit import router as submit_router
from formrelayapi.routers.uploads import router as uploads_router
from formrelayapi.storage import ensure_bucket

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await database.connect()

    redis = None
    if config.REDIS_URL:
        redis = Redis.from_url(config.REDIS_URL, decode_responses=True)
        app.state.listing_cache = RedisListingCache(redis, ttl=config.CACHE_TTL)
        logger.info("Listing cache backed by Redis")
    else:
        app.state.listing_cache = MemoryListingCache(ttl=config.CACHE_TTL)

    try:
        await run_in_threadpool(ensure_bucket)
    except Exception as e:
        logger.error(f"Could not verify storage bucket: {e}")

    yield

    if redis is not None:
        await redis.aclose()
    await database.disconnect()


app = FastAPI(
    title="Form Relay API",
    description="Form builder with email relay of submissions, and a comment board",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(edge_filter)
app.middleware("http")(log_requests)

app.include_router(form_router, prefix="/api/forms", tags=["Forms"])
app.include_router(submit_router, prefix="/api/submit", tags=["Submit"])
app.include_router(uploads_router, prefix="/api/storage", tags=["Uploads"])
app.include_router(comment_router, prefix="/api/comments", tags=["Comments"])
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(confirm_router, prefix="/auth", tags=["Auth"])


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"HTTP Exception: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled Exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "cache": type(app.state.listing_cache).__name__,
    }
