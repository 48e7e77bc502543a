import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from chatstore.api import conversations
from chatstore.core.config import settings
from chatstore.core.database import init_db
from chatstore.core.errors import ConfigurationError, StoreError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    db = init_db()
    app.state.db = db
    db.start()

    # Warm the connection up front; a missing URL only becomes fatal on first use.
    if settings.redis_url:
        try:
            await db.pool.get_connection()
        except StoreError as e:
            logger.warning(f"Redis warm-up failed, will retry on first request: {e}")

    yield

    await db.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])


@app.exception_handler(StoreError)
@app.exception_handler(RedisError)
async def storage_unavailable(request: Request, exc: Exception):
    if isinstance(exc, ConfigurationError):
        logger.error(f"Storage is not configured: {exc}")
    else:
        logger.error(f"Storage failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


@app.get("/api/health")
async def health(request: Request):
    pool = request.app.state.db.pool
    redis_ok = await pool.health_check()
    return {
        "status": "ok" if redis_ok else "degraded",
        "app": settings.app_name,
        "redis": {"healthy": redis_ok, **pool.stats()},
    }
