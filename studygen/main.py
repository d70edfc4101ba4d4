from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from studygen.config import get_settings
from studygen.database import init_db
from studygen.middleware.correlation import CorrelationMiddleware
from studygen.middleware.rate_limit import RedisRateLimitMiddleware
from studygen.routes import study
from studygen.services.gateway import get_gateway
from studygen.services.redis_client import close_redis, init_redis, is_redis_healthy
from studygen.utils.logger import logger
from studygen.utils.metrics import get_snapshot

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Dental Study Engine...")
    await init_db()
    await init_redis()
    if settings.test_mode:
        logger.info("[TEST MODE] Study materials come from the canned generator")
    logger.info(f"Backend ready at http://{settings.backend_host}:{settings.backend_port}")
    yield
    await close_redis()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.state.limiter = study.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS - Explicit origins for security
allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",")]
app.add_middleware(RedisRateLimitMiddleware)
app.add_middleware(CorrelationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "X-User-ID", "X-Job-ID", "X-File-Name", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "redis": await is_redis_healthy(),
        "circuits": get_gateway().get_circuit_states(),
    }


@app.get("/metrics")
async def metrics():
    return get_snapshot()


app.include_router(study.router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "studygen.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.debug
    )
