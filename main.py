"""
FastAPI Application Entry Point
SwapJoy Recommendation Engine - Python Backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
import os
import asyncio
from dotenv import load_dotenv
import logging
import json
import sys
import time
import uuid as _uuid
from typing import Callable, Optional

from routers import recommendations
from database import init_db, check_db_health
from services.background import BackgroundTaskSupervisor
from services.cache import CacheLayer, InMemoryKeyValueStore, RedisKeyValueStore
from services.ml.similarity_search import StorageSimilaritySearch
from services.obs.metrics import metrics_collector
from services.recommendation_engine import RecommendationEngine
from services.storage import StorageService
from services.weights import WeightsStore
from settings import EngineSettings, load_settings

# Load environment variables
load_dotenv()


# ---- Logging setup (JSON) ----
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Include traceback if present
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(JsonFormatter())

root = logging.getLogger()
root.handlers = [handler]
root.setLevel(LOG_LEVEL)

# Optional: crank down noisy libs
logging.getLogger("uvicorn.access").setLevel(logging.INFO)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # bump to INFO to see SQL

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="SwapJoy Recommendation API",
    description="Personalized item and bundle recommendations for a peer-to-peer swap marketplace",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

cors_origins_raw = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8081")
cors_origins = [origin.strip() for origin in cors_origins_raw.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["http://localhost:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# ---- Request/Response logging middleware ----
class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        start = time.time()

        # Attach request_id so handlers can use it
        request.state.request_id = request_id

        logger.info(
            f"REQ {request.method} {request.url.path} "
            f"qs={request.url.query!s} ip={request.client.host if request.client else '-'} "
            f"rid={request_id}"
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Uncaught exception in request pipeline rid={request_id}")
            raise

        dur_ms = int((time.time() - start) * 1000)
        logger.info(
            f"RES {request.method} {request.url.path} "
            f"status={response.status_code} durMs={dur_ms} rid={request_id}"
        )
        # Make request id visible to clients
        response.headers["X-Request-Id"] = request_id
        return response

app.add_middleware(RequestIDMiddleware)


def build_engine(settings: Optional[EngineSettings] = None) -> RecommendationEngine:
    """Wire the engine with the SQL data source and the configured cache store."""
    settings = settings or load_settings()
    if settings.redis_url:
        store = RedisKeyValueStore(settings.redis_url)
        logger.info("Recommendation cache: redis")
    else:
        store = InMemoryKeyValueStore()
        logger.info("Recommendation cache: in-process (REDIS_URL not set)")

    storage = StorageService()
    return RecommendationEngine(
        storage,
        cache_layer=CacheLayer(
            store,
            namespace=settings.cache_namespace,
            ttl_seconds=settings.cache_ttl_seconds,
            timeout_seconds=settings.cache_timeout_seconds,
            metrics=metrics_collector,
        ),
        weights_store=WeightsStore(),
        similarity_search=StorageSimilaritySearch(storage),
        supervisor=BackgroundTaskSupervisor(metrics=metrics_collector),
        metrics=metrics_collector,
        settings=settings,
    )


@app.get("/")
async def root_index():
    return {"ok": True, "service": "swapjoy-recommendations"}


@app.get("/api/health")
async def api_health():
    """Health check including database status."""
    db_health = await check_db_health()
    overall_status = "healthy" if db_health["status"] == "healthy" else "degraded"
    return {
        "status": overall_status,
        "database": db_health,
        "timestamp": time.time(),
    }


# --- Error handlers ---
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "error": "Validation failed"})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

# --- Routers ---
app.include_router(recommendations.router, prefix="/api", tags=["recommendations"])

# --- Startup/shutdown ---
@app.on_event("startup")
async def startup():
    logger.info("Starting SwapJoy Recommendation API...")
    if os.getenv("INIT_DB_ON_STARTUP", "false").lower() == "true":
        try:
            logger.info("Initializing database tables...")
            await asyncio.wait_for(init_db(), timeout=120)
            logger.info("Database initialized successfully")
        except asyncio.TimeoutError:
            logger.error("DB init timed out after 120s, continuing without init")
        except Exception as e:
            logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)
    else:
        logger.info("Skipping DB init on startup")

    if getattr(app.state, "recommendation_engine", None) is None:
        app.state.recommendation_engine = build_engine()

@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down SwapJoy Recommendation API...")
    engine = getattr(app.state, "recommendation_engine", None)
    if engine is None:
        return
    await engine.supervisor.drain(timeout=5)
    store = engine.cache.store
    if isinstance(store, RedisKeyValueStore):
        await store.close()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production"
    )
