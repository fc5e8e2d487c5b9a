from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from starlette.middleware.base import BaseHTTPMiddleware
from dotenv import load_dotenv
import uvicorn
import sys

# Load .env before settings are read
load_dotenv()

from scribe.batch.api.route import batch_router
from scribe.batch.repository.batch_store import InMemoryBatchStore, RedisBatchStore
from scribe.batch.service.reconciler import BatchReconciler
from scribe.batch.service.transport import AnthropicBatchTransport
from scribe.core.config import settings
from scribe.core.errors import (
    BatchNotFoundError,
    ConfigurationError,
    ProvidersExhaustedError,
    QuotaExceededError,
    ScribeError,
    brand_error_message,
)
from scribe.core.logger import get_logger
from scribe.humanizer.api.route import humanizer_router
from scribe.humanizer.service.humanizer_service import HumanizerService
from scribe.llm.api.route import completion_router
from scribe.llm.service.completion_service import CompletionService
from scribe.llm.service.orchestrator import ProviderOrchestrator
from scribe.llm.service.provider.anthropic import AnthropicProvider
from scribe.llm.service.provider.deepseek import DeepSeekProvider
from scribe.llm.service.provider.gemini import GeminiProvider
from scribe.usage.api.route import usage_router
from scribe.usage.repository.usage_store import InMemoryUsageStore, RedisUsageStore
from scribe.usage.service.ledger import UsageLedger
from pkg.redis.client import RedisClient

logger = get_logger("scribe-completion-core")


def wire_services(app: FastAPI, orchestrator: ProviderOrchestrator, usage_store, batch_reconciler) -> None:
    """Expose services on app.state for route dependencies."""
    ledger = UsageLedger(usage_store)
    app.state.logger = logger
    app.state.orchestrator = orchestrator
    app.state.usage_ledger = ledger
    app.state.completion_service = CompletionService(orchestrator, ledger)
    app.state.humanizer_service = HumanizerService(orchestrator, ledger)
    app.state.batch_reconciler = batch_reconciler
    app.state.startup_complete = True
    app.state.startup_error = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager - ensures startup completes before accepting requests"""
    logger.info(f"{settings.APP_NAME} starting up (env={settings.ENV})...")
    logger.info(f"Python: {sys.version}")

    providers = [AnthropicProvider(), GeminiProvider(), DeepSeekProvider()]
    for provider in providers:
        if provider.is_enabled():
            logger.info(f"{provider.name}: configured (default model {provider.default_model})")
        else:
            logger.warning(f"{provider.name}: API key NOT SET, provider disabled")

    redis_client = None
    batch_transport = None
    try:
        orchestrator = ProviderOrchestrator(providers)
        primary = orchestrator.providers.get(orchestrator.primary)
        if primary is None or not primary.is_enabled():
            logger.error(f"Primary provider '{orchestrator.primary}' has no API key; completions will fail fast")

        if settings.REDIS_URL:
            redis_client = RedisClient(logger, url=settings.REDIS_URL)
            await redis_client.ping()
            logger.info("Connected to Redis successfully!")
            usage_store = RedisUsageStore(redis_client, lock_timeout=settings.REDIS_LOCK_TIMEOUT_SECONDS)
            batch_store = RedisBatchStore(redis_client, ttl_seconds=settings.BATCH_STORE_TTL_SECONDS)
        else:
            logger.warning("REDIS_URL not set; usage and batch state are in-process only")
            usage_store = InMemoryUsageStore()
            batch_store = InMemoryBatchStore(ttl_seconds=settings.BATCH_STORE_TTL_SECONDS)

        batch_transport = AnthropicBatchTransport()
        wire_services(app, orchestrator, usage_store, BatchReconciler(batch_transport, batch_store))
        app.state.redis_client = redis_client
        logger.info("✓ Startup complete - application is ready!")

    except Exception as e:
        logger.error(f"✗ Startup failed: {e}", exc_info=True)
        logger.error("Application will start in degraded mode - check logs above")
        app.state.logger = logger
        app.state.redis_client = None
        app.state.startup_complete = False
        app.state.startup_error = str(e)

    yield

    logger.info(f"{settings.APP_NAME} shutting down...")
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.aclose()
    if batch_transport is not None:
        await batch_transport.aclose()
    if redis_client is not None:
        await redis_client.async_close()


app = FastAPI(
    title=settings.APP_NAME,
    description="Streaming completion orchestration, batch sections, humanizer and usage accounting",
    version="1.0.0",
    lifespan=lifespan,
)


# Startup Check Middleware - ensures no requests processed before startup completes
class StartupCheckMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        if not getattr(request.app.state, "startup_complete", False):
            startup_error = getattr(request.app.state, "startup_error", None)
            message = (
                f"Service initialization failed: {startup_error}"
                if startup_error
                else "Service is starting up. Please retry in a few seconds."
            )
            return JSONResponse(status_code=503, content={"status": False, "message": message})

        return await call_next(request)


app.add_middleware(StartupCheckMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # adjust in prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Convert HTTPException to standardized error format"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": False, "message": exc.detail},
        headers=exc.headers,
    )


def error_status(exc: ScribeError) -> int:
    if isinstance(exc, QuotaExceededError):
        return 402
    if isinstance(exc, BatchNotFoundError):
        return 404
    if isinstance(exc, (ConfigurationError, ProvidersExhaustedError)):
        return 503
    return 502


@app.exception_handler(ScribeError)
async def scribe_exception_handler(request: Request, exc: ScribeError):
    """Branded message for the client, full detail in the log"""
    status_code = error_status(exc)
    logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc.to_dict()}")
    return JSONResponse(
        status_code=status_code,
        content={"status": False, "message": brand_error_message(exc), "error_code": exc.error_code},
    )


# Routers
app.include_router(completion_router)
app.include_router(batch_router)
app.include_router(humanizer_router)
app.include_router(usage_router)


@app.get("/health")
async def health():
    """Health check that shows service status"""
    startup_complete = getattr(app.state, "startup_complete", False)
    startup_error = getattr(app.state, "startup_error", None)

    # 200 even while starting so platform probes do not kill the process
    if not startup_complete:
        return JSONResponse(
            status_code=200,
            content={
                "status": "starting" if startup_error is None else "degraded",
                "service": "scribe-completion-core",
                "message": startup_error or "Application is still starting up...",
                "startup_complete": False,
            },
        )

    checks = {}
    orchestrator = getattr(app.state, "orchestrator", None)
    for name, provider in (orchestrator.providers.items() if orchestrator else []):
        checks[name] = "✓ configured" if provider.is_enabled() else "✗ not_configured"
    checks["redis"] = "✓ connected" if getattr(app.state, "redis_client", None) else "- in-memory"
    checks["batch"] = "✓ ready" if getattr(app.state, "batch_reconciler", None) else "✗ not_ready"

    return {
        "status": "ok",
        "service": "scribe-completion-core",
        "checks": checks,
        "startup_complete": True,
    }


@app.get("/")
async def root():
    """Root endpoint - simple check that app is running"""
    return {
        "service": "scribe-completion-core",
        "version": "1.0.0",
        "status": "running",
        "health_check": "/health",
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=settings.ENV == "development")
