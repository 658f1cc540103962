import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import HTTPException
from fastapi import status
from sqlalchemy import select
import uvicorn

from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_fastapi_instrumentator import Instrumentator

from .api.api_v1.api import api_router
from .core.config import settings
from .core.database import SessionLocal, create_tables
from .core.exceptions import LedgerError
from .core.tracing import setup_tracing, shutdown_tracing

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Lifespan Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("Application startup...")
    setup_tracing()
    if settings.AUTO_CREATE_TABLES:
        await create_tables()

    yield # Application runs here

    # --- Shutdown ---
    logger.info("Application shutdown...")
    await shutdown_tracing()

# --- FastAPI App Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Rigaby wallet ledger and referral bonus API",
    version="1.0.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.CORS_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(api_router, prefix=settings.API_V1_STR)

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )

# Instrument FastAPI for Prometheus and OpenTelemetry
Instrumentator().instrument(app).expose(app) # Prometheus /metrics endpoint
FastAPIInstrumentor.instrument_app(app) # OpenTelemetry tracing

# --- Health Check Endpoints ---
@app.get("/livez", tags=["Health"], status_code=status.HTTP_200_OK)
async def liveness_check():
    """Basic liveness check."""
    return {"status": "ok"}

@app.get("/readyz", tags=["Health"], status_code=status.HTTP_200_OK)
async def readiness_check():
    """Checks if the service and its database are ready."""
    details = {}

    try:
        async with SessionLocal() as db:
            await db.execute(select(1))
        details["database"] = "ready"
    except Exception as e:
        logger.error(f"Readiness check failed: Database connection error: {e}")
        details["database"] = "unhealthy"
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=details)

    return {"status": "ready", "dependencies": details}


# Run the API server
def start_api_server():
    """Start the API server."""
    uvicorn.run(
        "rigaby.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=False
    )


if __name__ == "__main__":
    start_api_server()
