import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.clients import client_manager
from app.core.config import get_settings
from app.ingestion.pipeline import build_all_chain_cards, build_all_protocol_cards
from app.schemas.data import ErrorResponse

from prometheus_fastapi_instrumentator import Instrumentator
from app.core.logging_config import setup_logging, get_logger

# Setup Structured Logging
setup_logging()
logger = get_logger("main")
settings = get_settings()
STARTED_AT = time.monotonic()

app = FastAPI(title=settings.PROJECT_NAME)

# Instrument Prometheus
Instrumentator().instrument(app).expose(app)


async def warm_cache():
    sources = client_manager.sources
    await build_all_protocol_cards(sources, settings.MIN_PROTOCOL_TVL)
    await build_all_chain_cards(sources, settings.MIN_CHAIN_STABLECOIN_MCAP)


@app.on_event("startup")
async def startup_event():
    logger.info("startup_event", warm_cache=settings.WARM_CACHE_ON_STARTUP)
    if not settings.WARM_CACHE_ON_STARTUP:
        return
    try:
        await warm_cache()
    except Exception as e:
        logger.error("cache_warm_failed", error=str(e))


@app.on_event("shutdown")
async def shutdown_event():
    await client_manager.aclose()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="Internal server error", message=str(exc)).model_dump(),
    )


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": settings.PROJECT_NAME,
        "cache_entries": len(client_manager.cache),
        "uptime_s": round(time.monotonic() - STARTED_AT, 2),
    }


app.include_router(api_router)
