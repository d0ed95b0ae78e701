"""Main FastAPI application for the OpenSens OSINT service."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from opensens import Aggregator, OsintState, default_registry
from opensens.core.config import get_config
from opensens.core.logger import setup_logging, get_logger

from .api.routes import router as api_router
from .config import settings

logger = get_logger("app.main")


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Startup / shutdown lifecycle: owns the shared OsintState and Aggregator."""
    config = get_config()
    setup_logging(settings.LOG_LEVEL, config.log_format)
    state = OsintState.from_config(config)
    aggregator = Aggregator(registry=default_registry(), state=state, config=config)
    app_instance.state.config = config
    app_instance.state.aggregator = aggregator
    logger.info(
        "opensens_service_started",
        connectors=aggregator.registry.ids(),
        rate_limit_mode=config.rate_limit_mode,
        max_concurrency=config.max_concurrency,
    )

    yield  # FastAPI serves requests here

    await aggregator.aclose()
    logger.info("opensens_service_stopped")


# Create FastAPI app
app = FastAPI(
    title="OpenSens OSINT",
    description="Aggregate-only OSINT signals fused per bounding box and time range",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
