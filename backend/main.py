"""
FastAPI application entry point for the MQTT HomeKit lightbulb bridge

Initializes logging and metrics, starts the bridge on uvicorn's event loop
and exposes health, metrics and status endpoints.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response

from lightbridge import __version__
from lightbridge.api.v1.bridge import router as bridge_router
from lightbridge.config.accessory import AccessoryConfigError
from lightbridge.core.config import settings
from lightbridge.core.logging_config import setup_logging, get_logger
from lightbridge.core.metrics import init_metrics, get_metrics, get_content_type
from lightbridge.services.bridge_service import (
    get_bridge_service,
    initialize_bridge_service,
    shutdown_bridge_service,
)

# Application version
APP_VERSION = __version__

# Initialize structured JSON logging
setup_logging(app_version=APP_VERSION)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup and shutdown events.

    - Startup: Loads the accessory configuration and starts the bridge
    - Shutdown: Disconnects MQTT and stops the HomeKit accessory server
    """
    logger.info(
        "Application starting",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "log_level": settings.LOG_LEVEL,
            "debug_mode": settings.DEBUG,
            "accessory_config": settings.ACCESSORY_CONFIG_FILE,
        }
    )

    try:
        service = await initialize_bridge_service()
    except AccessoryConfigError as e:
        logger.error(
            f"Invalid accessory configuration: {e}",
            extra={"event_type": "bridge_config_error", "error": str(e)}
        )
        raise

    init_metrics(version=APP_VERSION, accessory_name=service.config.name)

    yield

    logger.info("Application shutting down", extra={"event_type": "app_shutdown"})

    try:
        await shutdown_bridge_service()
    except Exception as e:
        logger.error(
            f"Error stopping bridge: {e}",
            exc_info=True,
            extra={"event_type": "bridge_shutdown_error", "error": str(e)}
        )

    logger.info(
        "Application shutdown complete",
        extra={"event_type": "app_shutdown_complete", "version": APP_VERSION}
    )


# Create FastAPI app
app = FastAPI(
    title="Lightbridge API",
    description="Status API for the MQTT to HomeKit lightbulb bridge",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.include_router(bridge_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    """Root endpoint - API status check"""
    return {
        "name": "Lightbridge API",
        "version": APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    service = get_bridge_service()
    if service is None:
        status = "starting"
    elif service.is_running:
        status = "healthy"
    else:
        status = "failed"
    return {
        "status": status,
        "mqtt_connected": bool(service and service.mqtt.is_connected),
        "homekit_running": bool(service and service.homekit.is_running),
    }


@app.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint

    Returns Prometheus-compatible metrics for scraping.
    """
    return Response(
        content=get_metrics(),
        media_type=get_content_type()
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
