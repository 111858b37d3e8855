"""FastAPI admin surface for the product extraction pipeline."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import get_settings
from .routes import health, products, sources
from core.di.container import build_container, shutdown_container
from utils.logger import get_logger


# Get settings
settings = get_settings()
logger = get_logger(__name__)

SOURCE_KEYS = ("ai_extractor", "crawl_service", "browser", "catalog", "page_fetcher")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Build the container and start the rate limiter maintenance loop
    - Shutdown: Stop the loop, close HTTP clients and the headless browser

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info("Starting up %s", settings.app_name)
    logger.info("CORS Origins: %s", settings.cors_origins)
    if not settings.admin_token:
        logger.warning("ADMIN_TOKEN is not set, admin routes will answer 503")

    container = build_container()
    app.state.container = container
    app.state.rate_limiter = container.resolve("rate_limiter")
    app.state.resolver = container.resolve("product_resolver")
    app.state.crawl_client = container.resolve("crawl_service")
    app.state.sources = {
        wrapper.source_name: wrapper
        for wrapper in (container.resolve(key) for key in SOURCE_KEYS)
    }
    await app.state.rate_limiter.start()

    yield

    # Shutdown
    logger.info("Shutting down")
    await shutdown_container(container)


# Create FastAPI application
app = FastAPI(
    title="Product Extraction Pipeline API",
    version="1.0.0",
    description="""
    Admin and observability API for the rate-limited product extraction pipeline.

    Features:
    - Per-source statistics, queue and cost monitoring
    - Emergency stop and runtime limit changes
    - Product URL resolution preview
    - Health monitoring with circuit states
    """,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(
    health.router,
    prefix="/api",
    tags=["health"]
)
app.include_router(
    sources.router,
    prefix="/api",
    tags=["sources"]
)
app.include_router(
    products.router,
    prefix="/api",
    tags=["products"]
)


@app.get("/")
def root():
    """
    Root endpoint.

    Returns basic service information.

    Example response:
        ```json
        {
            "status": "ok",
            "service": "product-pipeline-api",
            "version": "1.0.0",
            "docs": "/api/docs"
        }
        ```
    """
    return {
        "status": "ok",
        "service": "product-pipeline-api",
        "version": "1.0.0",
        "docs": "/api/docs"
    }


@app.get("/api")
def api_root():
    """API root endpoint listing the available endpoints."""
    return {
        "message": "Product Extraction Pipeline API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/api/health",
            "stats": "/api/sources/stats",
            "queue": "/api/sources/queue",
            "cost": "/api/sources/cost",
            "availability": "/api/sources/availability",
            "emergency_stop": "/api/sources/emergency-stop",
            "credits": "/api/anycrawl/credits",
            "resolve": "/api/products/resolve",
            "docs": "/api/docs"
        }
    }


if __name__ == "__main__":
    import uvicorn

    # Run development server
    uvicorn.run(
        "services.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level="info"
    )
