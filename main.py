"""
Shopify Inventory Sync - Main Application

FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog
from datetime import datetime

from config import settings, check_connection, configure_logging
from integrations.shopify import close_shopify_api

configure_logging()

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: Check database connection
    Shutdown: Close the shared Shopify connection pool
    """
    # Startup
    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug,
        shopify_configured=settings.shopify_configured
    )

    db_status = check_connection()
    if db_status["status"] == "healthy":
        logger.info("database_connected", mappings=db_status["mappings_count"])
    else:
        logger.error("database_connection_failed", error=db_status.get("error"))

    yield

    # Shutdown
    await close_shopify_api()
    logger.info("application_shutting_down")


# Create FastAPI app
app = FastAPI(
    title="Shopify Inventory Sync",
    description="Barcode to Shopify product resolution and store inventory sync",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===================
# ROUTES
# ===================

@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Basic health status, database state and whether Shopify is configured
    """
    db_status = check_connection()

    return {
        "status": "healthy" if db_status["status"] == "healthy" else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
        "database": db_status,
        "shopify_configured": settings.shopify_configured,
    }


@app.get("/")
async def root():
    """API information and available endpoints."""
    return {
        "name": "Shopify Inventory Sync API",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "health": "/health",
        "endpoints": {
            "sync": "/api/sync",
            "mappings": "/api/mappings",
        }
    }


# ===================
# ERROR HANDLERS
# ===================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catches unhandled exceptions and returns the standard error format."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": str(exc) if settings.debug else None,
                "timestamp": datetime.utcnow().isoformat()
            }
        }
    )


# ===================
# INCLUDE ROUTERS
# ===================
from routes.sync import router as sync_router
from routes.mappings import router as mappings_router

app.include_router(sync_router, prefix="/api/sync", tags=["Sync"])
app.include_router(mappings_router, prefix="/api/mappings", tags=["Mappings"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
