"""
Shop Natural shipping API

Venipak shipment creation, labels, tracking and checkout shipping quotes.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import settings
from app.api.routes import shipping
from app.services.shipping_jobs import start_shipping_jobs, stop_shipping_jobs
from app.services.shipping_service import shutdown_shipping

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    if settings.SHIPPING_TRACKING_SYNC_ENABLED:
        await start_shipping_jobs()
    logger.info(f"{settings.APP_NAME} shipping API started ({settings.ENVIRONMENT})")
    yield
    await stop_shipping_jobs()
    await shutdown_shipping()
    logger.info(f"{settings.APP_NAME} shipping API shutting down")


app = FastAPI(
    title=f"{settings.APP_NAME} Shipping",
    description="Venipak carrier integration",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(shipping.router, prefix="/api")
app.include_router(shipping.admin_router, prefix="/api")


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
