"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool
from fastapi.staticfiles import StaticFiles

from .api import router
from .api import routes
from .config import get_settings
from . import __version__

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    logger.info("Starting Item Cropper API...")

    # Warm one recognizer so the first upload does not pay for model load
    if await run_in_threadpool(routes.ocr_service.initialize):
        logger.info("OCR engine initialized and ready")
    else:
        logger.warning("OCR engine failed to initialize - will retry on first request")

    logger.info(f"API ready - Version {__version__}")

    yield

    logger.info("Shutting down Item Cropper API...")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="""
## Item Cropper API

Detects printed item numbers on catalog pages and product screenshots, and
saves operator-drawn (optionally rotated) boxes as individual PNG crops.

### Endpoints
- `/api/detect-item-numbers`: seed candidates for a catalog page
- `/api/detect-item-numbers-screenshot`: one number per screenshot column
- `/api/multiple-crop-mouldings`: extract and persist boxes
- `/crops/<file>`: saved crops
        """,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    crops_dir = Path(settings.crops_dir)
    crops_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.crops_url_prefix, StaticFiles(directory=str(crops_dir)), name="crops")

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "Item Cropper API",
            "version": __version__,
            "docs": "/docs"
        }

    return app


# Create app instance
app = create_app()
