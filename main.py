import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import FastAPI
from app.api.routers import chunked_upload, upload
from app.api import auth
from app.core.config import settings
from app.services.cleanup_service import sweep_orphans_periodically

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Background orphan sweep
    sweep_task = None
    if settings.ORPHAN_SWEEP_ENABLED:
        sweep_task = asyncio.create_task(sweep_orphans_periodically())
        logger.info(f"Orphan sweep scheduled every {settings.CLEANUP_INTERVAL_SECONDS}s")

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task


# Create FastAPI application
app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Include routers
app.include_router(chunked_upload.router, prefix=settings.API_PREFIX)
app.include_router(upload.router, prefix=settings.API_PREFIX)
app.include_router(auth.router, prefix="/auth")

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8005, reload=True)
