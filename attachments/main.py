from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

from attachments.core.config import settings
from attachments.core.dependencies import get_attachment_service
from attachments.api.routes import files, folders, stream, uploads

# Configure Application Insights if available
appinsights_key = os.getenv("APPINSIGHTS_INSTRUMENTATIONKEY")
if appinsights_key:
    try:
        from opencensus.ext.azure.log_exporter import AzureLogHandler

        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(),
                AzureLogHandler(connection_string=f"InstrumentationKey={appinsights_key}")
            ]
        )
        logger = logging.getLogger(__name__)
        logger.info("Application Insights logging configured")
    except Exception as e:
        # Fallback to standard logging if Application Insights fails
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        logger = logging.getLogger(__name__)
        logger.warning(f"Failed to configure Application Insights: {e}")
else:
    # Standard logging if no Application Insights key
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    import asyncio

    logger.info(f"Starting up application ({settings.STORAGE_BACKEND} storage)...")
    service = get_attachment_service()

    async def initialize_resources():
        """Create Azure tables and the blob container in background."""
        try:
            await service.ensure_storage_ready()
            logger.info("Attachment storage verified")
        except Exception as e:
            logger.error(f"Failed to verify attachment storage: {e}")

    init_task = asyncio.create_task(initialize_resources())

    logger.info("Application ready to accept requests")

    yield

    logger.info("Shutting down application...")
    init_task.cancel()
    await service.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    description="Folder/file attachment trees for leads, clients, projects and warranties",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(folders.router, prefix=settings.API_V1_PREFIX)
app.include_router(files.router, prefix=settings.API_V1_PREFIX)
app.include_router(uploads.router, prefix=settings.API_V1_PREFIX)
app.include_router(stream.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "storage_backend": settings.STORAGE_BACKEND}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "attachments.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development"
    )
