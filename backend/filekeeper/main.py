"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from filekeeper.config import settings
from filekeeper.database import engine, get_db
from filekeeper.dependencies import transaction_service
from filekeeper.errors import CriticalInconsistency, FileServiceError
from filekeeper.models import Base

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, start the cleanup worker if configured."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    worker_task = None
    if settings.CLEANUP_INTERVAL_SECONDS > 0:
        from filekeeper.services.cleanup_worker import worker_loop
        worker_task = asyncio.create_task(
            worker_loop(transaction_service, settings.CLEANUP_INTERVAL_SECONDS)
        )

    yield

    # Cleanup
    if worker_task:
        worker_task.cancel()
    await engine.dispose()


app = FastAPI(
    title="filekeeper API",
    version="1.0.0",
    description="Verified file uploads kept consistent across disk and database.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FileServiceError)
async def file_service_error_handler(request: Request, exc: FileServiceError):
    """Client errors get their message; server errors get a generic one."""
    if exc.is_client_error:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    logger.error(f"{request.method} {request.url.path} failed ({exc.severity}): {exc!r}")
    content = {"detail": "Internal server error"}
    if isinstance(exc, CriticalInconsistency):
        content["severity"] = exc.severity
    elif settings.DEBUG:
        content["details"] = exc.message
    return JSONResponse(status_code=exc.status_code, content=content)


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from filekeeper.routes.files import router as files_router
from filekeeper.routes.cleanup import router as cleanup_router
app.include_router(files_router)
app.include_router(cleanup_router)

# Stored blobs are reachable at their record's storage_path
app.mount(
    settings.UPLOADS_URL_PREFIX,
    StaticFiles(directory=transaction_service.storage.base_path, check_dir=False),
    name="uploads",
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("filekeeper.main:app", host="0.0.0.0", port=settings.API_PORT)
