import asyncio
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from loguru import logger

from mspark.core.config import settings
from mspark.core.cache import init_cache
from mspark.core.database import DatabaseManager
from mspark.core.exceptions import MsparkError
from mspark.core.logging import setup_logging
from mspark.api.routes import auctions_router, payments_router, scheduler_router, send_router
from mspark.services.container import build_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(f"Starting up {settings.app_name} v{settings.version}...")

    db = DatabaseManager()
    await db.init()
    init_cache()

    app.state.services = build_services()
    scheduler_start = None
    if settings.SCHEDULER_AUTOSTART:
        # overdue auctions may take a while to settle, do not hold up startup
        scheduler_start = asyncio.create_task(app.state.services.scheduler.start())

    try:
        yield
    finally:
        logger.info("Shutting down...")
        if scheduler_start and not scheduler_start.done():
            scheduler_start.cancel()
        await app.state.services.shutdown()
        await db.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    lifespan=lifespan,
    debug=settings.debug
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"]
)


@app.exception_handler(MsparkError)
async def mspark_error_handler(request: Request, exc: MsparkError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "detail": exc.message})


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


app.include_router(auctions_router, prefix="/auctions", tags=["Auctions"])
app.include_router(payments_router, prefix="/payments", tags=["Payments"])
app.include_router(send_router, prefix="/send", tags=["Payouts"])
app.include_router(scheduler_router, prefix="/scheduler", tags=["Scheduler"])


def main():
    uvicorn.run(
        "mspark.main:app",
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
