from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from forkliftops.core.logging import configure_logging
from forkliftops.services.outbox_worker import start_outbox_worker_task
from forkliftops import models  # noqa: F401
from forkliftops.routers.auth import router as auth_router
from forkliftops.routers.exports import router as exports_router
from forkliftops.routers.jobs import router as jobs_router
from forkliftops.routers.outbox import router as outbox_router
from forkliftops.routers.sweep import router as sweep_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    task = start_outbox_worker_task()
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


app = FastAPI(
    title="ForkliftOps Job Engine",
    lifespan=lifespan,
)


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(jobs_router)
app.include_router(exports_router)
app.include_router(outbox_router)
app.include_router(sweep_router)


@app.get("/")
def root():
    return {"status": "ForkliftOps job engine running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
