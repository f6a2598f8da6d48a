from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from automation_runner.core.logging import configure_logging
from automation_runner import models  # noqa: F401
from automation_runner.routers.automations import router as automations_router
from automation_runner.routers.runner import router as runner_router
from automation_runner.services.runner_worker import start_runner_worker_task

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    task = start_runner_worker_task()
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Automation worker raised during shutdown")


app = FastAPI(
    title="Automation Runner",
    lifespan=lifespan,
)


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


app.include_router(runner_router)
app.include_router(automations_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
