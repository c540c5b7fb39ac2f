"""
Reshard phase service

FastAPI application hosting the progress endpoint remote scripts report to,
and the operator routes that start phases and pause plans.

Run with:
    uvicorn reshard.main:app
"""

from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reshard import __version__
from reshard.clients import ImgapiClient, SapiClient, ZoneExecClient
from reshard.config import ReshardConfig
from reshard.logging_config import setup_logging
from reshard.redis_client import RedisClient
from reshard.routers import phases_router, progress_router
from reshard.workflow.events import WorkflowEventPublisher
from reshard.workflow.progress import ProgressChannelRegistry
from reshard.workflow.state_manager import RedisStateManager

logger = logging.getLogger(__name__)


async def stop_running_phases(running_phases) -> None:
    """Cancel phase tasks still running and wait for them to unwind."""
    tasks = [r.task for r in running_phases.values() if not r.task.done()]
    if not tasks:
        return

    logger.info(f"Cancelling {len(tasks)} running phases")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(ReshardConfig.LOG_LEVEL)
    logger.info(f"🚀 Reshard phase service {__version__} starting")

    redis_client = await RedisClient.get_client()

    state = app.state
    state.progress_channels = ProgressChannelRegistry(ReshardConfig.PROGRESS_BASE_URL)
    state.state_manager = RedisStateManager(
        redis_client, ttl_seconds=ReshardConfig.STATE_TTL_DAYS * 86400
    )
    state.event_publisher = WorkflowEventPublisher(redis_client)
    state.sapi = SapiClient(ReshardConfig.SAPI_URL, timeout=ReshardConfig.HTTP_TIMEOUT)
    state.imgapi = ImgapiClient(ReshardConfig.IMGAPI_URL, timeout=ReshardConfig.HTTP_TIMEOUT)
    state.zone_exec = ZoneExecClient(
        ReshardConfig.EXEC_URL, transport_timeout=ReshardConfig.EXEC_TRANSPORT_TIMEOUT
    )
    state.running_phases = {}

    try:
        yield
    finally:
        await stop_running_phases(state.running_phases)

        await state.sapi.close()
        await state.imgapi.close()
        await state.zone_exec.close()
        await RedisClient.close()
        logger.info("Reshard phase service stopped")


app = FastAPI(
    title="Reshard Phase Service",
    version=__version__,
    description="Phase execution for storage cluster resharding plans",
    lifespan=lifespan,
)

app.include_router(progress_router.router)
app.include_router(phases_router.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )
