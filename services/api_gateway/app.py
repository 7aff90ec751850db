"""API gateway entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from services.api_gateway.dependencies import broadcaster, scheduler, settings
from services.api_gateway.presentation.http.routes import router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "TrafficWatch gateway up (poll interval %.1fs)", settings.poll_interval_sec
    )
    yield
    scheduler.shutdown()
    broadcaster.close_all()


app = FastAPI(title="TrafficWatch API", lifespan=lifespan)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
