import asyncio
import sys

import structlog

from storyline.core.config import get_settings
from storyline.core.logging import configure_logging
from storyline.db.session import init_db
from storyline.services.pipeline import StorylinePipeline, build_pipeline

logger = structlog.get_logger()


async def drain_once(pipeline: StorylinePipeline) -> int:
    """Resume every outstanding video job and wait until all of them stop."""
    resumed = await pipeline.resume_video_polling()
    if pipeline.poller is not None:
        await pipeline.poller.wait_all()
    return resumed


async def main_loop(pipeline: StorylinePipeline, rescan_seconds: float) -> None:
    logger.info("worker.start", msg="video poll worker started")
    if pipeline.poller is None:
        logger.error("worker.storage_not_configured", msg="cannot store finished videos; exiting")
        return
    idle_ticks = 0
    while True:
        found = await pipeline.resume_video_polling()
        if found == 0:
            idle_ticks += 1
            if idle_ticks % 20 == 0:
                logger.info("worker.idle", msg="no outstanding video jobs")
        else:
            idle_ticks = 0
        await asyncio.sleep(rescan_seconds)


async def run(once: bool = False) -> None:
    settings = get_settings()
    configure_logging(settings)
    await init_db()
    pipeline = build_pipeline(settings)
    if once:
        resumed = await drain_once(pipeline)
        logger.info("worker.drained", jobs=resumed)
        return
    await main_loop(pipeline, settings.worker_rescan_seconds)


def cli() -> None:
    asyncio.run(run(once="--once" in sys.argv[1:]))


if __name__ == "__main__":
    cli()
