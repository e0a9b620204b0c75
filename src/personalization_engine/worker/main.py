"""Worker process entry point.

Runs the step scheduler and, with the Redis backend, the ingest stream
consumer in one event loop until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal

import structlog

from personalization_engine.engine.bootstrap import build_engine, utc_now
from personalization_engine.logging_config import configure_logging
from personalization_engine.settings import Settings
from personalization_engine.worker.ingest import IngestConsumer
from personalization_engine.worker.scheduler import StepScheduler

log = structlog.get_logger(__name__)


async def run_worker(settings: Settings) -> None:
    runtime = await build_engine(settings, clock=utc_now)
    engine = runtime.engine

    scheduler = StepScheduler(
        engine.orchestrator, settings.scheduler, utc_now, refresh=engine.admin.refresh
    )
    consumer = (
        IngestConsumer(runtime.redis, engine, settings) if runtime.redis is not None else None
    )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    tasks = [asyncio.create_task(scheduler.run(), name="scheduler")]
    if consumer is not None:
        tasks.append(asyncio.create_task(consumer.run(), name="ingest"))
    log.info("worker_started", storage_backend=settings.storage_backend, tasks=len(tasks))

    await stop.wait()
    scheduler.stop()
    if consumer is not None:
        consumer.stop()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for task, result in zip(tasks, results, strict=True):
        if isinstance(result, BaseException):
            log.error("worker_task_failed", task=task.get_name(), error=repr(result))
    await runtime.close()
    log.info("worker_stopped")


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level, settings.log_json)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
