"""Background worker: thumbnails for uploaded images, welcome mail for new users.

Run with ``python -m filevault.jobs.worker``.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import pydantic
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from filevault.cache import close_cache, open_cache
from filevault.config import Settings, get_settings
from filevault.db.session import Database
from filevault.errors import NotFound, TransientStorageError
from filevault.files.models import File, FileKind
from filevault.files.storage import BlobStorage
from filevault.jobs.queue import Job, JobQueue, ThumbnailJob, WelcomeJob
from filevault.jobs.thumbnails import ThumbnailError, generate_variants
from filevault.logging_config import setup_logging
from filevault.users.service import get_user_by_id, send_welcome_email

log = logging.getLogger(__name__)


class JobFailed(Exception):
    """Job could not finish now; the queue decides whether it runs again."""


class JobDiscarded(Exception):
    """Job refers to something that no longer exists; drop it without retry."""


async def process_thumbnail_job(
    database: Database, blobs: BlobStorage, payload: dict
) -> list[int]:
    """
    Generate every thumbnail width for the file in payload. Rerunning it
    overwrites the same variants with the same bytes.
    """
    try:
        job = ThumbnailJob.model_validate(payload)
    except pydantic.ValidationError as e:
        raise JobDiscarded(f"bad payload: {e}") from e
    async with database.session() as session:
        file = await session.get(File, job.file_id)
    if file is None or file.user_id != job.user_id:
        raise JobDiscarded(f"file {job.file_id} not found for user {job.user_id}")
    if file.kind != FileKind.IMAGE.value or not file.content_ref:
        raise JobDiscarded(f"file {file.id} is not an image")
    try:
        data = blobs.read(file.content_ref)
    except NotFound as e:
        raise JobFailed(f"original bytes missing for file {file.id}") from e
    try:
        return await generate_variants(blobs, file.content_ref, data)
    except ThumbnailError as e:
        raise JobFailed(f"file {file.id} is not a readable image: {e}") from e


async def process_welcome_job(settings: Settings, database: Database, payload: dict) -> None:
    """Greet a newly registered user by mail, or in the log when SMTP is not set up."""
    try:
        job = WelcomeJob.model_validate(payload)
    except pydantic.ValidationError as e:
        raise JobDiscarded(f"bad payload: {e}") from e
    async with database.session() as session:
        user = await get_user_by_id(session, job.user_id)
    if user is None:
        raise JobDiscarded(f"user {job.user_id} not found")
    if not settings.smtp_host or not settings.smtp_from:
        log.info("Welcome %s!", user.email)
        return
    try:
        await send_welcome_email(settings, user.email)
    except Exception as e:
        raise JobFailed(f"welcome mail to {user.email}: {e}") from e
    log.info("Welcome mail sent to %s", user.email)


Handler = Callable[[dict], Awaitable[object]]


async def handle_one(queue: JobQueue, handler: Handler) -> Optional[Job]:
    """Reserve and run a single job. Returns the job, or None if the queue was empty."""
    job = await queue.reserve()
    if job is None:
        return None
    try:
        await handler(job.payload)
    except JobDiscarded as e:
        log.warning("Job %s on %s discarded: %s", job.id, queue.name, e)
        await queue.ack(job)
    except (JobFailed, TransientStorageError) as e:
        await queue.retry(job, str(e))
    except Exception as e:
        log.exception("Job %s on %s crashed", job.id, queue.name)
        await queue.retry(job, repr(e))
    else:
        log.info("Job %s on %s done", job.id, queue.name)
        await queue.ack(job)
    return job


class Worker:
    """Pool of consumers polling the thumbnail and welcome queues."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        cache: aioredis.Redis,
        blobs: BlobStorage,
    ) -> None:
        self.settings = settings
        self.thumbnails = JobQueue(cache, settings.thumbnail_queue, settings.job_max_attempts)
        self.welcome = JobQueue(cache, settings.welcome_queue, settings.job_max_attempts)
        self._routes: list[tuple[JobQueue, Handler]] = [
            (self.thumbnails, lambda p: process_thumbnail_job(database, blobs, p)),
            (self.welcome, lambda p: process_welcome_job(settings, database, p)),
        ]
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    async def run_once(self) -> int:
        """Handle at most one job per queue; returns how many were handled."""
        handled = 0
        for queue, handler in self._routes:
            if await handle_one(queue, handler) is not None:
                handled += 1
        return handled

    async def drain(self) -> int:
        """Handle jobs until every queue is empty."""
        total = 0
        while True:
            n = await self.run_once()
            if not n:
                return total
            total += n

    async def _consume(self, index: int) -> None:
        log.debug("Consumer %d started", index)
        while not self._stopping.is_set():
            try:
                handled = await self.run_once()
            except (TransientStorageError, RedisError) as e:
                log.warning("Consumer %d: queue unavailable: %s", index, e)
                handled = 0
            if not handled:
                try:
                    await asyncio.wait_for(
                        self._stopping.wait(), timeout=self.settings.worker_poll_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        log.debug("Consumer %d stopped", index)

    async def run(self) -> None:
        """Consume until stop() is called."""
        for queue, _ in self._routes:
            await queue.requeue_inflight()
        consumers = max(1, self.settings.worker_concurrency)
        log.info("Worker running with %d consumer(s)", consumers)
        await asyncio.gather(*(self._consume(i) for i in range(consumers)))


async def main(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    setup_logging(settings)
    database = Database(settings)
    await database.init()
    cache = open_cache(settings)
    blobs = BlobStorage(settings.storage_base_path)
    blobs.ensure_root()
    worker = Worker(settings, database, cache, blobs)
    try:
        await worker.run()
    finally:
        await close_cache(cache)
        await database.dispose()
        log.info("Worker shut down")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
