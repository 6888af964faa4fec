"""Job queue on redis lists with at-least-once delivery."""

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict, Field
from redis.exceptions import RedisError

from filevault.errors import TransientStorageError

log = logging.getLogger(__name__)


class ThumbnailJob(BaseModel):
    """Payload sent for every image upload."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    file_id: int = Field(alias="fileId")


class WelcomeJob(BaseModel):
    """Payload sent after registration."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")


@dataclass
class Job:
    """A reserved message. raw is the exact string held in the processing list."""

    raw: str
    id: str
    attempts: int
    payload: dict[str, Any] = field(default_factory=dict)


class JobQueue:
    """
    Messages wait in <name>, move atomically to <name>:processing while a worker
    handles them and leave it on ack. A worker that dies mid-job leaves the
    message in processing; requeue_inflight puts it back, so a job can run more
    than once and handlers must be idempotent.
    """

    def __init__(self, cache: aioredis.Redis, name: str, max_attempts: int = 3) -> None:
        self.cache = cache
        self.name = name
        self.processing = f"{name}:processing"
        self.failed = f"{name}:failed"
        self.max_attempts = max_attempts

    async def enqueue(self, payload: Union[BaseModel, dict[str, Any]]) -> str:
        """Send a job without waiting for it to run; returns the job id."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)
        job_id = uuid.uuid4().hex
        message = json.dumps({"id": job_id, "attempts": 0, "payload": payload})
        try:
            await self.cache.lpush(self.name, message)
        except RedisError as e:
            log.error("Could not enqueue job on %s: %s", self.name, e)
            raise TransientStorageError() from e
        log.info("Queued job %s on %s: %s", job_id, self.name, payload)
        return job_id

    async def reserve(self) -> Optional[Job]:
        """Take the oldest waiting job into processing, or None if the queue is empty."""
        try:
            raw = await self.cache.lmove(self.name, self.processing, "RIGHT", "LEFT")
        except RedisError as e:
            log.error("Could not reserve job on %s: %s", self.name, e)
            raise TransientStorageError() from e
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return Job(
                raw=raw,
                id=str(data["id"]),
                attempts=int(data.get("attempts", 0)),
                payload=dict(data.get("payload") or {}),
            )
        except (ValueError, KeyError, TypeError) as e:
            log.error("Malformed job on %s moved to %s: %s", self.name, self.failed, e)
            async with self.cache.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing, 1, raw)
                pipe.lpush(self.failed, raw)
                await pipe.execute()
            return None

    async def ack(self, job: Job) -> None:
        """Job finished (or was deliberately discarded); forget it."""
        await self.cache.lrem(self.processing, 1, job.raw)

    async def retry(self, job: Job, reason: str = "") -> bool:
        """
        Put a failed job back with attempts + 1, or park it in <name>:failed once
        max_attempts is reached. Returns True if it will run again.
        """
        attempts = job.attempts + 1
        message = json.dumps({"id": job.id, "attempts": attempts, "payload": job.payload})
        again = attempts < self.max_attempts
        async with self.cache.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing, 1, job.raw)
            if again:
                pipe.lpush(self.name, message)
            else:
                pipe.lpush(self.failed, message)
            await pipe.execute()
        if again:
            log.warning("Job %s failed (attempt %d/%d), requeued: %s", job.id, attempts, self.max_attempts, reason)
        else:
            log.error("Job %s failed %d times, moved to %s: %s", job.id, attempts, self.failed, reason)
        return again

    async def requeue_inflight(self) -> int:
        """Move jobs stranded in processing (by a crashed worker) back to the queue."""
        moved = 0
        while await self.cache.lmove(self.processing, self.name, "RIGHT", "RIGHT") is not None:
            moved += 1
        if moved:
            log.info("Requeued %d in-flight job(s) on %s", moved, self.name)
        return moved

    async def size(self) -> int:
        return await self.cache.llen(self.name)
