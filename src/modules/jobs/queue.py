"""Job hand-off to the external worker.

The core only submits jobs; execution happens elsewhere. Submissions are
fire-and-forget and happen after the database transaction commits, so a
failed enqueue is logged and never undoes a committed change.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol

import redis.asyncio as redis

from src.core.config import settings
from src.shared.ulid import generate_ulid

logger = logging.getLogger(__name__)

APPOINTMENT_REMINDER = "appointment_reminder"
EMAIL_NOTIFICATION = "email_notification"
SESSION_SUMMARY = "session_summary"
EXPIRE_PRE_CONFIRMED = "expire_pre_confirmed"


class JobQueue(Protocol):
    async def enqueue(self, job_name: str, payload: dict[str, Any], delay: timedelta | None = None) -> str: ...


def _encode(job_id: str, job_name: str, payload: dict[str, Any]) -> str:
    return json.dumps({"id": job_id, "job": job_name, "payload": payload}, default=str)


class RedisJobQueue:
    """Immediate jobs go to a list; delayed jobs to a sorted set scored by run-at epoch seconds."""

    def __init__(self, client: redis.Redis, key: str = settings.job_queue_key):
        self.client = client
        self.key = key
        self.delayed_key = f"{key}:delayed"

    @classmethod
    def from_url(cls, url: str, key: str = settings.job_queue_key) -> "RedisJobQueue":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True), key)

    async def enqueue(self, job_name: str, payload: dict[str, Any], delay: timedelta | None = None) -> str:
        job_id = generate_ulid()
        message = _encode(job_id, job_name, payload)
        if delay and delay.total_seconds() > 0:
            await self.client.zadd(self.delayed_key, {message: time.time() + delay.total_seconds()})
        else:
            await self.client.lpush(self.key, message)
        return job_id


@dataclass
class RecordedJob:
    job_id: str
    job_name: str
    payload: dict[str, Any]
    delay: timedelta | None = None


@dataclass
class RecordingJobQueue:
    """Keeps submitted jobs in memory. Used when no Redis is configured and in tests."""

    jobs: list[RecordedJob] = field(default_factory=list)

    async def enqueue(self, job_name: str, payload: dict[str, Any], delay: timedelta | None = None) -> str:
        job = RecordedJob(generate_ulid(), job_name, payload, delay)
        self.jobs.append(job)
        return job.job_id

    def named(self, job_name: str) -> list[RecordedJob]:
        return [job for job in self.jobs if job.job_name == job_name]


async def dispatch(queue: JobQueue, job_name: str, payload: dict[str, Any], delay: timedelta | None = None) -> str | None:
    """Submit a job without letting queue failures reach the caller."""
    try:
        return await queue.enqueue(job_name, payload, delay)
    except (redis.RedisError, OSError):
        logger.exception("failed to enqueue %s", job_name)
        return None


_default_queue: JobQueue | None = None


def get_job_queue() -> JobQueue:
    """FastAPI dependency returning the process-wide queue."""
    global _default_queue
    if _default_queue is None:
        if settings.redis_url:
            _default_queue = RedisJobQueue.from_url(settings.redis_url)
        else:
            logger.warning("REDIS_URL not set; jobs are kept in memory only")
            _default_queue = RecordingJobQueue()
    return _default_queue
