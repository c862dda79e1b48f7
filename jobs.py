"""
Render job records kept in Redis.

Both the API process (async client) and the Celery worker (sync client) read
and write the same JSON document under ``job:{job_id}``; the merge rules live
here so the two sides agree on defaults and field coercion.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from redis import Redis as SyncRedis
from redis.asyncio import Redis as AsyncRedis

from config import AppSettings

JOB_PREFIX = "job:"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = {JobStatus.PENDING.value, JobStatus.PROCESSING.value}


class RenderJob(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    output_file: Optional[str] = None
    error_message: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    frame_count: int = 0
    row_count: Optional[int] = None


def job_key(job_id: str) -> str:
    return f"{JOB_PREFIX}{job_id}"


def redis_url(settings: AppSettings) -> str:
    if settings.redis_url:
        return settings.redis_url
    return f"redis://{settings.redis_host}:{settings.redis_port}/{settings.redis_db}"


def merge_job(job_id: str, raw: Optional[str], updates: Dict[str, Any]) -> str:
    """Apply updates to a stored record (or a fresh pending one) and re-encode it."""
    if raw:
        record = RenderJob.model_validate_json(raw)
    else:
        record = RenderJob(job_id=job_id)
    return RenderJob.model_validate({**record.model_dump(), **updates}).model_dump_json()


class JobStore:
    """Async access used by the API"""

    def __init__(self, client: AsyncRedis, ttl_seconds: int):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "JobStore":
        return cls(AsyncRedis.from_url(redis_url(settings), decode_responses=True), settings.job_ttl_seconds)

    async def save(self, job: RenderJob) -> None:
        await self.client.set(job_key(job.job_id), job.model_dump_json(), ex=self.ttl_seconds)

    async def get(self, job_id: str) -> Optional[RenderJob]:
        raw = await self.client.get(job_key(job_id))
        return RenderJob.model_validate_json(raw) if raw else None

    async def delete(self, job_id: str) -> None:
        await self.client.delete(job_key(job_id))

    async def exists(self, job_id: str) -> bool:
        return bool(await self.client.exists(job_key(job_id)))

    async def all(self) -> List[RenderJob]:
        keys: List[str] = []
        cursor = 0
        while True:
            cursor, batch = await self.client.scan(cursor=cursor, match=f"{JOB_PREFIX}*", count=200)
            keys.extend(batch)
            if cursor == 0:
                break
        if not keys:
            return []
        return [RenderJob.model_validate_json(raw) for raw in await self.client.mget(keys) if raw]

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.close()


class SyncJobStore:
    """Blocking access used inside Celery tasks"""

    def __init__(self, client: SyncRedis, ttl_seconds: int):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SyncJobStore":
        return cls(SyncRedis.from_url(redis_url(settings), decode_responses=True), settings.job_ttl_seconds)

    def update(self, job_id: str, **updates: Any) -> None:
        key = job_key(job_id)
        self.client.set(key, merge_job(job_id, self.client.get(key), updates), ex=self.ttl_seconds)


def count_active(jobs: List[RenderJob]) -> int:
    return sum(1 for job in jobs if job.status.value in ACTIVE_STATUSES)
