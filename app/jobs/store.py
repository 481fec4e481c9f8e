"""Two-tier job record store: Redis as the source of truth, a local dict as
a read/write-through cache.

Staleness rules:
- ``get`` trusts the cache, so it may lag a write made by another process.
  ``get(..., fresh=True)`` reads Redis first and is what writers use.
- ``list_all`` always reads Redis and refreshes the cache from it. Cached
  records whose key is gone (expired or deleted elsewhere) are evicted.
- When Redis is unreachable, writes land in the cache only and reads fall
  back to it. The failure is logged, never raised. Such records are kept
  as unsynced until a later write reaches Redis.
"""

import logging
from typing import Dict, List, Optional, Set

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.jobs.errors import PersistenceError
from app.jobs.models import JobRecord

logger = logging.getLogger(__name__)

PREFIX = "job:"


def job_key(job_id: str) -> str:
    return f"{PREFIX}{job_id}"


class JobStore:
    def __init__(self, redis: Redis, ttl_seconds: int = 3600):
        self._redis = redis
        self._ttl_seconds = ttl_seconds
        self._cache: Dict[str, JobRecord] = {}
        # ids whose last write only reached the cache
        self._unsynced: Set[str] = set()

    async def put(self, job: JobRecord) -> None:
        """Cache the record and write it to Redis, refreshing its expiry."""
        self._cache[job.id] = job
        try:
            await self._write(job)
        except PersistenceError as e:
            self._unsynced.add(job.id)
            logger.error("Failed to save job_id=%s: %s", job.id, e)
        else:
            self._unsynced.discard(job.id)

    async def get(self, job_id: str, fresh: bool = False) -> Optional[JobRecord]:
        """Look a record up.

        With ``fresh`` the cache is bypassed: a key missing from a reachable
        Redis means the job is gone, even if this process still caches it.
        """
        if not fresh:
            job = self._cache.get(job_id)
            if job is not None:
                return job

        try:
            job = await self._read(job_id)
        except PersistenceError as e:
            logger.error("Failed to load job_id=%s: %s", job_id, e)
            return self._cache.get(job_id) if fresh else None

        if job is not None:
            self._cache[job_id] = job
        elif job_id in self._unsynced:
            job = self._cache.get(job_id)
        else:
            self._cache.pop(job_id, None)
        return job

    async def list_all(self) -> List[JobRecord]:
        """All persisted records, newest first."""
        try:
            jobs = await self._read_all()
        except PersistenceError as e:
            logger.error("Failed to list jobs, serving cached records: %s", e)
            jobs = list(self._cache.values())
        else:
            present = {job.id for job in jobs}
            for job_id in list(self._cache):
                if job_id not in present and job_id not in self._unsynced:
                    del self._cache[job_id]
            for job in jobs:
                self._cache[job.id] = job

        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def delete(self, job_id: str) -> None:
        self._cache.pop(job_id, None)
        self._unsynced.discard(job_id)
        try:
            await self._redis.delete(job_key(job_id))
        except RedisError as e:
            logger.error("Failed to delete job_id=%s: %s", job_id, e)

    def cached_ids(self) -> List[str]:
        return list(self._cache)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def _write(self, job: JobRecord) -> None:
        try:
            await self._redis.set(job_key(job.id), job.to_json(), ex=self._ttl_seconds)
        except RedisError as e:
            raise PersistenceError(str(e)) from e

    async def _read(self, job_id: str) -> Optional[JobRecord]:
        try:
            data = await self._redis.get(job_key(job_id))
        except RedisError as e:
            raise PersistenceError(str(e)) from e
        if data is None:
            return None
        try:
            return JobRecord.from_json(data)
        except ValueError as e:
            logger.warning("Unreadable record for job_id=%s: %s", job_id, e)
            return None

    async def _read_all(self) -> List[JobRecord]:
        try:
            keys = [key async for key in self._redis.scan_iter(match=f"{PREFIX}*")]
            values = await self._redis.mget(keys) if keys else []
        except RedisError as e:
            raise PersistenceError(str(e)) from e

        jobs: List[JobRecord] = []
        for key, value in zip(keys, values):
            if not value:
                # expired between SCAN and MGET
                continue
            try:
                jobs.append(JobRecord.from_json(value))
            except ValueError as e:
                logger.warning("Skipping unreadable record %s: %s", key, e)
        return jobs
