"""
Immediate work queues that due jobs are handed to.

The scheduler only needs ``enqueue``: push a job onto a named queue and
get back its id. Failures are raised to the caller.
"""

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional, Sequence

import aiohttp

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Resque job status codes
STATUS_WAITING = 1


class WorkQueue(ABC):
    """Collaborator contract for the downstream work queue."""

    @abstractmethod
    async def enqueue(
        self,
        queue: str,
        job_class: str,
        args: Sequence[Any],
        track_status: bool = False
    ) -> str:
        """
        Push a job onto a work queue.

        Args:
            queue: Destination queue name
            job_class: Job type name
            args: Job arguments
            track_status: Record a status entry for the job

        Returns:
            The id of the enqueued job
        """

    async def close(self) -> None:
        """Release any resources held by the queue."""


class RedisWorkQueue(WorkQueue):
    """
    Resque compatible work queue.

    Jobs are pushed as JSON onto ``<namespace>:queue:<name>`` and the
    queue name is registered in ``<namespace>:queues`` so existing
    Resque workers pick them up. Arguments are wrapped as ``[args]``,
    the payload shape php-resque workers read.
    """

    def __init__(self, redis: "Redis", namespace: str = "resque"):
        self._redis = redis
        self._namespace = namespace

    async def enqueue(
        self,
        queue: str,
        job_class: str,
        args: Sequence[Any],
        track_status: bool = False
    ) -> str:
        job_id = uuid.uuid4().hex
        now = time.time()
        payload = {
            'class': job_class,
            'args': [list(args)],
            'id': job_id,
            'queue_time': now,
        }
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.sadd(f"{self._namespace}:queues", queue)
            pipe.rpush(f"{self._namespace}:queue:{queue}", json.dumps(payload))
            if track_status:
                status = {'status': STATUS_WAITING, 'updated': int(now), 'started': int(now)}
                pipe.set(f"{self._namespace}:job:{job_id}:status", json.dumps(status))
            await pipe.execute()
        return job_id


class HttpWorkQueue(WorkQueue):
    """
    Work queue reached through an HTTP gateway.

    Jobs are POSTed as JSON to ``<base_url>/jobs``; the gateway answers
    with the id it assigned.
    """

    def __init__(self, base_url: str = "http://localhost:8080", session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip('/')
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def health_check(self) -> bool:
        """Check if the gateway is healthy"""
        try:
            async with self._get_session().get(f"{self.base_url}/health") as resp:
                if resp.status == 200:
                    data = await resp.json()
                    logger.info(f"Gateway health: {data}")
                    return True
        except aiohttp.ClientError as e:
            logger.error(f"Health check failed: {e}")
        return False

    async def enqueue(
        self,
        queue: str,
        job_class: str,
        args: Sequence[Any],
        track_status: bool = False
    ) -> str:
        body = {
            'queue': queue,
            'class': job_class,
            'args': list(args),
            'track_status': track_status,
        }
        async with self._get_session().post(f"{self.base_url}/jobs", json=body) as resp:
            resp.raise_for_status()
            data = await resp.json()
        return str(data['job_id'])

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
