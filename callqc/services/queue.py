import json
import logging
import time
from typing import Callable, Optional, Set

import redis

from callqc.schemas import QueueStats
from callqc.services.errors import EnqueueError
from callqc.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

JobSender = Callable[[str], None]


class WorkQueue:
    """Durable job queue facade.

    Delivery, acknowledgement and redelivery belong to the Celery broker; this
    class adds what the broker does not give us: at most one outstanding job per
    job id, a global start-rate limit, the retry/backoff policy and a bounded
    ledger of finished jobs for operators.
    """

    def __init__(
        self,
        client: redis.Redis,
        send: JobSender,
        name: str = "call-processing",
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        visibility_timeout_seconds: int = 3600,
        pending_timeout_seconds: int = 7 * 24 * 3600,
        rate_limit: int = 10,
        rate_window_seconds: int = 1,
        completed_retention_seconds: int = 24 * 3600,
        completed_retention_count: int = 1000,
        failed_retention_seconds: int = 7 * 24 * 3600,
    ) -> None:
        self.client = client
        self.send = send
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.pending_timeout_seconds = pending_timeout_seconds
        self.completed_retention_seconds = completed_retention_seconds
        self.completed_retention_count = completed_retention_count
        self.failed_retention_seconds = failed_retention_seconds
        self.limiter = RateLimiter(client, prefix=f"{name}:starts", limit=rate_limit, window_seconds=rate_window_seconds)

    def _key(self, suffix: str) -> str:
        return f"{self.name}:{suffix}"

    def _inflight_key(self, job_id: str) -> str:
        return self._key(f"inflight:{job_id}")

    def enqueue(self, job_id: str) -> bool:
        """Publish a job unless one with the same id is still outstanding."""
        job_id = str(job_id)
        # held until a worker picks the job up, however long the backlog
        claimed = self.client.set(self._inflight_key(job_id), "queued", nx=True, ex=self.pending_timeout_seconds)
        if not claimed:
            logger.info("Job %s already in flight; not enqueued again", job_id)
            return False
        try:
            self.send(job_id)
        except Exception as exc:
            self.client.delete(self._inflight_key(job_id))
            raise EnqueueError(f"Failed to publish job {job_id}: {exc}") from exc
        logger.info("Job %s enqueued on %s", job_id, self.name)
        return True

    def is_in_flight(self, job_id: str) -> bool:
        return bool(self.client.exists(self._inflight_key(str(job_id))))

    def waiting_job_ids(self) -> Set[str]:
        """Task ids of messages still sitting in the broker list."""
        ids = set()
        for raw in self.client.lrange(self.name, 0, -1):
            try:
                message = json.loads(raw)
            except (TypeError, ValueError):
                continue
            if not isinstance(message, dict):
                continue
            task_id = (message.get("headers") or {}).get("id")
            if task_id:
                ids.add(str(task_id))
        return ids

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def retry_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return self.backoff_seconds * (2 ** (attempt - 1))

    def begin(self, job_id: str, attempt: int) -> None:
        job_id = str(job_id)
        waited = self.limiter.wait("global")
        if waited > 0.5:
            logger.info("Job %s start delayed %.2fs by rate limit", job_id, waited)
        pipe = self.client.pipeline()
        pipe.set(self._inflight_key(job_id), f"active:{attempt}", ex=self.visibility_timeout_seconds)
        pipe.srem(self._key("delayed"), job_id)
        pipe.sadd(self._key("active"), job_id)
        pipe.execute()

    def defer(self, job_id: str, attempt: int) -> float:
        job_id = str(job_id)
        delay = self.retry_delay(attempt)
        pipe = self.client.pipeline()
        pipe.set(
            self._inflight_key(job_id),
            f"delayed:{attempt}",
            ex=self.visibility_timeout_seconds + int(delay),
        )
        pipe.srem(self._key("active"), job_id)
        pipe.sadd(self._key("delayed"), job_id)
        pipe.execute()
        return delay

    def complete(self, job_id: str) -> None:
        job_id = str(job_id)
        now = time.time()
        completed = self._key("completed")
        pipe = self.client.pipeline()
        pipe.zadd(completed, {job_id: now})
        pipe.zremrangebyscore(completed, "-inf", now - self.completed_retention_seconds)
        pipe.zremrangebyrank(completed, 0, -(self.completed_retention_count + 1))
        self._release(pipe, job_id)
        pipe.execute()

    def fail(self, job_id: str, error: str) -> None:
        job_id = str(job_id)
        now = time.time()
        failed = self._key("failed")
        pipe = self.client.pipeline()
        pipe.zadd(failed, {job_id: now})
        pipe.hset(self._key("errors"), job_id, error)
        pipe.zremrangebyscore(failed, "-inf", now - self.failed_retention_seconds)
        self._release(pipe, job_id)
        pipe.execute()
        self._prune_errors()

    def _release(self, pipe, job_id: str) -> None:
        pipe.delete(self._inflight_key(job_id))
        pipe.srem(self._key("active"), job_id)
        pipe.srem(self._key("delayed"), job_id)

    def _prune_errors(self) -> None:
        retained = set(self.client.zrange(self._key("failed"), 0, -1))
        stale = [job_id for job_id in self.client.hkeys(self._key("errors")) if job_id not in retained]
        if stale:
            self.client.hdel(self._key("errors"), *stale)

    def last_error(self, job_id: str) -> Optional[str]:
        return self.client.hget(self._key("errors"), str(job_id))

    def stats(self) -> QueueStats:
        pipe = self.client.pipeline()
        pipe.llen(self.name)
        pipe.scard(self._key("active"))
        pipe.scard(self._key("delayed"))
        pipe.zcard(self._key("completed"))
        pipe.zcard(self._key("failed"))
        waiting, active, delayed, completed, failed = pipe.execute()
        return QueueStats(
            waiting=waiting,
            active=active,
            delayed=delayed,
            completed=completed,
            failed=failed,
            total=waiting + active + delayed + completed + failed,
        )

    def ping(self) -> bool:
        return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()
