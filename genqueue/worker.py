"""
Queue supervisor.

One `drain()` run holds a Redis lock so only one supervisor works the queue
at a time, pops high before low, throttles to JOBS_PER_WINDOW per
WINDOW_SECONDS and stops once MAX_EXECUTION_SECONDS is spent (firing the
wake-up hook so another run picks up the rest).
"""

import logging
import time
from typing import Callable, Dict, Optional

import redis
import requests

from genqueue.errors import ProviderSubmitFailed, ProviderTimeout
from genqueue.jobqueue import PriorityQueue, QueuedPayload
from genqueue.polling import PollBudget, poll_until_settled
from genqueue.providers import ProviderRegistry, ResolutionMode
from genqueue.settings import settings
from genqueue.settlement import Settler
from genqueue.state import JobStatus
from genqueue.store import JobStore

logger = logging.getLogger(__name__)


def notify_worker(count: int, url: Optional[str] = None) -> None:
    """Fire-and-forget POST to the external worker hook, if one is configured."""
    url = url or settings.WORKER_URL
    if not url:
        return
    try:
        requests.post(url, json={"trigger": "new_jobs", "count": count}, timeout=5)
    except requests.RequestException as e:
        logger.warning("Failed to trigger worker at %s: %s", url, e)


class Worker:
    def __init__(
        self,
        store: JobStore,
        queue: PriorityQueue,
        registry: ProviderRegistry,
        settler: Settler,
        *,
        lock_client=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        budget_factory: Optional[Callable[[], PollBudget]] = None,
        continuation: Optional[Callable[[int], None]] = None,
    ):
        self.store = store
        self.queue = queue
        self.registry = registry
        self.settler = settler
        self.lock_client = lock_client
        self.clock = clock
        self.sleep = sleep
        self.budget_factory = budget_factory or (lambda: PollBudget.default(self.clock))
        self.continuation = continuation

    def process(self, payload: QueuedPayload) -> Optional[str]:
        """Run one payload to a terminal state (or to `processing` for callback providers)."""
        job = self.store.get(payload.job_id)
        if job is None:
            logger.warning("Dropping payload for unknown job %s", payload.job_id)
            return None
        if job.status != JobStatus.QUEUED.value:
            logger.info("Skipping job %s: already %s", job.id, job.status)
            return job.status

        adapter = self.registry.for_model(payload.model)
        try:
            submission = adapter.submit(payload)
        except ProviderSubmitFailed as e:
            self.settler.fail(job.id, str(e))
            return JobStatus.FAILED.value

        # the task handle must be on the job before any callback can look it up
        if not self.store.transition(job.id, JobStatus.PROCESSING,
                                     provider=adapter.name, provider_task_id=submission.task_id):
            return self.store.get(job.id).status

        if submission.resolution is not None:
            self.settler.settle(job.id, submission.resolution)
        elif adapter.resolution_mode is ResolutionMode.CALLBACK:
            logger.info("Job %s submitted to %s (task %s), awaiting callback", job.id, adapter.name, submission.task_id)
            return JobStatus.PROCESSING.value
        else:
            try:
                resolution = poll_until_settled(
                    adapter, submission.task_id, self.budget_factory(), sleep=self.sleep, clock=self.clock
                )
            except ProviderTimeout as e:
                self.settler.fail(job.id, str(e))
            else:
                self.settler.settle(job.id, resolution)
        return self.store.get(job.id).status

    def _acquire(self):
        """Returns the held lock, None when running unlocked, or False when another supervisor holds it."""
        if self.lock_client is None:
            return None
        # token-owned lock: release only deletes the key if it is still ours
        lock = self.lock_client.lock(settings.SUPERVISOR_LOCK_KEY, timeout=settings.LOCK_TTL_SECONDS, blocking=False)
        return lock if lock.acquire() else False

    def _release(self, lock) -> None:
        if lock is None:
            return
        try:
            lock.release()
        except redis.exceptions.LockError:
            logger.warning("Supervisor lock expired during the run; leaving the current holder's lock in place")

    def drain(self, max_seconds: Optional[float] = None, max_jobs: Optional[int] = None) -> Dict:
        start = self.clock()
        lock = self._acquire()
        if lock is False:
            logger.info("Supervisor lock held by another instance, skipping")
            return {"status": "skipped", "reason": "lock_held"}

        budget = settings.MAX_EXECUTION_SECONDS if max_seconds is None else max_seconds
        processed = 0
        status = "completed"
        window_start = start
        window_count = 0
        try:
            while True:
                if self.clock() - start > budget:
                    status = "budget_exhausted"
                    break
                if max_jobs is not None and processed >= max_jobs:
                    break

                if window_count >= settings.JOBS_PER_WINDOW:
                    wait = settings.WINDOW_SECONDS - (self.clock() - window_start)
                    if wait > 0:
                        logger.info("Rate limit reached, waiting %.2fs", wait)
                        self.sleep(wait)
                    window_start = self.clock()
                    window_count = 0

                payload = self.queue.dequeue_next()
                if payload is None:
                    logger.debug("Both queues empty")
                    break

                logger.info("Processing job %s (model %s)", payload.job_id, payload.model)
                try:
                    self.process(payload)
                except Exception as e:
                    logger.exception("Error processing job %s", payload.job_id)
                    self.settler.fail(payload.job_id, f"Internal processing error: {e}")
                processed += 1
                window_count += 1
        finally:
            self._release(lock)

        if status == "budget_exhausted" and self.continuation is not None and len(self.queue):
            logger.info("Execution budget spent with work left, spawning continuation")
            self.continuation(len(self.queue))

        duration = self.clock() - start
        logger.info("Supervisor run %s: %d job(s) in %.2fs", status, processed, duration)
        return {"status": status, "processed": processed, "duration": round(duration, 3)}
