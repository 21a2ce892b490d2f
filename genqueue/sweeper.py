"""
Reconciliation sweep for jobs the pipeline lost track of.

- queued past QUEUED_STALE_SECONDS and absent from both tiers: re-enqueued
  (the push failed at admission, or a worker died holding the payload);
  failed instead once QUEUED_GIVE_UP_SECONDS have passed since creation
- processing past PROCESSING_STALE_SECONDS: failed as timed out (a
  callback provider that never called back)
"""

import logging
from datetime import timedelta
from typing import Callable, Dict

from genqueue.admission import payload_for, tier_for_priority
from genqueue.jobqueue import PriorityQueue
from genqueue.models import utcnow
from genqueue.settings import settings
from genqueue.state import JobStatus
from genqueue.store import JobStore

logger = logging.getLogger(__name__)


class Sweeper:
    def __init__(self, store: JobStore, queue: PriorityQueue, now: Callable = utcnow):
        self.store = store
        self.queue = queue
        self.now = now

    def sweep(self) -> Dict[str, int]:
        now = self.now()
        counts = {"requeued": 0, "abandoned": 0, "expired": 0}

        stale_queued = self.store.list_stale(
            JobStatus.QUEUED, now - timedelta(seconds=settings.QUEUED_STALE_SECONDS)
        )
        if stale_queued:
            waiting = self.queue.queued_job_ids()
            give_up_before = now - timedelta(seconds=settings.QUEUED_GIVE_UP_SECONDS)
            for job in stale_queued:
                if job.id in waiting:
                    continue
                if job.created_at < give_up_before:
                    if self.store.transition(job.id, JobStatus.FAILED, error="Job was never dispatched"):
                        counts["abandoned"] += 1
                    continue
                self.queue.enqueue(tier_for_priority(job.priority), payload_for(job))
                self.store.patch(job.id)  # restart the stale clock
                counts["requeued"] += 1

        stale_processing = self.store.list_stale(
            JobStatus.PROCESSING, now - timedelta(seconds=settings.PROCESSING_STALE_SECONDS)
        )
        for job in stale_processing:
            if self.store.transition(job.id, JobStatus.FAILED, error="Timed out waiting for provider result"):
                counts["expired"] += 1

        if any(counts.values()):
            logger.info("Sweep: %s", counts)
        return counts
