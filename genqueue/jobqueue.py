"""
Two-tier durable FIFO on Redis lists.

enqueue  -> RPUSH (tail), batched inside MULTI/EXEC so a whole admission
            becomes visible at once and in order
dequeue  -> LPOP (head); Redis pops atomically, so a payload is handed to
            exactly one worker
"""

import logging
import time
from enum import Enum
from typing import List, Optional

import redis
from pydantic import BaseModel, Field
from redis.connection import ConnectionPool

from genqueue.settings import settings

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    HIGH = "high"
    LOW = "low"


# drain order
TIER_ORDER = (Tier.HIGH, Tier.LOW)


class QueuedPayload(BaseModel):
    job_id: str
    workspace_id: str
    prompt: str
    model: str
    input_refs: List[str] = Field(default_factory=list)
    priority: int = 0
    enqueued_at: float = Field(default_factory=time.time)


def get_redis(url: str | None = None) -> redis.Redis:
    pool = ConnectionPool.from_url(
        url or settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=5.0,
        socket_connect_timeout=2.0,
        retry_on_timeout=True,
    )
    return redis.Redis(connection_pool=pool)


class PriorityQueue:
    def __init__(self, client, high_key: str | None = None, low_key: str | None = None):
        self.client = client
        self.keys = {
            Tier.HIGH: high_key or settings.QUEUE_HIGH_KEY,
            Tier.LOW: low_key or settings.QUEUE_LOW_KEY,
        }

    def key(self, tier: Tier) -> str:
        return self.keys[Tier(tier)]

    def enqueue(self, tier: Tier, payload: QueuedPayload) -> None:
        self.enqueue_batch(tier, [payload])

    def enqueue_batch(self, tier: Tier, payloads: List[QueuedPayload]) -> None:
        if not payloads:
            return
        key = self.key(tier)
        pipe = self.client.pipeline(transaction=True)
        for p in payloads:
            pipe.rpush(key, p.model_dump_json())
        pipe.execute()
        logger.info("Pushed %d payload(s) to %s: %s", len(payloads), key, [p.job_id for p in payloads])

    def dequeue(self, tier: Tier) -> Optional[QueuedPayload]:
        raw = self.client.lpop(self.key(tier))
        if raw is None:
            return None
        return QueuedPayload.model_validate_json(raw)

    def dequeue_next(self) -> Optional[QueuedPayload]:
        """High tier is drained completely before low is touched."""
        for tier in TIER_ORDER:
            payload = self.dequeue(tier)
            if payload is not None:
                logger.debug("Popped job %s from %s", payload.job_id, tier.value)
                return payload
        return None

    def queued_job_ids(self) -> set:
        """Job ids currently waiting in either tier (used by the sweep)."""
        ids = set()
        for tier in TIER_ORDER:
            for raw in self.client.lrange(self.key(tier), 0, -1):
                ids.add(QueuedPayload.model_validate_json(raw).job_id)
        return ids

    def __len__(self) -> int:
        return sum(self.client.llen(self.key(t)) for t in TIER_ORDER)
