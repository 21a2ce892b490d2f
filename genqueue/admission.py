"""
Admission: turn one generate request into N queued jobs.

Order is preserved end to end: jobs are created, enqueued and returned in the
same sequence. If the enqueue fails after the records exist, the jobs stay
`queued` without a queue entry; the reconciliation sweep re-enqueues them.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import redis

from genqueue.errors import InvalidInput, NotFound, Unauthorized
from genqueue.exchange import validate_image_data_url
from genqueue.jobqueue import PriorityQueue, QueuedPayload, Tier
from genqueue.models import Job, User
from genqueue.providers import ProviderRegistry
from genqueue.schemas import GenerateRequest
from genqueue.settings import settings
from genqueue.state import JobStatus
from genqueue.store import JobStore

logger = logging.getLogger(__name__)


def tier_for_plan(plan: Optional[str]) -> Tier:
    plans = {p.lower() for p in settings.HIGH_PRIORITY_PLANS}
    return Tier.HIGH if (plan or "free").lower() in plans else Tier.LOW


def priority_for_tier(tier: Tier) -> int:
    return settings.HIGH_PRIORITY if tier is Tier.HIGH else settings.LOW_PRIORITY


def tier_for_priority(priority: int) -> Tier:
    return Tier.HIGH if priority >= settings.HIGH_PRIORITY else Tier.LOW


def clamp_variations(n: Optional[int]) -> int:
    return min(max(n or 1, 1), settings.MAX_VARIATIONS)


def payload_for(job: Job) -> QueuedPayload:
    return QueuedPayload(
        job_id=job.id,
        workspace_id=job.workspace_id,
        prompt=job.prompt,
        model=job.model,
        input_refs=list(job.input_refs or []),
        priority=job.priority,
    )


@dataclass
class AdmissionResult:
    job_ids: List[str]
    tier: Tier
    queued: bool  # False when the push to Redis failed


class AdmissionController:
    def __init__(
        self,
        store: JobStore,
        queue: PriorityQueue,
        registry: Optional[ProviderRegistry] = None,
        notify: Optional[Callable[[int], None]] = None,
    ):
        self.store = store
        self.queue = queue
        self.registry = registry
        self.notify = notify

    def _resolve_workspace(self, user: User, workspace_id: Optional[str]) -> str:
        workspace_id = workspace_id or user.default_workspace_id
        if not workspace_id:
            raise NotFound("No workspace available")
        ws = self.store.get_workspace(workspace_id)
        if ws is None or (ws.owner_user_id != user.id and user.default_workspace_id != ws.id):
            raise NotFound("Workspace not found")
        return ws.id

    def _check_inputs(self, req: GenerateRequest) -> None:
        if not req.model or not req.model.strip():
            raise InvalidInput("Missing required field: model")
        for ref in req.input_image_urls:
            if ref.startswith("data:"):
                validate_image_data_url(ref)
            elif not ref.startswith(("http://", "https://")):
                raise InvalidInput("Input images must be http(s) or data: URLs")
        if self.registry is not None:
            self.registry.for_model(req.model).check_input(req.model, req.input_image_urls)

    def admit(self, user: Optional[User], req: GenerateRequest) -> AdmissionResult:
        if user is None:
            raise Unauthorized("Unauthorized")
        prompt = (req.prompt or "").strip()
        if not prompt:
            raise InvalidInput("Missing required field: prompt")
        self._check_inputs(req)
        workspace_id = self._resolve_workspace(user, req.workspace_id)

        tier = tier_for_plan(user.subscription_plan)
        priority = req.priority if req.priority is not None else priority_for_tier(tier)
        cost = req.cost_credits if req.cost_credits is not None else settings.DEFAULT_COST_CREDITS
        count = clamp_variations(req.variations)

        job_ids: List[str] = []
        payloads: List[QueuedPayload] = []
        fields = dict(
            workspace_id=workspace_id,
            created_by=user.id,
            board_id=req.board_id,
            model=req.model.strip(),
            prompt=prompt,
            input_asset_ids=list(req.input_asset_ids),
            input_refs=list(req.input_image_urls),
            priority=priority,
            cost_credits=cost,
            status=JobStatus.QUEUED.value,
        )
        for _ in range(count):
            job_id = self.store.create(**fields)
            job_ids.append(job_id)
            payloads.append(payload_for(Job(id=job_id, **fields)))

        try:
            self.queue.enqueue_batch(tier, payloads)
        except redis.RedisError as e:
            logger.error("Enqueue of %d job(s) to %s failed, left for sweep: %s", count, tier.value, e)
            return AdmissionResult(job_ids, tier, queued=False)

        logger.info("Admitted %d job(s) for workspace %s on tier %s", count, workspace_id, tier.value)
        if self.notify is not None:
            # latency optimization only; the periodic worker loop covers a lost wake-up
            try:
                self.notify(count)
            except Exception:
                logger.warning("Worker wake-up failed", exc_info=True)
        return AdmissionResult(job_ids, tier, queued=True)
