"""
Bounded poll loop for poll-based providers.

The loop's state is an explicit PollBudget (attempts used, attempt cap,
interval, wall-clock deadline) handed from one iteration to the next, so the
timeout policy is a value tests can construct and inspect.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

import requests

from genqueue.errors import ProviderTimeout
from genqueue.providers import Outcome, ProviderAdapter, Resolution
from genqueue.settings import settings

logger = logging.getLogger(__name__)

# a failed resolve call burns an attempt but does not end the loop
TRANSIENT_ERRORS = (requests.RequestException, ValueError, KeyError)


@dataclass(frozen=True)
class PollBudget:
    max_attempts: int
    interval: float
    deadline: Optional[float] = None  # absolute, in clock() units
    attempt: int = 0

    @classmethod
    def default(cls, clock: Callable[[], float] = time.monotonic) -> "PollBudget":
        max_attempts = settings.POLL_MAX_ATTEMPTS
        interval = settings.POLL_INTERVAL_SECONDS
        # one interval of slack over the nominal attempts * interval budget
        return cls(max_attempts, interval, deadline=clock() + interval * (max_attempts + 1))

    def exhausted(self, now: float) -> bool:
        if self.attempt >= self.max_attempts:
            return True
        return self.deadline is not None and now >= self.deadline

    def next(self) -> "PollBudget":
        return replace(self, attempt=self.attempt + 1)


def poll_until_settled(
    adapter: ProviderAdapter,
    task_id: str,
    budget: PollBudget,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Resolution:
    """
    Call adapter.resolve every `budget.interval` seconds until the provider
    reports success or failure. Raises ProviderTimeout when the budget runs out.
    """
    while not budget.exhausted(clock()):
        sleep(budget.interval)
        budget = budget.next()
        try:
            resolution = adapter.resolve(task_id)
        except TRANSIENT_ERRORS as e:
            logger.warning("Poll %d/%d for %s task %s failed: %s",
                           budget.attempt, budget.max_attempts, adapter.name, task_id, e)
            continue
        if resolution.outcome is not Outcome.PENDING:
            logger.info("%s task %s settled as %s after %d poll(s)",
                        adapter.name, task_id, resolution.outcome.value, budget.attempt)
            return resolution
    raise ProviderTimeout(f"Timed out waiting for image after {budget.attempt} poll(s)")
