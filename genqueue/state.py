"""
Job state machine shared by the polling worker and the callback reconciler.

    queued -> processing -> success
       |           |
       +-----------+------> failed

Synchronous providers still pass through processing: submit records the
provider handle first, then the inline result settles the job.

success and failed are terminal.
"""

from enum import Enum
from typing import Dict, FrozenSet

from genqueue.errors import InvalidTransition


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL: FrozenSet[JobStatus] = frozenset({JobStatus.SUCCESS, JobStatus.FAILED})

# target -> statuses it may be entered from
PREDECESSORS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.QUEUED: frozenset(),
    JobStatus.PROCESSING: frozenset({JobStatus.QUEUED}),
    JobStatus.SUCCESS: frozenset({JobStatus.PROCESSING}),
    # queued -> failed: submit failed before any task handle existed
    JobStatus.FAILED: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
}


def is_terminal(status) -> bool:
    return JobStatus(status) in TERMINAL


def can_transition(current, target) -> bool:
    return JobStatus(current) in PREDECESSORS[JobStatus(target)]


def predecessors(target) -> FrozenSet[JobStatus]:
    target = JobStatus(target)
    if not PREDECESSORS[target]:
        raise InvalidTransition(f"nothing transitions into {target.value}")
    return PREDECESSORS[target]
