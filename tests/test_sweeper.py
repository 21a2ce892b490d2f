import pytest

from genqueue.jobqueue import Tier
from genqueue.state import JobStatus
from genqueue.sweeper import Sweeper


@pytest.fixture
def sweeper(store, queue):
    return Sweeper(store, queue)


def test_orphaned_queued_job_is_requeued(sweeper, store, queue, make_job, age_job):
    job_id = make_job(priority=10)
    age_job(job_id, 900, created=True)

    assert sweeper.sweep() == {"requeued": 1, "abandoned": 0, "expired": 0}

    payload = queue.dequeue(Tier.HIGH)
    assert payload.job_id == job_id
    assert store.get(job_id).status == "queued"
    # stale clock restarted: a second sweep leaves it alone
    queue.enqueue(Tier.HIGH, payload)
    assert sweeper.sweep()["requeued"] == 0


def test_job_still_in_queue_is_left_alone(sweeper, store, queue, make_job, age_job):
    from genqueue.admission import payload_for

    job_id = make_job()
    queue.enqueue(Tier.LOW, payload_for(store.get(job_id)))
    age_job(job_id, 900, created=True)

    assert sweeper.sweep()["requeued"] == 0
    assert len(queue) == 1


def test_fresh_queued_job_untouched(sweeper, queue, make_job):
    make_job()
    assert sweeper.sweep() == {"requeued": 0, "abandoned": 0, "expired": 0}
    assert len(queue) == 0


def test_queued_job_abandoned_after_give_up(sweeper, store, queue, make_job, age_job):
    job_id = make_job()
    age_job(job_id, 2 * 3600, created=True)

    assert sweeper.sweep()["abandoned"] == 1
    job = store.get(job_id)
    assert job.status == "failed"
    assert job.error == "Job was never dispatched"
    assert len(queue) == 0


def test_stuck_processing_job_expires(sweeper, store, make_job, age_job):
    job_id = make_job()
    store.transition(job_id, JobStatus.PROCESSING, provider="kie", provider_task_id="t")
    age_job(job_id, 3600)

    assert sweeper.sweep()["expired"] == 1
    job = store.get(job_id)
    assert job.status == "failed"
    assert job.error == "Timed out waiting for provider result"


def test_terminal_jobs_ignored(sweeper, store, make_job, age_job):
    job_id = make_job()
    store.transition(job_id, JobStatus.FAILED, error="x")
    age_job(job_id, 10 * 3600, created=True)
    assert sweeper.sweep() == {"requeued": 0, "abandoned": 0, "expired": 0}
