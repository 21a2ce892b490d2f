from genqueue.jobqueue import PriorityQueue, QueuedPayload, Tier


def payload(job_id, priority=0):
    return QueuedPayload(job_id=job_id, workspace_id="ws", prompt="p", model="zimage", priority=priority)


def test_fifo_within_tier(queue):
    queue.enqueue_batch(Tier.LOW, [payload("a"), payload("b"), payload("c")])
    assert [queue.dequeue(Tier.LOW).job_id for _ in range(3)] == ["a", "b", "c"]
    assert queue.dequeue(Tier.LOW) is None


def test_high_drains_before_low(queue):
    queue.enqueue(Tier.LOW, payload("low-1"))
    queue.enqueue(Tier.HIGH, payload("high-1", 10))
    queue.enqueue(Tier.LOW, payload("low-2"))
    queue.enqueue(Tier.HIGH, payload("high-2", 10))

    order = []
    while (p := queue.dequeue_next()) is not None:
        order.append(p.job_id)
    assert order == ["high-1", "high-2", "low-1", "low-2"]


def test_pop_is_destructive(fake_redis):
    q1 = PriorityQueue(fake_redis)
    q2 = PriorityQueue(fake_redis)  # a second worker on the same Redis
    q1.enqueue(Tier.HIGH, payload("only"))
    assert q1.dequeue_next().job_id == "only"
    assert q2.dequeue_next() is None


def test_payload_round_trips_fields(queue):
    p = QueuedPayload(job_id="j", workspace_id="w", prompt="sunset", model="qwen",
                      input_refs=["https://x/y.png"], priority=10)
    queue.enqueue(Tier.HIGH, p)
    got = queue.dequeue(Tier.HIGH)
    assert got == p


def test_tier_keys_and_length(queue, fake_redis):
    queue.enqueue(Tier.HIGH, payload("h"))
    queue.enqueue_batch(Tier.LOW, [payload("l1"), payload("l2")])
    assert fake_redis.llen("queue:high") == 1
    assert fake_redis.llen("queue:low") == 2
    assert len(queue) == 3
    assert queue.queued_job_ids() == {"h", "l1", "l2"}


def test_empty_batch_is_noop(queue, fake_redis):
    queue.enqueue_batch(Tier.LOW, [])
    assert fake_redis.lists == {}
