"""Shared fixtures: in-memory SQLite, an in-memory Redis double, stub providers."""

from __future__ import annotations

import itertools
import uuid
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import redis
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from genqueue.auth import hash_password
from genqueue.db import init_db
from genqueue.exchange import InMemoryExchange
from genqueue.jobqueue import PriorityQueue
from genqueue.models import User, Workspace
from genqueue.providers import (
    ProviderAdapter,
    ProviderRegistry,
    Resolution,
    ResolutionMode,
    Submission,
)
from genqueue.errors import ProviderSubmitFailed
from genqueue.settlement import Settler
from genqueue.store import JobStore
from genqueue.worker import Worker
from genqueue.polling import PollBudget


# ============================================================================
# Test doubles
# ============================================================================


class FakePipeline:
    def __init__(self, owner: "FakeRedis"):
        self.owner = owner
        self.ops: List = []

    def rpush(self, key, *values):
        self.ops.append((key, values))
        return self

    def execute(self):
        if self.owner.fail_pipelines:
            raise redis.ConnectionError("connection refused")
        results = []
        for key, values in self.ops:
            results.append(self.owner.rpush(key, *values))
        self.ops = []
        return results


class FakeRedis:
    """The subset of redis.Redis the pipeline uses, kept in dicts."""

    def __init__(self):
        self.lists: Dict[str, List[str]] = {}
        self.kv: Dict[str, str] = {}
        self.fail_pipelines = False

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    def lpop(self, key):
        items = self.lists.get(key) or []
        return items.pop(0) if items else None

    def lrange(self, key, start, end):
        items = self.lists.get(key) or []
        return list(items[start:] if end == -1 else items[start:end + 1])

    def llen(self, key):
        return len(self.lists.get(key) or [])

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.kv:
            return None
        self.kv[key] = value
        return True

    def delete(self, *keys):
        n = 0
        for k in keys:
            n += int(self.kv.pop(k, None) is not None)
        return n

    def lock(self, name, timeout=None, blocking=True):
        return FakeLock(self, name, timeout)


class FakeLock:
    """Token-owned lock with the acquire/release contract of redis.lock.Lock."""

    def __init__(self, owner: "FakeRedis", name: str, timeout=None):
        self.owner = owner
        self.name = name
        self.timeout = timeout
        self.token: Optional[str] = None

    def acquire(self, blocking=None):
        token = uuid.uuid4().hex
        if self.owner.set(self.name, token, nx=True, ex=self.timeout):
            self.token = token
            return True
        return False

    def release(self):
        token, self.token = self.token, None
        if token is None:
            raise redis.exceptions.LockError("Cannot release an unlocked lock")
        if self.owner.kv.get(self.name) != token:
            raise redis.exceptions.LockNotOwnedError("Cannot release a lock that's no longer owned")
        del self.owner.kv[self.name]


class FakeAssets:
    def __init__(self):
        self.calls: List = []
        self.fail = False

    def persist(self, content: bytes, content_type: str, key: str) -> str:
        from genqueue.errors import PersistenceFailed

        if self.fail:
            raise PersistenceFailed("S3 upload failed")
        self.calls.append((content, content_type, key))
        return f"https://cdn.test/{key}"


class StubAdapter(ProviderAdapter):
    """Scripted provider: `resolutions` are returned (or raised) in order by resolve()."""

    def __init__(self, mode=ResolutionMode.POLL, name="stub", resolutions=None,
                 submit_error: Optional[str] = None, inline: Optional[Resolution] = None):
        self.name = name
        self.resolution_mode = mode
        self.resolutions = list(resolutions or [])
        self.submit_error = submit_error
        self.inline = inline
        self.submitted: List = []
        self.resolve_calls = 0
        self._ids = itertools.count(1)

    def submit(self, payload):
        if self.submit_error:
            raise ProviderSubmitFailed(self.submit_error)
        self.submitted.append(payload)
        return Submission(task_id=f"task-{next(self._ids)}", resolution=self.inline)

    def resolve(self, task_id):
        self.resolve_calls += 1
        if not self.resolutions:
            return Resolution.pending()
        item = self.resolutions.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def image_response(content=b"\x89PNG-bytes", content_type="image/png", status=200):
    r = MagicMock()
    r.ok = 200 <= status < 300
    r.status_code = status
    r.content = content
    r.headers = {"content-type": content_type}
    return r


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(eng)
    return eng


@pytest.fixture
def store(engine):
    return JobStore(engine)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def queue(fake_redis):
    return PriorityQueue(fake_redis)


@pytest.fixture
def exchange():
    return InMemoryExchange(ttl_seconds=600)


@pytest.fixture
def assets():
    return FakeAssets()


@pytest.fixture
def http():
    session = MagicMock()
    session.get.return_value = image_response()
    return session


@pytest.fixture
def settler(store, assets, http):
    return Settler(store, assets, http=http)


@pytest.fixture
def make_user(engine):
    def _make(username="alice", password="secret", plan="free", with_workspace=True):
        with Session(engine) as s:
            user = User(username=username, password_hash=hash_password(password), subscription_plan=plan)
            s.add(user)
            s.commit()
            s.refresh(user)
            if with_workspace:
                ws = Workspace(name=f"{username}'s workspace", owner_user_id=user.id)
                s.add(ws)
                s.commit()
                user.default_workspace_id = ws.id
                s.add(user)
                s.commit()
            s.refresh(user)
            return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def make_job(store, user):
    def _make(**fields):
        defaults = dict(
            workspace_id=user.default_workspace_id,
            created_by=user.id,
            model="zimage",
            prompt="sunset over mountains",
            priority=0,
        )
        defaults.update(fields)
        return store.create(**defaults)
    return _make


@pytest.fixture
def no_sleep():
    slept: List[float] = []
    return slept.append, slept


@pytest.fixture
def make_worker(store, queue, settler, fake_redis, no_sleep):
    sleep, _ = no_sleep

    def _make(adapter: ProviderAdapter, max_attempts=3, **kwargs):
        registry = ProviderRegistry(default=adapter)
        return Worker(
            store, queue, registry, settler,
            lock_client=fake_redis,
            sleep=sleep,
            budget_factory=lambda: PollBudget(max_attempts=max_attempts, interval=1.5),
            **kwargs,
        )
    return _make


@pytest.fixture
def age_job(engine):
    """Push a job's timestamps into the past (JobStore.patch always restamps updated_at)."""
    from datetime import timedelta

    from genqueue.models import Job, utcnow

    def _age(job_id: str, seconds: int, created: bool = False):
        with Session(engine) as s:
            job = s.get(Job, job_id)
            job.updated_at = utcnow() - timedelta(seconds=seconds)
            if created:
                job.created_at = job.updated_at
            s.add(job)
            s.commit()
    return _age
