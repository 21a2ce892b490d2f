from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from genqueue.admission import AdmissionController
from genqueue.callbacks import CallbackReconciler
from genqueue.db import make_engine
from genqueue.exchange import AssetExchange, exchange as process_exchange
from genqueue.jobqueue import PriorityQueue, get_redis
from genqueue.providers import ProviderRegistry, build_registry
from genqueue.settlement import Settler
from genqueue.storage import AssetStore
from genqueue.store import JobStore
from genqueue.sweeper import Sweeper
from genqueue.worker import Worker, notify_worker


@dataclass
class Services:
    engine: Engine
    store: JobStore
    queue: PriorityQueue
    exchange: AssetExchange
    registry: ProviderRegistry
    settler: Settler
    worker: Worker
    admission: AdmissionController
    reconciler: CallbackReconciler
    sweeper: Sweeper


def build_services(
    *,
    engine: Optional[Engine] = None,
    redis_client=None,
    exchange: Optional[AssetExchange] = None,
    registry: Optional[ProviderRegistry] = None,
    assets: Optional[AssetStore] = None,
    worker_kwargs: Optional[dict] = None,
) -> Services:
    """Wire the pipeline. Every collaborator can be swapped (tests pass fakes)."""
    engine = engine or make_engine()
    redis_client = redis_client if redis_client is not None else get_redis()
    exchange = exchange if exchange is not None else process_exchange
    registry = registry or build_registry(exchange)
    store = JobStore(engine)
    queue = PriorityQueue(redis_client)
    settler = Settler(store, assets if assets is not None else AssetStore())
    worker = Worker(store, queue, registry, settler, lock_client=redis_client,
                    continuation=notify_worker, **(worker_kwargs or {}))
    return Services(
        engine=engine,
        store=store,
        queue=queue,
        exchange=exchange,
        registry=registry,
        settler=settler,
        worker=worker,
        admission=AdmissionController(store, queue, registry, notify=notify_worker),
        reconciler=CallbackReconciler(store, settler),
        sweeper=Sweeper(store, queue),
    )
