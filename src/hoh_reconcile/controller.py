"""
Hub cluster controller.

Wires the ManagedCluster and ManifestWork informers into the watch cache and
the event router, and runs a pool of asyncio workers that drain the work
queue through HubClusterReconciler.sync.
"""

import asyncio
import logging
from typing import Any, Optional

from hoh_reconcile.cache import Informer, ObjectStore, WatchCache
from hoh_reconcile.client import MANAGED_CLUSTERS, MANIFEST_WORKS, KubeClient, ManifestWorkWriter
from hoh_reconcile.config import ControllerConfig
from hoh_reconcile.ensure import ComparisonCache, EnsureEngine
from hoh_reconcile.errors import ReconcileCancelled
from hoh_reconcile.events import EventRecorder
from hoh_reconcile.manifests import ManifestWorkBuilder
from hoh_reconcile.metrics import RECONCILE_TOTAL
from hoh_reconcile.reconciler import HubClusterReconciler
from hoh_reconcile.router import EventRouter
from hoh_reconcile.state import ManagedCluster, ManifestWork
from hoh_reconcile.workqueue import WorkQueue

logger = logging.getLogger(__name__)

CONTROLLER_NAME = "HubClusterController"


class HubClusterController:
    """Owns the informers, the work queue and the worker pool."""

    def __init__(
        self,
        config: ControllerConfig,
        client: KubeClient,
        reconciler: Optional[HubClusterReconciler] = None,
    ):
        self.config = config
        self.client = client

        self.queue = WorkQueue(base_delay=config.queue_base_delay, max_delay=config.queue_max_delay)
        self.router = EventRouter(self.queue)

        self.cluster_informer: Informer[ManagedCluster] = Informer(
            "ManagedCluster",
            list_fn=lambda: client.list_objects(MANAGED_CLUSTERS),
            watch_fn=lambda rv, timeout: client.watch(MANAGED_CLUSTERS, rv, timeout),
            parse=ManagedCluster.from_dict,
            store=ObjectStore(),
            relist_backoff=config.relist_backoff,
            watch_timeout=config.watch_timeout_seconds,
        )
        self.work_informer: Informer[ManifestWork] = Informer(
            "ManifestWork",
            list_fn=lambda: client.list_objects(MANIFEST_WORKS),
            watch_fn=lambda rv, timeout: client.watch(MANIFEST_WORKS, rv, timeout),
            parse=ManifestWork.from_dict,
            store=ObjectStore(),
            relist_backoff=config.relist_backoff,
            watch_timeout=config.watch_timeout_seconds,
        )
        self.cluster_informer.add_handler(self.router.on_cluster_event)
        self.work_informer.add_handler(self.router.on_work_event)

        self.cache = WatchCache(self.cluster_informer.store, self.work_informer.store)
        self.compare_cache = ComparisonCache(
            max_entries=config.compare_cache_size,
            ttl_seconds=config.compare_cache_ttl,
        )
        self.reconciler = reconciler or HubClusterReconciler(
            cache=self.cache,
            writer=ManifestWorkWriter(client),
            builder=ManifestWorkBuilder(config),
            ensure_engine=EnsureEngine(self.compare_cache),
            recorder=EventRecorder(client),
        )

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._stats = {"synced_total": 0, "failed_total": 0, "cancelled_total": 0}

    @property
    def has_synced(self) -> bool:
        return self.cluster_informer.synced.is_set() and self.work_informer.synced.is_set()

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stop.is_set()

    def status(self) -> dict[str, Any]:
        """Snapshot for the status endpoint."""
        return {
            "name": CONTROLLER_NAME,
            "running": self.running,
            "synced": self.has_synced,
            "workers": self.config.workers,
            "queue_depth": len(self.queue),
            "clusters": len(self.cache.clusters),
            "manifestworks": len(self.cache.works),
            "compare_cache_entries": len(self.compare_cache),
            **self._stats,
        }

    async def process_next(self) -> bool:
        """Handle one key. Returns False once the queue is shut down."""
        key = await self.queue.get()
        if key is None:
            return False

        try:
            result = await self.reconciler.sync(key, stop=self._stop)
        except ReconcileCancelled:
            self._stats["cancelled_total"] += 1
            RECONCILE_TOTAL.labels(result="cancelled").inc()
            self.queue.add_rate_limited(key)
        except Exception as e:
            self._stats["failed_total"] += 1
            RECONCILE_TOTAL.labels(result="error").inc()
            logger.error(
                f"{CONTROLLER_NAME} sync of {key} failed "
                f"(attempt {self.queue.num_requeues(key) + 1}): {e}"
            )
            self.queue.add_rate_limited(key)
        else:
            self._stats["synced_total"] += 1
            RECONCILE_TOTAL.labels(result="success").inc()
            self.queue.forget(key)
            if result.actions:
                logger.info(
                    f"Reconciled {key}: "
                    + ", ".join(f"{a.operation} {a.name}" for a in result.actions)
                )
        finally:
            self.queue.done(key)
        return True

    async def _worker(self, index: int) -> None:
        logger.debug(f"{CONTROLLER_NAME} worker {index} started")
        while await self.process_next():
            pass
        logger.debug(f"{CONTROLLER_NAME} worker {index} stopped")

    async def start(self) -> None:
        """Start informers, wait for both caches, then start the workers."""
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self.cluster_informer.run(self._stop), name="informer-managedclusters"),
            asyncio.create_task(self.work_informer.run(self._stop), name="informer-manifestworks"),
        ]

        logger.info(f"Waiting for {CONTROLLER_NAME} caches to sync")
        synced = asyncio.ensure_future(
            asyncio.gather(self.cluster_informer.synced.wait(), self.work_informer.synced.wait())
        )
        stopped = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({synced, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (synced, stopped):
                waiter.cancel()
        if self._stop.is_set():
            logger.info(f"{CONTROLLER_NAME} stopped before caches synced")
            return
        logger.info(f"Caches synced, starting {self.config.workers} worker(s)")

        for i in range(self.config.workers):
            self._tasks.append(asyncio.create_task(self._worker(i), name=f"worker-{i}"))

    async def run(self) -> None:
        """Run until stop() is called."""
        await self.start()
        await self._stop.wait()
        await self.shutdown()

    def stop(self) -> None:
        self._stop.set()

    async def shutdown(self) -> None:
        """Stop workers and informers and wait for them to exit."""
        self._stop.set()
        self.queue.shutdown()
        for task in self._tasks:
            if task.get_name().startswith("informer-"):
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"{CONTROLLER_NAME} stopped")
