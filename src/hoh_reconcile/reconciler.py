"""
Hub cluster reconciler.

One sync pass for one ManagedCluster:

1. Read the ManagedCluster. Gone means nothing to do.
2-3. Create the stage 1 (Subscription) ManifestWork, or update it when the
     authored content drifted. Creation ends the pass; the work's own status
     events bring the key back.
4. Gate: stage 2 runs only when the stage 1 snapshot read in step 3 reports
   Subscription ``state == AtLatestKnown``. A pass never re-reads stage 1
   after its own update; any status change that produces is handled by the
   next triggered sync.
5-7. Build the stage 2 (MCH) ManifestWork with the cluster's override and
     create or update it the same way.

Every pass rebuilds the full desired state, so running it again is always
safe and interrupted passes resume on the next event.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from hoh_reconcile.ensure import EnsureEngine
from hoh_reconcile.errors import NotFoundError, ReconcileCancelled
from hoh_reconcile.logging_config import reconcile_context
from hoh_reconcile.metrics import RECONCILE_DURATION, WORK_WRITES
from hoh_reconcile.state import (
    SUBSCRIPTION_KIND,
    SUBSCRIPTION_READY_STATE,
    SUBSCRIPTION_STATE_FEEDBACK,
    ManagedCluster,
    ManifestWork,
    Stage,
)

logger = logging.getLogger(__name__)


class ClusterCache(Protocol):
    def get_cluster(self, name: str) -> ManagedCluster: ...

    def get_work(self, namespace: str, name: str) -> ManifestWork: ...


class WorkWriter(Protocol):
    async def create(self, work: ManifestWork) -> ManifestWork: ...

    async def update(self, work: ManifestWork) -> ManifestWork: ...


class DesiredStateBuilder(Protocol):
    def subscription_work(self, cluster_name: str) -> ManifestWork: ...

    def mch_work(self, cluster_name: str, override: str = "") -> ManifestWork: ...


class WorkEventRecorder(Protocol):
    async def work_created(self, work: ManifestWork) -> None: ...

    async def work_updated(self, work: ManifestWork) -> None: ...


@dataclass
class WriteAction:
    """A ManifestWork write performed during a sync."""

    stage: Stage
    operation: str  # "create" or "update"
    name: str
    namespace: str
    resource_version: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stage": self.stage.name.lower(),
            "operation": self.operation,
            "name": self.name,
            "namespace": self.namespace,
            "resource_version": self.resource_version,
        }


@dataclass
class SyncResult:
    """What one sync pass did for a cluster."""

    cluster: str
    cluster_found: bool = True
    stage2_gated: bool = False
    actions: list[WriteAction] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.actions)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "cluster": self.cluster,
            "cluster_found": self.cluster_found,
            "stage2_gated": self.stage2_gated,
            "writes": self.writes,
            "actions": [a.to_dict() for a in self.actions],
        }


def subscription_ready(work: ManifestWork) -> bool:
    """True when any Subscription in the stage 1 work reports the latest known CSV."""
    states = work.feedback_values(SUBSCRIPTION_KIND, SUBSCRIPTION_STATE_FEEDBACK)
    return any(isinstance(s, str) and s == SUBSCRIPTION_READY_STATE for s in states)


class HubClusterReconciler:
    """Drives the two-stage ManifestWork rollout for one cluster key."""

    def __init__(
        self,
        cache: ClusterCache,
        writer: WorkWriter,
        builder: DesiredStateBuilder,
        ensure_engine: Optional[EnsureEngine] = None,
        recorder: Optional[WorkEventRecorder] = None,
    ):
        self.cache = cache
        self.writer = writer
        self.builder = builder
        self.ensure_engine = ensure_engine or EnsureEngine()
        self.recorder = recorder

    @staticmethod
    def _check_stop(stop: Optional[asyncio.Event], cluster_name: str) -> None:
        if stop is not None and stop.is_set():
            raise ReconcileCancelled(f"sync of {cluster_name} cancelled")

    async def sync(self, cluster_name: str, stop: Optional[asyncio.Event] = None) -> SyncResult:
        """
        Reconcile one cluster.

        Args:
            cluster_name: Reconcile key, the ManagedCluster name
            stop: Checked between steps; when set the pass aborts

        Returns:
            SyncResult describing the writes performed

        Raises:
            ReconcileCancelled: ``stop`` was set mid-pass
            ManifestBuildError: the stage 2 override is invalid
            ApiError: any lookup or write failure other than not-found
        """
        with reconcile_context(cluster_name):
            start = time.monotonic()
            try:
                return await self._sync(cluster_name, stop)
            finally:
                RECONCILE_DURATION.observe(time.monotonic() - start)

    async def _sync(self, cluster_name: str, stop: Optional[asyncio.Event]) -> SyncResult:
        logger.debug(f"Reconciling hub cluster for {cluster_name}")
        result = SyncResult(cluster=cluster_name)

        try:
            cluster = self.cache.get_cluster(cluster_name)
        except NotFoundError:
            # TODO: delete the stage ManifestWorks once cleanup on cluster removal is designed
            logger.info(f"ManagedCluster {cluster_name} not found, nothing to reconcile")
            result.cluster_found = False
            return result

        self._check_stop(stop, cluster_name)

        # Stage 1: Subscription
        desired_sub = self.builder.subscription_work(cluster_name)
        try:
            subscription = self.cache.get_work(cluster_name, Stage.SUBSCRIPTION.work_name(cluster_name))
        except NotFoundError:
            logger.info(f"Creating subscription manifestwork in {cluster_name} namespace")
            await self._create(Stage.SUBSCRIPTION, desired_sub, result)
            result.stage2_gated = True
            return result

        await self._ensure(Stage.SUBSCRIPTION, subscription, desired_sub, result)
        self._check_stop(stop, cluster_name)

        # Gate on the snapshot read above, not on anything this pass wrote
        if not subscription_ready(subscription):
            logger.debug(f"Subscription in {cluster_name} not at {SUBSCRIPTION_READY_STATE}, waiting")
            result.stage2_gated = True
            return result

        # Stage 2: MultiClusterHub
        desired_mch = self.builder.mch_work(cluster_name, cluster.override)
        self._check_stop(stop, cluster_name)

        try:
            mch = self.cache.get_work(cluster_name, Stage.MCH.work_name(cluster_name))
        except NotFoundError:
            logger.info(f"Creating mch manifestwork in {cluster_name} namespace")
            mch = await self._create(Stage.MCH, desired_mch, result)

        await self._ensure(Stage.MCH, mch, desired_mch, result)
        return result

    async def _create(self, stage: Stage, desired: ManifestWork, result: SyncResult) -> ManifestWork:
        created = await self.writer.create(desired)
        WORK_WRITES.labels(stage=stage.name.lower(), operation="create").inc()
        result.actions.append(
            WriteAction(stage, "create", desired.name, desired.namespace, created.resource_version)
        )
        if self.recorder is not None:
            await self.recorder.work_created(created)
        return created

    async def _ensure(self, stage: Stage, existing: ManifestWork, desired: ManifestWork, result: SyncResult) -> None:
        outcome = self.ensure_engine.ensure(existing, desired)
        if not outcome.needs_write:
            return

        logger.info(
            f"Updating {stage.name.lower()} manifestwork {existing.namespace}/{existing.name} "
            f"at resourceVersion {existing.resource_version}"
        )
        updated = await self.writer.update(outcome.merged)
        WORK_WRITES.labels(stage=stage.name.lower(), operation="update").inc()
        result.actions.append(
            WriteAction(stage, "update", existing.name, existing.namespace, outcome.merged.resource_version)
        )
        if self.recorder is not None:
            await self.recorder.work_updated(updated)
