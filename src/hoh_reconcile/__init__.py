"""Hub cluster controller: two-stage management hub provisioning for managed clusters."""

from hoh_reconcile.ensure import ComparisonCache, EnsureEngine, EnsureResult
from hoh_reconcile.reconciler import HubClusterReconciler, SyncResult
from hoh_reconcile.router import EventRouter
from hoh_reconcile.state import ManagedCluster, ManifestWork, Stage

__all__ = [
    "ComparisonCache",
    "EnsureEngine",
    "EnsureResult",
    "EventRouter",
    "HubClusterReconciler",
    "ManagedCluster",
    "ManifestWork",
    "Stage",
    "SyncResult",
]
