"""
Event routing from the two watches onto the work queue.

Each watched kind has an admission predicate and a key deriver. Both are
plain functions so they can be tested without informers or a queue;
EventRouter composes them and is the only place that enqueues.

ManagedCluster events map to the cluster name. ManifestWork events map to
the work's namespace, which is the owning cluster's name, and are admitted
only for the two works this controller owns.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from hoh_reconcile.metrics import EVENTS_ENQUEUED, EVENTS_FILTERED
from hoh_reconcile.state import (
    LOCAL_CLUSTER_NAME,
    ManagedCluster,
    ManifestWork,
    Stage,
)

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class WatchEvent:
    """One change notification from an informer."""

    type: EventType
    obj: Any


class KeyQueue(Protocol):
    def add(self, key: str) -> None: ...


def admit_cluster(obj: Any) -> bool:
    """Admit every ManagedCluster except the hub itself and opted-out clusters."""
    if not isinstance(obj, ManagedCluster) or not obj.name:
        return False
    if obj.opted_out or obj.name == LOCAL_CLUSTER_NAME:
        return False
    return True


def cluster_key(obj: ManagedCluster) -> str:
    return obj.name


def admit_work(obj: Any) -> bool:
    """Admit only the stage ManifestWorks this controller owns."""
    if not isinstance(obj, ManifestWork) or not obj.name or not obj.namespace:
        return False
    return Stage.for_work_name(obj.namespace, obj.name) is not None


def work_key(obj: ManifestWork) -> str:
    return obj.namespace


@dataclass(frozen=True)
class Route:
    """Admission predicate and key deriver for one watched kind."""

    kind: str
    admit: Callable[[Any], bool]
    key: Callable[[Any], str]


CLUSTER_ROUTE = Route("ManagedCluster", admit_cluster, cluster_key)
WORK_ROUTE = Route("ManifestWork", admit_work, work_key)


class EventRouter:
    """Turns watch events into deduplicated reconcile keys."""

    def __init__(self, queue: KeyQueue):
        self.queue = queue

    def route(self, route: Route, event: WatchEvent) -> str | None:
        """Enqueue the key for ``event`` if admitted. Returns the key or None."""
        if not route.admit(event.obj):
            EVENTS_FILTERED.labels(kind=route.kind).inc()
            return None

        key = route.key(event.obj)
        logger.debug(f"{route.kind} {event.type.value}: enqueue {key}")
        EVENTS_ENQUEUED.labels(kind=route.kind).inc()
        self.queue.add(key)
        return key

    def on_cluster_event(self, event: WatchEvent) -> str | None:
        return self.route(CLUSTER_ROUTE, event)

    def on_work_event(self, event: WatchEvent) -> str | None:
        return self.route(WORK_ROUTE, event)
