"""
Watch cache for ManagedClusters and ManifestWorks.

An Informer lists a resource, fills its ObjectStore, then follows the watch
stream from the list resource version and tells its handlers about every
change. WatchCache is the read-only view the reconciler uses: eventually
consistent, served from memory, written only by the informers.
"""

import asyncio
import copy
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar

from hoh_reconcile.errors import GoneError, NotFoundError
from hoh_reconcile.router import EventType, WatchEvent
from hoh_reconcile.state import Identifiable, ManagedCluster, ManifestWork

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Identifiable)

ListFn = Callable[[], Awaitable[tuple[list[dict[str, Any]], str]]]
WatchFn = Callable[[str, int], AsyncIterator[tuple[str, dict[str, Any]]]]
Handler = Callable[[WatchEvent], None]


class ObjectStore(Generic[T]):
    """In-memory objects keyed by (namespace, name)."""

    def __init__(self):
        self._items: dict[tuple[str, str], T] = {}

    def __len__(self) -> int:
        return len(self._items)

    @staticmethod
    def key_of(obj: Identifiable) -> tuple[str, str]:
        return (obj.namespace, obj.name)

    def get(self, namespace: str, name: str) -> Optional[T]:
        return self._items.get((namespace, name))

    def values(self) -> list[T]:
        return list(self._items.values())

    def upsert(self, obj: T) -> Optional[T]:
        """Store ``obj``; returns the object it replaced, if any."""
        key = self.key_of(obj)
        previous = self._items.get(key)
        self._items[key] = obj
        return previous

    def delete(self, obj: Identifiable) -> Optional[T]:
        return self._items.pop(self.key_of(obj), None)

    def replace(self, objs: list[T]) -> list[T]:
        """Swap in a full listing. Returns the objects that disappeared."""
        fresh = {self.key_of(o): o for o in objs}
        removed = [o for k, o in self._items.items() if k not in fresh]
        self._items = fresh
        return removed


class Informer(Generic[T]):
    """List+watch loop feeding one ObjectStore."""

    def __init__(
        self,
        name: str,
        list_fn: ListFn,
        watch_fn: WatchFn,
        parse: Callable[[dict[str, Any]], T],
        store: Optional[ObjectStore[T]] = None,
        relist_backoff: float = 5.0,
        watch_timeout: int = 300,
    ):
        self.name = name
        self.list_fn = list_fn
        self.watch_fn = watch_fn
        self.parse = parse
        self.store: ObjectStore[T] = store if store is not None else ObjectStore()
        self.relist_backoff = relist_backoff
        self.watch_timeout = watch_timeout

        self.synced = asyncio.Event()
        self._handlers: list[Handler] = []

    def add_handler(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def _dispatch(self, event_type: EventType, obj: T) -> None:
        event = WatchEvent(type=event_type, obj=obj)
        for handler in self._handlers:
            handler(event)

    async def list_once(self) -> str:
        """List and replace the store. Returns the list resource version."""
        items, resource_version = await self.list_fn()
        objs = [self.parse(item) for item in items]

        existing = {ObjectStore.key_of(o) for o in self.store.values()}
        removed = self.store.replace(objs)
        for obj in objs:
            event_type = EventType.MODIFIED if ObjectStore.key_of(obj) in existing else EventType.ADDED
            self._dispatch(event_type, obj)
        for obj in removed:
            self._dispatch(EventType.DELETED, obj)

        logger.info(f"{self.name} informer listed {len(objs)} objects at {resource_version or '<none>'}")
        return resource_version

    async def watch_once(self, resource_version: str) -> str:
        """Follow one watch stream. Returns the last resource version seen."""
        async for event_type, raw in self.watch_fn(resource_version, self.watch_timeout):
            if event_type == "BOOKMARK":
                resource_version = (raw.get("metadata") or {}).get("resourceVersion", resource_version)
                continue

            obj = self.parse(raw)
            resource_version = (raw.get("metadata") or {}).get("resourceVersion", resource_version)

            if event_type == EventType.DELETED.value:
                self.store.delete(obj)
                self._dispatch(EventType.DELETED, obj)
            elif event_type in (EventType.ADDED.value, EventType.MODIFIED.value):
                self.store.upsert(obj)
                self._dispatch(EventType(event_type), obj)
            else:
                logger.debug(f"{self.name} informer ignoring {event_type} event")
        return resource_version

    async def run(self, stop: asyncio.Event) -> None:
        """List, then watch until ``stop`` is set. Relists on expiry or error."""
        while not stop.is_set():
            try:
                resource_version = await self.list_once()
                self.synced.set()
                while not stop.is_set():
                    resource_version = await self.watch_once(resource_version)
            except GoneError:
                logger.info(f"{self.name} watch expired, relisting")
                continue
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{self.name} informer error, relisting in {self.relist_backoff}s: {e}")
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.relist_backoff)
                except asyncio.TimeoutError:
                    pass


class WatchCache:
    """Read-only cached view of ManagedClusters and ManifestWorks."""

    def __init__(
        self,
        clusters: Optional[ObjectStore[ManagedCluster]] = None,
        works: Optional[ObjectStore[ManifestWork]] = None,
    ):
        self.clusters: ObjectStore[ManagedCluster] = clusters if clusters is not None else ObjectStore()
        self.works: ObjectStore[ManifestWork] = works if works is not None else ObjectStore()

    def get_cluster(self, name: str) -> ManagedCluster:
        """
        Raises:
            NotFoundError: no ManagedCluster named ``name`` is cached
        """
        obj = self.clusters.get("", name)
        if obj is None:
            raise NotFoundError("ManagedCluster", name)
        return copy.deepcopy(obj)

    def get_work(self, namespace: str, name: str) -> ManifestWork:
        """
        Raises:
            NotFoundError: no such ManifestWork is cached
        """
        obj = self.works.get(namespace, name)
        if obj is None:
            raise NotFoundError("ManifestWork", name, namespace)
        return obj.copy()
