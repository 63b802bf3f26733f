"""
Ensure comparison for ManifestWorks.

Decides whether an existing ManifestWork already carries everything the
controller authored and, when it does not, computes the object to write.
Only the authored surface takes part in the comparison:

- metadata.labels and metadata.annotations (desired must be a subset)
- spec.workload.manifests (each embedded manifest must equal the existing
  one exactly, empty fields included)
- the rest of spec (desired must be a derivative of existing: keys left
  unset or empty in desired are ignored, lists compare element-wise)

Resource version, uid, status and keys added by the API server never cause
a write. Results are memoized in a bounded, thread-safe ComparisonCache keyed
by content fingerprints, so repeated syncs over unchanged objects skip the
deep comparison.
"""

import copy
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from hoh_reconcile.errors import EnsureError
from hoh_reconcile.metrics import COMPARE_CACHE, COMPARE_CACHE_SIZE
from hoh_reconcile.state import ManifestWork

logger = logging.getLogger(__name__)


def fingerprint(data: Any) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def authored_surface(work: ManifestWork) -> dict[str, Any]:
    """The fields of a ManifestWork the controller writes."""
    return {
        "labels": work.labels,
        "annotations": work.annotations,
        "spec": work.spec,
    }


def _is_unset(value: Any) -> bool:
    return value is None or value == {} or value == [] or value == ""


def is_derivative(desired: Any, existing: Any) -> bool:
    """True if every value set in ``desired`` is present and equal in ``existing``."""
    if desired is None:
        return True
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return False
        for key, value in desired.items():
            if _is_unset(value):
                continue
            if key not in existing or not is_derivative(value, existing[key]):
                return False
        return True
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(is_derivative(d, e) for d, e in zip(desired, existing))
    return desired == existing


def _manifests(spec: dict[str, Any]) -> list[Any]:
    return (spec.get("workload") or {}).get("manifests") or []


def spec_matches(desired: dict[str, Any], existing: dict[str, Any]) -> bool:
    """Embedded manifests compare exactly; every other spec field as a derivative."""
    if _manifests(desired) != _manifests(existing):
        return False
    rest = copy.deepcopy(desired)
    (rest.get("workload") or {}).pop("manifests", None)
    return is_derivative(rest, existing)


def _is_subset(desired: dict[str, str], existing: dict[str, str]) -> bool:
    return all(existing.get(k) == v for k, v in desired.items())


class ComparisonCache:
    """
    Bounded LRU of comparison outcomes with a TTL.

    Shared by every worker; all access goes through one lock. Entries are
    advisory only, so eviction or expiry just costs a recomputation.
    """

    def __init__(
        self,
        max_entries: int = 1024,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[tuple[str, str, str], tuple[bool, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: tuple[str, str, str]) -> Optional[bool]:
        """Cached "equal" verdict for ``key``, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                COMPARE_CACHE.labels(result="miss").inc()
                return None
            equal, stored_at = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                COMPARE_CACHE_SIZE.set(len(self._entries))
                self.misses += 1
                COMPARE_CACHE.labels(result="expired").inc()
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            COMPARE_CACHE.labels(result="hit").inc()
            return equal

    def put(self, key: tuple[str, str, str], equal: bool) -> None:
        with self._lock:
            self._entries[key] = (equal, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            COMPARE_CACHE_SIZE.set(len(self._entries))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            COMPARE_CACHE_SIZE.set(0)


@dataclass
class EnsureResult:
    """Outcome of comparing an existing ManifestWork against the desired one."""

    needs_write: bool
    merged: ManifestWork


class EnsureEngine:
    """Compares existing and desired ManifestWorks on the authored surface."""

    def __init__(self, cache: Optional[ComparisonCache] = None):
        self.cache = cache

    def ensure(self, existing: ManifestWork, desired: ManifestWork) -> EnsureResult:
        """
        Decide whether ``existing`` must be rewritten to match ``desired``.

        Returns:
            EnsureResult whose ``merged`` keeps the existing identity and
            resource version and carries the desired labels, annotations
            and spec.

        Raises:
            EnsureError: the two objects name different resources.
        """
        if (existing.namespace, existing.name) != (desired.namespace, desired.name):
            raise EnsureError(
                f"cannot ensure {desired.namespace}/{desired.name} "
                f"against {existing.namespace}/{existing.name}"
            )

        equal = self._compare(existing, desired)
        merged = self._merge(existing, desired)
        return EnsureResult(needs_write=not equal, merged=merged)

    def _compare(self, existing: ManifestWork, desired: ManifestWork) -> bool:
        if self.cache is None:
            return self._deep_equal(existing, desired)

        key = (
            f"{existing.namespace}/{existing.name}",
            fingerprint([existing.resource_version, authored_surface(existing)]),
            fingerprint(authored_surface(desired)),
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        equal = self._deep_equal(existing, desired)
        self.cache.put(key, equal)
        return equal

    @staticmethod
    def _deep_equal(existing: ManifestWork, desired: ManifestWork) -> bool:
        if not _is_subset(desired.labels, existing.labels):
            logger.debug(f"ManifestWork {existing.namespace}/{existing.name}: labels differ")
            return False
        if not _is_subset(desired.annotations, existing.annotations):
            logger.debug(f"ManifestWork {existing.namespace}/{existing.name}: annotations differ")
            return False
        if not spec_matches(desired.spec, existing.spec):
            logger.debug(f"ManifestWork {existing.namespace}/{existing.name}: spec differs")
            return False
        return True

    @staticmethod
    def _merge(existing: ManifestWork, desired: ManifestWork) -> ManifestWork:
        desired = desired.copy()
        return ManifestWork(
            name=existing.name,
            namespace=existing.namespace,
            labels={**existing.labels, **desired.labels},
            annotations={**existing.annotations, **desired.annotations},
            spec=desired.spec,
            resource_version=existing.resource_version,
            uid=existing.uid,
        )
