"""
Pytest configuration and fixtures for hub cluster controller tests
"""

import os
import sys
from pathlib import Path

import pytest

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from hoh_reconcile.cache import WatchCache  # noqa: E402
from hoh_reconcile.errors import ConflictError, NotFoundError  # noqa: E402
from hoh_reconcile.state import (  # noqa: E402
    FeedbackValue,
    ManagedCluster,
    ManifestFeedback,
    ManifestWork,
)


class FakeWriter:
    """
    ManifestWork writer backed by a WatchCache's work store.

    Behaves like the API server for the bits the reconciler relies on:
    resource versions increase on every write, updates must carry the
    current resource version, and writes never touch status.
    """

    def __init__(self, cache: WatchCache):
        self.cache = cache
        self.calls: list[tuple[str, ManifestWork]] = []
        self._rv = 100
        self.fail_with: Exception | None = None

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    @property
    def creates(self) -> list[ManifestWork]:
        return [w for op, w in self.calls if op == "create"]

    @property
    def updates(self) -> list[ManifestWork]:
        return [w for op, w in self.calls if op == "update"]

    async def create(self, work: ManifestWork) -> ManifestWork:
        self.calls.append(("create", work.copy()))
        if self.fail_with is not None:
            raise self.fail_with
        if self.cache.works.get(work.namespace, work.name) is not None:
            raise ConflictError(409, "AlreadyExists", f"{work.name} already exists")
        stored = work.copy()
        stored.resource_version = self._next_rv()
        stored.uid = f"uid-{work.name}"
        self.cache.works.upsert(stored)
        return stored.copy()

    async def update(self, work: ManifestWork) -> ManifestWork:
        self.calls.append(("update", work.copy()))
        if self.fail_with is not None:
            raise self.fail_with
        current = self.cache.works.get(work.namespace, work.name)
        if current is None:
            raise NotFoundError("ManifestWork", work.name, work.namespace)
        if work.resource_version != current.resource_version:
            raise ConflictError(409, "Conflict", "the object has been modified")
        stored = work.copy()
        stored.resource_version = self._next_rv()
        stored.status = current.status
        stored.status_feedback = current.status_feedback
        self.cache.works.upsert(stored)
        return stored.copy()


def set_subscription_state(work: ManifestWork, state: str) -> ManifestWork:
    """Give ``work`` the status feedback a Subscription reports."""
    work.status_feedback = [
        ManifestFeedback(kind="Namespace", version="v1", resource="namespaces", name="open-cluster-management"),
        ManifestFeedback(
            kind="Subscription",
            group="operators.coreos.com",
            version="v1alpha1",
            resource="subscriptions",
            name="acm-operator-subscription",
            namespace="open-cluster-management",
            ordinal=2,
            values=[FeedbackValue(name="state", type="String", string=state)],
        ),
    ]
    return work


@pytest.fixture
def clean_env():
    """Fixture that strips HOH_* variables for the duration of a test."""
    original_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("HOH_"):
            del os.environ[key]

    yield os.environ

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def config(clean_env):
    from hoh_reconcile.config import ControllerConfig

    return ControllerConfig()


@pytest.fixture
def builder(config):
    from hoh_reconcile.manifests import ManifestWorkBuilder

    return ManifestWorkBuilder(config)


@pytest.fixture
def watch_cache():
    return WatchCache()


@pytest.fixture
def fake_writer(watch_cache):
    return FakeWriter(watch_cache)


@pytest.fixture
def add_cluster(watch_cache):
    """Factory that registers a ManagedCluster in the watch cache."""

    def _add(name: str = "cluster1", labels=None, annotations=None) -> ManagedCluster:
        cluster = ManagedCluster(
            name=name,
            labels=labels or {},
            annotations=annotations or {},
            resource_version="1",
        )
        watch_cache.clusters.upsert(cluster)
        return cluster

    return _add


@pytest.fixture
def sample_manifestwork_json():
    """ManifestWork as returned by the API server, with status feedback."""
    return {
        "apiVersion": "work.open-cluster-management.io/v1",
        "kind": "ManifestWork",
        "metadata": {
            "name": "cluster1-hoh-hub-cluster-subscription",
            "namespace": "cluster1",
            "resourceVersion": "4711",
            "uid": "7c1f4a5e-0000-4000-8000-000000000001",
            "generation": 3,
            "creationTimestamp": "2025-12-13T10:00:00Z",
            "labels": {"app.kubernetes.io/managed-by": "hub-cluster-controller"},
        },
        "spec": {"workload": {"manifests": [{"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "open-cluster-management"}}]}},
        "status": {
            "conditions": [{"type": "Applied", "status": "True"}],
            "resourceStatus": {
                "manifests": [
                    {
                        "resourceMeta": {
                            "ordinal": 2,
                            "group": "operators.coreos.com",
                            "version": "v1alpha1",
                            "kind": "Subscription",
                            "resource": "subscriptions",
                            "name": "acm-operator-subscription",
                            "namespace": "open-cluster-management",
                        },
                        "statusFeedback": {
                            "values": [
                                {"name": "state", "fieldValue": {"type": "String", "string": "AtLatestKnown"}},
                            ]
                        },
                        "conditions": [{"type": "Available", "status": "True"}],
                    }
                ]
            },
        },
    }


# Markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )
