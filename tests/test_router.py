"""
Tests for hoh_reconcile.router module
"""

import pytest


class RecordingQueue:
    def __init__(self):
        self.keys = []

    def add(self, key):
        self.keys.append(key)


class TestAdmission:
    """Tests for the per-kind admission predicates."""

    def test_cluster_admitted(self):
        from hoh_reconcile.router import admit_cluster
        from hoh_reconcile.state import ManagedCluster

        assert admit_cluster(ManagedCluster("cluster1")) is True

    def test_opted_out_cluster(self):
        from hoh_reconcile.router import admit_cluster
        from hoh_reconcile.state import ManagedCluster

        assert admit_cluster(ManagedCluster("cluster1", labels={"hoh": "disabled"})) is False

    def test_local_cluster(self):
        from hoh_reconcile.router import admit_cluster
        from hoh_reconcile.state import ManagedCluster

        assert admit_cluster(ManagedCluster("local-cluster")) is False

    @pytest.mark.parametrize("obj", [None, {"metadata": {"name": "cluster1"}}, "cluster1"])
    def test_malformed_cluster_objects(self, obj):
        from hoh_reconcile.router import admit_cluster

        assert admit_cluster(obj) is False

    def test_unnamed_cluster(self):
        from hoh_reconcile.router import admit_cluster
        from hoh_reconcile.state import ManagedCluster

        assert admit_cluster(ManagedCluster("")) is False

    @pytest.mark.parametrize(
        "name", ["cluster1-hoh-hub-cluster-subscription", "cluster1-hoh-hub-cluster-mch"]
    )
    def test_owned_works_admitted(self, name):
        from hoh_reconcile.router import admit_work
        from hoh_reconcile.state import ManifestWork

        assert admit_work(ManifestWork(name=name, namespace="cluster1")) is True

    @pytest.mark.parametrize(
        "name,namespace",
        [
            ("cluster1-klusterlet-addon", "cluster1"),
            ("cluster2-hoh-hub-cluster-mch", "cluster1"),
            ("cluster1-hoh-hub-cluster-mch", ""),
        ],
    )
    def test_foreign_works_filtered(self, name, namespace):
        from hoh_reconcile.router import admit_work
        from hoh_reconcile.state import ManifestWork

        assert admit_work(ManifestWork(name=name, namespace=namespace)) is False

    def test_work_predicate_rejects_clusters(self):
        from hoh_reconcile.router import admit_work
        from hoh_reconcile.state import ManagedCluster

        assert admit_work(ManagedCluster("cluster1-hoh-hub-cluster-mch")) is False


class TestEventRouter:
    """Tests for EventRouter enqueueing."""

    def test_cluster_event_enqueues_name(self):
        from hoh_reconcile.router import EventRouter, EventType, WatchEvent
        from hoh_reconcile.state import ManagedCluster

        queue = RecordingQueue()
        router = EventRouter(queue)

        key = router.on_cluster_event(WatchEvent(EventType.ADDED, ManagedCluster("cluster1")))

        assert key == "cluster1"
        assert queue.keys == ["cluster1"]

    def test_work_event_enqueues_namespace(self):
        from hoh_reconcile.router import EventRouter, EventType, WatchEvent
        from hoh_reconcile.state import ManifestWork

        queue = RecordingQueue()
        router = EventRouter(queue)
        work = ManifestWork(name="cluster1-hoh-hub-cluster-subscription", namespace="cluster1")

        key = router.on_work_event(WatchEvent(EventType.MODIFIED, work))

        assert key == "cluster1"
        assert queue.keys == ["cluster1"]

    def test_deleted_work_still_enqueues(self):
        from hoh_reconcile.router import EventRouter, EventType, WatchEvent
        from hoh_reconcile.state import ManifestWork

        queue = RecordingQueue()
        router = EventRouter(queue)
        work = ManifestWork(name="cluster1-hoh-hub-cluster-mch", namespace="cluster1")

        router.on_work_event(WatchEvent(EventType.DELETED, work))

        assert queue.keys == ["cluster1"]

    def test_filtered_events_not_enqueued(self):
        from hoh_reconcile.router import EventRouter, EventType, WatchEvent
        from hoh_reconcile.state import ManagedCluster, ManifestWork

        queue = RecordingQueue()
        router = EventRouter(queue)

        assert router.on_cluster_event(WatchEvent(EventType.ADDED, ManagedCluster("local-cluster"))) is None
        assert router.on_work_event(WatchEvent(EventType.ADDED, ManifestWork("other", "cluster1"))) is None
        assert queue.keys == []
