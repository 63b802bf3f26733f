"""
Tests for hoh_reconcile.workqueue module
"""

import asyncio

import pytest


class TestWorkQueue:
    """Tests for WorkQueue deduplication and exclusion."""

    @pytest.mark.asyncio
    async def test_duplicate_adds_collapse(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue()
        queue.add("cluster1")
        queue.add("cluster1")
        queue.add("cluster2")

        assert len(queue) == 2
        assert await queue.get() == "cluster1"
        assert await queue.get() == "cluster2"

    @pytest.mark.asyncio
    async def test_key_readded_while_processing(self):
        """A key added during processing is handed out again only after done()."""
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue()
        queue.add("cluster1")
        key = await queue.get()

        queue.add("cluster1")
        assert len(queue) == 0

        queue.done(key)
        assert len(queue) == 1
        assert await queue.get() == "cluster1"

    @pytest.mark.asyncio
    async def test_done_without_readd(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue()
        queue.add("cluster1")
        queue.done(await queue.get())

        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_get_waits_for_add(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue()
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not getter.done()

        queue.add("cluster1")
        assert await asyncio.wait_for(getter, timeout=1) == "cluster1"

    @pytest.mark.asyncio
    async def test_shutdown_wakes_getters(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue()
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)

        queue.shutdown()

        assert await asyncio.wait_for(getter, timeout=1) is None
        queue.add("cluster1")
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_shutdown_drains_queued_keys(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue()
        queue.add("cluster1")
        queue.shutdown()

        assert await queue.get() == "cluster1"
        assert await queue.get() is None


class TestBackoff:
    """Tests for per-key rate limiting."""

    def test_exponential_backoff(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue(base_delay=0.005, max_delay=1000.0)

        delays = [queue.when("cluster1") for _ in range(4)]

        assert delays == pytest.approx([0.005, 0.01, 0.02, 0.04])
        assert queue.num_requeues("cluster1") == 4

    def test_backoff_capped(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue(base_delay=1.0, max_delay=4.0)

        delays = [queue.when("cluster1") for _ in range(5)]

        assert delays == [1.0, 2.0, 4.0, 4.0, 4.0]

    def test_keys_tracked_separately(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue(base_delay=1.0)
        queue.when("cluster1")
        queue.when("cluster1")

        assert queue.when("cluster2") == 1.0

    def test_forget_resets(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue(base_delay=1.0)
        queue.when("cluster1")
        queue.when("cluster1")
        queue.forget("cluster1")

        assert queue.num_requeues("cluster1") == 0
        assert queue.when("cluster1") == 1.0

    @pytest.mark.asyncio
    async def test_rate_limited_readd(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue(base_delay=0.01)

        delay = queue.add_rate_limited("cluster1")

        assert delay == pytest.approx(0.01)
        assert len(queue) == 0
        assert await asyncio.wait_for(queue.get(), timeout=1) == "cluster1"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_readds(self):
        from hoh_reconcile.workqueue import WorkQueue

        queue = WorkQueue(base_delay=0.01)
        queue.add_rate_limited("cluster1")
        queue.shutdown()
        await asyncio.sleep(0.05)

        assert len(queue) == 0
