"""Kubernetes Event recording for ManifestWork writes."""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from hoh_reconcile.client import KubeClient
from hoh_reconcile.errors import ApiError
from hoh_reconcile.state import WORK_API_VERSION, ManifestWork

logger = logging.getLogger(__name__)

COMPONENT = "hub-cluster-controller"


class EventRecorder:
    """
    Writes core/v1 Events against ManifestWorks.

    Recording is best effort: a failed Event write is logged and never
    fails the reconcile that produced it.
    """

    def __init__(self, client: KubeClient, component: str = COMPONENT):
        self.client = client
        self.component = component

    def _event(self, work: ManifestWork, event_type: str, reason: str, message: str) -> dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "name": f"{work.name}.{uuid.uuid4().hex[:16]}",
                "namespace": work.namespace,
            },
            "involvedObject": {
                "apiVersion": WORK_API_VERSION,
                "kind": "ManifestWork",
                "name": work.name,
                "namespace": work.namespace,
                "uid": work.uid,
                "resourceVersion": work.resource_version,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self.component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
            "reportingComponent": self.component,
        }

    async def record(self, work: ManifestWork, reason: str, message: str, event_type: str = "Normal") -> Optional[Any]:
        body = self._event(work, event_type, reason, message)
        try:
            return await self.client.create_event(work.namespace, body)
        except (ApiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not record {reason} event for {work.namespace}/{work.name}: {e}")
            return None

    async def work_created(self, work: ManifestWork) -> None:
        await self.record(work, "ManifestWorkCreated", f"Created ManifestWork {work.namespace}/{work.name}")

    async def work_updated(self, work: ManifestWork) -> None:
        await self.record(work, "ManifestWorkUpdated", f"Updated ManifestWork {work.namespace}/{work.name}")
