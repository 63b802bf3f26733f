"""
Kubernetes API access for the hub cluster controller.

Wraps kubernetes_asyncio: CustomObjectsApi for ManagedClusters and
ManifestWorks, CoreV1Api for Events, and watch.Watch for the informer
streams. ApiException statuses are mapped to the exception hierarchy in
hoh_reconcile.errors.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from kubernetes_asyncio import client, watch
from kubernetes_asyncio import config as kube_config
from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.config import ConfigException

from hoh_reconcile.config import ControllerConfig
from hoh_reconcile.errors import ApiError, ConflictError, GoneError, NotFoundError
from hoh_reconcile.state import ManifestWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceKind:
    """Group/version/plural of a custom resource."""

    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool


MANAGED_CLUSTERS = ResourceKind(
    "cluster.open-cluster-management.io", "v1", "managedclusters", "ManagedCluster", namespaced=False
)
MANIFEST_WORKS = ResourceKind(
    "work.open-cluster-management.io", "v1", "manifestworks", "ManifestWork", namespaced=True
)


def _status_body(body: Any) -> dict[str, Any]:
    if isinstance(body, dict):
        return body
    if isinstance(body, (bytes, str)) and body:
        try:
            data = json.loads(body)
        except ValueError:
            return {"message": body if isinstance(body, str) else body.decode(errors="replace")}
        if isinstance(data, dict):
            return data
    return {}


def api_error(status: int, reason: str, body: Any, kind: str = "", name: str = "", namespace: str = "") -> ApiError:
    """Map an API status code and Status body to an ApiError subclass."""
    data = _status_body(body)
    message = data.get("message", "")
    reason = data.get("reason") or reason or ""

    if status == 404:
        return NotFoundError(kind, name, namespace, message)
    if status == 409:
        return ConflictError(status, reason, message, data)
    if status == 410:
        return GoneError(status, reason, message, data)
    return ApiError(status, reason, message, data)


def from_api_exception(exc: ApiException, kind: str = "", name: str = "", namespace: str = "") -> ApiError:
    return api_error(exc.status or 0, exc.reason or "", exc.body, kind, name, namespace)


async def load_kube_credentials(config: ControllerConfig) -> None:
    """Load in-cluster credentials, falling back to a kubeconfig file."""
    if not config.kubeconfig:
        try:
            kube_config.load_incluster_config()
            logger.info("Using in-cluster Kubernetes config")
            return
        except ConfigException:
            logger.debug("Not running in a cluster, trying kubeconfig")

    await kube_config.load_kube_config(
        config_file=config.kubeconfig or None,
        context=config.kube_context or None,
    )
    logger.info(f"Using kubeconfig {config.kubeconfig or '(default)'}")


class KubeClient:
    """Async access to the resources the controller reads and writes."""

    def __init__(
        self,
        api_client: Optional[client.ApiClient] = None,
        custom_api: Optional[client.CustomObjectsApi] = None,
        core_api: Optional[client.CoreV1Api] = None,
        request_timeout: float = 30.0,
    ):
        self.api_client = api_client or client.ApiClient()
        self.custom_api = custom_api or client.CustomObjectsApi(self.api_client)
        self.core_api = core_api or client.CoreV1Api(self.api_client)
        self.request_timeout = request_timeout

    @classmethod
    async def from_config(cls, config: ControllerConfig) -> "KubeClient":
        await load_kube_credentials(config)
        return cls(request_timeout=config.request_timeout)

    async def close(self) -> None:
        await self.api_client.close()

    async def __aenter__(self) -> "KubeClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _list_call(self, kind: ResourceKind, namespace: str) -> tuple[Any, tuple]:
        if kind.namespaced and namespace:
            return (
                self.custom_api.list_namespaced_custom_object,
                (kind.group, kind.version, namespace, kind.plural),
            )
        return self.custom_api.list_cluster_custom_object, (kind.group, kind.version, kind.plural)

    async def get(self, kind: ResourceKind, name: str, namespace: str = "") -> dict[str, Any]:
        try:
            if kind.namespaced:
                return await self.custom_api.get_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, name,
                    _request_timeout=self.request_timeout,
                )
            return await self.custom_api.get_cluster_custom_object(
                kind.group, kind.version, kind.plural, name,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise from_api_exception(e, kind.kind, name, namespace) from e

    async def list_objects(self, kind: ResourceKind, namespace: str = "") -> tuple[list[dict[str, Any]], str]:
        """List objects. Returns the items and the list resource version."""
        func, args = self._list_call(kind, namespace)
        try:
            data = await func(*args, _request_timeout=self.request_timeout)
        except ApiException as e:
            raise from_api_exception(e, kind.kind, namespace=namespace) from e
        items = data.get("items") or []
        return items, (data.get("metadata") or {}).get("resourceVersion", "")

    async def watch(
        self,
        kind: ResourceKind,
        resource_version: str = "",
        timeout_seconds: int = 300,
        namespace: str = "",
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        """
        Stream watch events as ``(type, object)`` pairs.

        Raises:
            GoneError: ``resource_version`` is too old; the caller must relist
            ApiError: any other error response or ERROR event
        """
        func, args = self._list_call(kind, namespace)
        kwargs: dict[str, Any] = {
            "timeout_seconds": timeout_seconds,
            "allow_watch_bookmarks": True,
            "_request_timeout": timeout_seconds + self.request_timeout,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version

        watcher = watch.Watch()
        try:
            async for event in watcher.stream(func, *args, **kwargs):
                event_type = str(event.get("type", ""))
                obj = event.get("raw_object") or event.get("object") or {}
                if event_type == "ERROR":
                    raise api_error(obj.get("code", 500), obj.get("reason", ""), obj, kind.kind, namespace=namespace)
                yield event_type, obj
        except ApiException as e:
            raise from_api_exception(e, kind.kind, namespace=namespace) from e
        finally:
            watcher.stop()

    async def create(self, kind: ResourceKind, body: dict[str, Any], namespace: str = "") -> dict[str, Any]:
        name = (body.get("metadata") or {}).get("name", "")
        try:
            return await self.custom_api.create_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise from_api_exception(e, kind.kind, name, namespace) from e

    async def update(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        metadata = body.get("metadata") or {}
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")
        try:
            return await self.custom_api.replace_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise from_api_exception(e, kind.kind, name, namespace) from e

    async def create_event(self, namespace: str, body: dict[str, Any]) -> Any:
        try:
            return await self.core_api.create_namespaced_event(
                namespace, body, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            raise from_api_exception(e, "Event", namespace=namespace) from e


class ManifestWorkWriter:
    """Create and update ManifestWorks in a cluster namespace."""

    def __init__(self, client: KubeClient):
        self.client = client

    async def create(self, work: ManifestWork) -> ManifestWork:
        data = await self.client.create(MANIFEST_WORKS, work.to_dict(), namespace=work.namespace)
        return ManifestWork.from_dict(data)

    async def update(self, work: ManifestWork) -> ManifestWork:
        """Replace ``work``. It must carry the resource version it was read at."""
        if not work.resource_version:
            raise ValueError(f"update of {work.namespace}/{work.name} needs a resource version")
        data = await self.client.update(MANIFEST_WORKS, work.to_dict())
        return ManifestWork.from_dict(data)
