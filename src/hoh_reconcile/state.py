"""Object model for ManagedClusters and ManifestWorks."""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

# Label that switches provisioning off for a single cluster
OPT_OUT_LABEL = "hoh"
OPT_OUT_VALUE = "disabled"

# The hub registers itself under this name and must never manage itself
LOCAL_CLUSTER_NAME = "local-cluster"

# Annotation carrying a user-defined MultiClusterHub for stage 2
MCH_OVERRIDE_ANNOTATION = "mch"

# Status feedback gate for stage 2
SUBSCRIPTION_KIND = "Subscription"
SUBSCRIPTION_STATE_FEEDBACK = "state"
SUBSCRIPTION_READY_STATE = "AtLatestKnown"

WORK_API_VERSION = "work.open-cluster-management.io/v1"


class Stage(Enum):
    """The two deployment stages, valued by their ManifestWork name suffix."""

    SUBSCRIPTION = "hoh-hub-cluster-subscription"
    MCH = "hoh-hub-cluster-mch"

    def work_name(self, cluster_name: str) -> str:
        """ManifestWork name for this stage in the given cluster namespace."""
        return f"{cluster_name}-{self.value}"

    @classmethod
    def for_work_name(cls, namespace: str, name: str) -> "Stage | None":
        """Return the stage owning ``namespace/name``, if any."""
        for stage in cls:
            if name == stage.work_name(namespace):
                return stage
        return None


@runtime_checkable
class Identifiable(Protocol):
    """Anything the event router can route: a name, a namespace and labels."""

    @property
    def name(self) -> str: ...

    @property
    def namespace(self) -> str: ...

    @property
    def labels(self) -> dict[str, str]: ...


@dataclass
class ManagedCluster:
    """A spoke cluster registered with the hub. Cluster scoped."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    resource_version: str = ""

    @property
    def namespace(self) -> str:
        return ""

    @property
    def opted_out(self) -> bool:
        return self.labels.get(OPT_OUT_LABEL) == OPT_OUT_VALUE

    @property
    def override(self) -> str:
        """User-defined MultiClusterHub from the override annotation, or ``""``."""
        return self.annotations.get(MCH_OVERRIDE_ANNOTATION, "") or ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManagedCluster":
        """Build from a ManagedCluster API object."""
        metadata = data.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            resource_version=metadata.get("resourceVersion", ""),
        )


@dataclass
class FeedbackValue:
    """One named value exported by a ManifestWork feedback rule."""

    name: str
    type: str = "String"
    string: str | None = None
    integer: int | None = None
    boolean: bool | None = None
    json_raw: str | None = None

    @property
    def value(self) -> Any:
        """The populated typed value."""
        return {
            "String": self.string,
            "Integer": self.integer,
            "Boolean": self.boolean,
            "JsonRaw": self.json_raw,
        }.get(self.type)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedbackValue":
        field_value = data.get("fieldValue") or {}
        return cls(
            name=data.get("name", ""),
            type=field_value.get("type", ""),
            string=field_value.get("string"),
            integer=field_value.get("integer"),
            boolean=field_value.get("boolean"),
            json_raw=field_value.get("jsonRaw"),
        )


@dataclass
class ManifestFeedback:
    """Status feedback reported for one manifest applied by a ManifestWork."""

    kind: str
    group: str = ""
    version: str = ""
    resource: str = ""
    name: str = ""
    namespace: str = ""
    ordinal: int = 0
    values: list[FeedbackValue] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestFeedback":
        meta = data.get("resourceMeta") or {}
        feedback = data.get("statusFeedback") or {}
        return cls(
            kind=meta.get("kind", ""),
            group=meta.get("group", ""),
            version=meta.get("version", ""),
            resource=meta.get("resource", ""),
            name=meta.get("name", ""),
            namespace=meta.get("namespace", ""),
            ordinal=meta.get("ordinal", 0),
            values=[FeedbackValue.from_dict(v) for v in feedback.get("values") or []],
        )


@dataclass
class ManifestWork:
    """A bundle of manifests applied to the spoke cluster named by ``namespace``."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    spec: dict[str, Any] = field(default_factory=dict)
    resource_version: str = ""
    uid: str = ""
    status_feedback: list[ManifestFeedback] = field(default_factory=list)
    status: dict[str, Any] = field(default_factory=dict)

    @property
    def stage(self) -> Stage | None:
        return Stage.for_work_name(self.namespace, self.name)

    def feedback_values(self, kind: str, name: str) -> list[Any]:
        """Every feedback value ``name`` reported for manifests of ``kind``, in status order."""
        return [
            value.value
            for manifest in self.status_feedback
            if manifest.kind == kind
            for value in manifest.values
            if value.name == name
        ]

    def copy(self) -> "ManifestWork":
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestWork":
        """Build from a ManifestWork API object."""
        metadata = data.get("metadata") or {}
        status = data.get("status") or {}
        manifests = (status.get("resourceStatus") or {}).get("manifests") or []
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            spec=copy.deepcopy(data.get("spec") or {}),
            resource_version=metadata.get("resourceVersion", ""),
            uid=metadata.get("uid", ""),
            status_feedback=[ManifestFeedback.from_dict(m) for m in manifests],
            status=copy.deepcopy(status),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API wire form. Status is never written."""
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.uid:
            metadata["uid"] = self.uid
        return {
            "apiVersion": WORK_API_VERSION,
            "kind": "ManifestWork",
            "metadata": metadata,
            "spec": copy.deepcopy(self.spec),
        }
