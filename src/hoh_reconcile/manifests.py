"""Desired ManifestWorks for the two provisioning stages."""

import copy
from typing import Any, Optional

import yaml

from hoh_reconcile.config import ControllerConfig
from hoh_reconcile.errors import ManifestBuildError
from hoh_reconcile.state import (
    SUBSCRIPTION_STATE_FEEDBACK,
    ManifestWork,
    Stage,
)

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "hub-cluster-controller"
STAGE_LABEL = "hoh.open-cluster-management.io/stage"

SUBSCRIPTION_NAME = "acm-operator-subscription"
OPERATOR_GROUP_NAME = "open-cluster-management-group"

MCH_API_VERSION = "operator.open-cluster-management.io/v1"
MCH_KIND = "MultiClusterHub"
MCH_NAME = "multiclusterhub"
MCH_PHASE_FEEDBACK = "phase"


def _feedback_rule(group: str, resource: str, name: str, namespace: str, values: dict[str, str]) -> dict[str, Any]:
    return {
        "resourceIdentifier": {
            "group": group,
            "resource": resource,
            "name": name,
            "namespace": namespace,
        },
        "feedbackRules": [
            {
                "type": "JSONPaths",
                "jsonPaths": [{"name": n, "path": p} for n, p in values.items()],
            }
        ],
    }


class ManifestWorkBuilder:
    """
    Builds the desired ManifestWork for each stage.

    Pure and deterministic: the same cluster name and override always give
    equal objects, which is what lets the ensure comparison converge.
    """

    def __init__(self, config: Optional[ControllerConfig] = None):
        self.config = config or ControllerConfig()

    def _work(self, cluster_name: str, stage: Stage, manifests: list[dict[str, Any]], configs: list[dict[str, Any]]) -> ManifestWork:
        return ManifestWork(
            name=stage.work_name(cluster_name),
            namespace=cluster_name,
            labels={
                MANAGED_BY_LABEL: MANAGED_BY_VALUE,
                STAGE_LABEL: stage.name.lower(),
            },
            spec={
                "workload": {"manifests": manifests},
                "manifestConfigs": configs,
            },
        )

    def subscription_work(self, cluster_name: str) -> ManifestWork:
        """Stage 1: namespace, operator group and OLM Subscription for the hub operator."""
        if not cluster_name:
            raise ManifestBuildError("cluster name is required")

        ns = self.config.acm_namespace
        manifests = [
            {
                "apiVersion": "v1",
                "kind": "Namespace",
                "metadata": {"name": ns},
            },
            {
                "apiVersion": "operators.coreos.com/v1",
                "kind": "OperatorGroup",
                "metadata": {"name": OPERATOR_GROUP_NAME, "namespace": ns},
                "spec": {"targetNamespaces": [ns]},
            },
            {
                "apiVersion": "operators.coreos.com/v1alpha1",
                "kind": "Subscription",
                "metadata": {"name": SUBSCRIPTION_NAME, "namespace": ns},
                "spec": {
                    "channel": self.config.acm_channel,
                    "installPlanApproval": "Automatic",
                    "name": self.config.acm_package,
                    "source": self.config.acm_source,
                    "sourceNamespace": self.config.acm_source_namespace,
                },
            },
        ]
        configs = [
            _feedback_rule(
                "operators.coreos.com", "subscriptions", SUBSCRIPTION_NAME, ns,
                {SUBSCRIPTION_STATE_FEEDBACK: ".status.state"},
            )
        ]
        return self._work(cluster_name, Stage.SUBSCRIPTION, manifests, configs)

    def mch_work(self, cluster_name: str, override: str = "") -> ManifestWork:
        """
        Stage 2: the MultiClusterHub resource.

        Args:
            cluster_name: Spoke cluster, also the ManifestWork namespace
            override: YAML or JSON MultiClusterHub (full object or bare spec)
                taken from the cluster's override annotation; empty for default

        Raises:
            ManifestBuildError: override is not a valid MultiClusterHub
        """
        if not cluster_name:
            raise ManifestBuildError("cluster name is required")

        ns = self.config.acm_namespace
        mch = {
            "apiVersion": MCH_API_VERSION,
            "kind": MCH_KIND,
            "metadata": {"name": MCH_NAME, "namespace": ns},
            "spec": {},
        }
        if override and override.strip():
            mch = self._apply_override(mch, override)

        configs = [
            _feedback_rule(
                "operator.open-cluster-management.io", "multiclusterhubs",
                mch["metadata"]["name"], ns,
                {MCH_PHASE_FEEDBACK: ".status.phase"},
            )
        ]
        return self._work(cluster_name, Stage.MCH, [mch], configs)

    @staticmethod
    def _apply_override(mch: dict[str, Any], override: str) -> dict[str, Any]:
        try:
            data = yaml.safe_load(override)
        except yaml.YAMLError as e:
            raise ManifestBuildError(f"invalid MultiClusterHub override: {e}") from e

        if not isinstance(data, dict):
            raise ManifestBuildError(
                f"MultiClusterHub override must be a mapping, got {type(data).__name__}"
            )

        mch = copy.deepcopy(mch)
        if "kind" in data or "apiVersion" in data:
            if data.get("kind") != MCH_KIND:
                raise ManifestBuildError(
                    f"override kind must be {MCH_KIND}, got {data.get('kind')!r}"
                )
            metadata = data.get("metadata") or {}
            if not isinstance(metadata, dict):
                raise ManifestBuildError("override metadata must be a mapping")
            if metadata.get("name"):
                mch["metadata"]["name"] = metadata["name"]
            for key in ("labels", "annotations"):
                if metadata.get(key):
                    mch["metadata"][key] = dict(metadata[key])
            spec = data.get("spec") or {}
        else:
            spec = data.get("spec", data)

        if not isinstance(spec, dict):
            raise ManifestBuildError("override spec must be a mapping")
        mch["spec"] = spec
        return mch
