"""
Hub Cluster Controller Configuration

Kubernetes credentials, worker pool sizing and the operator channel used for
provisioning. Override with environment variables.
"""

import os
from dataclasses import dataclass, fields


@dataclass
class ControllerConfig:
    """Configuration for the hub cluster controller."""

    # Hub API server; empty kubeconfig means in-cluster credentials first
    kubeconfig: str = ""
    kube_context: str = ""
    request_timeout: float = 30.0
    watch_timeout_seconds: int = 300

    # Worker pool
    workers: int = 1
    relist_backoff: float = 5.0
    queue_base_delay: float = 0.005
    queue_max_delay: float = 1000.0

    # Comparison cache
    compare_cache_size: int = 1024
    compare_cache_ttl: float = 600.0

    # Health / metrics server
    health_host: str = "0.0.0.0"
    health_port: int = 8000

    # Stage 1 operator subscription
    acm_namespace: str = "open-cluster-management"
    acm_package: str = "advanced-cluster-management"
    acm_channel: str = "release-2.4"
    acm_source: str = "redhat-operators"
    acm_source_namespace: str = "openshift-marketplace"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True
    log_file: str = ""

    def __post_init__(self):
        # Load from environment variables
        self.kubeconfig = os.getenv("HOH_KUBECONFIG", self.kubeconfig)
        self.kube_context = os.getenv("HOH_KUBE_CONTEXT", self.kube_context)
        self.workers = int(os.getenv("HOH_WORKERS", self.workers))
        self.relist_backoff = float(os.getenv("HOH_RELIST_BACKOFF", self.relist_backoff))
        self.compare_cache_size = int(os.getenv("HOH_COMPARE_CACHE_SIZE", self.compare_cache_size))
        self.compare_cache_ttl = float(os.getenv("HOH_COMPARE_CACHE_TTL", self.compare_cache_ttl))
        self.health_port = int(os.getenv("HOH_HEALTH_PORT", self.health_port))
        self.acm_channel = os.getenv("HOH_ACM_CHANNEL", self.acm_channel)
        self.acm_source = os.getenv("HOH_ACM_SOURCE", self.acm_source)
        self.acm_source_namespace = os.getenv("HOH_ACM_SOURCE_NAMESPACE", self.acm_source_namespace)
        self.log_level = os.getenv("HOH_LOG_LEVEL", self.log_level).upper()
        self.log_file = os.getenv("HOH_LOG_FILE", self.log_file)

        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")

    @classmethod
    def from_yaml(cls, path: str) -> "ControllerConfig":
        """Load configuration from a YAML file. Environment variables still win."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(unknown)}")

        return cls(**data)
