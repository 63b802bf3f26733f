"""
Tests for hoh_reconcile.config module
"""

import os
import pytest
from unittest.mock import patch


class TestControllerConfig:
    """Tests for ControllerConfig class."""

    def test_default_values(self, clean_env):
        """Test default configuration values."""
        from hoh_reconcile.config import ControllerConfig

        config = ControllerConfig()

        assert config.kubeconfig == ""
        assert config.workers == 1
        assert config.acm_namespace == "open-cluster-management"
        assert config.acm_channel == "release-2.4"
        assert config.queue_base_delay == 0.005
        assert config.queue_max_delay == 1000.0
        assert config.health_port == 8000
        assert config.log_file == ""

    def test_env_override(self, clean_env):
        """Test environment variable overrides."""
        from hoh_reconcile.config import ControllerConfig

        with patch.dict(os.environ, {
            "HOH_KUBECONFIG": "/etc/hub/kubeconfig",
            "HOH_KUBE_CONTEXT": "hub-admin",
            "HOH_WORKERS": "4",
            "HOH_ACM_CHANNEL": "release-2.5",
            "HOH_LOG_LEVEL": "debug",
            "HOH_LOG_FILE": "/var/log/hoh.log",
        }):
            config = ControllerConfig()

            assert config.kubeconfig == "/etc/hub/kubeconfig"
            assert config.kube_context == "hub-admin"
            assert config.workers == 4
            assert config.acm_channel == "release-2.5"
            assert config.log_level == "DEBUG"
            assert config.log_file == "/var/log/hoh.log"
            # Non-overridden should keep defaults
            assert config.acm_source == "redhat-operators"

    def test_invalid_workers(self, clean_env):
        from hoh_reconcile.config import ControllerConfig

        with pytest.raises(ValueError):
            ControllerConfig(workers=0)

    def test_from_yaml(self, clean_env, tmp_path):
        from hoh_reconcile.config import ControllerConfig

        path = tmp_path / "config.yaml"
        path.write_text("kubeconfig: /etc/hub/kubeconfig\nworkers: 3\nacm_channel: release-2.6\n")

        config = ControllerConfig.from_yaml(str(path))

        assert config.kubeconfig == "/etc/hub/kubeconfig"
        assert config.workers == 3
        assert config.acm_channel == "release-2.6"

    def test_from_yaml_unknown_key(self, clean_env, tmp_path):
        from hoh_reconcile.config import ControllerConfig

        path = tmp_path / "config.yaml"
        path.write_text("workers: 3\nkube_api_url: https://hub\n")

        with pytest.raises(ValueError, match="kube_api_url"):
            ControllerConfig.from_yaml(str(path))


class TestLogging:
    """Tests for structured logging."""

    def test_json_formatter_includes_cluster(self):
        import json
        import logging

        from hoh_reconcile.logging_config import JSONFormatter, reconcile_context

        record = logging.LogRecord("hoh_reconcile.reconciler", logging.INFO, __file__, 1, "hello", None, None)
        with reconcile_context("cluster1"):
            data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["cluster"] == "cluster1"

    def test_context_reset(self):
        from hoh_reconcile.logging_config import reconcile_context, reconcile_key_ctx

        with reconcile_context("cluster1"):
            pass

        assert reconcile_key_ctx.get() is None

    def test_setup_logging_to_file(self, clean_env, tmp_path):
        import logging

        from hoh_reconcile.logging_config import setup_logging

        log_file = tmp_path / "controller.log"
        root = setup_logging("INFO", json_format=False, log_to_file=str(log_file))
        try:
            logging.getLogger("hoh_reconcile.test").info("written to file")
            for handler in root.handlers:
                handler.flush()

            assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
            assert "written to file" in log_file.read_text()
        finally:
            for handler in root.handlers[:]:
                if isinstance(handler, logging.FileHandler):
                    handler.close()
                    root.removeHandler(handler)
