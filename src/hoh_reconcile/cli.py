#!/usr/bin/env python3
"""CLI for the hub cluster controller."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import yaml
from kubernetes_asyncio.config import ConfigException

from hoh_reconcile.cache import Informer, WatchCache
from hoh_reconcile.client import MANAGED_CLUSTERS, MANIFEST_WORKS, KubeClient, ManifestWorkWriter
from hoh_reconcile.config import ControllerConfig
from hoh_reconcile.controller import HubClusterController
from hoh_reconcile.ensure import ComparisonCache, EnsureEngine
from hoh_reconcile.errors import ApiError, ManifestBuildError
from hoh_reconcile.logging_config import setup_logging
from hoh_reconcile.manifests import ManifestWorkBuilder
from hoh_reconcile.reconciler import HubClusterReconciler, SyncResult
from hoh_reconcile.state import ManagedCluster, ManifestWork

logger = logging.getLogger(__name__)


def load_config(args: argparse.Namespace) -> ControllerConfig:
    if getattr(args, "config", None):
        return ControllerConfig.from_yaml(args.config)
    return ControllerConfig()


def print_works(works: list[ManifestWork], format_type: str = "text") -> None:
    """Print desired ManifestWorks."""
    docs = [w.to_dict() for w in works]
    if format_type == "json":
        print(json.dumps(docs if len(docs) > 1 else docs[0], indent=2))
        return
    print(yaml.safe_dump_all(docs, sort_keys=False), end="")


def print_result(result: SyncResult, dry_run: bool, format_type: str = "text") -> None:
    """Print the outcome of a one-shot sync."""
    data = result.to_dict()
    data["dry_run"] = dry_run
    if format_type == "json":
        print(json.dumps(data, indent=2))
        return

    print(f"\n=== Sync {result.cluster} ===")
    print(f"Dry run: {dry_run}")

    if not result.cluster_found:
        print("ManagedCluster not found - nothing to do")
        return

    if not result.actions:
        print("✓ ManifestWorks are up to date")
    else:
        print("Writes:")
        for action in result.actions:
            rv = f" @ {action.resource_version}" if action.resource_version else ""
            print(f"  → {action.operation.upper()} {action.namespace}/{action.name}{rv}")

    if result.stage2_gated:
        print("Stage 2 (MCH) waiting for the Subscription to reach AtLatestKnown")


class DryRunWriter:
    """ManifestWork writer that only reports what it would write."""

    async def create(self, work: ManifestWork) -> ManifestWork:
        return work.copy()

    async def update(self, work: ManifestWork) -> ManifestWork:
        return work.copy()


async def cmd_render(args: argparse.Namespace) -> int:
    """Render the desired ManifestWorks for a cluster."""
    builder = ManifestWorkBuilder(load_config(args))

    override = ""
    if args.override:
        override_path = Path(args.override)
        if not override_path.exists():
            print(f"Error: Override file not found: {args.override}", file=sys.stderr)
            return 1
        override = override_path.read_text()

    try:
        works = []
        if args.stage in ("all", "subscription"):
            works.append(builder.subscription_work(args.cluster))
        if args.stage in ("all", "mch"):
            works.append(builder.mch_work(args.cluster, override))
    except ManifestBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_works(works, args.format)
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """List clusters and works once and sync a single cluster."""
    config = load_config(args)
    dry_run = not args.apply

    try:
        client = await KubeClient.from_config(config)
    except ConfigException as e:
        print(f"Error: no Kubernetes credentials: {e}", file=sys.stderr)
        return 1

    async with client:
        cache = WatchCache()
        clusters = Informer(
            "ManagedCluster",
            list_fn=lambda: client.list_objects(MANAGED_CLUSTERS),
            watch_fn=lambda rv, timeout: client.watch(MANAGED_CLUSTERS, rv, timeout),
            parse=ManagedCluster.from_dict,
            store=cache.clusters,
        )
        works = Informer(
            "ManifestWork",
            list_fn=lambda: client.list_objects(MANIFEST_WORKS, namespace=args.cluster),
            watch_fn=lambda rv, timeout: client.watch(MANIFEST_WORKS, rv, timeout, namespace=args.cluster),
            parse=ManifestWork.from_dict,
            store=cache.works,
        )

        try:
            await clusters.list_once()
            await works.list_once()

            reconciler = HubClusterReconciler(
                cache=cache,
                writer=DryRunWriter() if dry_run else ManifestWorkWriter(client),
                builder=ManifestWorkBuilder(config),
                ensure_engine=EnsureEngine(ComparisonCache()),
            )
            result = await reconciler.sync(args.cluster)
        except (ApiError, ManifestBuildError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    print_result(result, dry_run, args.format)
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the controller with its health server."""
    import uvicorn

    from hoh_reconcile.server import create_app

    config = load_config(args)
    if args.workers:
        config.workers = args.workers
    setup_logging(config.log_level, config.log_json, config.log_file or None)

    async with await KubeClient.from_config(config) as client:
        controller = HubClusterController(config, client)
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(controller),
                host=config.health_host,
                port=config.health_port,
                log_config=None,
            )
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, controller.stop)

        # Either side exiting takes the other down
        server_task = asyncio.create_task(server.serve())
        server_task.add_done_callback(lambda _: controller.stop())
        logger.info(f"Starting hub cluster controller with {config.workers} worker(s)")
        try:
            await controller.run()
        finally:
            server.should_exit = True
            await server_task

    return 0


def main(argv: Any = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Hub cluster controller: provisions the management hub onto managed clusters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hoh-reconcile run                          # Run the controller
  hoh-reconcile render cluster1              # Show desired ManifestWorks
  hoh-reconcile render cluster1 --stage mch --override mch.yaml
  hoh-reconcile sync cluster1                # One-shot sync (dry run)
  hoh-reconcile sync cluster1 --apply        # One-shot sync, writing changes
        """,
    )
    parser.add_argument(
        "--format",
        "-f",
        choices=["text", "json"],
        default="text",
        help="Output format",
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Path to controller config YAML file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run command
    run_parser = subparsers.add_parser("run", help="Run the controller")
    run_parser.add_argument(
        "-w",
        "--workers",
        type=int,
        help="Number of reconcile workers (default: from config)",
    )
    run_parser.set_defaults(func=cmd_run)

    # render command
    render_parser = subparsers.add_parser("render", help="Render desired ManifestWorks")
    render_parser.add_argument("cluster", help="ManagedCluster name")
    render_parser.add_argument(
        "--stage",
        choices=["all", "subscription", "mch"],
        default="all",
        help="Which stage to render (default: all)",
    )
    render_parser.add_argument(
        "--override",
        help="Path to a MultiClusterHub override (YAML or JSON)",
    )
    render_parser.set_defaults(func=cmd_render)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync one cluster once")
    sync_parser.add_argument("cluster", help="ManagedCluster name")
    sync_parser.add_argument(
        "--apply",
        action="store_true",
        help="Actually write ManifestWorks (default is dry-run)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    args = parser.parse_args(argv)
    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
