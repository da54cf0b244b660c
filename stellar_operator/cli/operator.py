#!/usr/bin/env python3
"""
CLI for the StellarNode operator

Usage:
    stellar-operator --help
    stellar-operator run
    stellar-operator reconcile --namespace default --name my-validator
    stellar-operator status [--namespace default]
    stellar-operator crd > stellarnode-crd.yaml
    stellar-operator api --port 8080
"""

import argparse
import json
import logging
import sys

import yaml

from stellar_operator.config import settings
from stellar_operator.controller.errors import ConfigurationFault

# Setup logging
logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def build_leader_elector():
    from stellar_operator.concurrent_control import RedisLeaseElector, StaticLeaderElector

    if not settings.leader_election:
        return StaticLeaderElector()
    return RedisLeaseElector(
        redis_url=settings.redis_url,
        lease_name=settings.lease_name,
        holder_id=settings.holder_id,
        namespace=settings.pod_namespace,
        ttl=settings.lease_ttl,
    )


def run_operator():
    """Run the watch loop until SIGTERM/SIGINT"""
    from stellar_operator.cluster.kubernetes import KubernetesCluster
    from stellar_operator.controller.controller import NodeController
    from stellar_operator.controller.runner import OperatorRunner

    cluster = KubernetesCluster.from_environment()
    runner = OperatorRunner(
        cluster,
        NodeController.from_settings(cluster),
        build_leader_elector(),
        namespace=settings.watch_namespace,
        watch_timeout=settings.watch_timeout,
        lease_ttl=settings.lease_ttl,
    )
    runner.install_signal_handlers()
    runner.run()


def reconcile_once(namespace: str, name: str):
    """Run a single reconcile in-process and print the outcome"""
    from stellar_operator.cluster.kubernetes import KubernetesCluster
    from stellar_operator.controller.controller import NodeController
    from stellar_operator.tasks.scheduler import LocalTaskScheduler

    cluster = KubernetesCluster.from_environment()
    controller = NodeController.from_settings(cluster, task_scheduler=LocalTaskScheduler())
    action = controller.reconcile_node(namespace, name)
    print(json.dumps({"namespace": namespace, "name": name, "requeueAfter": action.requeue_after}))
    status = (cluster.nodes.get(namespace, name) or {}).get("status")
    if status:
        print(json.dumps(status, indent=2, ensure_ascii=False))


def show_status(namespace=None):
    """Print a summary of every StellarNode"""
    from stellar_operator.cluster.kubernetes import KubernetesCluster
    from stellar_operator.service.node_service import list_nodes

    cluster = KubernetesCluster.from_environment()
    result = list_nodes(cluster.nodes, namespace)
    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False))


def print_crd():
    from stellar_operator.crd.manifest import build_crd

    print(yaml.safe_dump(build_crd(), sort_keys=False), end="")


def serve_api(host: str, port: int):
    import uvicorn

    from stellar_operator.app import create_app

    uvicorn.run(create_app(), host=host, port=port)


def main(argv=None):
    parser = argparse.ArgumentParser(description="StellarNode operator CLI")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Run command
    subparsers.add_parser('run', help='Run the operator')

    # Reconcile command
    reconcile_parser = subparsers.add_parser('reconcile', help='Reconcile one StellarNode now')
    reconcile_parser.add_argument('--namespace', default='default', help='Node namespace')
    reconcile_parser.add_argument('--name', required=True, help='Node name')

    # Status command
    status_parser = subparsers.add_parser('status', help='Show StellarNode status')
    status_parser.add_argument('--namespace', help='Only this namespace (default: all)')

    # CRD command
    subparsers.add_parser('crd', help='Print the StellarNode CRD manifest as YAML')

    # API command
    api_parser = subparsers.add_parser('api', help='Serve the read-only HTTP API')
    api_parser.add_argument('--host', default=settings.api_host, help='Bind address')
    api_parser.add_argument('--port', type=int, default=settings.api_port, help='Bind port')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        match args.command:
            case 'run':
                run_operator()
            case 'reconcile':
                reconcile_once(args.namespace, args.name)
            case 'status':
                show_status(args.namespace)
            case 'crd':
                print_crd()
            case 'api':
                serve_api(args.host, args.port)
    except ConfigurationFault as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except Exception as e:
        logger.error(f"Command failed: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
