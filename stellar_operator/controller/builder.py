# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Desired-state builder.

Pure functions from a StellarNode to the manifest of each child it owns. The
output is plain dicts in API-server shape, ready for server-side apply. Every
per-kind decision goes through one ``match`` on ``NodeKind``.
"""

import logging
from typing import Dict, List, Optional

from stellar_operator.cluster.base import ChildKind
from stellar_operator.crd.models import API_VERSION, KIND, NodeKind, StellarNode

logger = logging.getLogger(__name__)

MANAGED_BY = "stellar-operator"
CONTAINER_NAME = "stellar-node"
CONFIG_MOUNT_PATH = "/config"
SEED_SECRET_KEY = "STELLAR_CORE_SEED"


def standard_labels(node: StellarNode) -> Dict[str, str]:
    return {
        "app.kubernetes.io/name": "stellar-node",
        "app.kubernetes.io/instance": node.name,
        "app.kubernetes.io/component": node.spec.node_kind.value.lower(),
        "app.kubernetes.io/managed-by": MANAGED_BY,
        "stellar.org/node-type": node.spec.node_kind.value,
    }


def owner_reference(node: StellarNode) -> dict:
    return {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "name": node.name,
        "uid": node.metadata.uid or "",
        "controller": True,
        "blockOwnerDeletion": True,
    }


def resource_name(node: StellarNode, kind: ChildKind) -> str:
    """Deterministic child name for a node"""
    match kind:
        case ChildKind.STORAGE_CLAIM:
            return f"{node.name}-data"
        case ChildKind.CONFIG_BUNDLE:
            return f"{node.name}-config"
        case ChildKind.AUTOSCALER:
            return f"{node.name}-hpa"
        case _:
            return node.name


def workload_kind(node_kind: NodeKind) -> ChildKind:
    match node_kind:
        case NodeKind.VALIDATOR:
            return ChildKind.STATEFUL_WORKLOAD
        case NodeKind.GATEWAY | NodeKind.RPC_NODE:
            return ChildKind.REPLICATED_WORKLOAD


def service_ports(node_kind: NodeKind) -> List[dict]:
    match node_kind:
        case NodeKind.VALIDATOR:
            return [{"name": "peer", "port": 11625}, {"name": "http", "port": 11626}]
        case NodeKind.GATEWAY | NodeKind.RPC_NODE:
            return [{"name": "http", "port": 8000}]


def container_port(node_kind: NodeKind) -> int:
    match node_kind:
        case NodeKind.VALIDATOR:
            return 11625
        case NodeKind.GATEWAY | NodeKind.RPC_NODE:
            return 8000


def data_mount_path(node_kind: NodeKind) -> str:
    match node_kind:
        case NodeKind.VALIDATOR:
            return "/opt/stellar/data"
        case NodeKind.GATEWAY | NodeKind.RPC_NODE:
            return "/data"


def database_env_var(node_kind: NodeKind) -> str:
    # stellar-core reads DATABASE, horizon and soroban-rpc read DATABASE_URL
    match node_kind:
        case NodeKind.VALIDATOR:
            return "DATABASE"
        case NodeKind.GATEWAY | NodeKind.RPC_NODE:
            return "DATABASE_URL"


def _metadata(node: StellarNode, kind: ChildKind, annotations: Optional[Dict[str, str]] = None) -> dict:
    metadata = {
        "name": resource_name(node, kind),
        "namespace": node.namespace,
        "labels": standard_labels(node),
        "ownerReferences": [owner_reference(node)],
    }
    if annotations:
        metadata["annotations"] = dict(annotations)
    return metadata


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_storage_claim(node: StellarNode) -> dict:
    storage = node.spec.storage
    return {
        "apiVersion": ChildKind.STORAGE_CLAIM.api_version,
        "kind": ChildKind.STORAGE_CLAIM.value,
        "metadata": _metadata(node, ChildKind.STORAGE_CLAIM, storage.annotations),
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "storageClassName": storage.storage_class,
            "resources": {"requests": {"storage": storage.size}},
        },
    }


def build_config_data(node: StellarNode) -> Dict[str, str]:
    spec = node.spec
    data = {"NETWORK_PASSPHRASE": spec.network_passphrase()}

    match spec.node_kind:
        case NodeKind.VALIDATOR:
            config = spec.validator_config
            if config is not None:
                if config.quorum_set:
                    data["stellar-core.cfg"] = config.quorum_set
                data["ENABLE_HISTORY_ARCHIVE"] = _flag(config.enable_history_archive)
                data["HISTORY_ARCHIVE_URLS"] = ",".join(config.history_archive_urls)
                data["CATCHUP_COMPLETE"] = _flag(config.catchup_complete)
        case NodeKind.GATEWAY:
            config = spec.gateway_config
            if config is not None:
                data["STELLAR_CORE_URL"] = config.stellar_core_url
                data["INGEST"] = _flag(config.enable_ingest)
                data["INGEST_WORKERS"] = str(config.ingest_workers)
                data["ENABLE_EXPERIMENTAL_INGESTION"] = _flag(config.enable_experimental_ingestion)
        case NodeKind.RPC_NODE:
            config = spec.rpc_config
            if config is not None:
                data["STELLAR_CORE_URL"] = config.stellar_core_url
                if config.captive_core_config:
                    data["captive-core.cfg"] = config.captive_core_config
                data["ENABLE_PREFLIGHT"] = _flag(config.enable_preflight)
                data["MAX_EVENTS_PER_REQUEST"] = str(config.max_events_per_request)

    return data


def build_config_bundle(node: StellarNode) -> dict:
    return {
        "apiVersion": ChildKind.CONFIG_BUNDLE.api_version,
        "kind": ChildKind.CONFIG_BUNDLE.value,
        "metadata": _metadata(node, ChildKind.CONFIG_BUNDLE),
        "data": build_config_data(node),
    }


def build_env(node: StellarNode) -> List[dict]:
    """Container environment; credentials are only ever referenced, never inlined"""
    spec = node.spec
    env = [{"name": "NETWORK_PASSPHRASE", "value": spec.network_passphrase()}]

    if spec.database is not None:
        env.append(
            {
                "name": database_env_var(spec.node_kind),
                "valueFrom": {"secretKeyRef": {"name": spec.database.secret_ref, "key": spec.database.key}},
            }
        )

    if spec.node_kind == NodeKind.VALIDATOR and spec.validator_config is not None:
        env.append(
            {
                "name": "STELLAR_CORE_SEED",
                "valueFrom": {
                    "secretKeyRef": {"name": spec.validator_config.seed_secret_ref, "key": SEED_SECRET_KEY}
                },
            }
        )

    return env


def build_container(node: StellarNode) -> dict:
    spec = node.spec
    return {
        "name": CONTAINER_NAME,
        "image": spec.container_image(),
        "ports": [{"containerPort": container_port(spec.node_kind)}],
        "env": build_env(node),
        "resources": {
            "requests": {"cpu": spec.resources.requests.cpu, "memory": spec.resources.requests.memory},
            "limits": {"cpu": spec.resources.limits.cpu, "memory": spec.resources.limits.memory},
        },
        "volumeMounts": [
            {"name": "data", "mountPath": data_mount_path(spec.node_kind)},
            {"name": "config", "mountPath": CONFIG_MOUNT_PATH, "readOnly": True},
        ],
    }


def build_pod_template(node: StellarNode) -> dict:
    return {
        "metadata": {"labels": standard_labels(node)},
        "spec": {
            "containers": [build_container(node)],
            "volumes": [
                {
                    "name": "data",
                    "persistentVolumeClaim": {"claimName": resource_name(node, ChildKind.STORAGE_CLAIM)},
                },
                {
                    "name": "config",
                    "configMap": {"name": resource_name(node, ChildKind.CONFIG_BUNDLE)},
                },
            ],
        },
    }


def build_stateful_workload(node: StellarNode) -> dict:
    return {
        "apiVersion": ChildKind.STATEFUL_WORKLOAD.api_version,
        "kind": ChildKind.STATEFUL_WORKLOAD.value,
        "metadata": _metadata(node, ChildKind.STATEFUL_WORKLOAD),
        "spec": {
            "replicas": node.spec.desired_replicas(),
            "selector": {"matchLabels": standard_labels(node)},
            "serviceName": resource_name(node, ChildKind.NETWORK_ENDPOINT),
            "template": build_pod_template(node),
        },
    }


def build_replicated_workload(node: StellarNode) -> dict:
    return {
        "apiVersion": ChildKind.REPLICATED_WORKLOAD.api_version,
        "kind": ChildKind.REPLICATED_WORKLOAD.value,
        "metadata": _metadata(node, ChildKind.REPLICATED_WORKLOAD),
        "spec": {
            "replicas": node.spec.desired_replicas(),
            "selector": {"matchLabels": standard_labels(node)},
            "template": build_pod_template(node),
        },
    }


def build_workload(node: StellarNode) -> dict:
    match workload_kind(node.spec.node_kind):
        case ChildKind.STATEFUL_WORKLOAD:
            return build_stateful_workload(node)
        case _:
            return build_replicated_workload(node)


def build_network_endpoint(node: StellarNode) -> dict:
    return {
        "apiVersion": ChildKind.NETWORK_ENDPOINT.api_version,
        "kind": ChildKind.NETWORK_ENDPOINT.value,
        "metadata": _metadata(node, ChildKind.NETWORK_ENDPOINT),
        "spec": {
            "selector": standard_labels(node),
            "ports": service_ports(node.spec.node_kind),
        },
    }


def build_autoscaler(node: StellarNode) -> Optional[dict]:
    """HorizontalPodAutoscaler for stateless kinds with autoscaling configured, else None"""
    spec = node.spec
    if not spec.wants_autoscaler():
        return None

    autoscaling = spec.autoscaling
    if autoscaling.custom_metrics:
        logger.info(
            f"StellarNode {node.key}: custom metrics {autoscaling.custom_metrics} are not wired into the autoscaler"
        )

    return {
        "apiVersion": ChildKind.AUTOSCALER.api_version,
        "kind": ChildKind.AUTOSCALER.value,
        "metadata": _metadata(node, ChildKind.AUTOSCALER),
        "spec": {
            "scaleTargetRef": {
                "apiVersion": ChildKind.REPLICATED_WORKLOAD.api_version,
                "kind": ChildKind.REPLICATED_WORKLOAD.value,
                "name": resource_name(node, ChildKind.REPLICATED_WORKLOAD),
            },
            "minReplicas": autoscaling.min_replicas,
            "maxReplicas": autoscaling.max_replicas,
        },
    }
