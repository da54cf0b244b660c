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

"""Read-only projections of StellarNode resources for the HTTP API."""

import logging
from typing import Optional

from stellar_operator.cluster.base import NodeStore
from stellar_operator.schema.view_models import NodeDetail, NodeList, NodeSummary

logger = logging.getLogger(__name__)


def _network_label(network) -> Optional[str]:
    # Raw objects: "Testnet" or {"custom": "<passphrase>"}
    if isinstance(network, dict):
        return "Custom" if network else None
    return network


def _summary_fields(obj: dict) -> dict:
    metadata = obj.get("metadata", {})
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    return {
        "name": metadata.get("name", ""),
        "namespace": metadata.get("namespace", "default"),
        "node_kind": spec.get("nodeKind"),
        "network": _network_label(spec.get("network")),
        "phase": status.get("phase"),
        "replicas": status.get("replicas") or 0,
        "ready_replicas": status.get("readyReplicas") or 0,
    }


def list_nodes(store: NodeStore, namespace: Optional[str] = None) -> NodeList:
    items = [NodeSummary(**_summary_fields(obj)) for obj in store.list(namespace)]
    return NodeList(items=items)


def get_node(store: NodeStore, namespace: str, name: str) -> Optional[NodeDetail]:
    obj = store.get(namespace, name)
    if obj is None:
        return None
    metadata = obj.get("metadata", {})
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    return NodeDetail(
        **_summary_fields(obj),
        version=spec.get("version"),
        suspended=bool(spec.get("suspended", False)),
        deleting=bool(metadata.get("deletionTimestamp")),
        observed_generation=status.get("observedGeneration"),
        generation=metadata.get("generation"),
        status=status,
    )
