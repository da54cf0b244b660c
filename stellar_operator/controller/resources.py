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

import logging
from typing import Optional

from stellar_operator.cluster.base import ChildKind, ClusterClient
from stellar_operator.controller import builder
from stellar_operator.controller.errors import ResourceConflict
from stellar_operator.crd.models import StellarNode

logger = logging.getLogger(__name__)

WORKLOAD_KINDS = (ChildKind.STATEFUL_WORKLOAD, ChildKind.REPLICATED_WORKLOAD)


class ChildResourceManager:
    """Idempotent create / apply / delete of the children a node owns"""

    def __init__(self, cluster: ClusterClient, manager: str = "stellar-operator"):
        self.cluster = cluster
        self.manager = manager

    # Generic operations

    def ensure(self, kind: ChildKind, desired: dict) -> dict:
        """
        Make the named child match ``desired``.

        The storage claim is get-or-create only: once bound, its spec is
        immutable. Everything else goes through server-side apply with forced
        ownership, so repeated calls converge without read-modify-write.
        """
        namespace = desired["metadata"]["namespace"]
        name = desired["metadata"]["name"]
        api = self.cluster.resources(kind, namespace)

        if kind == ChildKind.STORAGE_CLAIM:
            existing = api.get(name)
            if existing is not None:
                logger.debug(f"{kind.value} {namespace}/{name} already exists")
                return existing
            try:
                created = api.create(desired)
                logger.info(f"Created {kind.value} {namespace}/{name}")
                return created
            except ResourceConflict:
                # Lost a create race, the claim exists
                logger.info(f"{kind.value} {namespace}/{name} was created concurrently")
                return api.get(name) or desired

        applied = api.merge_apply(name, desired, manager=self.manager, force=True)
        logger.debug(f"Applied {kind.value} {namespace}/{name}")
        return applied

    def delete(self, kind: ChildKind, namespace: str, name: str) -> bool:
        deleted = self.cluster.resources(kind, namespace).delete(name)
        if deleted:
            logger.info(f"Deleted {kind.value} {namespace}/{name}")
        else:
            logger.debug(f"{kind.value} {namespace}/{name} already absent")
        return deleted

    def release(self, kind: ChildKind, namespace: str, name: str) -> bool:
        released = self.cluster.resources(kind, namespace).release(name)
        if released:
            logger.info(f"Released {kind.value} {namespace}/{name} from its owner")
        return released

    # Per-node operations

    def ensure_storage_claim(self, node: StellarNode) -> dict:
        return self.ensure(ChildKind.STORAGE_CLAIM, builder.build_storage_claim(node))

    def ensure_config_bundle(self, node: StellarNode) -> dict:
        return self.ensure(ChildKind.CONFIG_BUNDLE, builder.build_config_bundle(node))

    def ensure_workload(self, node: StellarNode) -> dict:
        kind = builder.workload_kind(node.spec.node_kind)
        desired = builder.build_workload(node)
        name = desired["metadata"]["name"]
        existing = self.cluster.resources(kind, node.namespace).get(name)
        # The selector carries the node kind and cannot be patched
        if existing is not None and existing["spec"].get("selector") != desired["spec"]["selector"]:
            logger.info(f"Recreating {kind.value} {node.namespace}/{name}: pod selector changed")
            self.delete(kind, node.namespace, name)
        applied = self.ensure(kind, desired)
        # A nodeKind change leaves the other workload behind
        for other in WORKLOAD_KINDS:
            if other != kind:
                self.delete(other, node.namespace, builder.resource_name(node, other))
        return applied

    def ensure_network_endpoint(self, node: StellarNode) -> dict:
        return self.ensure(ChildKind.NETWORK_ENDPOINT, builder.build_network_endpoint(node))

    def ensure_autoscaler(self, node: StellarNode) -> Optional[dict]:
        desired = builder.build_autoscaler(node)
        if desired is None:
            self.delete(ChildKind.AUTOSCALER, node.namespace, builder.resource_name(node, ChildKind.AUTOSCALER))
            return None
        return self.ensure(ChildKind.AUTOSCALER, desired)

    def delete_network_endpoint(self, node: StellarNode) -> bool:
        return self.delete(
            ChildKind.NETWORK_ENDPOINT, node.namespace, builder.resource_name(node, ChildKind.NETWORK_ENDPOINT)
        )

    def delete_workload(self, node: StellarNode) -> bool:
        """Delete both workload kinds; True if either existed"""
        deleted = False
        for kind in WORKLOAD_KINDS:
            deleted = self.delete(kind, node.namespace, builder.resource_name(node, kind)) or deleted
        return deleted

    def delete_config_bundle(self, node: StellarNode) -> bool:
        return self.delete(ChildKind.CONFIG_BUNDLE, node.namespace, builder.resource_name(node, ChildKind.CONFIG_BUNDLE))

    def delete_storage_claim(self, node: StellarNode) -> bool:
        return self.delete(ChildKind.STORAGE_CLAIM, node.namespace, builder.resource_name(node, ChildKind.STORAGE_CLAIM))

    def release_storage_claim(self, node: StellarNode) -> bool:
        return self.release(
            ChildKind.STORAGE_CLAIM, node.namespace, builder.resource_name(node, ChildKind.STORAGE_CLAIM)
        )

    def delete_autoscaler(self, node: StellarNode) -> bool:
        return self.delete(ChildKind.AUTOSCALER, node.namespace, builder.resource_name(node, ChildKind.AUTOSCALER))

    def read_ready_replicas(self, node: StellarNode) -> int:
        """Ready pods reported by the workload; any failure reads as 0"""
        kind = builder.workload_kind(node.spec.node_kind)
        try:
            workload = self.cluster.resources(kind, node.namespace).get(builder.resource_name(node, kind))
        except Exception as e:
            logger.warning(f"Failed to read {kind.value} status for {node.key}: {e}")
            return 0
        if not workload:
            return 0
        return (workload.get("status") or {}).get("readyReplicas") or 0
