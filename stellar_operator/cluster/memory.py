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
In-memory cluster used by the test-suite.

It models the parts of the API server the controller relies on: server-side
apply ownership, finalizer-gated deletion, owner-reference garbage collection
and the status subresource. Failures can be injected per kind and operation.
"""

import copy
import logging
import uuid
from collections import deque
from typing import Deque, Dict, Iterator, List, Optional, Tuple

from stellar_operator.cluster.base import ChildKind, ClusterClient, NodeStore, ResourceApi, WatchEvent
from stellar_operator.controller.errors import AbsentResource, ConfigurationFault, ResourceConflict, TransientApiError
from stellar_operator.controller.status import rfc3339_now
from stellar_operator.crd.models import KIND

logger = logging.getLogger(__name__)

ObjectKey = Tuple[ChildKind, str, str]

WORKLOAD_KINDS = (ChildKind.STATEFUL_WORKLOAD, ChildKind.REPLICATED_WORKLOAD)


class InMemoryResourceApi(ResourceApi):
    def __init__(self, cluster: "InMemoryCluster", kind: ChildKind, namespace: str):
        super().__init__(kind, namespace)
        self._cluster = cluster

    def _key(self, name: str) -> ObjectKey:
        return (self.kind, self.namespace, name)

    def get(self, name: str) -> Optional[dict]:
        self._cluster._maybe_fail(self.kind, "get")
        obj = self._cluster._objects.get(self._key(name))
        return copy.deepcopy(obj) if obj is not None else None

    def create(self, obj: dict) -> dict:
        self._cluster._maybe_fail(self.kind, "create")
        name = obj["metadata"]["name"]
        key = self._key(name)
        if key in self._cluster._objects:
            raise ResourceConflict(f"{self.kind.value} {self.namespace}/{name} already exists", reason="AlreadyExists")
        stored = copy.deepcopy(obj)
        stored["metadata"]["namespace"] = self.namespace
        stored["metadata"].setdefault("uid", str(uuid.uuid4()))
        self._cluster._objects[key] = stored
        self._cluster.calls.append(("create", self.kind, self.namespace, name))
        return copy.deepcopy(stored)

    def merge_apply(self, name: str, obj: dict, manager: str, force: bool = True) -> dict:
        self._cluster._maybe_fail(self.kind, "apply")
        key = self._key(name)
        existing = self._cluster._objects.get(key)
        owner = self._cluster._managers.get(key)
        if existing is not None and owner is not None and owner != manager and not force:
            raise ResourceConflict(f"{self.kind.value} {self.namespace}/{name} is managed by {owner}")
        if existing is not None and self.kind in WORKLOAD_KINDS:
            if existing["spec"].get("selector") != obj["spec"].get("selector"):
                raise TransientApiError(
                    f"{self.kind.value} {self.namespace}/{name}: spec.selector is immutable", status=422, reason="Invalid"
                )

        stored = copy.deepcopy(obj)
        stored["metadata"]["namespace"] = self.namespace
        if existing is not None:
            stored["metadata"]["uid"] = existing["metadata"].get("uid")
            if "status" in existing:
                stored["status"] = existing["status"]
        else:
            stored["metadata"]["uid"] = str(uuid.uuid4())
        self._cluster._objects[key] = stored
        self._cluster._managers[key] = manager
        self._cluster.calls.append(("apply", self.kind, self.namespace, name))
        return copy.deepcopy(stored)

    def delete(self, name: str) -> bool:
        self._cluster._maybe_fail(self.kind, "delete")
        key = self._key(name)
        if key not in self._cluster._objects:
            return False
        del self._cluster._objects[key]
        self._cluster._managers.pop(key, None)
        self._cluster.calls.append(("delete", self.kind, self.namespace, name))
        return True

    def release(self, name: str) -> bool:
        self._cluster._maybe_fail(self.kind, "release")
        obj = self._cluster._objects.get(self._key(name))
        if obj is None:
            return False
        obj["metadata"].pop("ownerReferences", None)
        self._cluster.calls.append(("release", self.kind, self.namespace, name))
        return True


class InMemoryNodeStore(NodeStore):
    def __init__(self, cluster: "InMemoryCluster"):
        self._cluster = cluster
        self._nodes: Dict[Tuple[str, str], dict] = {}
        self._events: Deque[WatchEvent] = deque()
        self.registered = True
        self.status_writes = 0

    def _emit(self, event_type: str, node: dict) -> None:
        meta = node["metadata"]
        self._events.append(
            WatchEvent(
                type=event_type,
                namespace=meta["namespace"],
                name=meta["name"],
                generation=meta.get("generation"),
                deletion_requested=bool(meta.get("deletionTimestamp")),
            )
        )

    def _require(self, namespace: str, name: str) -> dict:
        node = self._nodes.get((namespace, name))
        if node is None:
            raise AbsentResource(KIND, namespace, name)
        return node

    def put(self, obj: dict) -> dict:
        """Create or update a node the way kubectl apply would"""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("namespace", "default")
        key = (meta["namespace"], meta["name"])
        existing = self._nodes.get(key)

        if existing is None:
            meta["uid"] = str(uuid.uuid4())
            meta["generation"] = 1
            meta["creationTimestamp"] = rfc3339_now()
            meta.setdefault("finalizers", [])
            obj.pop("status", None)
            self._nodes[key] = obj
            self._emit("ADDED", obj)
            return copy.deepcopy(obj)

        old_meta = existing["metadata"]
        for field in ("uid", "creationTimestamp", "deletionTimestamp", "finalizers"):
            if field in old_meta:
                meta[field] = old_meta[field]
        meta["generation"] = old_meta["generation"] + (1 if obj.get("spec") != existing.get("spec") else 0)
        if "status" in existing:
            obj["status"] = existing["status"]
        self._nodes[key] = obj
        self._emit("MODIFIED", obj)
        return copy.deepcopy(obj)

    def request_deletion(self, namespace: str, name: str) -> None:
        node = self._require(namespace, name)
        if not node["metadata"].get("finalizers"):
            self._remove(namespace, name)
            return
        if not node["metadata"].get("deletionTimestamp"):
            node["metadata"]["deletionTimestamp"] = rfc3339_now()
            self._emit("MODIFIED", node)

    def _remove(self, namespace: str, name: str) -> None:
        node = self._nodes.pop((namespace, name))
        self._emit("DELETED", node)
        self._cluster.collect_garbage(node["metadata"]["uid"])

    def check_registered(self) -> None:
        if not self.registered:
            raise ConfigurationFault(f"{KIND} CRD is not installed")

    def get(self, namespace: str, name: str) -> Optional[dict]:
        node = self._nodes.get((namespace, name))
        return copy.deepcopy(node) if node is not None else None

    def list(self, namespace: Optional[str] = None) -> List[dict]:
        return [
            copy.deepcopy(node)
            for (node_namespace, _), node in sorted(self._nodes.items())
            if namespace is None or node_namespace == namespace
        ]

    def patch_status(self, namespace: str, name: str, status: dict) -> None:
        self._cluster._maybe_fail(KIND, "patch_status")
        node = self._require(namespace, name)
        # Merge-patch semantics: explicit nulls remove the field
        node["status"] = {k: copy.deepcopy(v) for k, v in status.items() if v is not None}
        self.status_writes += 1
        self._emit("MODIFIED", node)

    def set_finalizers(self, namespace: str, name: str, finalizers: List[str]) -> None:
        self._cluster._maybe_fail(KIND, "set_finalizers")
        node = self._require(namespace, name)
        node["metadata"]["finalizers"] = list(finalizers)
        if node["metadata"].get("deletionTimestamp") and not finalizers:
            self._remove(namespace, name)
        else:
            self._emit("MODIFIED", node)

    def watch(self, namespace: Optional[str] = None, timeout_seconds: int = 60) -> Iterator[WatchEvent]:
        while self._events:
            event = self._events.popleft()
            if namespace is None or event.namespace == namespace:
                yield event


class InMemoryCluster(ClusterClient):
    def __init__(self):
        self._objects: Dict[ObjectKey, dict] = {}
        self._managers: Dict[ObjectKey, str] = {}
        self._failures: Dict[Tuple[str, str], Exception] = {}
        self.calls: List[Tuple[str, ChildKind, str, str]] = []
        self.nodes = InMemoryNodeStore(self)

    def resources(self, kind: ChildKind, namespace: str) -> ResourceApi:
        return InMemoryResourceApi(self, kind, namespace)

    def inject_failure(self, kind, operation: str, error: Exception) -> None:
        """Make every ``operation`` on ``kind`` raise ``error`` until cleared.

        ``kind`` is a ChildKind or "StellarNode"; operation is one of get,
        create, apply, delete, release, patch_status, set_finalizers.
        """
        self._failures[(getattr(kind, "value", kind), operation)] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def _maybe_fail(self, kind, operation: str) -> None:
        error = self._failures.get((getattr(kind, "value", kind), operation))
        if error is not None:
            raise error

    def objects(self, kind: ChildKind, namespace: Optional[str] = None) -> List[dict]:
        return [
            copy.deepcopy(obj)
            for (obj_kind, obj_namespace, _), obj in sorted(self._objects.items(), key=lambda item: item[0][1:])
            if obj_kind == kind and (namespace is None or obj_namespace == namespace)
        ]

    def set_ready_replicas(self, kind: ChildKind, namespace: str, name: str, ready: int) -> None:
        """Simulate the workload controller reporting ready pods"""
        obj = self._objects[(kind, namespace, name)]
        obj.setdefault("status", {})["readyReplicas"] = ready

    def collect_garbage(self, owner_uid: str) -> None:
        orphaned = [
            key
            for key, obj in self._objects.items()
            if any(ref.get("uid") == owner_uid for ref in obj["metadata"].get("ownerReferences", []))
        ]
        for key in orphaned:
            logger.debug(f"Garbage collecting {key[0].value} {key[1]}/{key[2]}")
            del self._objects[key]
            self._managers.pop(key, None)
