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
Cluster API collaborator contract.

The reconciliation engine only talks to the cluster through these interfaces.
``KubernetesCluster`` backs them with the real API server, ``InMemoryCluster``
with a dictionary for tests and dry runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional


class ChildKind(str, Enum):
    STORAGE_CLAIM = "PersistentVolumeClaim"
    CONFIG_BUNDLE = "ConfigMap"
    STATEFUL_WORKLOAD = "StatefulSet"
    REPLICATED_WORKLOAD = "Deployment"
    NETWORK_ENDPOINT = "Service"
    AUTOSCALER = "HorizontalPodAutoscaler"

    @property
    def api_version(self) -> str:
        match self:
            case ChildKind.STATEFUL_WORKLOAD | ChildKind.REPLICATED_WORKLOAD:
                return "apps/v1"
            case ChildKind.AUTOSCALER:
                return "autoscaling/v2"
            case _:
                return "v1"


@dataclass
class WatchEvent:
    """A change notification for one StellarNode"""

    type: str  # ADDED, MODIFIED, DELETED
    namespace: str
    name: str
    generation: Optional[int] = None
    deletion_requested: bool = False


class ResourceApi(ABC):
    """Namespaced access to one child kind"""

    def __init__(self, kind: ChildKind, namespace: str):
        self.kind = kind
        self.namespace = namespace

    @abstractmethod
    def get(self, name: str) -> Optional[dict]:
        """Return the object, or None if it does not exist"""
        pass

    @abstractmethod
    def create(self, obj: dict) -> dict:
        """
        Create the object.

        Raises:
            ResourceConflict: if an object with that name already exists
        """
        pass

    @abstractmethod
    def merge_apply(self, name: str, obj: dict, manager: str, force: bool = True) -> dict:
        """
        Upsert the object under a field manager identity.

        With force, fields owned by another manager are taken over instead of
        raising a conflict.
        """
        pass

    @abstractmethod
    def delete(self, name: str) -> bool:
        """Delete the object; returns False if it was already absent"""
        pass

    @abstractmethod
    def release(self, name: str) -> bool:
        """Strip owner references so garbage collection leaves the object alone"""
        pass


class NodeStore(ABC):
    """Access to StellarNode resources"""

    @abstractmethod
    def check_registered(self) -> None:
        """
        Raises:
            ConfigurationFault: if the StellarNode resource type is not installed
        """
        pass

    @abstractmethod
    def get(self, namespace: str, name: str) -> Optional[dict]:
        pass

    @abstractmethod
    def list(self, namespace: Optional[str] = None) -> List[dict]:
        pass

    @abstractmethod
    def patch_status(self, namespace: str, name: str, status: dict) -> None:
        """
        Replace the status through the status subresource.

        Raises:
            AbsentResource: if the node no longer exists
        """
        pass

    @abstractmethod
    def set_finalizers(self, namespace: str, name: str, finalizers: List[str]) -> None:
        """
        Raises:
            AbsentResource: if the node no longer exists
        """
        pass

    @abstractmethod
    def watch(self, namespace: Optional[str] = None, timeout_seconds: int = 60) -> Iterator[WatchEvent]:
        """Yield node change events until the timeout expires"""
        pass


class ClusterClient(ABC):
    nodes: NodeStore

    @abstractmethod
    def resources(self, kind: ChildKind, namespace: str) -> ResourceApi:
        pass
