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
from typing import Dict, Iterator, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.dynamic import DynamicClient

from stellar_operator.cluster.base import ChildKind, ClusterClient, NodeStore, ResourceApi, WatchEvent
from stellar_operator.controller.errors import AbsentResource, ConfigurationFault, ResourceConflict, TransientApiError
from stellar_operator.crd.models import GROUP, KIND, PLURAL, VERSION

logger = logging.getLogger(__name__)


def load_kube_config() -> None:
    """Load in-cluster credentials, falling back to the local kubeconfig"""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        try:
            config.load_kube_config()
            logger.info("Loaded Kubernetes configuration from kubeconfig")
        except ConfigException as e:
            raise ConfigurationFault(f"No Kubernetes configuration available: {e}") from e


def _translate(e: ApiException, action: str) -> TransientApiError:
    if e.status == 409:
        return ResourceConflict(f"{action}: {e.reason}", reason=e.reason)
    return TransientApiError(f"{action}: {e.status} {e.reason}", status=e.status, reason=e.reason)


class KubernetesResourceApi(ResourceApi):
    """ResourceApi on top of the dynamic client (server-side apply capable)"""

    def __init__(self, api, kind: ChildKind, namespace: str):
        super().__init__(kind, namespace)
        self._api = api

    def get(self, name: str) -> Optional[dict]:
        try:
            return self._api.get(name=name, namespace=self.namespace).to_dict()
        except ApiException as e:
            if e.status == 404:
                return None
            raise _translate(e, f"get {self.kind.value} {self.namespace}/{name}") from e

    def create(self, obj: dict) -> dict:
        name = obj["metadata"]["name"]
        try:
            return self._api.create(body=obj, namespace=self.namespace).to_dict()
        except ApiException as e:
            raise _translate(e, f"create {self.kind.value} {self.namespace}/{name}") from e

    def merge_apply(self, name: str, obj: dict, manager: str, force: bool = True) -> dict:
        try:
            result = self._api.server_side_apply(
                body=obj,
                name=name,
                namespace=self.namespace,
                field_manager=manager,
                force_conflicts=force,
            )
            return result.to_dict()
        except ApiException as e:
            raise _translate(e, f"apply {self.kind.value} {self.namespace}/{name}") from e

    def delete(self, name: str) -> bool:
        try:
            self._api.delete(name=name, namespace=self.namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise _translate(e, f"delete {self.kind.value} {self.namespace}/{name}") from e

    def release(self, name: str) -> bool:
        try:
            self._api.patch(
                name=name,
                namespace=self.namespace,
                body={"metadata": {"ownerReferences": None}},
                content_type="application/merge-patch+json",
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise _translate(e, f"release {self.kind.value} {self.namespace}/{name}") from e


class KubernetesNodeStore(NodeStore):
    """StellarNode access through the custom objects API"""

    def __init__(self, api_client: client.ApiClient):
        self._custom = client.CustomObjectsApi(api_client)
        self._extensions = client.ApiextensionsV1Api(api_client)

    def check_registered(self) -> None:
        crd_name = f"{PLURAL}.{GROUP}"
        try:
            self._extensions.read_custom_resource_definition(crd_name)
        except ApiException as e:
            if e.status == 404:
                raise ConfigurationFault(f"{KIND} CRD {crd_name} is not installed") from e
            raise ConfigurationFault(f"Unable to verify {KIND} CRD {crd_name}: {e.status} {e.reason}") from e
        logger.info(f"{KIND} CRD is available")

    def get(self, namespace: str, name: str) -> Optional[dict]:
        try:
            return self._custom.get_namespaced_custom_object(GROUP, VERSION, namespace, PLURAL, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _translate(e, f"get {KIND} {namespace}/{name}") from e

    def list(self, namespace: Optional[str] = None) -> List[dict]:
        try:
            if namespace:
                result = self._custom.list_namespaced_custom_object(GROUP, VERSION, namespace, PLURAL)
            else:
                result = self._custom.list_cluster_custom_object(GROUP, VERSION, PLURAL)
        except ApiException as e:
            raise _translate(e, f"list {KIND}") from e
        return result.get("items", [])

    def patch_status(self, namespace: str, name: str, status: dict) -> None:
        try:
            self._custom.patch_namespaced_custom_object_status(
                GROUP, VERSION, namespace, PLURAL, name, {"status": status}
            )
        except ApiException as e:
            if e.status == 404:
                raise AbsentResource(KIND, namespace, name) from e
            raise _translate(e, f"patch status {KIND} {namespace}/{name}") from e

    def set_finalizers(self, namespace: str, name: str, finalizers: List[str]) -> None:
        try:
            self._custom.patch_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, name, {"metadata": {"finalizers": finalizers}}
            )
        except ApiException as e:
            if e.status == 404:
                raise AbsentResource(KIND, namespace, name) from e
            raise _translate(e, f"patch finalizers {KIND} {namespace}/{name}") from e

    def watch(self, namespace: Optional[str] = None, timeout_seconds: int = 60) -> Iterator[WatchEvent]:
        w = watch.Watch()
        if namespace:
            stream = w.stream(
                self._custom.list_namespaced_custom_object,
                GROUP,
                VERSION,
                namespace,
                PLURAL,
                timeout_seconds=timeout_seconds,
            )
        else:
            stream = w.stream(
                self._custom.list_cluster_custom_object,
                GROUP,
                VERSION,
                PLURAL,
                timeout_seconds=timeout_seconds,
            )
        try:
            for event in stream:
                if event["type"] == "ERROR":
                    status = event["object"]
                    raise TransientApiError(
                        f"watch {KIND}: {status.get('message')}", status=status.get("code"), reason=status.get("reason")
                    )
                meta = event["object"].get("metadata", {})
                yield WatchEvent(
                    type=event["type"],
                    namespace=meta.get("namespace", "default"),
                    name=meta["name"],
                    generation=meta.get("generation"),
                    deletion_requested=bool(meta.get("deletionTimestamp")),
                )
        except ApiException as e:
            raise _translate(e, f"watch {KIND}") from e
        finally:
            w.stop()


class KubernetesCluster(ClusterClient):
    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self._api_client = api_client or client.ApiClient()
        self._dynamic: Optional[DynamicClient] = None
        self._discovered: Dict[ChildKind, object] = {}
        self.nodes = KubernetesNodeStore(self._api_client)

    @classmethod
    def from_environment(cls) -> "KubernetesCluster":
        load_kube_config()
        return cls()

    def _discover(self, kind: ChildKind):
        if kind not in self._discovered:
            if self._dynamic is None:
                self._dynamic = DynamicClient(self._api_client)
            self._discovered[kind] = self._dynamic.resources.get(api_version=kind.api_version, kind=kind.value)
        return self._discovered[kind]

    def resources(self, kind: ChildKind, namespace: str) -> ResourceApi:
        return KubernetesResourceApi(self._discover(kind), kind, namespace)
