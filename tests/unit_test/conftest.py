"""
Shared fixtures for the unit tests.

Everything runs against InMemoryCluster, so no API server, Redis or Celery
broker is needed.
"""

import copy

import pytest

from stellar_operator.cluster.memory import InMemoryCluster
from stellar_operator.controller.controller import NodeController
from stellar_operator.controller.error_policy import ErrorPolicy
from stellar_operator.controller.reconciler import Reconciler
from stellar_operator.crd.models import StellarNode
from stellar_operator.tasks.scheduler import LocalTaskScheduler

KIND_BLOCKS = {
    "Validator": {"validatorConfig": {"seedSecretRef": "validator-seed"}},
    "Gateway": {"gatewayConfig": {"stellarCoreUrl": "http://core:11626"}},
    "RpcNode": {"rpcConfig": {"stellarCoreUrl": "http://core:11626"}},
}


def node_object(name="node-a", namespace="default", node_kind="Gateway", **spec_overrides):
    """Raw StellarNode object as a user would submit it"""
    spec = {"nodeKind": node_kind, "network": "Testnet", "version": "v21.0.0"}
    spec.update(copy.deepcopy(KIND_BLOCKS[node_kind]))
    spec.update(spec_overrides)
    return {
        "apiVersion": "stellar.org/v1alpha1",
        "kind": "StellarNode",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


@pytest.fixture
def make_node_object():
    return node_object


@pytest.fixture
def cluster():
    return InMemoryCluster()


@pytest.fixture
def put_node(cluster):
    """Store a node in the cluster and return its parsed model"""

    def _put(**kwargs):
        stored = cluster.nodes.put(node_object(**kwargs))
        return StellarNode.from_dict(stored)

    return _put


@pytest.fixture
def load_node(cluster):
    def _load(name="node-a", namespace="default"):
        obj = cluster.nodes.get(namespace, name)
        return StellarNode.from_dict(obj) if obj is not None else None

    return _load


@pytest.fixture
def reconciler(cluster):
    return Reconciler(cluster)


@pytest.fixture
def scheduler():
    return LocalTaskScheduler(clock=lambda: 0.0)


@pytest.fixture
def node_controller(cluster, reconciler, scheduler):
    return NodeController(cluster, task_scheduler=scheduler, reconciler=reconciler, error_policy=ErrorPolicy())
