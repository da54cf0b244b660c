from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient

from stellar_operator import __version__
from stellar_operator.app import create_app


@pytest.fixture
def client(cluster):
    return TestClient(create_app(cluster))


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == HTTPStatus.OK
        assert response.json() == {"status": "healthy", "version": __version__}


class TestNodesApi:
    def test_empty_list(self, client):
        response = client.get("/api/v1/nodes")
        assert response.status_code == HTTPStatus.OK
        assert response.json() == {"items": []}

    def test_list_reconciled_node(self, client, cluster, put_node, reconciler):
        reconciler.reconcile(put_node(name="horizon", replicas=2))
        cluster.nodes.put(
            {
                "metadata": {"name": "private", "namespace": "lab"},
                "spec": {"nodeKind": "RpcNode", "network": {"custom": "Lab Network"}, "version": "v21"},
            }
        )

        items = client.get("/api/v1/nodes").json()["items"]

        assert items[0] == {
            "name": "horizon",
            "namespace": "default",
            "nodeKind": "Gateway",
            "network": "Testnet",
            "phase": "Running",
            "replicas": 2,
            "readyReplicas": 0,
        }
        assert items[1]["network"] == "Custom"
        assert items[1]["phase"] is None

    def test_list_filters_namespace(self, client, put_node):
        put_node(name="a")
        put_node(name="b", namespace="prod")

        items = client.get("/api/v1/nodes", params={"namespace": "prod"}).json()["items"]

        assert [item["name"] for item in items] == ["b"]

    def test_get_node(self, client, put_node, reconciler):
        reconciler.reconcile(put_node(node_kind="Validator"))

        body = client.get("/api/v1/nodes/default/node-a").json()

        assert body["nodeKind"] == "Validator"
        assert body["version"] == "v21.0.0"
        assert body["generation"] == 1
        assert body["observedGeneration"] == 1
        assert body["deleting"] is False
        assert body["status"]["phase"] == "Running"

    def test_get_missing_node(self, client):
        response = client.get("/api/v1/nodes/default/ghost")
        assert response.status_code == HTTPStatus.NOT_FOUND
        assert response.json() == {"detail": "StellarNode default/ghost not found"}
