"""Unit tests for ChildResourceManager against the in-memory cluster."""

from unittest.mock import MagicMock

import pytest

from stellar_operator.cluster.base import ChildKind
from stellar_operator.controller import builder
from stellar_operator.controller.errors import ResourceConflict, TransientApiError
from stellar_operator.controller.resources import ChildResourceManager


@pytest.fixture
def manager(cluster):
    return ChildResourceManager(cluster)


class TestEnsure:
    def test_storage_claim_is_created_once(self, cluster, manager, put_node):
        node = put_node(storage={"size": "10Gi"})
        manager.ensure_storage_claim(node)

        node.spec.storage.size = "20Gi"
        manager.ensure_storage_claim(node)

        claims = cluster.objects(ChildKind.STORAGE_CLAIM)
        assert len(claims) == 1
        assert claims[0]["spec"]["resources"]["requests"]["storage"] == "10Gi"
        assert [call[0] for call in cluster.calls] == ["create"]

    def test_storage_claim_create_race_is_success(self, put_node):
        node = put_node()
        api = MagicMock()
        api.get.side_effect = [None, {"metadata": {"name": "node-a-data"}}]
        api.create.side_effect = ResourceConflict("already exists", reason="AlreadyExists")
        fake_cluster = MagicMock()
        fake_cluster.resources.return_value = api

        result = ChildResourceManager(fake_cluster).ensure_storage_claim(node)

        assert result == {"metadata": {"name": "node-a-data"}}

    def test_apply_uses_manager_identity_and_force(self, put_node):
        node = put_node()
        api = MagicMock()
        fake_cluster = MagicMock()
        fake_cluster.resources.return_value = api

        ChildResourceManager(fake_cluster, manager="stellar-operator").ensure_config_bundle(node)

        api.merge_apply.assert_called_once()
        _, kwargs = api.merge_apply.call_args
        assert kwargs == {"manager": "stellar-operator", "force": True}

    def test_config_bundle_is_regenerated(self, cluster, manager, put_node):
        node = put_node()
        manager.ensure_config_bundle(node)
        node.spec.gateway_config.stellar_core_url = "http://other-core"
        manager.ensure_config_bundle(node)

        bundle = cluster.objects(ChildKind.CONFIG_BUNDLE)[0]
        assert bundle["data"]["STELLAR_CORE_URL"] == "http://other-core"

    def test_apply_takes_over_fields_from_other_managers(self, cluster, manager, put_node):
        node = put_node()
        desired = builder.build_network_endpoint(node)
        cluster.resources(ChildKind.NETWORK_ENDPOINT, "default").merge_apply("node-a", desired, manager="kubectl")

        manager.ensure_network_endpoint(node)

        assert len(cluster.objects(ChildKind.NETWORK_ENDPOINT)) == 1

    def test_workload_kind_change_removes_stale_workload(self, cluster, manager, put_node):
        manager.ensure_workload(put_node(node_kind="Gateway"))
        assert len(cluster.objects(ChildKind.REPLICATED_WORKLOAD)) == 1

        manager.ensure_workload(put_node(node_kind="Validator"))

        assert cluster.objects(ChildKind.REPLICATED_WORKLOAD) == []
        assert len(cluster.objects(ChildKind.STATEFUL_WORKLOAD)) == 1

    def test_selector_change_recreates_workload(self, cluster, manager, put_node):
        manager.ensure_workload(put_node(node_kind="Gateway"))
        [gateway] = cluster.objects(ChildKind.REPLICATED_WORKLOAD)

        manager.ensure_workload(put_node(node_kind="RpcNode"))

        [rpc] = cluster.objects(ChildKind.REPLICATED_WORKLOAD)
        assert rpc["metadata"]["uid"] != gateway["metadata"]["uid"]
        assert rpc["spec"]["selector"] != gateway["spec"]["selector"]
        assert ("delete", ChildKind.REPLICATED_WORKLOAD, "default", gateway["metadata"]["name"]) in cluster.calls

    def test_unchanged_selector_is_applied_in_place(self, cluster, manager, put_node):
        manager.ensure_workload(put_node(replicas=1))
        [before] = cluster.objects(ChildKind.REPLICATED_WORKLOAD)

        manager.ensure_workload(put_node(replicas=3))

        [after] = cluster.objects(ChildKind.REPLICATED_WORKLOAD)
        assert after["metadata"]["uid"] == before["metadata"]["uid"]
        assert after["spec"]["replicas"] == 3

    def test_autoscaler_removed_when_no_longer_wanted(self, cluster, manager, put_node):
        manager.ensure_autoscaler(put_node(autoscaling={"maxReplicas": 4}))
        assert len(cluster.objects(ChildKind.AUTOSCALER)) == 1

        assert manager.ensure_autoscaler(put_node()) is None
        assert cluster.objects(ChildKind.AUTOSCALER) == []

    def test_failures_propagate(self, cluster, manager, put_node):
        cluster.inject_failure(ChildKind.CONFIG_BUNDLE, "apply", TransientApiError("boom", status=500))
        with pytest.raises(TransientApiError):
            manager.ensure_config_bundle(put_node())


class TestDelete:
    def test_delete_absent_is_false(self, manager):
        assert manager.delete(ChildKind.NETWORK_ENDPOINT, "default", "missing") is False

    def test_delete_existing_is_true(self, manager, put_node):
        node = put_node()
        manager.ensure_network_endpoint(node)
        assert manager.delete_network_endpoint(node) is True
        assert manager.delete_network_endpoint(node) is False

    def test_delete_workload_covers_both_kinds(self, cluster, manager, put_node):
        node = put_node()
        manager.ensure_workload(node)
        stateful = builder.build_stateful_workload(node)
        cluster.resources(ChildKind.STATEFUL_WORKLOAD, "default").create(stateful)

        assert manager.delete_workload(node) is True
        assert cluster.objects(ChildKind.STATEFUL_WORKLOAD) == []
        assert cluster.objects(ChildKind.REPLICATED_WORKLOAD) == []

    def test_release_strips_owner_references(self, cluster, manager, put_node):
        node = put_node()
        manager.ensure_storage_claim(node)

        assert manager.release_storage_claim(node) is True

        claim = cluster.objects(ChildKind.STORAGE_CLAIM)[0]
        assert "ownerReferences" not in claim["metadata"]


class TestReadReadyReplicas:
    def test_reads_workload_status(self, cluster, manager, put_node):
        node = put_node(replicas=3)
        manager.ensure_workload(node)
        cluster.set_ready_replicas(ChildKind.REPLICATED_WORKLOAD, "default", "node-a", 2)
        assert manager.read_ready_replicas(node) == 2

    def test_missing_workload_reads_zero(self, manager, put_node):
        assert manager.read_ready_replicas(put_node()) == 0

    def test_read_failure_reads_zero(self, cluster, manager, put_node):
        node = put_node()
        manager.ensure_workload(node)
        cluster.inject_failure(ChildKind.REPLICATED_WORKLOAD, "get", TransientApiError("unavailable", status=503))
        assert manager.read_ready_replicas(node) == 0
