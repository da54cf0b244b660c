"""
Tests for NodeController: loading, error handling and the delay handed to
the task scheduler.
"""

from stellar_operator.cluster.base import ChildKind
from stellar_operator.controller.errors import AbsentResource, TransientApiError
from stellar_operator.controller.reconciler import FINALIZER


class TestReconcileNode:
    def test_success_requeues_after_resync_interval(self, node_controller, scheduler, put_node):
        put_node()

        action = node_controller.reconcile_node("default", "node-a")

        assert action.requeue_after == 30.0
        assert scheduler.scheduled == [("default", "node-a", 30.0)]

    def test_validation_error_requeues_after_sixty_seconds(self, node_controller, scheduler, put_node, load_node):
        put_node(replicas=-1)

        node_controller.reconcile_node("default", "node-a")

        assert scheduler.scheduled == [("default", "node-a", 60.0)]
        assert load_node().status.phase.value == "Failed"

    def test_transient_error_requeues_after_fifteen_seconds(self, node_controller, scheduler, cluster, put_node):
        put_node()
        cluster.inject_failure(ChildKind.NETWORK_ENDPOINT, "apply", TransientApiError("timeout", status=504))

        node_controller.reconcile_node("default", "node-a")

        assert scheduler.scheduled == [("default", "node-a", 15.0)]

    def test_unexpected_error_requeues_after_fifteen_seconds(self, node_controller, scheduler, cluster, put_node):
        put_node()
        cluster.inject_failure(ChildKind.CONFIG_BUNDLE, "apply", KeyError("boom"))

        node_controller.reconcile_node("default", "node-a")

        assert scheduler.scheduled == [("default", "node-a", 15.0)]

    def test_missing_node_awaits_change(self, node_controller, scheduler):
        action = node_controller.reconcile_node("default", "ghost")

        assert action.requeue_after is None
        assert scheduler.scheduled == []

    def test_deleted_node_is_not_requeued(self, node_controller, scheduler, cluster, put_node, load_node):
        put_node()
        node_controller.reconcile_node("default", "node-a")
        cluster.nodes.request_deletion("default", "node-a")

        action = node_controller.reconcile_node("default", "node-a")

        assert action.requeue_after is None
        assert load_node() is None
        assert len(scheduler.scheduled) == 1


class TestUnparseableNodes:
    def test_parse_failure_is_a_validation_failure(self, node_controller, scheduler, cluster, make_node_object):
        obj = make_node_object(network={"unexpected": 1}, replicas="many")
        cluster.nodes.put(obj)

        node_controller.reconcile_node("default", "node-a")

        stored = cluster.nodes.get("default", "node-a")
        assert stored["status"]["phase"] == "Failed"
        assert stored["status"]["message"].startswith("Invalid StellarNode:")
        assert scheduler.scheduled == [("default", "node-a", 60.0)]

    def test_unparseable_deleting_node_releases_finalizer(self, node_controller, cluster, make_node_object):
        obj = make_node_object(nodeKind="Archiver")
        cluster.nodes.put(obj)
        cluster.nodes.set_finalizers("default", "node-a", [FINALIZER])
        cluster.nodes.request_deletion("default", "node-a")

        action = node_controller.reconcile_node("default", "node-a")

        assert action.requeue_after is None
        assert cluster.nodes.get("default", "node-a") is None

    def test_unparseable_deleting_node_without_our_finalizer_is_left_alone(
        self, node_controller, scheduler, cluster, make_node_object
    ):
        obj = make_node_object(nodeKind="Archiver")
        cluster.nodes.put(obj)
        cluster.nodes.set_finalizers("default", "node-a", ["other.io/finalizer"])
        cluster.nodes.request_deletion("default", "node-a")
        writes = cluster.nodes.status_writes

        action = node_controller.reconcile_node("default", "node-a")

        assert action.requeue_after is None
        assert scheduler.scheduled == []
        stored = cluster.nodes.get("default", "node-a")
        assert stored["metadata"]["finalizers"] == ["other.io/finalizer"]
        assert cluster.nodes.status_writes == writes

    def test_unparseable_node_vanishing_before_release(self, node_controller, scheduler, cluster, make_node_object):
        cluster.nodes.put(make_node_object(nodeKind="Archiver"))
        cluster.nodes.set_finalizers("default", "node-a", [FINALIZER])
        cluster.nodes.request_deletion("default", "node-a")
        cluster.inject_failure("StellarNode", "set_finalizers", AbsentResource("StellarNode", "default", "node-a"))

        action = node_controller.reconcile_node("default", "node-a")

        assert action.requeue_after is None
        assert scheduler.scheduled == []

    def test_unparseable_release_failure_is_retried(self, node_controller, scheduler, cluster, make_node_object):
        cluster.nodes.put(make_node_object(nodeKind="Archiver"))
        cluster.nodes.set_finalizers("default", "node-a", [FINALIZER])
        cluster.nodes.request_deletion("default", "node-a")
        cluster.inject_failure("StellarNode", "set_finalizers", TransientApiError("conflict", status=409))

        action = node_controller.reconcile_node("default", "node-a")

        assert action.requeue_after == 15.0
        assert scheduler.scheduled == [("default", "node-a", 15.0)]
