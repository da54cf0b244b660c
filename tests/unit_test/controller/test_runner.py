from unittest.mock import MagicMock

import pytest

from stellar_operator.cluster.base import ChildKind, WatchEvent
from stellar_operator.concurrent_control import StaticLeaderElector
from stellar_operator.controller.errors import ConfigurationFault, TransientApiError
from stellar_operator.controller.reconciler import FINALIZER
from stellar_operator.controller.runner import OperatorRunner


@pytest.fixture
def elector():
    return StaticLeaderElector()


@pytest.fixture
def runner(cluster, node_controller, elector):
    return OperatorRunner(cluster, node_controller, elector, idle_wait=0)


def event(event_type, generation=1, deleting=False, name="node-a"):
    return WatchEvent(type=event_type, namespace="default", name=name, generation=generation, deletion_requested=deleting)


class TestShouldDispatch:
    def test_first_sighting_and_spec_change(self, runner):
        assert runner.should_dispatch(event("ADDED")) is True
        assert runner.should_dispatch(event("MODIFIED", generation=1)) is False
        assert runner.should_dispatch(event("MODIFIED", generation=2)) is True

    def test_replayed_added_is_skipped(self, runner):
        runner.should_dispatch(event("ADDED"))
        assert runner.should_dispatch(event("ADDED")) is False
        assert runner.should_dispatch(event("ADDED", generation=2)) is True

    def test_deletion_always_dispatches(self, runner):
        runner.should_dispatch(event("ADDED"))
        assert runner.should_dispatch(event("MODIFIED", deleting=True)) is True
        assert runner.should_dispatch(event("MODIFIED", deleting=True)) is True
        assert runner.should_dispatch(event("DELETED")) is True
        assert runner.should_dispatch(event("ADDED")) is True

    def test_unknown_event_type(self, runner):
        assert runner.should_dispatch(event("BOOKMARK")) is False


class TestPolling:
    def test_new_node_is_reconciled(self, runner, cluster, put_node, load_node):
        put_node()

        runner.poll_once()

        node = load_node()
        assert FINALIZER in node.metadata.finalizers
        assert node.status.phase.value == "Running"
        assert len(cluster.objects(ChildKind.REPLICATED_WORKLOAD)) == 1

    def test_status_writes_do_not_retrigger(self, runner, cluster, put_node, scheduler):
        put_node()
        runner.poll_once()
        writes = cluster.nodes.status_writes

        runner.poll_once()

        assert cluster.nodes.status_writes == writes
        # Only the resync timer is pending
        assert scheduler.pending() == [("default", "node-a")]

    def test_repeated_edits_keep_one_resync_timer(self, runner, put_node, scheduler):
        put_node()
        runner.poll_once()

        for replicas in range(2, 7):
            put_node(replicas=replicas)
            runner.poll_once()

        assert len(scheduler.pending()) == 1

    def test_deletion_is_cleaned_up(self, runner, cluster, put_node):
        put_node()
        runner.poll_once()

        cluster.nodes.request_deletion("default", "node-a")
        runner.poll_once()

        assert cluster.nodes.get("default", "node-a") is None
        assert cluster.objects(ChildKind.REPLICATED_WORKLOAD) == []

    def test_watch_failure_is_survived(self, node_controller, elector):
        cluster = MagicMock()
        cluster.nodes.watch.side_effect = TransientApiError("watch: 410 Gone", status=410)
        runner = OperatorRunner(cluster, node_controller, elector, idle_wait=0)

        assert runner.poll_once() == 0

    def test_watch_timeout_respects_lease(self, cluster, node_controller, elector):
        runner = OperatorRunner(cluster, node_controller, elector, watch_timeout=60, lease_ttl=15)
        assert runner.watch_timeout == 5


class TestRun:
    def test_requires_registered_crd(self, runner, cluster):
        cluster.nodes.registered = False
        with pytest.raises(ConfigurationFault):
            runner.run(max_polls=1)

    def test_run_releases_lease(self, runner, elector, put_node, load_node):
        put_node()

        runner.run(max_polls=1)

        assert load_node().status is not None
        assert elector.held is False

    def test_follower_does_not_dispatch(self, cluster, node_controller, put_node, scheduler):
        put_node()
        runner = OperatorRunner(cluster, node_controller, StaticLeaderElector(leader=False), idle_wait=0)
        runner.stop()

        runner.run()

        assert scheduler.scheduled == []
        assert cluster.nodes.get("default", "node-a")["metadata"]["finalizers"] == []
