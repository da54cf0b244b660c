"""Tests for the status projector."""

from unittest.mock import MagicMock

import pytest

from stellar_operator.controller.status import StatusProjector
from stellar_operator.crd.models import Phase, StellarNode, StellarNodeStatus


@pytest.fixture
def node(make_node_object):
    obj = make_node_object()
    obj["metadata"]["generation"] = 3
    return StellarNode.from_dict(obj)


class TestProject:
    def test_running_with_all_replicas_ready(self, node):
        status = StatusProjector(MagicMock(), clock=lambda: "now").project(
            node, Phase.RUNNING, "ok", replicas=2, ready_replicas=2, advance_generation=True
        )
        assert status.observed_generation == 3
        assert status.get_condition("Ready").status == "True"
        assert status.get_condition("Progressing").status == "False"
        assert status.get_condition("Ready").last_transition_time == "now"

    def test_ready_follows_desired_replicas(self, node):
        projector = StatusProjector(MagicMock(), clock=lambda: "now")
        status = projector.project(node, Phase.RUNNING, "ok", replicas=5, ready_replicas=1, desired_replicas=1)
        assert status.replicas == 5
        assert status.get_condition("Ready").status == "True"

        status = projector.project(node, Phase.RUNNING, "ok", replicas=5, ready_replicas=1)
        assert status.get_condition("Ready").status == "False"

    def test_interim_write_keeps_observed_generation(self, node):
        node.status = StellarNodeStatus(phase=Phase.RUNNING, observed_generation=2)
        status = StatusProjector(MagicMock()).project(node, Phase.CREATING, "Creating resources")
        assert status.observed_generation == 2
        assert status.get_condition("Progressing").status == "True"

    def test_failed_is_not_ready(self, node):
        status = StatusProjector(MagicMock()).project(node, Phase.FAILED, "replicas must be >= 0")
        assert status.get_condition("Ready").status == "False"
        assert status.get_condition("Ready").message == "replicas must be >= 0"


class TestWrite:
    def test_writes_full_snapshot_through_status_channel(self, node):
        nodes = MagicMock()
        projector = StatusProjector(nodes, clock=lambda: "now")

        assert projector.write(node, Phase.SUSPENDED, None) is True

        namespace, name, body = nodes.patch_status.call_args[0]
        assert (namespace, name) == ("default", "node-a")
        # Cleared fields are sent as explicit nulls
        assert body["message"] is None
        assert body["phase"] == "Suspended"
        assert node.status.phase == Phase.SUSPENDED

    def test_unchanged_status_is_not_rewritten(self, node):
        nodes = MagicMock()
        projector = StatusProjector(nodes, clock=lambda: "now")
        projector.write(node, Phase.RUNNING, "ok", replicas=1, ready_replicas=1, advance_generation=True)

        assert projector.write(node, Phase.RUNNING, "ok", replicas=1, ready_replicas=1, advance_generation=True) is False
        assert nodes.patch_status.call_count == 1

    def test_unparseable_object(self):
        nodes = MagicMock()
        obj = {"metadata": {"name": "broken", "namespace": "ns"}, "spec": {"nodeKind": "Nope"}}

        StatusProjector(nodes, clock=lambda: "now").write_unparseable(obj, "Invalid StellarNode: bad kind")

        namespace, name, body = nodes.patch_status.call_args[0]
        assert (namespace, name) == ("ns", "broken")
        assert body["phase"] == "Failed"
        assert body["message"] == "Invalid StellarNode: bad kind"
