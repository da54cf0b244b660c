import json
from unittest.mock import patch

import yaml

from stellar_operator.cli.operator import build_leader_elector, main
from stellar_operator.concurrent_control import StaticLeaderElector
from stellar_operator.controller.errors import ConfigurationFault

FROM_ENVIRONMENT = "stellar_operator.cluster.kubernetes.KubernetesCluster.from_environment"


class TestCli:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_crd_command(self, capsys):
        assert main(["crd"]) == 0

        manifest = yaml.safe_load(capsys.readouterr().out)
        assert manifest["kind"] == "CustomResourceDefinition"
        assert manifest["metadata"]["name"] == "stellarnodes.stellar.org"

    def test_status_command(self, capsys, cluster, put_node):
        put_node(name="a")
        put_node(name="b", namespace="prod")

        with patch(FROM_ENVIRONMENT, return_value=cluster):
            assert main(["status", "--namespace", "prod"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert [item["name"] for item in output["items"]] == ["b"]

    def test_reconcile_command(self, capsys, cluster, put_node):
        put_node(node_kind="RpcNode")

        with patch(FROM_ENVIRONMENT, return_value=cluster):
            assert main(["reconcile", "--name", "node-a"]) == 0

        first_line = capsys.readouterr().out.splitlines()[0]
        assert json.loads(first_line) == {"namespace": "default", "name": "node-a", "requeueAfter": 30.0}
        assert cluster.nodes.get("default", "node-a")["status"]["phase"] == "Running"

    def test_configuration_fault_exit_code(self):
        with patch(FROM_ENVIRONMENT, side_effect=ConfigurationFault("no kubeconfig")):
            assert main(["status"]) == 2

    def test_other_failures_exit_code(self):
        with patch(FROM_ENVIRONMENT, side_effect=RuntimeError("boom")):
            assert main(["reconcile", "--name", "x"]) == 1

    def test_leader_election_can_be_disabled(self):
        with patch("stellar_operator.cli.operator.settings") as mock_settings:
            mock_settings.leader_election = False
            assert isinstance(build_leader_elector(), StaticLeaderElector)
