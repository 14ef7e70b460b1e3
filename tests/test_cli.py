"""Tests for the cosmos-gke command line."""

import io
from unittest.mock import MagicMock

import pytest

from kubernetes.client.exceptions import ApiException

from cosmos_gke import cli
from cosmos_gke.commands import deploy as deploy_command
from cosmos_gke.commands import undeploy as undeploy_command
from cosmos_gke.commands import verify as verify_command
from cosmos_gke.models.deployments import SmokeTestResult
from cosmos_gke.models.provisioning import VerificationReport

CLUSTER_ARGS = ["-c", "test-cluster", "-z", "us-central1-a", "-p", "test-project"]


@pytest.fixture
def connect(monkeypatch, k8s):
    fake = MagicMock(return_value=k8s)
    monkeypatch.setattr(deploy_command, "connect", fake)
    monkeypatch.setattr(undeploy_command, "connect", fake)
    monkeypatch.setattr(verify_command, "connect", fake)
    return fake


def test_parser_lists_commands():
    help_text = cli.build_parser().format_help()

    for command in ("provision", "verify", "deploy", "status", "predict", "undeploy", "teardown", "infra"):
        assert command in help_text


def test_deploy_without_token_exits_before_connecting(connect, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["deploy", *CLUSTER_ARGS])

    assert excinfo.value.code != 0
    assert "--token" in capsys.readouterr().err
    connect.assert_not_called()


def test_deploy_without_cluster_exits(connect):
    with pytest.raises(SystemExit):
        cli.main(["deploy", "-t", "hf_abc", "-z", "us-central1-a", "-p", "test-project"])
    connect.assert_not_called()


def test_deploy(connect, k8s, capsys):
    assert cli.main(["deploy", "-t", "hf_abc", *CLUSTER_ARGS, "-g", "nvidia-l4"]) == 0

    assert k8s.apply.call_count == 9
    assert "http://34.1.2.3" in capsys.readouterr().out


def test_deploy_reads_environment(monkeypatch, connect, k8s):
    monkeypatch.setenv("HF_TOKEN", "hf_env")
    monkeypatch.setenv("CLUSTER_NAME", "env-cluster")
    monkeypatch.setenv("GCP_ZONE", "us-east1-b")
    monkeypatch.setenv("GCP_PROJECT_ID", "env-project")

    assert cli.main(["deploy"]) == 0

    settings = connect.call_args.args[0]
    assert settings.gcp.cluster_name == "env-cluster"
    assert settings.cosmos.hf_token == "hf_env"


def test_undeploy_cancelled(monkeypatch, connect, k8s, capsys):
    k8s.namespace_exists.return_value = True
    k8s.namespace_inventory.return_value = {"Deployment": ["cosmos-inference"]}
    monkeypatch.setattr("sys.stdin", io.StringIO("no\n"))

    assert cli.main(["undeploy", *CLUSTER_ARGS]) == 0

    assert "Cleanup cancelled." in capsys.readouterr().out
    k8s.delete.assert_not_called()


def test_undeploy_nothing_to_clean(connect, k8s, capsys):
    assert cli.main(["undeploy", *CLUSTER_ARGS, "-f"]) == 0

    assert "Nothing to clean up" in capsys.readouterr().out
    k8s.delete.assert_not_called()


def test_undeploy_forced(connect, k8s):
    k8s.namespace_exists.side_effect = [True] + [False] * 5
    k8s.namespace_inventory.return_value = {"Deployment": ["cosmos-inference"]}

    assert cli.main(["undeploy", *CLUSTER_ARGS, "-f"]) == 0

    k8s.delete.assert_called()


def test_verify_failed_smoke_test_exits_1(monkeypatch, connect):
    verifier = MagicMock()
    verifier.return_value.verify.return_value = VerificationReport(smoke_test=SmokeTestResult.FAILED)
    monkeypatch.setattr(verify_command, "VerifierService", verifier)

    assert cli.main(["verify", *CLUSTER_ARGS]) == 1


def test_verify_timeout_is_not_a_failure(monkeypatch, connect):
    verifier = MagicMock()
    verifier.return_value.verify.return_value = VerificationReport(smoke_test=SmokeTestResult.TIMED_OUT)
    monkeypatch.setattr(verify_command, "VerifierService", verifier)

    assert cli.main(["verify", *CLUSTER_ARGS]) == 0


def test_errors_exit_1():
    # The placeholder project is rejected before any API call.
    assert cli.main(["provision"]) == 1


def test_infra_requires_variables_file(tmp_path):
    assert cli.main(["infra", "--vars", str(tmp_path / "missing.yaml"), "preview"]) == 1


@pytest.mark.parametrize(
    "flags",
    [["-r", "0"], ["-r", "-2"], ["--model-storage", "0Gi"], ["--cache-storage", "lots"]],
)
def test_deploy_rejects_bad_sizes(connect, capsys, flags):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["deploy", "-t", "hf_abc", *CLUSTER_ARGS, *flags])

    assert excinfo.value.code == 2
    assert "argument" in capsys.readouterr().err
    connect.assert_not_called()


def test_provision_rejects_zero_gpus(capsys):
    with pytest.raises(SystemExit):
        cli.main(["provision", "--gpu-count", "0"])
    assert "must be at least 1" in capsys.readouterr().err


def test_invalid_environment_exits_1(monkeypatch, capsys):
    monkeypatch.setenv("REPLICAS", "0")

    assert cli.main(["status", *CLUSTER_ARGS]) == 1
    assert "Invalid configuration" in capsys.readouterr().err


def test_kubernetes_api_error_exits_1(connect, k8s):
    k8s.gpu_capacity.side_effect = ApiException(status=403, reason="Forbidden")

    assert cli.main(["deploy", "-t", "hf_abc", *CLUSTER_ARGS]) == 1
