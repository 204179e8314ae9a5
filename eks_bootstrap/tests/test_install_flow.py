"""Tests for the install workflow against in-memory collaborators."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest
import yaml
from conftest import CREATING_CALLS, FakeCloud

from eks_bootstrap._errors import (
    CollaboratorCallFailure,
    ConfigNotFound,
    ConfigurationError,
    ConvergenceTimeout,
    PrerequisiteMissing,
)
from eks_bootstrap._install_flow import InstallSteps, generate_encryption_keys, install
from eks_bootstrap._run_context import (
    ACCOUNT_ID,
    ADMIN_ROLE_NAME,
    CERTIFICATE_ARN,
    CLUSTER_CONFIG,
    CLUSTER_NAME,
    CREATE_REGISTRY_BUCKET,
    DESIRED_NODEGROUPS,
    DOMAIN,
    PARAMETER_KEY,
    REGION,
    REGISTRY_BUCKET,
    RunContext,
)
from eks_bootstrap._steps import StepStatus, validate_step_order

PARAMETER = "/gitpod/cluster/demo/region/eu-west-1"
ROLE = "demo-region-eu-west-1-role-eksadmin"

RESOLVER_KEYS = (
    CLUSTER_NAME,
    REGION,
    ACCOUNT_ID,
    CLUSTER_CONFIG,
    DOMAIN,
    CERTIFICATE_ARN,
    REGISTRY_BUCKET,
    CREATE_REGISTRY_BUCKET,
    PARAMETER_KEY,
    ADMIN_ROLE_NAME,
    DESIRED_NODEGROUPS,
)


def _quiet(_message: str) -> None:
    return None


def test_install_steps_follow_dependency_order(settings, collaborators) -> None:
    steps = InstallSteps(settings, collaborators).steps()

    assert [step.name for step in steps] == [
        "cluster",
        "cluster-networking",
        "nodegroup-discovery",
        "secret-bundle",
        "admin-role",
        "identity-mapping",
        "nodegroups",
        "stacks",
        "https-certificate",
        "secret-propagation",
        "platform-config",
        "render",
        "apply",
    ]
    validate_step_order(steps, RESOLVER_KEYS)


def test_install_converges_fresh_account(settings, collaborators, cloud: FakeCloud) -> None:
    result = install(settings, collaborators, announce=_quiet)

    assert result.hostname == "lb.example.com"
    assert result.report.succeeded
    assert "demo" in cloud.clusters
    assert cloud.nodegroups["demo"] == ["services", "workspaces"]
    assert cloud.roles[ROLE] == f"arn:aws:iam::12345:role/{ROLE}"
    assert ("demo", cloud.roles[ROLE]) in cloud.mappings
    assert len(cloud.parameters[PARAMETER]) == 36
    assert ("kubectl", "delete_pods", "tigera-operator", "k8s-app=tigera-operator") in cloud.calls
    assert ("eksctl", "create_identity_mapping", "demo", "eksadmin", "system:masters") in cloud.calls


def test_install_passes_registry_facts_to_stacks(settings, collaborators, cloud: FakeCloud) -> None:
    install(settings, collaborators, announce=_quiet)

    assert cloud.deploy_env["CREATE_S3_BUCKET"] == "true"
    assert cloud.deploy_env["CONTAINER_REGISTRY_BUCKET"] == "container-registry-demo-12345"
    assert cloud.deploy_env["KUBECTL_ROLE_ARN"] == cloud.roles[ROLE]
    assert cloud.deploy_env["KUBECONFIG"] == str(settings.kubeconfig.resolve())


def test_install_skips_bucket_creation_when_bucket_exists(
    settings, collaborators, cloud: FakeCloud
) -> None:
    cloud.buckets.add("container-registry-demo-12345")

    install(settings, collaborators, announce=_quiet)

    assert cloud.deploy_env["CREATE_S3_BUCKET"] == "false"


def test_install_propagates_secrets_from_stack_outputs(
    settings, collaborators, cloud: FakeCloud
) -> None:
    install(settings, collaborators, announce=_quiet)

    database = cloud.secrets["mysql-gitpod-token"]
    assert database["host"] == "db.demo.internal"
    assert database["port"] == "3306"
    assert database["username"] == "gitpod"
    assert database["password"] == cloud.parameters[PARAMETER]
    assert json.loads(database["encryptionKeys"])[0]["primary"] is True
    assert cloud.secrets["object-storage-gitpod-token"] == {
        "s3AccessKey": "AKIADEMO",
        "s3SecretKey": "registry-secret",
    }


def test_install_writes_platform_config_and_manifest(
    settings, collaborators, cloud: FakeCloud
) -> None:
    install(settings, collaborators, announce=_quiet)

    config = yaml.safe_load(settings.platform_config_file.read_text(encoding="utf-8"))
    assert config["domain"] == "gitpod.example.com"
    assert config["metadata"]["region"] == "eu-west-1"
    assert config["database"]["external"]["certificate"]["name"] == "mysql-gitpod-token"
    assert config["containerRegistry"]["s3storage"]["bucket"] == "container-registry-demo-12345"
    assert settings.platform_manifest_file.read_text(encoding="utf-8").startswith("apiVersion")
    assert str(settings.platform_manifest_file) in cloud.applied


def test_install_patches_workloads_after_apply(settings, collaborators, cloud: FakeCloud) -> None:
    install(settings, collaborators, announce=_quiet)

    patched = {(kind, name): body for kind, name, body in cloud.patches}
    assert patched[("daemonset", "ws-daemon")] == [
        {"op": "remove", "path": "/spec/template/spec/initContainers/3"}
    ]
    assert patched[("service", "proxy")] == {"spec": {"type": "NodePort"}}
    assert ("daemonset", "aws-node") in patched


def test_install_rerun_performs_no_creating_actions(
    settings, collaborators, cloud: FakeCloud
) -> None:
    install(settings, collaborators, announce=_quiet)
    first_keys = cloud.secrets["mysql-gitpod-token"]["encryptionKeys"]
    cloud.calls.clear()

    result = install(settings, collaborators, announce=_quiet)

    assert CREATING_CALLS.isdisjoint(cloud.operations())
    assert set(result.report.names_with(StepStatus.SATISFIED)) >= {
        "cluster",
        "cluster-networking",
        "admin-role",
        "identity-mapping",
        "nodegroups",
    }
    assert cloud.secrets["mysql-gitpod-token"]["encryptionKeys"] == first_keys


def test_install_reuses_stored_password_without_rotation(
    settings, collaborators, cloud: FakeCloud
) -> None:
    cloud.parameters[PARAMETER] = "kept-password"
    settings = dataclasses.replace(settings, rotate_database_password=False)

    install(settings, collaborators, announce=_quiet)

    assert cloud.secrets["mysql-gitpod-token"]["password"] == "kept-password"
    assert "put_parameter" not in cloud.operations()


def test_install_rotates_password_by_default(settings, collaborators, cloud: FakeCloud) -> None:
    cloud.parameters[PARAMETER] = "old-password"

    install(settings, collaborators, announce=_quiet)

    assert cloud.parameters[PARAMETER] != "old-password"


def test_install_stops_at_first_failing_step(settings, collaborators, cloud: FakeCloud) -> None:
    cloud.fail_on = "create_role"

    with pytest.raises(CollaboratorCallFailure, match="create_role refused"):
        install(settings, collaborators, announce=_quiet)

    mutations = cloud.mutations()
    assert "create_cluster" in mutations
    assert "create_identity_mapping" not in mutations
    assert "deploy" not in mutations


def test_install_rerun_resumes_after_partial_failure(
    settings, collaborators, cloud: FakeCloud
) -> None:
    cloud.fail_on = "create_identity_mapping"

    with pytest.raises(CollaboratorCallFailure, match="create_identity_mapping refused"):
        install(settings, collaborators, announce=_quiet)

    assert "demo" in cloud.clusters
    assert ROLE in cloud.roles
    assert cloud.mappings == set()

    cloud.fail_on = None
    cloud.calls.clear()
    result = install(settings, collaborators, announce=_quiet)

    operations = cloud.operations()
    assert "create_cluster" not in operations
    assert "create_role" not in operations
    assert operations.count("create_identity_mapping") == 1
    assert result.hostname == "lb.example.com"
    assert result.report.succeeded


def test_install_missing_domain_makes_no_calls(settings, collaborators, cloud: FakeCloud) -> None:
    settings = dataclasses.replace(settings, domain=None)

    with pytest.raises(ConfigurationError, match="DOMAIN"):
        install(settings, collaborators, announce=_quiet)

    assert cloud.calls == []


def test_install_missing_cluster_config_makes_no_calls(
    settings, collaborators, cloud: FakeCloud, tmp_path: Path
) -> None:
    settings = dataclasses.replace(settings, cluster_config=tmp_path / "absent.yaml")

    with pytest.raises(ConfigNotFound):
        install(settings, collaborators, announce=_quiet)

    assert cloud.calls == []


def test_install_missing_certificate_aborts_before_mutation(
    settings, collaborators, cloud: FakeCloud
) -> None:
    cloud.certificates.clear()

    with pytest.raises(PrerequisiteMissing, match="does not exist"):
        install(settings, collaborators, announce=_quiet)

    assert cloud.mutations() == []


def test_install_waits_for_ingress_hostname(settings, collaborators, cloud: FakeCloud) -> None:
    cloud.ingress_values = ["", "", "", "lb-ready.example.com"]
    messages: list[str] = []

    result = install(settings, collaborators, announce=messages.append)

    assert result.hostname == "lb-ready.example.com"
    assert cloud.operations().count("ingress_hostname") == 4
    assert messages[-1] == "\nLoad balancer hostname: lb-ready.example.com"


def test_install_surfaces_ingress_timeout(settings, collaborators, cloud: FakeCloud) -> None:
    cloud.ingress_values = [""]
    settings = dataclasses.replace(settings, ingress_timeout=0.01, poll_interval=0.002)

    with pytest.raises(ConvergenceTimeout, match="ingress gitpod"):
        install(settings, collaborators, announce=_quiet)


def test_install_creates_image_pull_secret(
    settings, collaborators, cloud: FakeCloud, tmp_path: Path
) -> None:
    secret_file = tmp_path / "pull-secret.json"
    secret_file.write_text('{"auths": {}}', encoding="utf-8")
    settings = dataclasses.replace(settings, image_pull_secret_file=secret_file)

    install(settings, collaborators, announce=_quiet)

    assert cloud.secrets["gitpod-image-pull-secret"] == {".dockerconfigjson": '{"auths": {}}'}


def test_missing_image_pull_secret_file_omits_step(
    settings, collaborators, tmp_path: Path
) -> None:
    settings = dataclasses.replace(settings, image_pull_secret_file=tmp_path / "absent.json")

    names = [step.name for step in InstallSteps(settings, collaborators).steps()]

    assert "image-pull-secret" not in names


def test_image_pull_secret_step_requires_configured_file(settings, collaborators) -> None:
    settings = dataclasses.replace(settings, image_pull_secret_file=None)

    with pytest.raises(ConfigurationError, match="IMAGE_PULL_SECRET_FILE"):
        InstallSteps(settings, collaborators).create_image_pull_secret(RunContext())


def test_generate_encryption_keys_is_random() -> None:
    first = json.loads(generate_encryption_keys())
    second = json.loads(generate_encryption_keys())

    assert first[0]["name"] == "general"
    assert first[0]["material"] != second[0]["material"]
