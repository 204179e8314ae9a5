from __future__ import annotations

import base64
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


CLUSTER_CONFIG = """\
apiVersion: eksctl.io/v1alpha5
kind: ClusterConfig
metadata:
  name: demo
  region: eu-west-1
nodeGroups:
  - name: services
  - name: workspaces
"""

CERTIFICATE_ARN = "arn:aws:acm:eu-west-1:12345:certificate/abc"

MUTATING_CALLS = frozenset(
    {
        "create_role",
        "put_parameter",
        "delete_parameter",
        "create_cluster",
        "create_nodegroups",
        "create_identity_mapping",
        "delete_cluster",
        "apply",
        "create_secret",
        "patch",
        "delete_pods",
        "rollout_restart",
        "bootstrap",
        "deploy",
        "destroy",
        "clear_context",
    }
)

# Calls that create a resource guarded by an existence predicate.
CREATING_CALLS = frozenset(
    {"create_role", "create_cluster", "create_nodegroups", "create_identity_mapping"}
)


@dataclass
class FakeCloud:
    """Shared state behind the fake collaborators."""

    account_id: str = "12345"
    certificates: set[str] = field(default_factory=lambda: {CERTIFICATE_ARN})
    buckets: set[str] = field(default_factory=set)
    roles: dict[str, str] = field(default_factory=dict)
    parameters: dict[str, str] = field(default_factory=dict)
    clusters: set[str] = field(default_factory=set)
    nodegroups: dict[str, list[str]] = field(default_factory=dict)
    mappings: set[tuple[str, str]] = field(default_factory=set)
    secrets: dict[str, dict[str, str]] = field(default_factory=dict)
    patches: list[tuple[str, str, Any]] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    ingress_values: list[str] = field(default_factory=lambda: ["lb.example.com"])
    deploy_env: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, ...]] = field(default_factory=list)
    fail_on: str | None = None

    def record(self, tool: str, operation: str, *details: str) -> None:
        self.calls.append((tool, operation, *details))
        if self.fail_on == operation:
            from eks_bootstrap._errors import CollaboratorCallFailure

            raise CollaboratorCallFailure(tool, 1, f"{operation} refused")

    def operations(self) -> list[str]:
        return [call[1] for call in self.calls]

    def mutations(self) -> list[str]:
        return [op for op in self.operations() if op in MUTATING_CALLS]


class FakeAws:
    def __init__(self, cloud: FakeCloud) -> None:
        self.cloud = cloud

    def caller_account_id(self) -> str:
        self.cloud.record("aws", "caller_account_id")
        return self.cloud.account_id

    def certificate_exists(self, arn: str, region: str) -> bool:
        self.cloud.record("aws", "certificate_exists", arn)
        return arn in self.cloud.certificates

    def bucket_exists(self, name: str) -> bool:
        self.cloud.record("aws", "bucket_exists", name)
        return name in self.cloud.buckets

    def get_role_arn(self, name: str) -> str | None:
        self.cloud.record("aws", "get_role_arn", name)
        return self.cloud.roles.get(name)

    def create_role(self, name: str, trust_policy: dict[str, Any], description: str) -> str:
        self.cloud.record("aws", "create_role", name)
        arn = f"arn:aws:iam::{self.cloud.account_id}:role/{name}"
        self.cloud.roles[name] = arn
        return arn

    def put_parameter(self, key: str, value: str, region: str) -> None:
        self.cloud.record("aws", "put_parameter", key)
        self.cloud.parameters[key] = value

    def get_parameter(self, key: str, region: str) -> str | None:
        self.cloud.record("aws", "get_parameter", key)
        return self.cloud.parameters.get(key)

    def delete_parameter(self, key: str, region: str) -> None:
        self.cloud.record("aws", "delete_parameter", key)
        self.cloud.parameters.pop(key, None)

    def cluster_exists(self, name: str, region: str) -> bool:
        self.cloud.record("aws", "cluster_exists", name)
        return name in self.cloud.clusters

    def cluster_oidc_issuer(self, name: str, region: str) -> str:
        self.cloud.record("aws", "cluster_oidc_issuer", name)
        return f"https://oidc.eks.{region}.amazonaws.com/id/{name.upper()}"


class FakeEksctl:
    def __init__(self, cloud: FakeCloud, kubeconfig: Path) -> None:
        self.cloud = cloud
        self.kubeconfig = kubeconfig

    def cluster_exists(self, name: str, region: str) -> bool:
        self.cloud.record("eksctl", "cluster_exists", name)
        return name in self.cloud.clusters

    def create_cluster(self, config_file: Path) -> Path:
        from eks_bootstrap._cluster_spec import load_cluster_spec

        self.cloud.record("eksctl", "create_cluster", str(config_file))
        self.cloud.clusters.add(load_cluster_spec(config_file).name)
        return self.kubeconfig

    def write_kubeconfig(self, name: str, region: str) -> Path:
        self.cloud.record("eksctl", "write_kubeconfig", name)
        return self.kubeconfig

    def list_nodegroups(self, cluster: str, region: str) -> list[str]:
        self.cloud.record("eksctl", "list_nodegroups", cluster)
        return list(self.cloud.nodegroups.get(cluster, []))

    def create_nodegroups(self, config_file: Path) -> None:
        from eks_bootstrap._cluster_spec import load_cluster_spec

        self.cloud.record("eksctl", "create_nodegroups", str(config_file))
        spec = load_cluster_spec(config_file)
        self.cloud.nodegroups[spec.name] = list(spec.nodegroups)

    def identity_mapping_exists(self, cluster: str, role_arn: str, region: str) -> bool:
        self.cloud.record("eksctl", "identity_mapping_exists", cluster)
        return (cluster, role_arn) in self.cloud.mappings

    def create_identity_mapping(
        self, cluster: str, role_arn: str, *, username: str, group: str, region: str
    ) -> None:
        self.cloud.record("eksctl", "create_identity_mapping", cluster, username, group)
        self.cloud.mappings.add((cluster, role_arn))

    def delete_cluster(self, name: str, region: str) -> None:
        self.cloud.record("eksctl", "delete_cluster", name)
        self.cloud.clusters.discard(name)


class FakeKubectl:
    def __init__(self, cloud: FakeCloud) -> None:
        self.cloud = cloud

    def apply(self, manifest: str | Path) -> None:
        self.cloud.record("kubectl", "apply")
        self.cloud.applied.append(str(manifest))

    def create_secret(
        self,
        name: str,
        literals: Mapping[str, str],
        *,
        secret_type: str = "Opaque",
        namespace: str | None = None,
    ) -> None:
        self.cloud.record("kubectl", "create_secret", name)
        self.cloud.secrets[name] = dict(literals)

    def patch(
        self,
        kind: str,
        name: str,
        patch: Any,
        *,
        patch_type: str | None = None,
        namespace: str | None = None,
    ) -> None:
        self.cloud.record("kubectl", "patch", kind, name)
        self.cloud.patches.append((kind, name, patch))

    def get_jsonpath(
        self, kind: str, name: str, jsonpath: str, *, namespace: str | None = None
    ) -> str | None:
        self.cloud.record("kubectl", "get_jsonpath", kind, name)
        if kind == "daemonset" and name == "aws-node":
            patched = any(entry[:2] == ("daemonset", "aws-node") for entry in self.cloud.patches)
            return "true" if patched else ""
        if kind == "daemonset" and name == "calico-node":
            calico = any("calico" in manifest for manifest in self.cloud.applied)
            return name if calico else None
        if kind == "secret":
            secret = self.cloud.secrets.get(name)
            if secret is None:
                return None
            if jsonpath == "{.data.encryptionKeys}":
                raw = secret.get("encryptionKeys", "")
                return base64.b64encode(raw.encode("utf-8")).decode("ascii")
            return name
        return None

    def resource_exists(self, kind: str, name: str, *, namespace: str | None = None) -> bool:
        return self.get_jsonpath(kind, name, "{.metadata.name}", namespace=namespace) is not None

    def ingress_hostname(self, name: str) -> str:
        self.cloud.record("kubectl", "ingress_hostname", name)
        if len(self.cloud.ingress_values) > 1:
            return self.cloud.ingress_values.pop(0)
        return self.cloud.ingress_values[0]

    def delete_pods(self, namespace: str, selector: str) -> None:
        self.cloud.record("kubectl", "delete_pods", namespace, selector)

    def rollout_restart(self, resource: str, *, namespace: str | None = None) -> None:
        self.cloud.record("kubectl", "rollout_restart", resource)


class FakeCdk:
    def __init__(self, cloud: FakeCloud) -> None:
        self.cloud = cloud

    def bootstrap(self, account_id: str, region: str) -> None:
        self.cloud.record("cdk", "bootstrap", account_id, region)

    def deploy(self, context: Any, outputs_file: Path, env: Mapping[str, str] | None = None):
        from eks_bootstrap._cdk import StackOutputs

        self.cloud.record("cdk", "deploy", context.cluster_name)
        self.cloud.deploy_env = dict(env or {})
        return StackOutputs.from_mapping(
            {
                "ServicesRDS0B1C2D3E": {"MysqlEndpoint": "db.demo.internal"},
                "ServicesRegistry9F8E7D6C": {
                    "AccessKeyId": "AKIADEMO",
                    "SecretAccessKey": "registry-secret",
                },
            }
        )

    def destroy(self, context: Any, env: Mapping[str, str] | None = None) -> None:
        self.cloud.record("cdk", "destroy", context.cluster_name)

    def clear_context(self) -> None:
        self.cloud.record("cdk", "clear_context")


class FakeInstaller:
    def __init__(self, cloud: FakeCloud) -> None:
        self.cloud = cloud

    def init(self) -> dict[str, Any]:
        self.cloud.record("installer", "init")
        return {"apiVersion": "v1", "domain": "", "metadata": {"region": "local"}}

    def render(self, config_file: Path) -> str:
        self.cloud.record("installer", "render", str(config_file))
        return "apiVersion: v1\nkind: List\nitems: []\n"


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def cluster_config(tmp_path: Path) -> Path:
    path = tmp_path / "eks-cluster.yaml"
    path.write_text(CLUSTER_CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path: Path, cluster_config: Path):
    from eks_bootstrap._settings import BootstrapSettings

    return BootstrapSettings(
        cluster_config=cluster_config,
        certificate_arn=CERTIFICATE_ARN,
        domain="gitpod.example.com",
        work_dir=tmp_path / "work",
        poll_interval=0.001,
        ingress_timeout=5.0,
    )


@pytest.fixture
def collaborators(cloud: FakeCloud, settings):
    from eks_bootstrap._collaborators import Collaborators

    return Collaborators(
        aws=FakeAws(cloud),
        eksctl=FakeEksctl(cloud, settings.kubeconfig),
        kubectl=FakeKubectl(cloud),
        cdk=FakeCdk(cloud),
        installer=FakeInstaller(cloud),
    )
