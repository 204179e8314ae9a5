"""Install workflow: drive the platform from absent to converged.

Every step is idempotent. Re-running after a partial failure repeats only the
work whose existence predicate does not yet hold; always-on steps (secret
generation, stack deployment, apply) are safe to repeat by construction.
"""

from __future__ import annotations

import base64
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ._aws import build_trust_policy
from ._cdk import StackContext, StackOutputs
from ._collaborators import Collaborators, build_collaborators
from ._context_resolver import resolve_context
from ._convergence import wait_for_value
from ._errors import ConfigurationError
from ._platform_config import (
    DATABASE_SECRET_NAME,
    DATABASE_USERNAME as DEFAULT_DATABASE_USERNAME,
    IMAGE_PULL_SECRET_NAME,
    STORAGE_SECRET_NAME,
    PlatformFacts,
    certificate_manifest,
    config_overrides,
    database_secret_literals,
    dump_config,
    storage_secret_literals,
    synthesize_config,
)
from ._preconditions import check_preconditions, verify_certificate
from ._run_context import (
    ACCOUNT_ID,
    ADMIN_ROLE_ARN,
    ADMIN_ROLE_NAME,
    CERTIFICATE_ARN,
    CLUSTER_CONFIG,
    CLUSTER_NAME,
    CREATE_REGISTRY_BUCKET,
    DATABASE_PASSWORD,
    DATABASE_SECRET,
    DATABASE_USERNAME,
    DESIRED_NODEGROUPS,
    DOMAIN,
    ENCRYPTION_KEYS,
    KUBECONFIG,
    MISSING_NODEGROUPS,
    NETWORKING_READY,
    OIDC_ISSUER,
    PARAMETER_KEY,
    PLATFORM_CONFIG,
    PLATFORM_MANIFEST,
    REGION,
    REGISTRY_BUCKET,
    STACK_OUTPUTS,
    STORAGE_SECRET,
    RunContext,
)
from ._settings import BootstrapSettings
from ._steps import ExecutionReport, ProvisioningStep, execute_steps

logger = logging.getLogger(__name__)

CALICO_MANIFEST_URL = "https://docs.projectcalico.org/manifests/calico-vxlan.yaml"
ADMIN_USERNAME = "eksadmin"
ADMIN_GROUP = "system:masters"
INGRESS_NAME = "gitpod"
# RDS caps master passwords at 41 characters; 18 bytes hex-encode to 36.
PASSWORD_BYTES = 18

_AWS_NODE_SELECTOR_PATCH = {
    "spec": {"template": {"spec": {"nodeSelector": {"non-calico": "true"}}}}
}
_WS_DAEMON_PATCH = [
    {"op": "remove", "path": "/spec/template/spec/initContainers/3"}
]
_PROXY_SERVICE_PATCH = {"spec": {"type": "NodePort"}}


def generate_encryption_keys() -> str:
    """Return fresh encryption key material in the platform's JSON format."""
    material = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
    return json.dumps(
        [{"name": "general", "version": 1, "primary": True, "material": material}],
        separators=(",", ":"),
    )


def stack_context(context: RunContext, oidc_issuer: str) -> StackContext:
    return StackContext(
        cluster_name=context.require(CLUSTER_NAME),
        region=context.require(REGION),
        domain=context.require(DOMAIN),
        certificate_arn=context.require(CERTIFICATE_ARN),
        oidc_issuer=oidc_issuer,
    )


def stack_environment(context: RunContext, settings: BootstrapSettings) -> dict[str, str]:
    """Environment the stack application reads besides its ``--context`` values."""
    return {
        "CREATE_S3_BUCKET": "true" if context.require(CREATE_REGISTRY_BUCKET) else "false",
        "CONTAINER_REGISTRY_BUCKET": context.require(REGISTRY_BUCKET),
        "KUBECTL_ROLE_ARN": context.get(ADMIN_ROLE_ARN) or "",
        "KUBECONFIG": str(settings.kubeconfig.resolve()),
    }


class InstallSteps:
    """Concrete install steps bound to one set of collaborators."""

    def __init__(
        self,
        settings: BootstrapSettings,
        collaborators: Collaborators,
        *,
        announce: Callable[[str], object] = print,
    ) -> None:
        self.settings = settings
        self.announce = announce
        self.aws = collaborators.aws
        self.eksctl = collaborators.eksctl
        self.kubectl = collaborators.kubectl
        self.cdk = collaborators.cdk
        self.installer = collaborators.installer

    # cluster
    def cluster_exists(self, ctx: RunContext) -> bool:
        return self.eksctl.cluster_exists(ctx.require(CLUSTER_NAME), ctx.require(REGION))

    def create_cluster(self, ctx: RunContext) -> None:
        self.announce(f"Creating cluster {ctx.require(CLUSTER_NAME)} without node groups")
        ctx.set(KUBECONFIG, self.eksctl.create_cluster(ctx.require(CLUSTER_CONFIG)))

    def write_kubeconfig(self, ctx: RunContext) -> None:
        ctx.set(
            KUBECONFIG,
            self.eksctl.write_kubeconfig(ctx.require(CLUSTER_NAME), ctx.require(REGION)),
        )

    # control-plane networking: replace the AWS CNI with Calico
    def networking_ready(self, ctx: RunContext) -> bool:
        ctx.require(KUBECONFIG)
        selector = self.kubectl.get_jsonpath(
            "daemonset",
            "aws-node",
            "{.spec.template.spec.nodeSelector.non-calico}",
            namespace="kube-system",
        )
        return selector == "true" and self.kubectl.resource_exists(
            "daemonset", "calico-node", namespace="kube-system"
        )

    def configure_networking(self, ctx: RunContext) -> None:
        self.kubectl.patch(
            "daemonset", "aws-node", _AWS_NODE_SELECTOR_PATCH, namespace="kube-system"
        )
        self.kubectl.apply(CALICO_MANIFEST_URL)
        ctx.set(NETWORKING_READY, True)

    def mark_networking_ready(self, ctx: RunContext) -> None:
        ctx.set(NETWORKING_READY, True)

    # image pull secret
    def image_pull_secret_exists(self, ctx: RunContext) -> bool:
        ctx.require(KUBECONFIG)
        return self.kubectl.resource_exists("secret", IMAGE_PULL_SECRET_NAME)

    def create_image_pull_secret(self, ctx: RunContext) -> None:
        path = self.settings.image_pull_secret_file
        if path is None:
            raise ConfigurationError("IMAGE_PULL_SECRET_FILE is not set")
        self.kubectl.create_secret(
            IMAGE_PULL_SECRET_NAME,
            {".dockerconfigjson": path.read_text(encoding="utf-8")},
            secret_type="kubernetes.io/dockerconfigjson",
        )

    # node groups
    def discover_nodegroups(self, ctx: RunContext) -> None:
        ctx.require(KUBECONFIG)
        attached = set(
            self.eksctl.list_nodegroups(ctx.require(CLUSTER_NAME), ctx.require(REGION))
        )
        missing = tuple(
            name for name in ctx.require(DESIRED_NODEGROUPS) if name not in attached
        )
        ctx.set(MISSING_NODEGROUPS, missing)

    def nodegroups_attached(self, ctx: RunContext) -> bool:
        return not ctx.require(MISSING_NODEGROUPS)

    def attach_nodegroups(self, ctx: RunContext) -> None:
        ctx.require(NETWORKING_READY)
        self.announce(f"Creating node groups: {', '.join(ctx.require(MISSING_NODEGROUPS))}")
        self.eksctl.create_nodegroups(ctx.require(CLUSTER_CONFIG))
        # Calico's operator must be restarted to pick up the new nodes.
        self.kubectl.delete_pods("tigera-operator", "k8s-app=tigera-operator")

    # secret bundle
    def generate_secret_bundle(self, ctx: RunContext) -> None:
        key, region = ctx.require(PARAMETER_KEY), ctx.require(REGION)
        password = None
        if not self.settings.rotate_database_password:
            password = self.aws.get_parameter(key, region)
        if password is None:
            password = secrets.token_hex(PASSWORD_BYTES)
            self.aws.put_parameter(key, password, region)

        # Rotating the encryption key would make stored data unreadable.
        ctx.require(KUBECONFIG)
        existing = self.kubectl.get_jsonpath(
            "secret", DATABASE_SECRET_NAME, "{.data.encryptionKeys}"
        )
        keys = (
            base64.b64decode(existing).decode("utf-8")
            if existing
            else generate_encryption_keys()
        )

        ctx.set(DATABASE_USERNAME, DEFAULT_DATABASE_USERNAME)
        ctx.set(DATABASE_PASSWORD, password, secret=True)
        ctx.set(ENCRYPTION_KEYS, keys, secret=True)

    # identity
    def admin_role_exists(self, ctx: RunContext) -> bool:
        return self.aws.get_role_arn(ctx.require(ADMIN_ROLE_NAME)) is not None

    def import_admin_role(self, ctx: RunContext) -> None:
        ctx.set(ADMIN_ROLE_ARN, self.aws.get_role_arn(ctx.require(ADMIN_ROLE_NAME)))

    def create_admin_role(self, ctx: RunContext) -> None:
        self.announce("Creating role for EKS access")
        arn = self.aws.create_role(
            ctx.require(ADMIN_ROLE_NAME),
            build_trust_policy(ctx.require(ACCOUNT_ID)),
            "Kubernetes role (for AWS IAM Authenticator for Kubernetes).",
        )
        ctx.set(ADMIN_ROLE_ARN, arn)

    def identity_mapping_exists(self, ctx: RunContext) -> bool:
        ctx.require(KUBECONFIG)
        return self.eksctl.identity_mapping_exists(
            ctx.require(CLUSTER_NAME), ctx.require(ADMIN_ROLE_ARN), ctx.require(REGION)
        )

    def create_identity_mapping(self, ctx: RunContext) -> None:
        arn = ctx.require(ADMIN_ROLE_ARN)
        self.announce(f"Creating mapping from IAM role {arn}")
        self.eksctl.create_identity_mapping(
            ctx.require(CLUSTER_NAME),
            arn,
            username=ADMIN_USERNAME,
            group=ADMIN_GROUP,
            region=ctx.require(REGION),
        )

    # stacks
    def deploy_stacks(self, ctx: RunContext) -> None:
        name, region = ctx.require(CLUSTER_NAME), ctx.require(REGION)
        ctx.require(DATABASE_PASSWORD)
        self.cdk.bootstrap(ctx.require(ACCOUNT_ID), region)
        oidc_issuer = self.aws.cluster_oidc_issuer(name, region)
        ctx.set(OIDC_ISSUER, oidc_issuer)
        outputs = self.cdk.deploy(
            stack_context(ctx, oidc_issuer),
            self.settings.stack_outputs_file,
            env=stack_environment(ctx, self.settings),
        )
        ctx.set(STACK_OUTPUTS, outputs, secret=True)

    def apply_certificate(self, ctx: RunContext) -> None:
        # cert-manager is installed by the stacks.
        ctx.require(STACK_OUTPUTS)
        self.kubectl.apply(certificate_manifest(ctx.require(DOMAIN)))

    def propagate_secrets(self, ctx: RunContext) -> None:
        outputs: StackOutputs = ctx.require(STACK_OUTPUTS)
        self.announce("Create database secret...")
        self.kubectl.create_secret(
            DATABASE_SECRET_NAME,
            database_secret_literals(
                outputs,
                password=ctx.require(DATABASE_PASSWORD),
                encryption_keys=ctx.require(ENCRYPTION_KEYS),
                username=ctx.require(DATABASE_USERNAME),
            ),
        )
        self.announce("Create storage secret...")
        self.kubectl.create_secret(STORAGE_SECRET_NAME, storage_secret_literals(outputs))
        ctx.set(DATABASE_SECRET, DATABASE_SECRET_NAME)
        ctx.set(STORAGE_SECRET, STORAGE_SECRET_NAME)

    # platform
    def synthesize_platform_config(self, ctx: RunContext) -> None:
        facts = PlatformFacts(
            domain=ctx.require(DOMAIN),
            region=ctx.require(REGION),
            registry_bucket=ctx.require(REGISTRY_BUCKET),
            database_secret=ctx.require(DATABASE_SECRET),
            storage_secret=ctx.require(STORAGE_SECRET),
        )
        document = synthesize_config(self.installer.init(), config_overrides(facts))
        path = self.settings.platform_config_file
        path.write_text(dump_config(document), encoding="utf-8")
        ctx.set(PLATFORM_CONFIG, path)

    def render_platform(self, ctx: RunContext) -> None:
        manifest = self.installer.render(ctx.require(PLATFORM_CONFIG))
        path = self.settings.platform_manifest_file
        path.write_text(manifest, encoding="utf-8")
        ctx.set(PLATFORM_MANIFEST, path)

    def apply_platform(self, ctx: RunContext) -> None:
        manifest: Path = ctx.require(PLATFORM_MANIFEST)
        self.kubectl.apply(manifest)
        # Drop the shiftfs module loader init container from ws-daemon.
        self.kubectl.patch("daemonset", "ws-daemon", _WS_DAEMON_PATCH, patch_type="json")
        # The ALB fronts the proxy, so it must not request its own load balancer.
        self.kubectl.patch("service", "proxy", _PROXY_SERVICE_PATCH, patch_type="merge")

    def steps(self) -> list[ProvisioningStep]:
        """Return the install steps in dependency order."""
        steps = [
            ProvisioningStep(
                "cluster",
                action=self.create_cluster,
                exists=self.cluster_exists,
                on_existing=self.write_kubeconfig,
                reads=(CLUSTER_NAME, REGION, CLUSTER_CONFIG),
                writes=(KUBECONFIG,),
            ),
            ProvisioningStep(
                "cluster-networking",
                action=self.configure_networking,
                exists=self.networking_ready,
                on_existing=self.mark_networking_ready,
                reads=(KUBECONFIG,),
                writes=(NETWORKING_READY,),
            ),
        ]
        pull_secret = self.settings.image_pull_secret_file
        if pull_secret is not None and pull_secret.is_file():
            steps.append(
                ProvisioningStep(
                    "image-pull-secret",
                    action=self.create_image_pull_secret,
                    exists=self.image_pull_secret_exists,
                    reads=(KUBECONFIG,),
                )
            )
        elif pull_secret is not None:
            logger.warning("Image pull secret file %s not found; skipping", pull_secret)
        steps.extend(
            [
                ProvisioningStep(
                    "nodegroup-discovery",
                    action=self.discover_nodegroups,
                    reads=(CLUSTER_NAME, REGION, DESIRED_NODEGROUPS, KUBECONFIG),
                    writes=(MISSING_NODEGROUPS,),
                ),
                ProvisioningStep(
                    "secret-bundle",
                    action=self.generate_secret_bundle,
                    reads=(PARAMETER_KEY, REGION, KUBECONFIG),
                    writes=(DATABASE_USERNAME, DATABASE_PASSWORD, ENCRYPTION_KEYS),
                ),
                ProvisioningStep(
                    "admin-role",
                    action=self.create_admin_role,
                    exists=self.admin_role_exists,
                    on_existing=self.import_admin_role,
                    reads=(ADMIN_ROLE_NAME, ACCOUNT_ID),
                    writes=(ADMIN_ROLE_ARN,),
                ),
                ProvisioningStep(
                    "identity-mapping",
                    action=self.create_identity_mapping,
                    exists=self.identity_mapping_exists,
                    reads=(CLUSTER_NAME, REGION, ADMIN_ROLE_ARN, KUBECONFIG),
                ),
                ProvisioningStep(
                    "nodegroups",
                    action=self.attach_nodegroups,
                    exists=self.nodegroups_attached,
                    reads=(MISSING_NODEGROUPS, CLUSTER_CONFIG, NETWORKING_READY),
                ),
                ProvisioningStep(
                    "stacks",
                    action=self.deploy_stacks,
                    reads=(
                        CLUSTER_NAME,
                        REGION,
                        ACCOUNT_ID,
                        DOMAIN,
                        CERTIFICATE_ARN,
                        REGISTRY_BUCKET,
                        CREATE_REGISTRY_BUCKET,
                        ADMIN_ROLE_ARN,
                        DATABASE_PASSWORD,
                    ),
                    writes=(OIDC_ISSUER, STACK_OUTPUTS),
                ),
                ProvisioningStep(
                    "https-certificate",
                    action=self.apply_certificate,
                    reads=(DOMAIN, STACK_OUTPUTS),
                ),
                ProvisioningStep(
                    "secret-propagation",
                    action=self.propagate_secrets,
                    reads=(
                        STACK_OUTPUTS,
                        DATABASE_USERNAME,
                        DATABASE_PASSWORD,
                        ENCRYPTION_KEYS,
                    ),
                    writes=(DATABASE_SECRET, STORAGE_SECRET),
                ),
                ProvisioningStep(
                    "platform-config",
                    action=self.synthesize_platform_config,
                    reads=(DOMAIN, REGION, REGISTRY_BUCKET, DATABASE_SECRET, STORAGE_SECRET),
                    writes=(PLATFORM_CONFIG,),
                ),
                ProvisioningStep(
                    "render",
                    action=self.render_platform,
                    reads=(PLATFORM_CONFIG,),
                    writes=(PLATFORM_MANIFEST,),
                ),
                ProvisioningStep(
                    "apply",
                    action=self.apply_platform,
                    reads=(PLATFORM_MANIFEST,),
                ),
            ]
        )
        return steps


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Outcome of a converged install."""

    report: ExecutionReport
    hostname: str


def install(
    settings: BootstrapSettings,
    collaborators: Collaborators | None = None,
    *,
    announce: Callable[[str], object] = print,
) -> InstallResult:
    """Run the install workflow and wait for the ingress endpoint.

    Raises
    ------
    BootstrapError
        The first precondition, prerequisite or step failure; nothing after
        it is attempted.
    """

    check_preconditions(settings, announce=announce)
    collaborators = collaborators or build_collaborators(settings)
    context = resolve_context(settings, collaborators.aws, announce=announce)
    verify_certificate(context, collaborators.aws)
    settings.work_dir.mkdir(parents=True, exist_ok=True)

    report = execute_steps(
        InstallSteps(settings, collaborators, announce=announce).steps(),
        context,
        announce=announce,
    )
    report.raise_for_failure()

    announce(f"Waiting for the load balancer of ingress {INGRESS_NAME}...")
    hostname = wait_for_value(
        lambda: collaborators.kubectl.ingress_hostname(INGRESS_NAME),
        description=f"ingress {INGRESS_NAME} load balancer hostname",
        interval=settings.poll_interval,
        timeout=settings.ingress_timeout,
    )
    announce(f"\nLoad balancer hostname: {hostname}")
    return InstallResult(report=report, hostname=hostname)
